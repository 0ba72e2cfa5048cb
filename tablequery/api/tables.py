from typing import Any, Callable, Iterable

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tablequery.api.deps import get_table_params
from tablequery.db.session import get_db
from tablequery.schemas.table import TableParams
from tablequery.services.serialization import row_to_dict
from tablequery.services.table_query import TableQuery


def table_router(
    model: type,
    *,
    prefix: str,
    session_dependency: Callable = get_db,
    counts: Iterable[str] = (),
    eager_loads: Iterable[str] = (),
    serializer: Callable[[Any], Any] | None = None,
) -> APIRouter:
    """Router serving one model as a paginated grid on ``GET {prefix}`` and
    ``POST {prefix}/query``."""
    router = APIRouter(prefix=prefix)
    counts = list(counts)
    eager_loads = list(eager_loads)

    def _page(db: Session, params: TableParams) -> dict:
        table = TableQuery(db.query(model), params, eager_loads=eager_loads)
        if counts:
            table.with_count(counts)
        page = table.paginated()
        return page.to_dict(serializer or (lambda row: row_to_dict(row, page.columns)))

    @router.get("")
    def list_rows(params: TableParams = Depends(get_table_params), db: Session = Depends(session_dependency)):
        return _page(db, params)

    @router.post("/query")
    def query_rows(params: TableParams = Depends(get_table_params), db: Session = Depends(session_dependency)):
        return _page(db, params)

    return router
