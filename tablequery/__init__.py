from tablequery.core.errors import QueryExecutionError
from tablequery.schemas.table import ColumnSpec, FilterSpec, SortSpec, TableParams
from tablequery.services.pagination import LengthAwarePaginator
from tablequery.services.table_query import TableQuery

__all__ = [
    "ColumnSpec",
    "FilterSpec",
    "LengthAwarePaginator",
    "QueryExecutionError",
    "SortSpec",
    "TableParams",
    "TableQuery",
]
