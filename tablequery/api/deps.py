import json
from typing import AsyncIterator

from fastapi import Request

from tablequery.schemas.table import TableParams
from tablequery.services.request_params import bind_table_params, parse_bracket_params, reset_table_params


async def _json_object(request: Request) -> dict:
    body = await request.body()
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


async def get_table_params(request: Request) -> AsyncIterator[TableParams]:
    """Grid params from the query string (``columns[0][name]=...``) and, for
    non-GET requests, a JSON object body whose keys take precedence.

    The result is bound as the current request's params until the request ends.
    """
    data = parse_bracket_params(request.query_params.multi_items())
    if request.method not in ("GET", "HEAD"):
        data.update(await _json_object(request))
    params = TableParams.from_source(data)
    token = bind_table_params(params)
    try:
        yield params
    finally:
        reset_table_params(token)
