from __future__ import annotations

import re
from contextvars import ContextVar, Token
from typing import Any, Iterable

from tablequery.schemas.table import TableParams

_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)$")
_SEGMENT_RE = re.compile(r"\[([^\[\]]*)\]")

_current_params: ContextVar[TableParams | None] = ContextVar("tablequery_params", default=None)


def _split_key(key: str) -> list[str]:
    match = _KEY_RE.match(key)
    if not match:
        return [key]
    return [match.group(1), *_SEGMENT_RE.findall(match.group(2))]


def _assign(node: dict, segments: list[str], value: str) -> None:
    *parents, last = segments
    for segment in parents:
        if segment == "":
            segment = str(len(node))
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child
    if last == "":
        last = str(len(node))
    node[last] = value


def _listify(value: Any) -> Any:
    if not isinstance(value, dict):
        return value
    value = {key: _listify(item) for key, item in value.items()}
    if value and all(key.isdigit() for key in value):
        by_index = {int(key): item for key, item in value.items()}
        if sorted(by_index) == list(range(len(by_index))):
            return [by_index[index] for index in range(len(by_index))]
    return value


def parse_bracket_params(items: Iterable[tuple[str, str]]) -> dict[str, Any]:
    """Nest ``columns[0][name]=id`` style query items into dicts and lists.

    ``key[]`` appends; integer keys counting up from 0 collapse into a list.
    """
    tree: dict[str, Any] = {}
    for key, value in items:
        _assign(tree, _split_key(key), value)
    return {key: _listify(value) for key, value in tree.items()}


def bind_table_params(params: TableParams) -> Token:
    return _current_params.set(params)


def reset_table_params(token: Token) -> None:
    _current_params.reset(token)


def current_table_params() -> TableParams:
    params = _current_params.get()
    return params if params is not None else TableParams()
