from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import inspect as sa_inspect

COUNT_SUFFIX = "_count"


def serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def _column_values(row: Any, columns: Iterable[str] | None) -> dict[str, Any]:
    state = sa_inspect(row)
    wanted = None if columns is None or "*" in columns else set(columns)
    payload = {}
    for column in state.mapper.column_attrs:
        key = column.key
        if key in state.unloaded:
            continue
        if wanted is not None and key not in wanted and not column.columns[0].primary_key:
            continue
        payload[key] = serialize_value(getattr(row, key))
    return payload


def row_to_dict(row: Any, columns: Iterable[str] | None = None, *, depth: int = 1) -> dict[str, Any]:
    """Loaded columns of ``row``, its ``*_count`` attributes and, ``depth`` levels
    deep, its already loaded relationships. Never triggers lazy loads."""
    state = sa_inspect(row)
    payload = _column_values(row, columns)
    for key, value in vars(row).items():
        if key.endswith(COUNT_SUFFIX) and isinstance(value, int):
            payload[key] = value
    if depth <= 0:
        return payload
    for relationship in state.mapper.relationships:
        key = relationship.key
        if key in state.unloaded:
            continue
        related = getattr(row, key)
        if related is None:
            payload[key] = None
        elif relationship.uselist:
            payload[key] = [row_to_dict(item, depth=depth - 1) for item in related]
        else:
            payload[key] = row_to_dict(related, depth=depth - 1)
    return payload
