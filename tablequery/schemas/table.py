from __future__ import annotations

from typing import Any, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tablequery.core.config import settings

SORT_DIRECTIONS = ("asc", "desc")

_TRUE_FLAGS = {"1", "true", "yes", "y", "on"}


def coerce_flag(value: Any) -> bool:
    """Boolean-like request value to ``bool``; anything unrecognized is ``False``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    text = str(value if value is not None else "").strip().lower()
    if text in _TRUE_FLAGS:
        return True
    return False


def coerce_page_number(value: Any) -> int:
    """Page number from a request value; anything unusable is page 1."""
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return 1
    return max(number, 1)


def _coerce_modifiers(value: Any) -> dict:
    return dict(value) if isinstance(value, Mapping) else {}


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, tuple)) and not value:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


class ColumnSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    searchable: bool = False
    sort_direction: str | None = Field(default=None, alias="sortDirection")
    value: Any = None
    values: Any = None
    modifiers: dict[str, Any] = Field(default_factory=dict)

    @field_validator("searchable", mode="before")
    @classmethod
    def coerce_searchable(cls, value):
        return coerce_flag(value)

    @field_validator("modifiers", mode="before")
    @classmethod
    def coerce_modifiers(cls, value):
        return _coerce_modifiers(value)

    @property
    def is_relational(self) -> bool:
        return "." in self.name

    @property
    def filter_value(self) -> Any:
        return self.values if _present(self.values) else self.value


class FilterSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    column: str
    values: Any = None
    value: Any = None
    modifiers: dict[str, Any] = Field(default_factory=dict)

    @field_validator("modifiers", mode="before")
    @classmethod
    def coerce_modifiers(cls, value):
        return _coerce_modifiers(value)

    @property
    def filter_value(self) -> Any:
        return self.values if _present(self.values) else self.value

    @property
    def has_value(self) -> bool:
        return _present(self.filter_value)

    @property
    def is_range(self) -> bool:
        return coerce_flag(self.modifiers.get("range"))


class SortSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    column: str | None = None
    direction: str | None = None

    @property
    def normalized_direction(self) -> str | None:
        direction = str(self.direction or "").strip().lower()
        return direction if direction in SORT_DIRECTIONS else None


def _normalize_columns(raw: Any) -> list[dict]:
    if isinstance(raw, Mapping):
        # Keyed shape: {"name": {"searchable": true, "values": [...]}}
        raw = [
            {**(dict(options) if isinstance(options, Mapping) else {}), "name": name}
            for name, options in raw.items()
        ]
    if not isinstance(raw, (list, tuple)):
        return []
    columns = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        columns.append({**item, "name": name})
    return columns


def _normalize_filters(raw: Any) -> list[dict]:
    if isinstance(raw, Mapping):
        entries = []
        for column, options in raw.items():
            if isinstance(options, Mapping) and {"value", "values", "modifiers"} & set(options):
                entries.append({**options, "column": column})
            else:
                entries.append({"column": column, "values": options})
        raw = entries
    if not isinstance(raw, (list, tuple)):
        return []
    filters = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        column = str(item.get("column") or "").strip()
        if not column:
            continue
        filters.append({**item, "column": column})
    return filters


def _normalize_sorting(raw: Any) -> list[dict]:
    if isinstance(raw, Mapping):
        raw = [{"column": column, "direction": direction} for column, direction in raw.items()]
    if not isinstance(raw, (list, tuple)):
        return []
    return [dict(item) for item in raw if isinstance(item, Mapping)]


class TableParams(BaseModel):
    """Grid parameters of one request: columns, filters, sorting, search, paging.

    Column entries may carry their own filter and sort settings; those are
    appended after the explicit ``filters`` and ``sorting`` entries.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    columns: List[ColumnSpec] = []
    filters: List[FilterSpec] = []
    sorting: List[SortSpec] = []
    search: str = ""
    per_page: int = Field(default_factory=lambda: settings.TABLE_DEFAULT_PER_PAGE, alias="perPage")
    page: int = 1

    @model_validator(mode="before")
    @classmethod
    def normalize_shapes(cls, data):
        if not isinstance(data, Mapping):
            return {}
        data = dict(data)
        columns = _normalize_columns(data.get("columns"))
        filters = _normalize_filters(data.get("filters"))
        sorting = _normalize_sorting(data.get("sorting"))
        for column in columns:
            values = column.get("values")
            value = column.get("value")
            if _present(values) or _present(value):
                filters.append(
                    {
                        "column": column["name"],
                        "values": values,
                        "value": value,
                        "modifiers": column.get("modifiers"),
                    }
                )
            direction = column.get("sortDirection", column.get("sort_direction"))
            if direction:
                sorting.append({"column": column["name"], "direction": direction})
        data["columns"] = columns
        data["filters"] = filters
        data["sorting"] = sorting
        return data

    @field_validator("search", mode="before")
    @classmethod
    def coerce_search(cls, value):
        if isinstance(value, (list, tuple)):
            value = value[-1] if value else ""
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("per_page", mode="before")
    @classmethod
    def coerce_per_page(cls, value):
        try:
            number = int(str(value).strip())
        except (TypeError, ValueError):
            return settings.TABLE_DEFAULT_PER_PAGE
        if number < 1:
            return settings.TABLE_DEFAULT_PER_PAGE
        return min(number, settings.TABLE_MAX_PER_PAGE)

    @field_validator("page", mode="before")
    @classmethod
    def coerce_page(cls, value):
        return coerce_page_number(value)

    @classmethod
    def from_source(cls, source: Any) -> "TableParams":
        """Build params from anything with ``.get(name, default)``."""
        if isinstance(source, cls):
            return source
        if source is None:
            return cls()
        data = {}
        for key in ("columns", "filters", "sorting", "search", "perPage", "page"):
            value = source.get(key, None)
            if value is not None:
                data[key] = value
        if "perPage" not in data and source.get("per_page", None) is not None:
            data["perPage"] = source.get("per_page", None)
        return cls.model_validate(data)
