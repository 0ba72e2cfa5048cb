from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

from sqlalchemy import String, and_, asc, cast, desc, func, or_, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, aliased, load_only

from tablequery.core.errors import QueryExecutionError
from tablequery.schemas.table import TableParams, coerce_flag, coerce_page_number
from tablequery.services.filter_values import coerce_filter_value, column_python_type, is_date_only_literal
from tablequery.services.pagination import LengthAwarePaginator
from tablequery.services.relations import (
    eager_load_option,
    relation_exists,
    relation_target,
    resolve_column,
    resolve_relationship,
    split_column_path,
)
from tablequery.services.request_params import current_table_params
from tablequery.services.serialization import COUNT_SUFFIX

_LOG = logging.getLogger("tablequery.query")


def _query_model(query: Query):
    descriptions = query.column_descriptions
    entity = descriptions[0].get("entity") if descriptions else None
    if entity is None:
        raise QueryExecutionError("Table query must select a mapped entity")
    return entity


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _flatten_names(names: Iterable[Any]) -> list[str]:
    flat: list[str] = []
    for name in names:
        if isinstance(name, (list, tuple, set, frozenset)):
            flat.extend(_flatten_names(name))
        elif not _blank(name):
            flat.append(str(name).strip())
    return list(dict.fromkeys(flat))


def _count_subquery(model: type, relationship):
    """Correlated ``COUNT(*)`` of ``relationship`` per outer row.

    Both ends are aliased, so a self-referential relation does not correlate
    its own FROM away.
    """
    mapper = sa_inspect(model).mapper
    parent = aliased(model)
    target = aliased(relationship.mapper.class_)
    keys = [mapper.get_property_by_column(column).key for column in mapper.primary_key]
    same_row = [getattr(parent, key) == getattr(model, key) for key in keys]
    return (
        select(func.count())
        .select_from(parent)
        .join(getattr(parent, relationship.key).of_type(target))
        .where(and_(*same_row))
        .correlate(mapper.local_table)
        .scalar_subquery()
    )


class TableQuery:
    """Applies a grid request (filters, sorting, search, projection) to an ORM query.

    Construction runs the whole pipeline, so ``get_query()`` already carries
    every constraint once ``__init__`` returns. ``params`` defaults to the
    parameters bound for the current request.
    """

    def __init__(
        self,
        query: Query,
        params: TableParams | Mapping[str, Any] | None = None,
        *,
        model: type | None = None,
        eager_loads: Iterable[str] = (),
    ):
        self.query = query
        self.model = model if model is not None else _query_model(query)
        self.params = TableParams.from_source(params) if params is not None else current_table_params()
        self.eager_loads: list[str] = []
        self._initial_eager_loads = _flatten_names(eager_loads)
        self._count_labels: list[str] = []
        self._sort_joins: dict[str, Any] = {}
        self.run_query()

    def get_query(self) -> Query:
        return self.query

    def run_query(self) -> None:
        self.columns = self.params.columns
        self.filters = self.params.filters
        self.sorting = self.params.sorting
        self.search = self.params.search
        self.per_page = self.params.per_page
        _LOG.debug(
            "table query model=%s columns=%d filters=%d sorting=%d search=%r per_page=%d",
            self.model.__name__,
            len(self.columns),
            len(self.filters),
            len(self.sorting),
            self.search,
            self.per_page,
        )
        try:
            self.filter_columns()
            self.sort_columns()
            relations = self.search_columns()
            self._eager_load([*self._initial_eager_loads, *relations])
            self.apply_projection()
        except SQLAlchemyError as exc:
            raise QueryExecutionError(f"Cannot build table query for {self.model.__name__}") from exc

    # Filtering

    def filter_columns(self) -> None:
        for spec in self.filters:
            if not spec.has_value:
                _LOG.debug("filter skipped column=%s reason=no-value", spec.column)
                continue
            relation, attribute = split_column_path(spec.column)
            if relation is None:
                self.query = self.apply_filter(self.query, spec.modifiers, attribute, spec.filter_value)
                continue
            target = relation_target(self.model, relation)
            criterion = self.filter_criterion(target, spec.modifiers, attribute, spec.filter_value)
            if criterion is None:
                continue
            self.query = self.query.filter(relation_exists(self.model, relation, criterion))

    def apply_filter(self, query: Query, modifiers: Mapping[str, Any], attribute: str, values: Any) -> Query:
        criterion = self.filter_criterion(self.model, modifiers, attribute, values)
        if criterion is None:
            return query
        return query.filter(criterion)

    def filter_criterion(self, entity: Any, modifiers: Mapping[str, Any], attribute: str, values: Any):
        """Range, set-membership or equality predicate for one column.

        Returns ``None`` when the values cannot form a predicate.
        """
        column = resolve_column(entity, attribute)
        if isinstance(values, Mapping):
            _LOG.debug("filter skipped column=%s reason=mapping-value", attribute)
            return None
        if isinstance(values, (list, tuple, set)):
            values = list(values)
            if coerce_flag(modifiers.get("range")):
                return self._range_criterion(column, values)
            return column.in_([coerce_filter_value(column, value) for value in values])
        if column_python_type(column) is datetime and is_date_only_literal(values):
            day_start = coerce_filter_value(column, values)
            return and_(column >= day_start, column < day_start + timedelta(days=1))
        return column == coerce_filter_value(column, values)

    def _range_criterion(self, column, values: list):
        if len(values) != 2:
            _LOG.debug("filter skipped column=%s reason=range-needs-two-values", column.key)
            return None
        raw_lower, raw_upper = values
        lower = None if _blank(raw_lower) else coerce_filter_value(column, raw_lower)
        upper = None if _blank(raw_upper) else coerce_filter_value(column, raw_upper)
        # A date-only upper bound on a timestamp column covers that whole day.
        whole_day = upper is not None and column_python_type(column) is datetime and is_date_only_literal(raw_upper)
        if lower is not None and upper is not None and not whole_day:
            return column.between(lower, upper)
        clauses = []
        if lower is not None:
            clauses.append(column >= lower)
        if upper is not None:
            clauses.append(column < upper + timedelta(days=1) if whole_day else column <= upper)
        if not clauses:
            return None
        return and_(*clauses)

    # Sorting

    def sort_columns(self) -> None:
        for spec in self.sorting:
            direction = spec.normalized_direction
            if not spec.column or direction is None:
                _LOG.debug("sort skipped column=%s direction=%r", spec.column, spec.direction)
                continue
            column = self._sort_expression(spec.column)
            if column is None:
                continue
            self.query = self.query.order_by(asc(column) if direction == "asc" else desc(column))

    def _sort_expression(self, path: str):
        relation, attribute = split_column_path(path)
        if relation is None:
            return resolve_column(self.model, attribute)
        entity = self._join_to_one(relation)
        if entity is None:
            return None
        return resolve_column(entity, attribute)

    def _join_to_one(self, relation_path: str):
        """Outer-join the to-one chain of ``relation_path`` once, returning the
        aliased entity at its end, or ``None`` if the chain crosses a collection."""
        current = self.model
        for name in relation_path.split("."):
            relationship = resolve_relationship(current, name)
            if relationship.uselist:
                _LOG.debug("sort skipped relation=%s reason=collection", relation_path)
                return None
            current = relationship.mapper.class_

        current = self.model
        walked: list[str] = []
        for name in relation_path.split("."):
            walked.append(name)
            key = ".".join(walked)
            alias = self._sort_joins.get(key)
            if alias is None:
                relationship = resolve_relationship(current, name)
                alias = aliased(relationship.mapper.class_)
                self.query = self.query.outerjoin(getattr(current, name).of_type(alias))
                self._sort_joins[key] = alias
            current = alias
        return current

    # Searching

    def search_columns(self) -> list[str]:
        """AND one OR-group of substring matches over the searchable columns.

        Returns the relation paths of searchable relational columns so they can
        be eager loaded.
        """
        relations: list[str] = []
        clauses = []
        for column in self.columns:
            if not column.searchable:
                continue
            relation, attribute = split_column_path(column.name)
            if relation is not None:
                relations.append(relation)
            if not self.search:
                continue
            if relation is None:
                clauses.append(self._contains(self.model, attribute))
            else:
                target = relation_target(self.model, relation)
                clauses.append(relation_exists(self.model, relation, self._contains(target, attribute)))
        if clauses:
            self.query = self.query.filter(or_(*clauses))
        return relations

    def _contains(self, entity: Any, attribute: str):
        column = resolve_column(entity, attribute)
        if column_python_type(column) is not str:
            column = cast(column, String)
        return column.ilike(f"%{self.search}%")

    def _eager_load(self, relations: Iterable[str]) -> None:
        for relation in _flatten_names(relations):
            if relation in self.eager_loads:
                continue
            self.query = self.query.options(eager_load_option(self.model, relation))
            self.eager_loads.append(relation)

    # Projection

    def extract_column_names(self) -> list[str]:
        names = [column.name for column in self.columns if not column.is_relational]
        return list(dict.fromkeys(names)) if names else ["*"]

    def apply_projection(self) -> None:
        names = self.extract_column_names()
        if names == ["*"]:
            return
        attrs = [resolve_column(self.model, name) for name in names]
        mapper = sa_inspect(self.model).mapper
        # Eager loaders read the parent's foreign keys, so those stay loaded.
        for relation in self.eager_loads:
            relationship = resolve_relationship(self.model, relation.split(".")[0])
            local_columns = list(relationship.local_columns)
            for prop in mapper.column_attrs:
                if prop.key in names:
                    continue
                if any(column is local for column in prop.columns for local in local_columns):
                    attrs.append(getattr(self.model, prop.key))
                    names.append(prop.key)
        self.query = self.query.options(load_only(*attrs))

    # Relation counts

    def with_count(self, *relations: Any) -> "TableQuery":
        """Attach ``<relation>_count`` to every row without loading the relation."""
        for relation in _flatten_names(relations):
            label = f"{relation}{COUNT_SUFFIX}"
            if label in self._count_labels:
                continue
            relationship = resolve_relationship(self.model, relation)
            self.query = self.query.add_columns(_count_subquery(self.model, relationship).label(label))
            self._count_labels.append(label)
        return self

    # Execution

    def paginated(self, page: int | None = None) -> LengthAwarePaginator:
        current_page = coerce_page_number(page) if page is not None else self.params.page
        offset = (current_page - 1) * self.per_page
        try:
            total = self.query.count()
            rows = self.query.offset(offset).limit(self.per_page).all()
        except SQLAlchemyError as exc:
            _LOG.warning("table query failed model=%s error=%s", self.model.__name__, exc)
            raise QueryExecutionError(f"Table query failed for {self.model.__name__}") from exc
        return LengthAwarePaginator(
            items=[self._attach_counts(row) for row in rows],
            total=total,
            per_page=self.per_page,
            current_page=current_page,
            columns=self.extract_column_names(),
        )

    def _attach_counts(self, row: Any) -> Any:
        if not self._count_labels:
            return row
        entity, *counts = row
        for label, value in zip(self._count_labels, counts):
            setattr(entity, label, int(value or 0))
        return entity
