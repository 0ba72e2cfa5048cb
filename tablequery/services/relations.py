from __future__ import annotations

from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import RelationshipProperty, selectinload

from tablequery.core.errors import UnknownColumnError, UnknownRelationError


def split_column_path(path: str) -> tuple[str | None, str]:
    """``"author.profile.city"`` -> ``("author.profile", "city")``."""
    relation, _, attribute = path.rpartition(".")
    return (relation or None), attribute


def resolve_relationship(model: type, name: str) -> RelationshipProperty:
    mapper = sa_inspect(model).mapper
    if name not in mapper.relationships:
        raise UnknownRelationError(mapper.class_, name)
    return mapper.relationships[name]


def resolve_column(entity: Any, name: str):
    """Mapped column attribute of a class or an ``aliased()`` entity."""
    mapper = sa_inspect(entity).mapper
    if name not in mapper.column_attrs:
        raise UnknownColumnError(mapper.class_, name)
    return getattr(entity, name)


def relation_target(model: type, relation_path: str) -> type:
    current = model
    for name in relation_path.split("."):
        current = resolve_relationship(current, name).mapper.class_
    return current


def relation_exists(model: type, relation_path: str, criterion):
    """EXISTS predicate through ``relation_path``; ``criterion`` is expressed
    against the model at the end of the path.

    Scalar relations use ``has()``, collections ``any()``.
    """
    name, _, rest = relation_path.partition(".")
    relationship = resolve_relationship(model, name)
    if rest:
        criterion = relation_exists(relationship.mapper.class_, rest, criterion)
    attr = getattr(model, name)
    return attr.any(criterion) if relationship.uselist else attr.has(criterion)


def eager_load_option(model: type, relation_path: str):
    option = None
    current = model
    for name in relation_path.split("."):
        relationship = resolve_relationship(current, name)
        attr = getattr(current, name)
        option = selectinload(attr) if option is None else option.selectinload(attr)
        current = relationship.mapper.class_
    return option
