from __future__ import annotations


class QueryExecutionError(Exception):
    """Raised when the accumulated table query cannot be built or executed.

    The underlying cause (SQLAlchemy error, failed lookup, bad literal) is kept
    as ``__cause__``; ``detail`` is a short message safe to return to clients.
    """

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class UnknownColumnError(QueryExecutionError):
    def __init__(self, model: type, name: str):
        super().__init__(f'Unknown column "{name}" on {model.__name__}')
        self.model = model
        self.name = name


class UnknownRelationError(QueryExecutionError):
    def __init__(self, model: type, name: str):
        super().__init__(f'Unknown relation "{name}" on {model.__name__}')
        self.model = model
        self.name = name


class InvalidFilterValueError(QueryExecutionError):
    def __init__(self, column_key: str, kind: str):
        super().__init__(f'Invalid filter value for column "{column_key}" ({kind})')
        self.column_key = column_key
        self.kind = kind
