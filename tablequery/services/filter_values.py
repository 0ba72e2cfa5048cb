import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from tablequery.core.errors import InvalidFilterValueError

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


def _coerce_bool_filter_value(column_key: str, value):
    if isinstance(value, bool):
        return value
    text = str(value if value is not None else "").strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise InvalidFilterValueError(column_key, "boolean")


def _coerce_number_filter_value(column_key: str, value, python_type):
    if python_type in {int, float} and isinstance(value, (int, float)) and not isinstance(value, bool):
        if python_type is int and isinstance(value, float) and not value.is_integer():
            raise InvalidFilterValueError(column_key, "integer")
        return python_type(value)
    if python_type is Decimal and isinstance(value, Decimal):
        return value
    text = str(value).strip()
    if not text:
        raise InvalidFilterValueError(column_key, "number")
    normalized = text.replace(",", ".")
    try:
        if python_type is int:
            return int(normalized)
        if python_type is float:
            return float(normalized)
        return Decimal(normalized)
    except (ValueError, TypeError, InvalidOperation):
        raise InvalidFilterValueError(column_key, "number")


def _coerce_date_filter_value(column_key: str, value):
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value or "").strip()
    if not text:
        raise InvalidFilterValueError(column_key, "date")
    try:
        # Full ISO datetimes are accepted and truncated to their date part.
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise InvalidFilterValueError(column_key, "date")


def _coerce_datetime_filter_value(column_key: str, value, timezone_aware: bool):
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise InvalidFilterValueError(column_key, "datetime")
        try:
            if is_date_only_literal(text):
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidFilterValueError(column_key, "datetime")
    if timezone_aware and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if not timezone_aware and parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def column_python_type(column):
    try:
        return column.property.columns[0].type.python_type
    except (AttributeError, IndexError, NotImplementedError):
        return None


def _column_is_timezone_aware(column) -> bool:
    try:
        return bool(column.property.columns[0].type.timezone)
    except (AttributeError, IndexError):
        return False


def is_date_only_literal(raw_value) -> bool:
    if isinstance(raw_value, date) and not isinstance(raw_value, datetime):
        return True
    if not isinstance(raw_value, str):
        return False
    text = raw_value.strip()
    if not text or "T" in text or " " in text:
        return False
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        return False


def coerce_filter_value(column, value):
    """Convert a request literal to the Python type of ``column``.

    ``None`` passes through; columns without a known Python type get the raw value.
    """
    if value is None:
        return None
    python_type = column_python_type(column)
    if python_type is None:
        return value
    if python_type is uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value).strip())
        except ValueError:
            raise InvalidFilterValueError(column.key, "uuid")
    if python_type is bool:
        return _coerce_bool_filter_value(column.key, value)
    if python_type in {int, float, Decimal}:
        return _coerce_number_filter_value(column.key, value, python_type)
    if python_type is datetime:
        return _coerce_datetime_filter_value(column.key, value, _column_is_timezone_aware(column))
    if python_type is date:
        return _coerce_date_filter_value(column.key, value)
    if python_type is str and not isinstance(value, str):
        return str(value)
    return value
