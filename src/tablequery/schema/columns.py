"""
tablequery - Column metadata.

A Column is pure data: what a single database column holds, how its values
are interpolated into SQL, which query features it takes part in, and which
capability an acting context needs to select/insert/update/delete it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Literal

from tablequery.errors import ValidationError

Operation = Literal["select", "insert", "update", "delete"]

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"


class ColumnType(str, Enum):
    """Value domain of a column."""

    INTEGER = "integer"
    DECIMAL = "decimal"
    STRING = "string"
    DATETIME = "datetime"
    OTHER = "other"


# =============================================================================
# Type Dispatch
# =============================================================================


def _coerce_integer(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        return int(float(value.strip()))
    return int(value)


def _coerce_decimal(value: Any) -> float:
    if isinstance(value, str):
        return float(value.strip())
    return float(value)


def _coerce_string(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _coerce_datetime(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime(DATETIME_FORMAT)
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    return str(value)


def _coerce_other(value: Any) -> Any:
    return value


# Resolved once per column; ColumnType is closed, so every member has an entry
_TYPE_HANDLERS: dict[ColumnType, tuple[str, Callable[[Any], Any]]] = {
    ColumnType.INTEGER: ("%d", _coerce_integer),
    ColumnType.DECIMAL: ("%f", _coerce_decimal),
    ColumnType.STRING: ("%s", _coerce_string),
    ColumnType.DATETIME: ("%s", _coerce_datetime),
    ColumnType.OTHER: ("%s", _coerce_other),
}


@dataclass(frozen=True)
class ColumnCaps:
    """Capability required per operation. Empty string means nobody may."""

    select: str = "exist"
    insert: str = "exist"
    update: str = "exist"
    delete: str = "exist"

    def for_operation(self, operation: Operation) -> str:
        return getattr(self, operation, "")


@dataclass(frozen=True)
class Column:
    """
    Declarative description of one table column.

    Attributes:
        name: Column name as it appears in the table
        type: Value domain; drives the SQL pattern and value coercion
        pattern: Override for the prepare() placeholder (%d, %f, %s)
        allow_null: Whether NULL is an acceptable stored value
        default: Value used by add_item() when the caller omits the column
        primary: The primary key column (at most one per schema)
        searchable: Participates in `search`
        in_: Accepts `{name}__in` filters
        not_in: Accepts `{name}__not_in` filters
        date_query: Accepts `{name}_query` date ranges
        sortable: May appear in `orderby`
        cache_key: Items are also cached by this column's value
        transition: Changes fire `transition_{item}_{name}` events
        created: Stamped with the current time on insert
        modified: Stamped with the current time on insert and update
        validate: Callable returning the validated value or raising ValidationError
        caps: Capability required for each operation
    """

    name: str
    type: ColumnType = ColumnType.STRING
    pattern: str | None = None
    allow_null: bool = False
    default: Any = ""
    primary: bool = False
    searchable: bool = False
    in_: bool = False
    not_in: bool = False
    date_query: bool = False
    sortable: bool = False
    cache_key: bool = False
    transition: bool = False
    created: bool = False
    modified: bool = False
    validate: Callable[[Any], Any] | None = field(default=None, compare=False)
    caps: ColumnCaps = field(default_factory=ColumnCaps)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Column name cannot be empty")
        if isinstance(self.type, str) and not isinstance(self.type, ColumnType):
            object.__setattr__(self, "type", ColumnType(self.type))
        if self.pattern is None:
            object.__setattr__(self, "pattern", _TYPE_HANDLERS[self.type][0])
        if self.default == "" and self.is_numeric():
            object.__setattr__(self, "default", 0)

    def is_numeric(self) -> bool:
        return self.type in (ColumnType.INTEGER, ColumnType.DECIMAL)

    def coerce(self, value: Any) -> Any:
        """
        Convert a value into this column's domain.

        Raises:
            ValidationError: If the value cannot be represented.
        """
        if value is None:
            if self.allow_null or self.primary:
                return None
            raise ValidationError(f"Column '{self.name}' does not accept NULL", field=self.name)

        try:
            return _TYPE_HANDLERS[self.type][1](value)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Invalid {self.type.value} value for column '{self.name}'",
                field=self.name,
                value=value,
            ) from e

    def required_cap(self, operation: Operation) -> str:
        return self.caps.for_operation(operation)
