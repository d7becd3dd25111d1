"""
tablequery - Error hierarchy.

- TableQueryError: Base exception for all engine errors
- ValidationError: A column validator rejected a value
- TransportError: The SQL transport failed to execute a statement
- NotFoundError: A lookup by id or column produced no row
- MalformedArgumentError: An unknown/invalid query argument (strict mode only)

These are raised inside the engine and its collaborators. The public Query
operations catch them, record the error as `last_error`, and return a falsy
result instead of raising.
"""

from __future__ import annotations

from typing import Any


def _truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


class TableQueryError(Exception):
    """
    Base exception for all tablequery errors.

    Attributes:
        message: Human-readable error description
        context: Additional context for debugging
    """

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a structured dictionary for diagnostics."""
        return {
            "type": type(self).__name__.lower().replace("error", ""),
            "message": self.message,
            **{k: v for k, v in self.context.items() if v is not None},
        }


class ValidationError(TableQueryError):
    """
    A column value failed validation.

    Example:
        raise ValidationError("Total must be positive", field="total", value=-3)
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = _truncate(str(value), 100)
        super().__init__(message, context=context)
        self.field = field


class TransportError(TableQueryError):
    """The SQL transport failed. Never retried."""

    def __init__(self, message: str, *, query: str | None = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        if query:
            context["query"] = _truncate(query, 500)
        super().__init__(message, context=context)
        self.query = query


class NotFoundError(TableQueryError):
    """No row matched a lookup."""

    def __init__(self, message: str, *, column: str | None = None, value: Any = None) -> None:
        super().__init__(
            message,
            context={
                "column": column,
                "value": _truncate(str(value), 100) if value is not None else None,
            },
        )
        self.column = column


class MalformedArgumentError(TableQueryError):
    """An unknown or invalid query argument was supplied."""

    def __init__(self, message: str, *, argument: str | None = None, value: Any = None) -> None:
        super().__init__(
            message,
            context={
                "argument": argument,
                "value": _truncate(str(value), 100) if value is not None else None,
            },
        )
        self.argument = argument
