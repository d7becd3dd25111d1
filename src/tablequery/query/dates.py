"""
tablequery - Date range sub-queries.

A date query is a clause dict or a list of them:

    {"column": "date_created", "after": "2024-01-01", "before": "2024-01-31",
     "inclusive": True}

or, with an explicit relation:

    {"relation": "OR", "clauses": [{...}, {...}]}

Boundaries may be ISO strings, date/datetime objects, or dicts with
year/month/day/hour/minute/second. Date-only boundaries are widened to the
end of the day when the comparison needs the last moment of the day
(inclusive "before", exclusive "after").
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, datetime
from typing import Any

from tablequery.db.adapter import SQLTransport
from tablequery.errors import MalformedArgumentError
from tablequery.schema.columns import DATETIME_FORMAT
from tablequery.schema.table import Schema

logger = logging.getLogger(__name__)


def _end_of_day(value: date) -> datetime:
    return datetime(value.year, value.month, value.day, 23, 59, 59)


def _start_of_day(value: date) -> datetime:
    return datetime(value.year, value.month, value.day)


def parse_boundary(value: Any, end: bool) -> str | None:
    """
    Normalize a date boundary to "%Y-%m-%d %H:%M:%S".

    Args:
        value: ISO string, date, datetime, or {year, month, ...} dict
        end: Fill missing parts with the latest possible moment

    Returns:
        Formatted datetime, or None if the value cannot be parsed
    """
    if isinstance(value, datetime):
        return value.strftime(DATETIME_FORMAT)

    if isinstance(value, date):
        moment = _end_of_day(value) if end else _start_of_day(value)
        return moment.strftime(DATETIME_FORMAT)

    if isinstance(value, dict):
        try:
            year = int(value["year"])
            month = int(value.get("month", 12 if end else 1))
            day = int(value.get("day", calendar.monthrange(year, month)[1] if end else 1))
            moment = datetime(
                year,
                month,
                day,
                int(value.get("hour", 23 if end else 0)),
                int(value.get("minute", 59 if end else 0)),
                int(value.get("second", 59 if end else 0)),
            )
        except (KeyError, TypeError, ValueError):
            return None
        return moment.strftime(DATETIME_FORMAT)

    if isinstance(value, str):
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        # Date-only strings carry no time component
        if len(text) <= 10:
            parsed = _end_of_day(parsed) if end else _start_of_day(parsed)
        return parsed.strftime(DATETIME_FORMAT)

    return None


class DateQuery:
    """
    Build a WHERE fragment from one or more date range clauses.

    Args:
        query: Clause dict, list of clause dicts, or {"relation", "clauses"}
        schema: Table schema, used to validate column names
        alias: Table alias for column references
        transport: SQL transport used to prepare boundary values
        default_column: Column used by clauses that name none
        strict: Raise MalformedArgumentError instead of dropping bad clauses
    """

    def __init__(
        self,
        query: dict[str, Any] | list[dict[str, Any]],
        schema: Schema,
        alias: str,
        transport: SQLTransport,
        default_column: str | None = None,
        strict: bool = False,
    ) -> None:
        self.schema = schema
        self.alias = alias
        self.transport = transport
        self.default_column = default_column
        self.strict = strict
        self.relation, self.clauses = self._normalize(query)

    @staticmethod
    def _normalize(query: Any) -> tuple[str, list[dict[str, Any]]]:
        if isinstance(query, dict) and "clauses" in query:
            relation = str(query.get("relation", "AND")).upper()
            clauses = query.get("clauses") or []
        elif isinstance(query, dict):
            relation, clauses = "AND", [query]
        else:
            relation, clauses = "AND", list(query or [])
        if relation not in ("AND", "OR"):
            relation = "AND"
        return relation, [c for c in clauses if isinstance(c, dict)]

    def _reject(self, message: str, argument: str, value: Any) -> None:
        if self.strict:
            raise MalformedArgumentError(message, argument=argument, value=value)
        logger.debug(f"Dropping date clause: {message}")

    def _resolve_column(self, name: Any) -> str | None:
        name = str(name or self.default_column or "")
        prefix = f"{self.alias}."
        if name.startswith(prefix):
            name = name[len(prefix):]

        column = self.schema.get(name)
        if column is None or not (column.date_query or column.created or column.modified):
            self._reject(f"Unknown date column '{name}'", "date_query", name)
            return None
        return f"{self.alias}.{column.name}"

    def _clause_sql(self, clause: dict[str, Any]) -> str:
        column = self._resolve_column(clause.get("column"))
        if column is None:
            return ""

        inclusive = bool(clause.get("inclusive", False))
        parts: list[str] = []

        if clause.get("after"):
            boundary = parse_boundary(clause["after"], end=not inclusive)
            if boundary is None:
                self._reject("Invalid 'after' boundary", "after", clause["after"])
            else:
                op = ">=" if inclusive else ">"
                parts.append(self.transport.prepare(f"{column} {op} %s", boundary))

        if clause.get("before"):
            boundary = parse_boundary(clause["before"], end=inclusive)
            if boundary is None:
                self._reject("Invalid 'before' boundary", "before", clause["before"])
            else:
                op = "<=" if inclusive else "<"
                parts.append(self.transport.prepare(f"{column} {op} %s", boundary))

        if not parts:
            return ""
        return parts[0] if len(parts) == 1 else "(" + " AND ".join(parts) + ")"

    def get_sql(self) -> str:
        """The combined fragment, or "" when no clause produced SQL."""
        fragments = [sql for sql in (self._clause_sql(c) for c in self.clauses) if sql]
        if not fragments:
            return ""
        return "(" + f" {self.relation} ".join(fragments) + ")"
