"""
tablequery - Clause building.

Turns resolved query variables plus a table's column schema into the SQL
fragments of one SELECT. Every identifier comes from the schema; every
value goes through the transport's prepare()/esc_like().

Malformed input (unknown orderby/groupby/search columns, bad date clauses,
values a column cannot hold) is dropped by default. With strict=True it
raises MalformedArgumentError instead.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from tablequery.db.adapter import SQLTransport
from tablequery.errors import MalformedArgumentError, ValidationError
from tablequery.meta.store import SideTableStore
from tablequery.meta.tree import CompareQuery
from tablequery.query.dates import DateQuery
from tablequery.query.hooks import QueryHooks
from tablequery.schema.columns import Column
from tablequery.schema.table import TableDefinition

logger = logging.getLogger(__name__)

LEADING_AND = re.compile(r"^\s*AND\s*", re.IGNORECASE)
_SANITIZE_KEY = re.compile(r"[^a-z0-9_\-]")
_SPLIT = re.compile(r"[,\s]+")
_LIKE_ESCAPE = "\\"

# Matches nothing; used for an empty membership list
MATCH_NOTHING = "1 = 0"


def is_present(value: Any) -> bool:
    """
    Whether a query variable carries a value.

    None, "", False and empty containers are absent; 0 is a real value.
    """
    if value is None or value is False:
        return False
    if isinstance(value, (str, list, tuple, set, dict)):
        return len(value) > 0
    return True


def sanitize_key(key: Any) -> str:
    return _SANITIZE_KEY.sub("", str(key).lower())


def parse_order(order: Any) -> str:
    """Exactly "ASC" or "DESC"; anything unrecognized is "DESC"."""
    if isinstance(order, str) and order.strip().upper() == "ASC":
        return "ASC"
    return "DESC"


def absint(value: Any) -> int:
    """Non-negative integer form of a value; 0 for blank or non-numeric input."""
    try:
        return abs(int(float(value))) if is_present(value) else 0
    except (TypeError, ValueError, OverflowError):
        return 0


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str) and "," in value:
        return [part.strip() for part in value.split(",") if part.strip()]
    return [value]


@dataclass
class ClauseSet:
    """
    SQL fragments of one SELECT, before flattening.

    `where` is keyed by the argument that produced each predicate, e.g.
    "status", "id__in", "search", "meta_query", "date_query".
    """

    fields: str = ""
    join: str = ""
    where: dict[str, str] = field(default_factory=dict)
    groupby: str = ""
    orderby: str = ""
    limits: str = ""

    def where_sql(self) -> str:
        return " AND ".join(sql for sql in self.where.values() if sql)

    def request_clauses(self, table_name: str, table_alias: str) -> dict[str, str]:
        where = self.where_sql()
        return {
            "select": f"SELECT {self.fields}",
            "from": f"FROM {table_name} {table_alias} {self.join}".strip(),
            "where": f"WHERE {where}" if where else "",
            "groupby": f"GROUP BY {self.groupby}" if self.groupby else "",
            "orderby": f"ORDER BY {self.orderby}" if self.orderby else "",
            "limits": self.limits,
        }


def flatten_request(request_clauses: dict[str, str]) -> str:
    return " ".join(part.strip() for part in request_clauses.values() if part and part.strip())


class ClauseBuilder:
    """
    Builds a ClauseSet for one table.

    Args:
        table: Table definition (schema, alias, side-table type)
        transport: Used for prepare() and esc_like()
        hooks: Engine hooks; the "search_columns" filter is applied here
        side_table: Store that renders meta_query (None disables meta_query)
        strict: Raise on malformed arguments instead of dropping them
    """

    def __init__(
        self,
        table: TableDefinition,
        transport: SQLTransport,
        hooks: QueryHooks,
        side_table: SideTableStore | None = None,
        strict: bool = False,
    ) -> None:
        self.table = table
        self.schema = table.schema
        self.alias = table.table_alias
        self.transport = transport
        self.hooks = hooks
        self.side_table = side_table
        self.strict = strict

    def _reject(self, message: str, argument: str, value: Any = None) -> None:
        if self.strict:
            raise MalformedArgumentError(message, argument=argument, value=value)
        logger.debug(f"Ignoring argument '{argument}': {message}")

    def _ref(self, column: Column | str) -> str:
        name = column.name if isinstance(column, Column) else column
        return f"{self.alias}.{name}"

    # =========================================================================
    # Values
    # =========================================================================

    def _coerced(self, column: Column, values: Iterable[Any], argument: str) -> list[Any]:
        kept = []
        for value in values:
            try:
                kept.append(column.coerce(value))
            except ValidationError:
                self._reject(f"Invalid value for column '{column.name}'", argument, value)
        return kept

    def _membership(self, column: Column, values: list[Any], negate: bool) -> str:
        op = "NOT IN" if negate else "IN"
        marks = ", ".join([column.pattern] * len(values))
        return self.transport.prepare(f"{self._ref(column)} {op} ({marks})", values)

    def _equality(self, column: Column, value: Any, negate: bool = False) -> str:
        op = "!=" if negate else "="
        return self.transport.prepare(f"{self._ref(column)} {op} {column.pattern}", value)

    # =========================================================================
    # WHERE
    # =========================================================================

    def _column_where(self, column: Column, query_vars: dict[str, Any], where: dict[str, str]) -> None:
        value = query_vars.get(column.name)
        if is_present(value):
            if isinstance(value, (list, tuple, set)):
                values = self._coerced(column, value, column.name)
                where[column.name] = self._membership(column, values, False) if values else MATCH_NOTHING
            else:
                values = self._coerced(column, [value], column.name)
                where[column.name] = self._equality(column, values[0]) if values else MATCH_NOTHING

        if column.in_:
            key = f"{column.name}__in"
            raw = query_vars.get(key)
            if raw is not None and raw is not False and raw != "":
                values = self._coerced(column, _as_list(raw), key)
                if not values:
                    where[key] = MATCH_NOTHING
                elif len(values) == 1:
                    where[key] = self._equality(column, values[0])
                else:
                    where[key] = self._membership(column, values, False)

        if column.not_in:
            key = f"{column.name}__not_in"
            raw = query_vars.get(key)
            if raw is not None and raw is not False and raw != "":
                values = self._coerced(column, _as_list(raw), key)
                if len(values) == 1:
                    where[key] = self._equality(column, values[0], negate=True)
                elif values:
                    where[key] = self._membership(column, values, True)

    def _column_date_clauses(self, query_vars: dict[str, Any]) -> list[dict[str, Any]]:
        clauses = []
        for column in self.schema.filter(date_query=True):
            value = query_vars.get(f"{column.name}_query")
            if not is_present(value):
                continue
            if isinstance(value, dict):
                clause = dict(value)
                clause.setdefault("column", self._ref(column))
                clauses.append(clause)
            elif isinstance(value, str):
                clauses.append({"column": self._ref(column), "before": value, "inclusive": True})
            else:
                self._reject("Date range must be a string or a dict", f"{column.name}_query", value)
        return clauses

    def search_sql(self, search: str, columns: list[str]) -> str:
        """
        OR-ed LIKE predicates across columns.

        "*" splits the term into fragments that must appear in order:
        "a*b" matches "%a%b%".
        """
        if "*" in search:
            like = "%" + "%".join(self.transport.esc_like(part) for part in search.split("*")) + "%"
        else:
            like = "%" + self.transport.esc_like(search) + "%"

        searches = [
            self.transport.prepare(f"{self._ref(name)} LIKE %s ESCAPE %s", like, _LIKE_ESCAPE)
            for name in columns
        ]
        return "(" + " OR ".join(searches) + ")"

    def _search_columns(self, query_vars: dict[str, Any], search: str) -> list[str]:
        searchable = self.schema.names(searchable=True)
        requested = query_vars.get("search_columns") or []
        if isinstance(requested, str):
            requested = [c for c in _SPLIT.split(requested) if c]

        columns = []
        for name in requested:
            if name in searchable:
                if name not in columns:
                    columns.append(name)
            else:
                self._reject(f"Column '{name}' is not searchable", "search_columns", name)

        if not columns:
            columns = searchable

        columns = list(self.hooks.apply("search_columns", columns, search) or [])
        return [name for name in columns if name in self.schema]

    def parse_where(self, query_vars: dict[str, Any]) -> tuple[dict[str, str], str]:
        """Build the keyed WHERE predicates and the JOIN fragment."""
        where: dict[str, str] = {}
        join = ""

        for column in self.schema:
            self._column_where(column, query_vars, where)

        search = query_vars.get("search")
        if is_present(search) and self.schema.names(searchable=True):
            search = str(search)
            columns = self._search_columns(query_vars, search)
            if columns:
                where["search"] = self.search_sql(search, columns)

        meta_query = query_vars.get("meta_query")
        if is_present(meta_query):
            if self.side_table is None:
                logger.debug(f"meta_query ignored: no side table for {self.table.name}")
            else:
                clauses = self.side_table.get_sql(
                    self.table.side_table_type, meta_query, self.alias, self.schema.primary_name
                )
                if clauses:
                    join = clauses.get("join", "")
                    where["meta_query"] = LEADING_AND.sub("", clauses.get("where", ""))

        compare = query_vars.get("compare")
        if is_present(compare):
            clauses = CompareQuery(compare, self.schema, self.alias, self.transport, self.strict).get_sql()
            if clauses:
                where["compare"] = LEADING_AND.sub("", clauses["where"])

        date_query: Any = self._column_date_clauses(query_vars)
        if not date_query:
            date_query = query_vars.get("date_query")
        if is_present(date_query):
            created = self.schema.created
            sql = DateQuery(
                date_query,
                self.schema,
                self.alias,
                self.transport,
                default_column=created.name if created else None,
                strict=self.strict,
            ).get_sql()
            if sql:
                where["date_query"] = LEADING_AND.sub("", sql)

        return where, join

    # =========================================================================
    # SELECT / GROUP BY / ORDER BY / LIMIT
    # =========================================================================

    def parse_groupby(self, groupby: Any, alias: bool = True) -> str:
        if not is_present(groupby):
            return ""

        names = _SPLIT.split(groupby) if isinstance(groupby, str) else list(groupby)
        wanted = {sanitize_key(name) for name in names if name}
        for name in wanted - set(self.schema.names()):
            if name:
                self._reject(f"Unknown groupby column '{name}'", "groupby", name)

        keep = [c.name for c in self.schema if c.name in wanted]
        return ",".join(self._ref(name) if alias else name for name in keep)

    def parse_fields(self, query_vars: dict[str, Any]) -> str:
        if query_vars.get("count"):
            groupby = self.parse_groupby(query_vars.get("groupby"), alias=False)
            return f"{groupby}, COUNT(*) AS count" if groupby else "COUNT(*)"
        return self._ref(self.schema.primary_name)

    def _membership_order(self, column: Column, values: list[Any]) -> str:
        unique: list[Any] = []
        for value in values:
            if value not in unique:
                unique.append(value)
        whens = " ".join(f"WHEN {column.pattern} THEN {i}" for i in range(len(unique)))
        case = self.transport.prepare(f"CASE {self._ref(column)} {whens} ELSE {len(unique)} END", unique)
        return f"{case} ASC"

    def _orderby_pairs(self, orderby: Any, order: str) -> list[tuple[str, str]]:
        if isinstance(orderby, dict):
            return [(str(k), parse_order(v)) for k, v in orderby.items()]
        if isinstance(orderby, (list, tuple)):
            return [(str(k), order) for k in orderby if k]
        return [(k, order) for k in _SPLIT.split(str(orderby)) if k]

    def get_orderby(self, query_vars: dict[str, Any], order: str) -> str:
        """
        The ORDER BY list, or "" when ordering is disabled.

        `{col}__in` keys order rows by their position in that list.
        """
        orderby = query_vars.get("orderby")
        if query_vars.get("count") or orderby in ("none", [], {}, False, None, ""):
            return ""

        parts: list[str] = []
        for name, direction in self._orderby_pairs(orderby, order):
            if name.endswith("__in"):
                column = self.schema.get(name[: -len("__in")])
                values = query_vars.get(name)
                if column is not None and column.in_ and is_present(values):
                    coerced = self._coerced(column, _as_list(values), name)
                    if coerced:
                        parts.append(self._membership_order(column, coerced))
                        continue
                self._reject(f"Cannot order by '{name}'", "orderby", name)
                continue

            column = self.schema.get(name)
            if column is not None and (column.sortable or column.primary):
                parts.append(f"{self._ref(column)} {direction}")
            else:
                self._reject(f"Column '{name}' is not sortable", "orderby", name)

        if not parts:
            return f"{self._ref(self.schema.primary_name)} {order}"
        return ", ".join(parts)

    def parse_limits(self, query_vars: dict[str, Any]) -> str:
        bounds = []
        for name in ("number", "offset"):
            value = query_vars.get(name)
            try:
                bounds.append(abs(int(float(value))) if is_present(value) else 0)
            except (TypeError, ValueError, OverflowError):
                self._reject(f"'{name}' must be an integer", name, value)
                bounds.append(0)
        limit, offset = bounds
        if not limit:
            return ""
        return f"LIMIT {limit} OFFSET {offset}" if offset else f"LIMIT {limit}"

    def build(self, query_vars: dict[str, Any]) -> ClauseSet:
        where, join = self.parse_where(query_vars)
        order = parse_order(query_vars.get("order"))
        return ClauseSet(
            fields=self.parse_fields(query_vars),
            join=join,
            where=where,
            groupby=self.parse_groupby(query_vars.get("groupby")),
            orderby=self.get_orderby(query_vars, order),
            limits=self.parse_limits(query_vars),
        )
