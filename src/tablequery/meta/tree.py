"""
tablequery - Nested comparison trees.

Both `compare` (over a table's own columns) and `meta_query` (over the
side table) accept the same shape:

    [{"key": "status", "value": "paid"}, {"key": "total", "value": 10, "compare": ">"}]

A plain list ANDs its members. A dict with "clauses" sets the relation and
may nest:

    {"relation": "OR", "clauses": [
        {"key": "status", "value": ["paid", "refunded"], "compare": "IN"},
        [{"key": "total", "value": [1, 5], "compare": "BETWEEN"},
         {"key": "email", "value": "example.com", "compare": "LIKE"}],
    ]}

get_sql() returns {"join": ..., "where": " AND (...)"} or None when the tree
produced nothing. The where fragment keeps its leading " AND " so callers
can append it to an existing WHERE.
"""

from __future__ import annotations

import logging
from typing import Any

from tablequery.db.adapter import SQLTransport
from tablequery.errors import MalformedArgumentError
from tablequery.schema.table import Schema

logger = logging.getLogger(__name__)

COMPARE_OPERATORS = (
    "=",
    "!=",
    ">",
    ">=",
    "<",
    "<=",
    "LIKE",
    "NOT LIKE",
    "IN",
    "NOT IN",
    "BETWEEN",
    "NOT BETWEEN",
    "EXISTS",
    "NOT EXISTS",
)

_ESCAPE_CHAR = "\\"


def _is_branch(node: Any) -> bool:
    return isinstance(node, list) or (isinstance(node, dict) and "clauses" in node)


def _split(node: Any) -> tuple[str, list[Any]]:
    if isinstance(node, dict):
        relation = str(node.get("relation", "AND")).upper()
        children = node.get("clauses") or []
    else:
        relation, children = "AND", node
    return (relation if relation in ("AND", "OR") else "AND"), list(children)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [value]


class ClauseTree:
    """
    Walks a comparison tree and renders every leaf through leaf_sql().

    Subclasses decide what a leaf's "key" refers to.
    """

    def __init__(self, query: Any, transport: SQLTransport, strict: bool = False) -> None:
        self.query = query
        self.transport = transport
        self.strict = strict

    def _reject(self, message: str, argument: str, value: Any = None) -> None:
        if self.strict:
            raise MalformedArgumentError(message, argument=argument, value=value)
        logger.debug(f"Dropping clause: {message}")

    def normalize_compare(self, clause: dict[str, Any]) -> str:
        compare = str(clause.get("compare", "")).upper().strip()
        if not compare:
            compare = "IN" if isinstance(clause.get("value"), (list, tuple)) else "="
        if compare not in COMPARE_OPERATORS:
            self._reject(f"Unknown compare operator '{compare}'", "compare", compare)
            return "="
        return compare

    def comparison(self, lhs: str, compare: str, value: Any, pattern: str = "%s") -> str:
        """Render `lhs <compare> value` with every value prepared."""
        prepare = self.transport.prepare

        if compare in ("IN", "NOT IN"):
            values = _as_list(value)
            if not values:
                return "1 = 0" if compare == "IN" else ""
            marks = ", ".join([pattern] * len(values))
            return prepare(f"{lhs} {compare} ({marks})", values)

        if compare in ("BETWEEN", "NOT BETWEEN"):
            values = _as_list(value)
            if len(values) != 2:
                self._reject(f"{compare} needs exactly two values", "value", value)
                return ""
            return prepare(f"{lhs} {compare} {pattern} AND {pattern}", values)

        if compare in ("LIKE", "NOT LIKE"):
            like = "%" + self.transport.esc_like(str(value)) + "%"
            return prepare(f"{lhs} {compare} %s ESCAPE %s", like, _ESCAPE_CHAR)

        if compare == "EXISTS":
            return f"{lhs} IS NOT NULL"
        if compare == "NOT EXISTS":
            return f"{lhs} IS NULL"

        return prepare(f"{lhs} {compare} {pattern}", value)

    def leaf_sql(self, clause: dict[str, Any]) -> str:
        raise NotImplementedError

    def _node_sql(self, node: Any) -> str:
        relation, children = _split(node)
        parts: list[str] = []
        for child in children:
            if _is_branch(child):
                sql = self._node_sql(child)
                if sql:
                    parts.append(f"({sql})")
            elif isinstance(child, dict):
                sql = self.leaf_sql(child)
                if sql:
                    parts.append(sql)
            else:
                self._reject("Clause must be a dict or a list", "clauses", child)
        return f" {relation} ".join(parts)

    def where(self) -> str:
        if not self.query:
            return ""
        root = self.query if _is_branch(self.query) else [self.query]
        sql = self._node_sql(root)
        return f" AND ({sql})" if sql else ""


class CompareQuery(ClauseTree):
    """
    Comparison tree over the table's own columns.

    Leaf keys must name schema columns; each value is prepared with the
    column's pattern.
    """

    def __init__(
        self,
        query: Any,
        schema: Schema,
        alias: str,
        transport: SQLTransport,
        strict: bool = False,
    ) -> None:
        super().__init__(query, transport, strict)
        self.schema = schema
        self.alias = alias

    def leaf_sql(self, clause: dict[str, Any]) -> str:
        key = clause.get("key")
        column = self.schema.get(str(key)) if key else None
        if column is None:
            self._reject(f"Unknown compare column '{key}'", "compare", key)
            return ""

        compare = self.normalize_compare(clause)
        if "value" not in clause and compare not in ("EXISTS", "NOT EXISTS"):
            return ""
        return self.comparison(
            f"{self.alias}.{column.name}", compare, clause.get("value"), column.pattern
        )

    def get_sql(self) -> dict[str, str] | None:
        where = self.where()
        if not where:
            return None
        return {"join": "", "where": where}


class MetaQuery(ClauseTree):
    """
    Comparison tree over a side table of (object_id, meta_key, meta_value).

    Each leaf becomes a correlated EXISTS sub-select, so matching several
    keys never multiplies result rows:

        EXISTS (SELECT 1 FROM ordermeta mt WHERE mt.order_id = o.id
                AND mt.meta_key = 'gift' AND mt.meta_value = 'yes')

    Leaf options: key, value, compare, and type ("NUMERIC" casts values).
    """

    def __init__(
        self,
        query: Any,
        meta_table: str,
        object_column: str,
        transport: SQLTransport,
        strict: bool = False,
    ) -> None:
        super().__init__(query, transport, strict)
        self.meta_table = meta_table
        self.object_column = object_column
        self._outer = ""

    def leaf_sql(self, clause: dict[str, Any]) -> str:
        key = clause.get("key")
        compare = self.normalize_compare(clause)
        numeric = str(clause.get("type", "")).upper() in ("NUMERIC", "DECIMAL", "SIGNED")

        conditions = [f"mt.{self.object_column} = {self._outer}"]
        if key not in (None, ""):
            conditions.append(self.transport.prepare("mt.meta_key = %s", key))

        negate = compare == "NOT EXISTS"
        if "value" in clause and compare not in ("EXISTS", "NOT EXISTS"):
            lhs = "CAST(mt.meta_value AS NUMERIC)" if numeric else "mt.meta_value"
            pattern = "%f" if numeric else "%s"
            sql = self.comparison(lhs, compare, clause["value"], pattern)
            if sql:
                conditions.append(sql)
        elif key in (None, ""):
            self._reject("Meta clause needs a key or a value", "meta_query", clause)
            return ""

        subquery = f"SELECT 1 FROM {self.meta_table} mt WHERE " + " AND ".join(conditions)
        return f"NOT EXISTS ({subquery})" if negate else f"EXISTS ({subquery})"

    def get_sql(self, alias: str, primary: str) -> dict[str, str] | None:
        self._outer = f"{alias}.{primary}"
        where = self.where()
        if not where:
            return None
        return {"join": "", "where": where}
