"""
tablequery - SQLite transport.

SQLTransport implementation on the standard library sqlite3 module.
Used by the CLI and the test suite.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from typing import Any

from tablequery.errors import TransportError

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"%(%|d|f|s)")


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _bindable(value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    return value


class SQLiteTransport:
    """
    sqlite3-backed SQLTransport.

    The connection runs in autocommit mode; every statement stands alone.

    Example:
        transport = SQLiteTransport(":memory:")
        transport.query("CREATE TABLE orders (id INTEGER PRIMARY KEY, status TEXT)")
        new_id = transport.insert("orders", {"status": "pending"})
    """

    def __init__(self, path: str = ":memory:") -> None:
        self.path = path
        self.last_query: str = ""
        self.num_queries = 0
        try:
            self._conn = sqlite3.connect(path, isolation_level=None)
        except sqlite3.Error as e:
            raise TransportError(f"Cannot open {path}: {e}") from e
        self._conn.row_factory = sqlite3.Row

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteTransport":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # =========================================================================
    # Escaping
    # =========================================================================

    def escape(self, value: Any) -> str:
        return str(value).replace("'", "''")

    def esc_like(self, text: str) -> str:
        return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    def _literal(self, spec: str, value: Any) -> str:
        if value is None:
            return "NULL"
        if spec == "d":
            if isinstance(value, str):
                value = float(value) if value.strip() else 0
            return str(int(value))
        if spec == "f":
            return repr(float(value))
        return f"'{self.escape(value)}'"

    def prepare(self, query: str, *args: Any) -> str:
        if len(args) == 1 and isinstance(args[0], (list, tuple)):
            args = tuple(args[0])

        values = iter(args)

        def substitute(match: re.Match) -> str:
            spec = match.group(1)
            if spec == "%":
                return "%"
            try:
                value = next(values)
            except StopIteration:
                raise TransportError(
                    "prepare() received fewer arguments than placeholders", query=query
                ) from None
            try:
                return self._literal(spec, value)
            except (TypeError, ValueError) as e:
                raise TransportError(f"Cannot format {value!r} as %{spec}", query=query) from e

        return _PLACEHOLDER.sub(substitute, query)

    # =========================================================================
    # Execution
    # =========================================================================

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        self.last_query = sql
        self.num_queries += 1
        logger.debug(f"SQL: {sql} {params if params else ''}".rstrip())
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            logger.warning(f"SQLite error: {e}")
            raise TransportError(str(e), query=sql) from e

    def query(self, sql: str) -> int:
        return self._execute(sql).rowcount

    def executescript(self, script: str) -> None:
        """Run several statements at once (fixtures, DDL)."""
        self.last_query = script
        try:
            self._conn.executescript(script)
        except sqlite3.Error as e:
            raise TransportError(str(e), query=script) from e

    def insert(self, table: str, data: dict[str, Any]) -> int:
        if not data:
            sql = f"INSERT INTO {_quote_identifier(table)} DEFAULT VALUES"
            return int(self._execute(sql).lastrowid or 0)

        columns = ", ".join(_quote_identifier(c) for c in data)
        marks = ", ".join("?" for _ in data)
        sql = f"INSERT INTO {_quote_identifier(table)} ({columns}) VALUES ({marks})"
        cursor = self._execute(sql, tuple(_bindable(v) for v in data.values()))
        return int(cursor.lastrowid or 0)

    def _where(self, where: dict[str, Any]) -> tuple[str, tuple]:
        if not where:
            raise TransportError("Refusing to run an unconditioned update/delete")
        clause = " AND ".join(f"{_quote_identifier(c)} = ?" for c in where)
        return clause, tuple(_bindable(v) for v in where.values())

    def update(self, table: str, data: dict[str, Any], where: dict[str, Any]) -> int:
        if not data:
            return 0
        assignments = ", ".join(f"{_quote_identifier(c)} = ?" for c in data)
        clause, where_params = self._where(where)
        sql = f"UPDATE {_quote_identifier(table)} SET {assignments} WHERE {clause}"
        params = tuple(_bindable(v) for v in data.values()) + where_params
        return self._execute(sql, params).rowcount

    def delete(self, table: str, where: dict[str, Any]) -> int:
        clause, params = self._where(where)
        sql = f"DELETE FROM {_quote_identifier(table)} WHERE {clause}"
        return self._execute(sql, params).rowcount

    def get_row(self, sql: str) -> dict[str, Any] | None:
        row = self._execute(sql).fetchone()
        return dict(row) if row is not None else None

    def get_col(self, sql: str) -> list[Any]:
        return [row[0] for row in self._execute(sql).fetchall()]

    def get_results(self, sql: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self._execute(sql).fetchall()]

    def get_var(self, sql: str) -> Any:
        row = self._execute(sql).fetchone()
        return row[0] if row is not None else None
