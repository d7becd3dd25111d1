"""
tablequery - Query engine.

One Query instance serves one table. It owns:
- argument parsing against schema-derived defaults
- the read-through query cache (ID lists + found counts)
- item caching by primary key and alternate cache-key columns
- add / update / delete / get for single items

Public operations never raise for database or argument problems: they
record `last_error` and return a falsy result (None, False, [] or 0).

Typical usage:

    orders = Query(table, transport)
    order_id = orders.add_item({"status": "pending", "total": 12})
    paid = orders.query({"status": "paid", "orderby": "date_created"})
"""

from __future__ import annotations

import dataclasses
import logging
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from tablequery.cache.coordinator import CacheCoordinator
from tablequery.cache.store import CacheStore, MemoryCacheStore
from tablequery.config import EngineSettings, get_settings
from tablequery.db.adapter import SQLTransport
from tablequery.errors import (
    MalformedArgumentError,
    NotFoundError,
    TableQueryError,
    TransportError,
    ValidationError,
)
from tablequery.meta.store import SideTableStore
from tablequery.meta.tree import CompareQuery
from tablequery.query.clauses import ClauseBuilder, ClauseSet, absint, flatten_request, is_present
from tablequery.query.hooks import QueryHooks
from tablequery.query.shaping import CapabilityContext, get_item_fields, reduce_item, shape_item
from tablequery.schema.columns import DATETIME_FORMAT
from tablequery.schema.table import TableDefinition

logger = logging.getLogger(__name__)

_RESULT_OPERATORS = ("=", "!=", ">", ">=", "<", "<=", "LIKE")
_LIST_OPERATORS = ("IN", "NOT IN", "BETWEEN")


class QueryState(str, Enum):
    """Progress of the most recent query() call."""

    UNINITIALIZED = "uninitialized"
    ARGUMENTS_PARSED = "arguments_parsed"
    IDS_RESOLVED = "ids_resolved"
    FOUND_COUNT_RESOLVED = "found_count_resolved"
    ITEMS_MATERIALIZED = "items_materialized"
    FAILED = "failed"


class Query:
    """
    Schema-driven query engine for one table.

    Args:
        table: Table definition
        transport: SQL transport
        cache: Cache store (defaults to a private MemoryCacheStore)
        side_table: Side-table store for extra item attributes and meta_query
        hooks: Hook lists (defaults to an empty QueryHooks)
        context: Capabilities of the acting caller
        settings: Engine settings (defaults to get_settings())
        query: If given, run query() immediately
    """

    def __init__(
        self,
        table: TableDefinition,
        transport: SQLTransport,
        cache: CacheStore | None = None,
        side_table: SideTableStore | None = None,
        hooks: QueryHooks | None = None,
        context: CapabilityContext | None = None,
        settings: EngineSettings | None = None,
        query: dict[str, Any] | None = None,
    ) -> None:
        settings = settings or get_settings()
        if settings.table_prefix and not table.prefix:
            table = dataclasses.replace(table, prefix=settings.table_prefix)

        self.table = table
        self.schema = table.schema
        self.transport = transport
        self.side_table = side_table
        self.hooks = hooks or QueryHooks()
        self.context = context or CapabilityContext.default()
        self.strict = settings.strict_arguments

        self.cache = CacheCoordinator(
            cache if cache is not None else MemoryCacheStore(),
            table.cache_scope,
            self.schema.primary_name,
            self.schema.names(cache_key=True),
            enabled=settings.cache_enabled,
        )
        self.clauses = ClauseBuilder(table, transport, self.hooks, side_table, self.strict)

        self.query_var_defaults = self._build_query_var_defaults(settings.default_number)
        self._reset()

        if query:
            self.query(query)

    # =========================================================================
    # Setup
    # =========================================================================

    def _build_query_var_defaults(self, number: int) -> dict[str, Any]:
        defaults: dict[str, Any] = {
            "fields": "",
            "number": number,
            "offset": "",
            "orderby": self.schema.primary_name,
            "order": "DESC",
            "groupby": "",
            "search": "",
            "search_columns": [],
            "count": False,
            "meta_query": None,
            "date_query": None,
            "compare": None,
            "no_found_rows": True,
            "update_item_cache": True,
            "update_meta_cache": True,
        }
        for name in self.schema.names():
            defaults[name] = ""
        for name in self.schema.names(in_=True):
            defaults[f"{name}__in"] = False
        for name in self.schema.names(not_in=True):
            defaults[f"{name}__not_in"] = False
        for name in self.schema.names(date_query=True):
            defaults[f"{name}_query"] = False
        return defaults

    def _reset(self) -> None:
        self.query_var_originals: dict[str, Any] = {}
        self.query_vars: dict[str, Any] = dict(self.query_var_defaults)
        self.query_clauses: ClauseSet | None = None
        self.request_clauses: dict[str, str] = {}
        self.request = ""
        self.items: Any = []
        self.found_items = 0
        self.max_num_pages = 0
        self.last_error: TableQueryError | None = None
        self.state = QueryState.UNINITIALIZED

    @property
    def table_name(self) -> str:
        return self.table.table_name

    @property
    def primary(self) -> str:
        return self.schema.primary_name

    def current_time(self) -> str:
        """Timestamp stamped into created/modified columns (UTC)."""
        return datetime.now(timezone.utc).strftime(DATETIME_FORMAT)

    def _fail(self, error: TableQueryError, result: Any) -> Any:
        self.last_error = error
        self.state = QueryState.FAILED
        logger.warning(f"{self.table.name}: {error.message}")
        return result

    # =========================================================================
    # Query
    # =========================================================================

    def query(self, query: dict[str, Any] | None = None) -> Any:
        """
        Run a query and return items, a projection, or a count.

        Returns:
            A list of items; for `fields`, a list of ids/dicts or a
            {primary: value} dict; for `count`, an int (or grouped rows)
        """
        self._reset()
        query = dict(query or {})
        try:
            self._parse_query(query)
            return self._get_items()
        except (TransportError, MalformedArgumentError) as e:
            empty: Any = 0 if query.get("count") and not query.get("groupby") else []
            self.items = empty
            return self._fail(e, empty)

    def _parse_query(self, query: dict[str, Any]) -> None:
        self.query_var_originals = query
        self.query_vars = {**self.query_var_defaults, **query}
        self.state = QueryState.ARGUMENTS_PARSED
        self.hooks.emit("parse_query", self)

    def _cache_slice(self) -> dict[str, Any]:
        return {
            key: self.query_vars.get(key)
            for key in self.query_var_defaults
            if key != "fields"
        }

    def _apply_count_rules(self) -> None:
        # Counting never limits, never computes found rows, never primes caches
        if self.query_vars.get("count"):
            self.query_vars["number"] = False
            self.query_vars["no_found_rows"] = True
            self.query_vars["update_item_cache"] = False
            self.query_vars["update_meta_cache"] = False

    def _get_items(self) -> Any:
        self.hooks.emit("pre_get_items", self)
        self._apply_count_rules()
        query_vars = self.query_vars

        cache_key = self.cache.key_for(self._cache_slice(), f"get_{self.table.item_name_plural}")
        cached = self.cache.get(cache_key, self.cache.query_scope)

        if cached is None:
            logger.debug(f"Query cache miss: {cache_key}")
            item_ids = self._get_item_ids()
            self.state = QueryState.IDS_RESOLVED
            self._set_found_items(item_ids)
            self.cache.add(
                cache_key, {"item_ids": item_ids, "found_items": self.found_items}, self.cache.query_scope
            )
        else:
            logger.debug(f"Query cache hit: {cache_key}")
            item_ids = cached["item_ids"]
            self.state = QueryState.IDS_RESOLVED
            self.found_items = int(cached["found_items"])

        self.state = QueryState.FOUND_COUNT_RESOLVED

        number = absint(query_vars.get("number"))
        if self.found_items and number:
            self.max_num_pages = math.ceil(self.found_items / number)

        if query_vars.get("count") and not isinstance(item_ids, list):
            item_ids = int(item_ids or 0)

        self._set_items(item_ids)
        self.state = QueryState.ITEMS_MATERIALIZED
        return self.items

    def _build_request(self) -> ClauseSet:
        clauses = self.clauses.build(self.query_vars)
        clauses = self.hooks.apply("query_clauses", clauses, self)

        self.query_clauses = clauses
        self.request_clauses = clauses.request_clauses(self.table_name, self.table.table_alias)
        self.request = flatten_request(self.request_clauses)
        return clauses

    def explain(self, query: dict[str, Any] | None = None) -> str:
        """
        The SQL query() would run on a cache miss, without running it.

        Returns "" and records last_error when the arguments are rejected.
        """
        self._reset()
        try:
            self._parse_query(dict(query or {}))
            self._apply_count_rules()
            self._build_request()
        except (TransportError, MalformedArgumentError) as e:
            return self._fail(e, "")
        return self.request

    def _get_item_ids(self) -> Any:
        clauses = self._build_request()

        if self.query_vars.get("count"):
            if clauses.groupby:
                return self.transport.get_results(self.request)
            return int(self.transport.get_var(self.request) or 0)

        return self._parse_id_list(self.transport.get_col(self.request))

    def _parse_id_list(self, values: list[Any]) -> list[Any]:
        ids: list[Any] = []
        for value in values:
            item_id = self.shape_item_id(value)
            if item_id and item_id not in ids:
                ids.append(item_id)
        return ids

    def found_items_sql(self) -> str:
        """Default count of every row the current request matches, ignoring limits."""
        ref = f"{self.table.table_alias}.{self.primary}"
        parts = [f"SELECT COUNT(DISTINCT {ref})", self.request_clauses.get("from", ""), self.request_clauses.get("where", "")]
        return " ".join(part for part in parts if part)

    def _set_found_items(self, item_ids: Any) -> None:
        if not item_ids:
            return

        if isinstance(item_ids, list):
            self.found_items = len(item_ids)
        else:
            self.found_items = int(item_ids)
            return

        if self.query_vars.get("count"):
            return

        if absint(self.query_vars.get("number")) and not self.query_vars.get("no_found_rows"):
            sql = self.hooks.apply("found_items_query", self.found_items_sql(), self)
            if sql:
                self.found_items = int(self.transport.get_var(sql) or 0)

    def _set_items(self, item_ids: Any) -> None:
        if self.query_vars.get("count"):
            self.items = item_ids
            return

        primed = self._prime_item_caches(item_ids)
        self.items = self._shape_items(item_ids, primed)

    def _shape_items(self, item_ids: list[Any], primed: dict[Any, dict[str, Any]]) -> Any:
        items = []
        for item_id in item_ids:
            row = primed.get(item_id)
            item = self._finish_item(row) if row is not None else self.get_item(item_id)
            if item is not None:
                items.append(item)

        items = list(self.hooks.apply("the_items", items, self) or [])

        fields = self.query_vars.get("fields")
        if is_present(fields):
            return get_item_fields(items, fields, self.primary)
        return items

    # =========================================================================
    # Item caches
    # =========================================================================

    def _prime_item_caches(self, item_ids: list[Any], force: bool = False) -> dict[Any, dict[str, Any]]:
        """
        Fetch every non-cached item in one query and cache it.

        Returns the rows fetched, keyed by id, so shaping does not depend on
        the cache accepting writes.
        """
        fetched: dict[Any, dict[str, Any]] = {}
        if not item_ids:
            return fetched

        if force or self.query_vars.get("update_item_cache"):
            missing = self.cache.non_cached_ids(item_ids)
            if missing:
                pattern = self.schema.primary.pattern if self.schema.primary else "%d"
                marks = ", ".join([pattern] * len(missing))
                sql = self.transport.prepare(
                    f"SELECT * FROM {self.table_name} WHERE {self.primary} IN ({marks})", missing
                )
                rows = self.transport.get_results(sql)
                self.cache.cache_rows(rows)
                fetched = {self.shape_item_id(row): row for row in rows}

        if self.query_vars.get("update_meta_cache") and self.side_table is not None:
            try:
                self.side_table.prime_cache(self.table.side_table_type, item_ids)
            except TransportError as e:
                logger.warning(f"Could not prime {self.table.side_table_type} meta cache: {e}")

        return fetched

    def _update_item_cache(self, item_id: Any, previous: dict[str, Any] | None = None) -> None:
        self.cache.advance_all()
        if previous:
            # Drop entries keyed by the old cache-key values
            self.cache.clean_rows([previous])
        try:
            row = self._get_item_raw(self.primary, item_id)
        except TransportError as e:
            self._fail(e, None)
            return
        if row:
            self.cache.cache_rows([row])

    def _clean_item_cache(self, row: dict[str, Any]) -> None:
        self.cache.advance_all()
        self.cache.clean_rows([row])

    # =========================================================================
    # Single items
    # =========================================================================

    def shape_item_id(self, item: Any) -> Any:
        """Primary key of an id, row dict, or shaped item; 0 when none."""
        if isinstance(item, dict):
            value = item.get(self.primary)
        elif isinstance(item, (int, str)):
            value = item
        else:
            value = getattr(item, self.primary, None)

        primary = self.schema.primary
        if primary is not None and not primary.is_numeric():
            return value or 0
        return absint(value)

    def _get_item_raw(self, column_name: str, value: Any) -> dict[str, Any] | None:
        column = self.schema.get(column_name)
        if column is None:
            return None
        try:
            value = column.coerce(value)
        except ValidationError:
            return None
        sql = self.transport.prepare(
            f"SELECT * FROM {self.table_name} WHERE {column.name} = {column.pattern} LIMIT 1", value
        )
        return self.transport.get_row(sql)

    def _finish_item(self, row: dict[str, Any]) -> Any:
        row = reduce_item("select", row, self.schema, self.context)
        return shape_item(row, self.table.item_shape)

    def get_item(self, item_id: Any) -> Any:
        """An item by primary key, from cache when possible. None if missing."""
        item_id = self.shape_item_id(item_id)
        if not item_id:
            return None
        return self.get_item_by(self.primary, item_id)

    def get_item_by(self, column_name: str, column_value: Any) -> Any:
        """An item by any column value. None if missing or on error."""
        if not column_name or column_value is None or column_value == "" or column_value is False:
            return None
        if column_name not in self.schema:
            return None

        scope = self.cache.scope_for(column_name)
        row = self.cache.get(column_value, scope) if scope else None

        if row is None:
            try:
                row = self._get_item_raw(column_name, column_value)
            except TransportError as e:
                return self._fail(e, None)
            if not row:
                self.last_error = NotFoundError(
                    f"No {self.table.item_name} with {column_name} = {column_value}",
                    column=column_name,
                    value=column_value,
                )
                return None
            self.cache.cache_rows([row])

        return self._finish_item(row)

    # =========================================================================
    # Writes
    # =========================================================================

    def _split(self, data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        save = {k: v for k, v in data.items() if k in self.schema}
        meta = {k: v for k, v in data.items() if k not in self.schema}
        return save, meta

    def validate_item(self, item: dict[str, Any]) -> dict[str, Any]:
        """
        Coerce and validate every value, then apply the filter_item hook.

        Raises:
            ValidationError: If any column rejects its value.
        """
        validated: dict[str, Any] = {}
        for key, value in item.items():
            column = self.schema.get(key)
            if column is None:
                continue
            value = column.coerce(value)
            if column.validate is not None:
                try:
                    value = column.validate(value)
                except (TypeError, ValueError) as e:
                    raise ValidationError(str(e), field=key, value=value) from e
                if isinstance(value, ValidationError):
                    raise value
            validated[key] = value
        return self.hooks.apply("filter_item", validated, self)

    def add_item(self, data: dict[str, Any]) -> Any:
        """
        Insert an item.

        Returns:
            The new primary key, or None on failure
        """
        self.last_error = None
        if data.get(self.primary) is not None:
            self.last_error = MalformedArgumentError(
                "Primary key cannot be set on insert", argument=self.primary, value=data[self.primary]
            )
            return None

        item = self.schema.defaults()
        item.pop(self.primary, None)
        save, meta = self._split({**item, **data})
        save.pop(self.primary, None)

        now = self.current_time()
        for column in (self.schema.created, self.schema.modified):
            if column is not None:
                value = save.get(column.name)
                if not is_present(value) or value == column.default:
                    save[column.name] = now

        try:
            save = reduce_item("insert", save, self.schema, self.context)
            save = self.validate_item(save)
            if not save:
                return None
            item_id = self.transport.insert(self.table_name, save)
        except (TransportError, ValidationError) as e:
            return self._fail(e, None)

        if not item_id:
            return None

        logger.info(f"Added {self.table.item_name} {item_id}")
        self._save_extra_item_meta(item_id, meta)
        self._update_item_cache(item_id)
        self._transition_item(save, None, item_id)
        return item_id

    def _unchanged(self, current: dict[str, Any], save: dict[str, Any]) -> bool:
        for key, value in save.items():
            old = current.get(key)
            if value == old:
                continue
            try:
                if self.schema.get(key).coerce(value) == old:
                    continue
            except ValidationError:
                pass
            return False
        return True

    def update_item(self, item_id: Any, data: dict[str, Any]) -> bool:
        """Update an item. An update that changes nothing succeeds."""
        self.last_error = None
        item_id = self.shape_item_id(item_id)
        if not item_id:
            return False

        try:
            current = self._get_item_raw(self.primary, item_id)
        except TransportError as e:
            return self._fail(e, False)
        if not current:
            self.last_error = NotFoundError(
                f"No {self.table.item_name} with {self.primary} = {item_id}",
                column=self.primary,
                value=item_id,
            )
            return False

        data = {k: v for k, v in data.items() if k != self.primary}
        save, meta = self._split({**current, **data})

        if self._unchanged(current, save):
            self._save_extra_item_meta(item_id, meta)
            return True

        save.pop(self.primary, None)
        modified = self.schema.modified
        if modified is not None:
            save[modified.name] = self.current_time()

        try:
            save = reduce_item("update", save, self.schema, self.context)
            save = self.validate_item(save)
            if not save:
                return False
            self.transport.update(self.table_name, save, {self.primary: item_id})
        except (TransportError, ValidationError) as e:
            return self._fail(e, False)

        logger.info(f"Updated {self.table.item_name} {item_id}")
        self._save_extra_item_meta(item_id, meta)
        self._update_item_cache(item_id, current)
        self._transition_item(save, current, item_id)
        return True

    def delete_item(self, item_id: Any) -> bool:
        """Delete an item, its side-table attributes, and its cache entries."""
        self.last_error = None
        item_id = self.shape_item_id(item_id)
        if not item_id:
            return False

        try:
            current = self._get_item_raw(self.primary, item_id)
            if not current:
                return False

            if not reduce_item("delete", current, self.schema, self.context):
                logger.info(f"Delete of {self.table.item_name} {item_id} not permitted")
                return False

            deleted = self.transport.delete(self.table_name, {self.primary: item_id})
        except TransportError as e:
            return self._fail(e, False)

        if not deleted:
            return False

        logger.info(f"Deleted {self.table.item_name} {item_id}")
        self._delete_all_item_meta(item_id)
        self._clean_item_cache(current)
        return True

    def _transition_item(self, new: dict[str, Any], old: dict[str, Any] | None, item_id: Any) -> None:
        columns = self.schema.names(transition=True)
        if not columns or not item_id:
            return

        if old is None:
            old = {key: "new" for key in new}

        for name in columns:
            if name not in new:
                continue
            old_value, new_value = old.get(name), new[name]
            if old_value == new_value or str(old_value) == str(new_value):
                continue
            self.hooks.emit(f"transition_{self.table.item_name}_{name}", old_value, new_value, item_id)

    # =========================================================================
    # Side-table attributes
    # =========================================================================

    def _save_extra_item_meta(self, item_id: Any, meta: dict[str, Any]) -> None:
        if not meta or self.side_table is None:
            return

        keys = self.table.meta_keys
        for key, value in meta.items():
            if keys is not None and key not in keys:
                continue
            if is_present(value):
                self.update_item_meta(item_id, key, value)
            else:
                self.delete_item_meta(item_id, key)

    def _delete_all_item_meta(self, item_id: Any) -> None:
        if self.side_table is None:
            return
        try:
            self.side_table.delete_all(self.table.side_table_type, item_id)
        except TransportError as e:
            self._fail(e, None)

    def add_item_meta(self, item_id: Any, key: str, value: Any, unique: bool = False) -> Any:
        item_id = self.shape_item_id(item_id)
        if not item_id or not key or self.side_table is None:
            return None
        try:
            return self.side_table.add(self.table.side_table_type, item_id, key, value, unique)
        except TransportError as e:
            return self._fail(e, None)

    def get_item_meta(self, item_id: Any, key: str = "", single: bool = False) -> Any:
        item_id = self.shape_item_id(item_id)
        if not item_id or self.side_table is None:
            return None
        try:
            return self.side_table.get(self.table.side_table_type, item_id, key, single)
        except TransportError as e:
            return self._fail(e, None)

    def update_item_meta(self, item_id: Any, key: str, value: Any, prev_value: Any = None) -> bool:
        item_id = self.shape_item_id(item_id)
        if not item_id or not key or self.side_table is None:
            return False
        try:
            return self.side_table.update(self.table.side_table_type, item_id, key, value, prev_value)
        except TransportError as e:
            return self._fail(e, False)

    def delete_item_meta(self, item_id: Any, key: str, value: Any = None) -> bool:
        item_id = self.shape_item_id(item_id)
        if not item_id or not key or self.side_table is None:
            return False
        try:
            return self.side_table.delete(self.table.side_table_type, item_id, key, value)
        except TransportError as e:
            return self._fail(e, False)

    # =========================================================================
    # Direct results
    # =========================================================================

    def get_results(
        self,
        cols: list[str],
        where_cols: dict[str, Any] | None = None,
        limit: int = 25,
        offset: int | None = None,
    ) -> list[dict[str, Any]] | None:
        """
        Uncached fetch of selected columns.

        `where_cols` maps a column to a value (equality) or to
        {"value": ..., "compare": "="|"!="|">"|">="|"<"|"<="|"LIKE"|"IN"|"NOT IN"|"BETWEEN"}.
        LIKE values are used as given, wildcards included. Unknown columns
        are dropped; unknown operators fall back to "=" (or "IN" for lists).
        """
        if not cols:
            return None

        columns = [name for name in cols if name in self.schema]
        if not columns:
            return None

        alias = self.table.table_alias
        compare = CompareQuery(None, self.schema, alias, self.transport)
        conditions: list[str] = []

        try:
            for name, condition in (where_cols or {}).items():
                column = self.schema.get(name)
                if column is None:
                    continue
                ref = f"{alias}.{column.name}"

                if not isinstance(condition, dict):
                    conditions.append(self.transport.prepare(f"{ref} = {column.pattern}", condition))
                    continue

                value = condition.get("value", False)
                if value is False:
                    continue

                op = str(condition.get("compare", "=")).upper().strip()
                if isinstance(value, (list, tuple)):
                    if op not in _LIST_OPERATORS:
                        op = "IN"
                    sql = compare.comparison(ref, op, list(value), column.pattern)
                elif op == "LIKE":
                    sql = self.transport.prepare(f"{ref} LIKE %s", value)
                else:
                    if op not in _RESULT_OPERATORS:
                        op = "="
                    sql = self.transport.prepare(f"{ref} {op} {column.pattern}", value)
                if sql:
                    conditions.append(sql)

            sql = f"SELECT {', '.join(f'{alias}.{c}' for c in columns)} FROM {self.table_name} {alias}"
            if conditions:
                sql += " WHERE " + " AND ".join(conditions)

            limit = absint(limit)
            if limit:
                sql += f" LIMIT {limit}"
                if absint(offset):
                    sql += f" OFFSET {absint(offset)}"

            return self.transport.get_results(sql)
        except TransportError as e:
            return self._fail(e, [])
