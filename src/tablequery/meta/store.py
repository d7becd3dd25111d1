"""
tablequery - Side-table store.

Per-item attributes that are not first-class columns live in a key/value
side table, one per entity type:

    {meta_type}meta (meta_id, {meta_type}_id, meta_key, meta_value)

The engine talks to it through SideTableStore. SQLiteSideTableStore keeps
values in a table reached through the same SQLTransport as the entity table
and caches every object's attributes in a CacheStore group
"{meta_type}_meta".

Object ids are integers; an id with no integer form holds no attributes.

Scalars are stored as text; lists and dicts as JSON. Reads return text for
scalars and the decoded structure for JSON values.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Protocol, runtime_checkable

from tablequery.cache.store import CacheStore, MemoryCacheStore
from tablequery.db.adapter import SQLTransport
from tablequery.meta.tree import MetaQuery

logger = logging.getLogger(__name__)


@runtime_checkable
class SideTableStore(Protocol):
    """Key/value attributes keyed by (meta_type, object_id, key)."""

    def add(self, meta_type: str, object_id: int, key: str, value: Any, unique: bool = False) -> int | None:
        ...

    def get(self, meta_type: str, object_id: int, key: str = "", single: bool = False) -> Any:
        ...

    def update(self, meta_type: str, object_id: int, key: str, value: Any, prev_value: Any = None) -> bool:
        ...

    def delete(self, meta_type: str, object_id: int, key: str, value: Any = None) -> bool:
        ...

    def delete_all(self, meta_type: str, object_id: int) -> int:
        ...

    def prime_cache(self, meta_type: str, object_ids: Iterable[int]) -> None:
        ...

    def get_sql(self, meta_type: str, meta_query: Any, alias: str, primary: str) -> dict[str, str] | None:
        ...


def _object_id(value: Any) -> int | None:
    """Integer form of an object id; None for ids a side table cannot hold."""
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _serialize(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "1" if value else ""
    return "" if value is None else str(value)


def _deserialize(value: Any) -> Any:
    if isinstance(value, str) and value[:1] in ("[", "{"):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


class SQLiteSideTableStore:
    """
    SideTableStore over an SQLTransport.

    Args:
        transport: SQL transport (shared with the entity table is fine)
        cache: Store used for per-object attribute caching
        strict: Passed to MetaQuery; raise on malformed meta_query clauses
    """

    def __init__(
        self,
        transport: SQLTransport,
        cache: CacheStore | None = None,
        strict: bool = False,
    ) -> None:
        self.transport = transport
        self.cache = cache if cache is not None else MemoryCacheStore()
        self.strict = strict

    # =========================================================================
    # Naming
    # =========================================================================

    @staticmethod
    def table_name(meta_type: str) -> str:
        return f"{meta_type}meta"

    @staticmethod
    def object_column(meta_type: str) -> str:
        return f"{meta_type}_id"

    @staticmethod
    def _group(meta_type: str) -> str:
        return f"{meta_type}_meta"

    def install(self, meta_type: str) -> None:
        """Create the side table for an entity type if it does not exist."""
        table = self.table_name(meta_type)
        column = self.object_column(meta_type)
        self.transport.query(
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "meta_id INTEGER PRIMARY KEY AUTOINCREMENT, "
            f"{column} INTEGER NOT NULL DEFAULT 0, "
            "meta_key VARCHAR(255) DEFAULT NULL, "
            "meta_value TEXT)"
        )
        self.transport.query(
            f"CREATE INDEX IF NOT EXISTS {table}_{column} ON {table} ({column})"
        )

    # =========================================================================
    # Cache
    # =========================================================================

    def _forget(self, meta_type: str, object_id: int) -> None:
        if not self.cache.suspended:
            self.cache.delete(str(object_id), self._group(meta_type))

    def prime_cache(self, meta_type: str, object_ids: Iterable[int]) -> None:
        """Load attributes for every object not already cached, in one query."""
        group = self._group(meta_type)
        object_ids = [_object_id(i) for i in object_ids]
        missing = [i for i in object_ids if i and self.cache.get(str(i), group) is None]
        if not missing:
            return

        column = self.object_column(meta_type)
        marks = ", ".join(["%d"] * len(missing))
        sql = self.transport.prepare(
            f"SELECT {column}, meta_key, meta_value FROM {self.table_name(meta_type)} "
            f"WHERE {column} IN ({marks}) ORDER BY meta_id ASC",
            missing,
        )
        rows = self.transport.get_results(sql)

        loaded: dict[int, dict[str, list[Any]]] = {object_id: {} for object_id in missing}
        for row in rows:
            bucket = loaded.setdefault(int(row[column]), {})
            bucket.setdefault(row["meta_key"], []).append(row["meta_value"])

        if self.cache.suspended:
            return
        for object_id, values in loaded.items():
            self.cache.set(str(object_id), values, group)

    def _load(self, meta_type: str, object_id: int) -> dict[str, list[Any]]:
        group = self._group(meta_type)
        cached = self.cache.get(str(object_id), group)
        if cached is None:
            self.prime_cache(meta_type, [object_id])
            cached = self.cache.get(str(object_id), group)
        if cached is None:
            # Cache suspended; read straight through
            column = self.object_column(meta_type)
            sql = self.transport.prepare(
                f"SELECT meta_key, meta_value FROM {self.table_name(meta_type)} "
                f"WHERE {column} = %d ORDER BY meta_id ASC",
                object_id,
            )
            cached = {}
            for row in self.transport.get_results(sql):
                cached.setdefault(row["meta_key"], []).append(row["meta_value"])
        return cached

    # =========================================================================
    # CRUD
    # =========================================================================

    def add(self, meta_type: str, object_id: int, key: str, value: Any, unique: bool = False) -> int | None:
        object_id = _object_id(object_id)
        if not key or not object_id:
            return None
        if unique and self._load(meta_type, object_id).get(key):
            return None

        meta_id = self.transport.insert(
            self.table_name(meta_type),
            {
                self.object_column(meta_type): int(object_id),
                "meta_key": key,
                "meta_value": _serialize(value),
            },
        )
        self._forget(meta_type, object_id)
        logger.debug(f"Added {meta_type} meta '{key}' for {object_id}")
        return meta_id

    def get(self, meta_type: str, object_id: int, key: str = "", single: bool = False) -> Any:
        object_id = _object_id(object_id)
        values = self._load(meta_type, object_id) if object_id else {}
        if not key:
            return {k: [_deserialize(v) for v in vs] for k, vs in values.items()}

        found = [_deserialize(v) for v in values.get(key, [])]
        if single:
            return found[0] if found else None
        return found

    def update(self, meta_type: str, object_id: int, key: str, value: Any, prev_value: Any = None) -> bool:
        """
        Set a key's value, adding it if missing.

        Returns False when the stored value already equals the new one.
        """
        object_id = _object_id(object_id)
        if not key or not object_id:
            return False

        existing = self._load(meta_type, object_id).get(key, [])
        if not existing:
            return self.add(meta_type, object_id, key, value) is not None

        serialized = _serialize(value)
        if prev_value is None and len(existing) == 1 and existing[0] == serialized:
            return False

        where = {self.object_column(meta_type): int(object_id), "meta_key": key}
        if prev_value is not None:
            where["meta_value"] = _serialize(prev_value)

        changed = self.transport.update(self.table_name(meta_type), {"meta_value": serialized}, where)
        self._forget(meta_type, object_id)
        return changed > 0

    def delete(self, meta_type: str, object_id: int, key: str, value: Any = None) -> bool:
        object_id = _object_id(object_id)
        if not key or not object_id:
            return False

        where = {self.object_column(meta_type): int(object_id), "meta_key": key}
        if value not in (None, ""):
            where["meta_value"] = _serialize(value)

        deleted = self.transport.delete(self.table_name(meta_type), where)
        self._forget(meta_type, object_id)
        return deleted > 0

    def delete_all(self, meta_type: str, object_id: int) -> int:
        object_id = _object_id(object_id)
        if not object_id:
            return 0
        deleted = self.transport.delete(
            self.table_name(meta_type), {self.object_column(meta_type): int(object_id)}
        )
        self._forget(meta_type, object_id)
        return deleted

    # =========================================================================
    # Query support
    # =========================================================================

    def get_sql(self, meta_type: str, meta_query: Any, alias: str, primary: str) -> dict[str, str] | None:
        query = MetaQuery(
            meta_query,
            self.table_name(meta_type),
            self.object_column(meta_type),
            self.transport,
            strict=self.strict,
        )
        return query.get_sql(alias, primary)
