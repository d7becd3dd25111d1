"""
tablequery - Cache coordination.

Key concepts:
- Scope: a named cache partition. The primary column's scope is the table's
  cache group; every alternate cache-key column gets "{group}-by-{column}".
- last_changed: a per-scope token, stored in "{scope}:meta" so no item key
  can collide with it. Query cache keys embed it, so advancing the token
  invalidates every query cached before the advance.
- Query results live in "{group}:queries", apart from item rows.
- Entries are never swept; stale ones simply stop being addressed.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Iterable

from tablequery.cache.store import CacheStore

logger = logging.getLogger(__name__)

LAST_CHANGED_KEY = "last_changed"


def _is_blank_key(key: Any) -> bool:
    return key is None or key == "" or key is False


class CacheCoordinator:
    """
    Scoped reads/writes and last-changed tokens for one table.

    Args:
        store: The injected cache store
        group: Primary cache scope (the table's cache group)
        primary: Primary column name
        cache_key_columns: Alternate columns items are also cached by
        enabled: When False every read misses and every write is skipped
    """

    def __init__(
        self,
        store: CacheStore,
        group: str,
        primary: str,
        cache_key_columns: Iterable[str] = (),
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.group = group
        self.primary = primary
        self.enabled = enabled
        self._groups: dict[str, str] = {primary: group}
        for name in cache_key_columns:
            if name != primary:
                self._groups[name] = f"{group}-by-{name}"

    def groups(self) -> dict[str, str]:
        """Map of column name to cache scope."""
        return dict(self._groups)

    def scope_for(self, column: str) -> str | None:
        return self._groups.get(column)

    @property
    def query_scope(self) -> str:
        return f"{self.group}:queries"

    def _writable(self) -> bool:
        return self.enabled and not self.store.suspended

    # =========================================================================
    # Raw access
    # =========================================================================

    def get(self, key: Any, scope: str | None = None) -> Any:
        if not self.enabled or _is_blank_key(key):
            return None
        return self.store.get(str(key), scope or self.group)

    def add(self, key: Any, value: Any, scope: str | None = None) -> bool:
        if not self._writable() or _is_blank_key(key):
            return False
        return self.store.add(str(key), value, scope or self.group)

    def set(self, key: Any, value: Any, scope: str | None = None) -> None:
        if not self._writable() or _is_blank_key(key):
            return
        self.store.set(str(key), value, scope or self.group)

    def delete(self, key: Any, scope: str | None = None) -> None:
        if not self._writable() or _is_blank_key(key):
            return
        self.store.delete(str(key), scope or self.group)

    # =========================================================================
    # Last-changed tokens
    # =========================================================================

    def _token_scope(self, scope: str | None) -> str:
        return f"{scope or self.group}:meta"

    def last_changed(self, scope: str | None = None) -> int:
        """Current token for a scope, created on first read."""
        token = self.get(LAST_CHANGED_KEY, self._token_scope(scope))
        if token is None:
            token = self.advance(scope)
        return int(token)

    def advance(self, scope: str | None = None) -> int:
        """Move a scope's token forward. Never regresses."""
        previous = self.get(LAST_CHANGED_KEY, self._token_scope(scope))
        token = time.time_ns()
        if previous is not None and token <= int(previous):
            token = int(previous) + 1
        self.set(LAST_CHANGED_KEY, token, self._token_scope(scope))
        return token

    def advance_all(self) -> None:
        for scope in self._groups.values():
            self.advance(scope)

    # =========================================================================
    # Query keys and item rows
    # =========================================================================

    def key_for(self, recognized_args: dict[str, Any], prefix: str, scope: str | None = None) -> str:
        """
        Cache key for a query: "{prefix}:{md5 of args}:{last_changed}".

        Args:
            recognized_args: Only the argument names the table recognizes
            prefix: Usually "get_{item_name_plural}"
            scope: Token scope (defaults to the primary group)
        """
        payload = json.dumps(recognized_args, sort_keys=True, default=str)
        digest = hashlib.md5(payload.encode("utf-8")).hexdigest()
        return f"{prefix}:{digest}:{self.last_changed(scope)}"

    def non_cached_ids(self, ids: Iterable[Any]) -> list[Any]:
        return [item_id for item_id in ids if self.get(item_id, self.group) is None]

    def cache_rows(self, rows: Iterable[dict[str, Any]]) -> None:
        """Store rows under every scope. Does not touch tokens."""
        for row in rows:
            for column, scope in self._groups.items():
                self.set(row.get(column), row, scope)

    def clean_rows(self, rows: Iterable[dict[str, Any]]) -> None:
        for row in rows:
            for column, scope in self._groups.items():
                self.delete(row.get(column), scope)
