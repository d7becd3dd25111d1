"""
tablequery - Query hooks.

Each Query owns one QueryHooks instance. Two kinds of subscribers:

- Actions (`on` / `emit`): observers. Return values are ignored.
- Filters (`add_filter` / `apply`): each callback receives the current
  value (plus extra args) and returns the value passed to the next one.

Events fired by the engine:
    parse_query(query)                       action
    pre_get_items(query)                     action
    query_clauses(clauses, query)            filter
    search_columns(columns, search)          filter
    found_items_query(sql, query)            filter
    the_items(items)                         filter
    filter_item(item)                        filter
    transition_{item}_{column}(old, new, id) action

A failing subscriber is logged and skipped; the operation carries on.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)


class QueryHooks:
    """Per-engine observer and filter lists."""

    def __init__(self) -> None:
        self._actions: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._filters: dict[str, list[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self._actions[event].append(callback)

    def add_filter(self, name: str, callback: Callable[..., Any]) -> None:
        self._filters[name].append(callback)

    def has(self, name: str) -> bool:
        return bool(self._actions.get(name) or self._filters.get(name))

    def emit(self, event: str, *args: Any) -> None:
        for callback in list(self._actions.get(event, ())):
            try:
                callback(*args)
            except Exception as e:
                logger.warning(f"Hook '{event}' subscriber {callback!r} failed: {e}")

    def apply(self, name: str, value: Any, *args: Any) -> Any:
        for callback in list(self._filters.get(name, ())):
            try:
                value = callback(value, *args)
            except Exception as e:
                logger.warning(f"Filter '{name}' callback {callback!r} failed: {e}")
        return value
