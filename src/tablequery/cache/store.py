"""
tablequery - Cache store port.

The engine reads and writes a scoped key/value cache through CacheStore.
MemoryCacheStore is the in-process implementation used by default and in
tests; anything with the same methods (a Redis wrapper, say) can be injected.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheStore(Protocol):
    """
    Scoped key/value cache.

    get() returns None on a miss. While `suspended` is true the engine
    skips every write to the store.
    """

    @property
    def suspended(self) -> bool:
        ...

    def get(self, key: str, group: str) -> Any:
        ...

    def set(self, key: str, value: Any, group: str) -> None:
        ...

    def add(self, key: str, value: Any, group: str) -> bool:
        """Store value only if key is absent. Returns True when stored."""
        ...

    def delete(self, key: str, group: str) -> None:
        ...


class MemoryCacheStore:
    """
    Dict-backed CacheStore.

    Values are deep-copied on the way in and out, so callers can never
    mutate a cached row through a returned reference.
    """

    def __init__(self) -> None:
        self._cache: dict[str, dict[str, Any]] = {}
        self._suspended = False

    @property
    def suspended(self) -> bool:
        return self._suspended

    def suspend(self, suspended: bool = True) -> None:
        """Turn cache additions off (or back on)."""
        self._suspended = suspended

    def get(self, key: str, group: str) -> Any:
        value = self._cache.get(group, {}).get(str(key))
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, group: str) -> None:
        self._cache.setdefault(group, {})[str(key)] = copy.deepcopy(value)

    def add(self, key: str, value: Any, group: str) -> bool:
        bucket = self._cache.setdefault(group, {})
        if str(key) in bucket:
            return False
        bucket[str(key)] = copy.deepcopy(value)
        return True

    def delete(self, key: str, group: str) -> None:
        self._cache.get(group, {}).pop(str(key), None)

    def clear(self) -> None:
        """Clear the cache."""
        self._cache = {}

    def flush_group(self, group: str) -> None:
        """Drop every key in one group."""
        self._cache.pop(group, None)

    def keys(self, group: str) -> list[str]:
        return list(self._cache.get(group, {}))
