"""
tablequery - Cache layer.

- CacheStore: the store port (get/set/add/delete by key and group)
- MemoryCacheStore: in-process implementation
- CacheCoordinator: scopes, query keys, last-changed tokens
"""

from tablequery.cache.coordinator import CacheCoordinator
from tablequery.cache.store import CacheStore, MemoryCacheStore

__all__ = ["CacheCoordinator", "CacheStore", "MemoryCacheStore"]
