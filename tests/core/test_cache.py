"""
Tests for the cache store and cache coordinator.

Tests cover:
- MemoryCacheStore add/set semantics and copy isolation
- Scope naming for alternate cache-key columns
- Last-changed token monotonicity
- Query cache keys
- Suspended and disabled caches
"""

from unittest.mock import patch

from tablequery.cache import CacheCoordinator, CacheStore, MemoryCacheStore


class TestMemoryCacheStore:
    """Test the in-process store."""

    def test_add_does_not_overwrite(self):
        """Should only store on add when the key is absent."""
        store = MemoryCacheStore()
        assert store.add("k", 1, "g") is True
        assert store.add("k", 2, "g") is False
        assert store.get("k", "g") == 1

    def test_set_overwrites(self):
        """Should replace the value on set."""
        store = MemoryCacheStore()
        store.set("k", 1, "g")
        store.set("k", 2, "g")
        assert store.get("k", "g") == 2

    def test_groups_are_separate(self):
        """Should keep identical keys apart across groups."""
        store = MemoryCacheStore()
        store.set("k", "a", "one")
        store.set("k", "b", "two")
        assert store.get("k", "one") == "a"
        assert store.get("k", "two") == "b"

    def test_returned_values_are_copies(self):
        """Should not let callers mutate cached values."""
        store = MemoryCacheStore()
        row = {"id": 1, "status": "paid"}
        store.set("1", row, "orders")
        row["status"] = "changed"
        fetched = store.get("1", "orders")
        fetched["status"] = "mutated"
        assert store.get("1", "orders")["status"] == "paid"

    def test_flush_group_and_clear(self):
        """Should drop a group or everything."""
        store = MemoryCacheStore()
        store.set("a", 1, "g1")
        store.set("b", 2, "g2")
        store.flush_group("g1")
        assert store.get("a", "g1") is None
        assert store.keys("g2") == ["b"]
        store.clear()
        assert store.get("b", "g2") is None

    def test_satisfies_protocol(self):
        """Should satisfy the CacheStore protocol."""
        assert isinstance(MemoryCacheStore(), CacheStore)


class TestCacheCoordinator:
    """Test scopes, tokens and keys."""

    def _coordinator(self, store=None, enabled=True):
        return CacheCoordinator(
            store or MemoryCacheStore(),
            "orders",
            "id",
            ["id", "order_key"],
            enabled=enabled,
        )

    def test_groups(self):
        """Should name alternate scopes '{group}-by-{column}'."""
        coordinator = self._coordinator()
        assert coordinator.groups() == {"id": "orders", "order_key": "orders-by-order_key"}
        assert coordinator.scope_for("order_key") == "orders-by-order_key"
        assert coordinator.scope_for("email") is None

    def test_tokens_never_regress(self):
        """Should advance past the previous token even if the clock stalls."""
        coordinator = self._coordinator()
        with patch("tablequery.cache.coordinator.time.time_ns", return_value=1000):
            first = coordinator.advance()
            second = coordinator.advance()
            third = coordinator.advance()
        assert first == 1000
        assert second == 1001
        assert third == 1002

    def test_tokens_follow_a_rewound_clock(self):
        """Should stay monotonic when the clock moves backwards."""
        coordinator = self._coordinator()
        with patch("tablequery.cache.coordinator.time.time_ns", return_value=5000):
            coordinator.advance()
        with patch("tablequery.cache.coordinator.time.time_ns", return_value=10):
            assert coordinator.advance() == 5001

    def test_last_changed_is_stable_between_writes(self):
        """Should return the same token until something advances it."""
        coordinator = self._coordinator()
        token = coordinator.last_changed()
        assert coordinator.last_changed() == token
        coordinator.advance_all()
        assert coordinator.last_changed() > token
        assert coordinator.last_changed("orders-by-order_key") > 0

    def test_key_for_is_order_independent(self):
        """Should hash arguments regardless of key order."""
        coordinator = self._coordinator()
        first = coordinator.key_for({"status": "paid", "number": 10}, "get_orders")
        second = coordinator.key_for({"number": 10, "status": "paid"}, "get_orders")
        assert first == second
        assert first.startswith("get_orders:")

    def test_key_for_changes_after_advance(self):
        """Should produce a new key once the token moves."""
        coordinator = self._coordinator()
        before = coordinator.key_for({"status": "paid"}, "get_orders")
        coordinator.advance()
        assert coordinator.key_for({"status": "paid"}, "get_orders") != before

    def test_cache_rows_under_every_scope(self):
        """Should store a row by primary key and by each cache-key column."""
        coordinator = self._coordinator()
        row = {"id": 4, "order_key": "K-4", "status": "paid"}
        coordinator.cache_rows([row])
        assert coordinator.get(4) == row
        assert coordinator.get("K-4", "orders-by-order_key") == row
        assert coordinator.non_cached_ids([4, 5]) == [5]

        coordinator.clean_rows([row])
        assert coordinator.get(4) is None
        assert coordinator.get("K-4", "orders-by-order_key") is None

    def test_blank_keys_ignored(self):
        """Should skip rows whose cache-key column is blank."""
        store = MemoryCacheStore()
        coordinator = self._coordinator(store)
        coordinator.cache_rows([{"id": 4, "order_key": ""}])
        assert store.keys("orders-by-order_key") == []
        assert coordinator.get("") is None

    def test_suspended_store_skips_writes(self):
        """Should not write while the store is suspended."""
        store = MemoryCacheStore()
        store.suspend()
        coordinator = self._coordinator(store)
        coordinator.cache_rows([{"id": 1, "order_key": "K-1"}])
        assert store.keys("orders") == []

    def test_disabled_coordinator_always_misses(self):
        """Should neither read nor write when disabled."""
        store = MemoryCacheStore()
        store.set("1", {"id": 1}, "orders")
        coordinator = self._coordinator(store, enabled=False)
        assert coordinator.get(1) is None
        coordinator.set(2, {"id": 2})
        assert store.get("2", "orders") is None
