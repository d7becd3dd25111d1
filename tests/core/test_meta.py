"""
Tests for side-table attributes and comparison trees.

Tests cover:
- SQLiteSideTableStore add/get/update/delete and value serialization
- Attribute cache priming
- CompareQuery and MetaQuery SQL rendering
"""

import pytest

from tablequery.errors import MalformedArgumentError
from tablequery.meta import CompareQuery, MetaQuery, SideTableStore


class TestSideTableStore:
    """Test the SQLite side table."""

    def test_satisfies_protocol(self, side_table):
        """Should satisfy the SideTableStore protocol."""
        assert isinstance(side_table, SideTableStore)

    def test_add_and_get(self, side_table):
        """Should store values and read them back by key."""
        side_table.add("order", 1, "gift_note", "wrap it")
        side_table.add("order", 1, "gift_note", "and a bow")
        assert side_table.get("order", 1, "gift_note") == ["wrap it", "and a bow"]
        assert side_table.get("order", 1, "gift_note", single=True) == "wrap it"
        assert side_table.get("order", 1, "missing", single=True) is None

    def test_get_all_keys(self, side_table):
        """Should return every key when no key is given."""
        side_table.add("order", 2, "a", "1")
        side_table.add("order", 2, "b", "2")
        assert side_table.get("order", 2) == {"a": ["1"], "b": ["2"]}

    def test_structured_values_round_trip(self, side_table):
        """Should store lists and dicts as JSON and decode them on read."""
        side_table.add("order", 3, "lines", [{"sku": "A1", "qty": 2}])
        assert side_table.get("order", 3, "lines", single=True) == [{"sku": "A1", "qty": 2}]

    def test_unique_add(self, side_table):
        """Should not add a second value for a unique key."""
        assert side_table.add("order", 4, "gift_note", "one", unique=True)
        assert side_table.add("order", 4, "gift_note", "two", unique=True) is None
        assert side_table.get("order", 4, "gift_note") == ["one"]

    def test_update(self, side_table):
        """Should add a missing key, change a value, and report no-ops."""
        assert side_table.update("order", 5, "gift_note", "first") is True
        assert side_table.update("order", 5, "gift_note", "second") is True
        assert side_table.update("order", 5, "gift_note", "second") is False
        assert side_table.get("order", 5, "gift_note") == ["second"]

    def test_delete(self, side_table):
        """Should delete one key or every key of an object."""
        side_table.add("order", 6, "a", "1")
        side_table.add("order", 6, "b", "2")
        assert side_table.delete("order", 6, "a") is True
        assert side_table.get("order", 6) == {"b": ["2"]}
        assert side_table.delete_all("order", 6) == 1
        assert side_table.get("order", 6) == {}

    def test_prime_cache_single_query(self, side_table, transport):
        """Should load many objects in one query and then serve from cache."""
        side_table.add("order", 7, "a", "1")
        side_table.add("order", 8, "a", "2")
        before = transport.num_queries
        side_table.prime_cache("order", [7, 8, 9])
        assert transport.num_queries == before + 1

        assert side_table.get("order", 8, "a") == ["2"]
        assert side_table.get("order", 9) == {}
        assert transport.num_queries == before + 1

    def test_suspended_cache_reads_through(self, side_table, cache_store):
        """Should still read values while the cache is suspended."""
        side_table.add("order", 10, "a", "1")
        cache_store.suspend()
        assert side_table.get("order", 10, "a") == ["1"]

    def test_non_integer_ids_hold_nothing(self, side_table, transport):
        """Should skip ids with no integer form instead of failing."""
        before = transport.num_queries
        side_table.prime_cache("order", ["abc"])
        assert transport.num_queries == before
        assert side_table.get("order", "abc") == {}
        assert side_table.add("order", "abc", "a", "1") is None
        assert side_table.delete_all("order", "abc") == 0


class TestCompareQuery:
    """Test comparison trees over table columns."""

    def test_nested_relations(self, orders_table, transport):
        """Should render nested AND/OR groups."""
        query = {
            "relation": "OR",
            "clauses": [
                {"key": "status", "value": ["paid", "refunded"]},
                [
                    {"key": "total", "value": [1, 5], "compare": "BETWEEN"},
                    {"key": "email", "value": "example.com", "compare": "LIKE"},
                ],
            ],
        }
        sql = CompareQuery(query, orders_table.schema, "o", transport).get_sql()
        assert sql["join"] == ""
        assert sql["where"] == (
            " AND (o.status IN ('paid', 'refunded') OR "
            "(o.total BETWEEN 1.0 AND 5.0 AND o.email LIKE '%example.com%' ESCAPE '\\'))"
        )

    def test_unknown_column_dropped(self, orders_table, transport):
        """Should drop leaves on unknown columns."""
        sql = CompareQuery([{"key": "bogus", "value": 1}], orders_table.schema, "o", transport).get_sql()
        assert sql is None

    def test_unknown_operator_strict(self, orders_table, transport):
        """Should reject unknown operators in strict mode."""
        query = [{"key": "total", "value": 1, "compare": "~="}]
        with pytest.raises(MalformedArgumentError):
            CompareQuery(query, orders_table.schema, "o", transport, strict=True).get_sql()

    def test_between_needs_two_values(self, orders_table, transport):
        """Should drop a BETWEEN without exactly two values."""
        query = [{"key": "total", "value": [1], "compare": "BETWEEN"}]
        assert CompareQuery(query, orders_table.schema, "o", transport).get_sql() is None


class TestMetaQuery:
    """Test comparison trees over the side table."""

    def test_numeric_comparison(self, transport):
        """Should cast values for numeric comparisons."""
        query = [{"key": "weight", "value": 2, "compare": ">=", "type": "NUMERIC"}]
        sql = MetaQuery(query, "ordermeta", "order_id", transport).get_sql("o", "id")
        assert sql["where"] == (
            " AND (EXISTS (SELECT 1 FROM ordermeta mt WHERE mt.order_id = o.id "
            "AND mt.meta_key = 'weight' AND CAST(mt.meta_value AS NUMERIC) >= 2.0))"
        )

    def test_not_exists(self, transport):
        """Should render NOT EXISTS for a missing key."""
        query = [{"key": "gift_note", "compare": "NOT EXISTS"}]
        sql = MetaQuery(query, "ordermeta", "order_id", transport).get_sql("o", "id")
        assert sql["where"] == (
            " AND (NOT EXISTS (SELECT 1 FROM ordermeta mt WHERE mt.order_id = o.id "
            "AND mt.meta_key = 'gift_note'))"
        )

    def test_empty_query(self, transport):
        """Should return None when nothing renders."""
        assert MetaQuery([], "ordermeta", "order_id", transport).get_sql("o", "id") is None
