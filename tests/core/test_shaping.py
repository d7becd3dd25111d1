"""
Tests for item shaping, capability reduction and hooks.

Tests cover:
- CapabilityContext checks
- reduce_item on dicts, Row objects and pydantic models
- shape_item and field projections
- QueryHooks actions, filters and failing subscribers
"""

import logging

from pydantic import BaseModel

from tablequery.query.hooks import QueryHooks
from tablequery.query.shaping import (
    CapabilityContext,
    Row,
    get_item_fields,
    reduce_item,
    shape_item,
)


class OrderModel(BaseModel):
    id: int
    status: str = ""
    internal_note: str | None = None


class TestCapabilityContext:
    """Test capability checks."""

    def test_default_holds_exist(self):
        """Should grant only 'exist' by default."""
        context = CapabilityContext.default()
        assert context.can("exist")
        assert not context.can("manage_orders")

    def test_wildcard(self):
        """Should grant every named capability to the wildcard."""
        assert CapabilityContext.everything().can("manage_orders")

    def test_empty_capability_denied(self):
        """Should deny an empty capability to everyone."""
        assert not CapabilityContext.everything().can("")


class TestReduceItem:
    """Test capability reduction."""

    def test_dict_loses_keys(self, orders_table):
        """Should drop keys the context may not touch, without mutating the input."""
        item = {"id": 1, "status": "paid", "internal_note": "vip", "unknown": 1}
        reduced = reduce_item("select", item, orders_table.schema, CapabilityContext.default())
        assert reduced == {"id": 1, "status": "paid"}
        assert "internal_note" in item

    def test_object_attributes_set_to_none(self, orders_table):
        """Should null out attributes on shaped objects."""
        row = Row({"id": 1, "internal_note": "vip"})
        reduce_item("select", row, orders_table.schema, CapabilityContext.default())
        assert row.id == 1
        assert row.internal_note is None

    def test_pydantic_model(self, orders_table):
        """Should reduce pydantic models through their fields."""
        model = OrderModel(id=1, status="paid", internal_note="vip")
        reduce_item("select", model, orders_table.schema, CapabilityContext.default())
        assert model.internal_note is None
        assert model.status == "paid"

    def test_capability_grants_access(self, orders_table):
        """Should keep keys the context holds capabilities for."""
        item = {"id": 1, "internal_note": "vip"}
        context = CapabilityContext.of("exist", "manage_orders")
        assert reduce_item("update", item, orders_table.schema, context) == item


class TestShaping:
    """Test shaping and projections."""

    def test_default_shape_is_row(self):
        """Should build Row items by default."""
        item = shape_item({"id": 3, "status": "paid"})
        assert isinstance(item, Row)
        assert item.status == "paid"
        assert item == Row({"id": 3, "status": "paid"})

    def test_pydantic_shape(self):
        """Should validate rows into pydantic models."""
        item = shape_item({"id": "3", "status": "paid"}, OrderModel)
        assert item.id == 3

    def test_project_ids(self):
        """Should project onto primary keys."""
        items = [Row({"id": 1, "status": "a"}), Row({"id": 2, "status": "b"})]
        assert get_item_fields(items, "ids", "id") == [1, 2]

    def test_project_single_field(self):
        """Should map primary keys to one field."""
        items = [Row({"id": 1, "status": "a"}), Row({"id": 2, "status": "b"})]
        assert get_item_fields(items, "status", "id") == {1: "a", 2: "b"}

    def test_project_field_list(self):
        """Should restrict each item to the requested fields."""
        items = [Row({"id": 1, "status": "a", "total": 3})]
        assert get_item_fields(items, ["id", "total"], "id") == [{"id": 1, "total": 3}]


class TestQueryHooks:
    """Test actions and filters."""

    def test_actions_receive_arguments(self):
        """Should call every subscriber with the event arguments."""
        hooks = QueryHooks()
        seen = []
        hooks.on("transition_order_status", lambda old, new, item_id: seen.append((old, new, item_id)))
        hooks.emit("transition_order_status", "pending", "paid", 4)
        assert seen == [("pending", "paid", 4)]
        assert hooks.has("transition_order_status")
        assert not hooks.has("pre_get_items")

    def test_filters_chain(self):
        """Should pass each filter's result to the next."""
        hooks = QueryHooks()
        hooks.add_filter("the_items", lambda items, query: items + [1])
        hooks.add_filter("the_items", lambda items, query: items + [2])
        assert hooks.apply("the_items", [], None) == [1, 2]

    def test_failing_subscriber_is_logged(self, caplog):
        """Should log a failing subscriber and keep going."""
        hooks = QueryHooks()
        seen = []

        def broken(*args):
            raise RuntimeError("boom")

        hooks.on("pre_get_items", broken)
        hooks.on("pre_get_items", lambda query: seen.append(query))
        with caplog.at_level(logging.WARNING, logger="tablequery.query.hooks"):
            hooks.emit("pre_get_items", "q")
        assert seen == ["q"]
        assert "boom" in caplog.text

    def test_failing_filter_keeps_value(self):
        """Should keep the previous value when a filter fails."""
        hooks = QueryHooks()
        hooks.add_filter("filter_item", lambda item, query: item["missing"])
        assert hooks.apply("filter_item", {"id": 1}, None) == {"id": 1}
