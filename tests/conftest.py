"""
Pytest configuration and fixtures for tablequery tests.

Every engine test runs against a fresh in-memory SQLite database holding
an `orders` table and its `ordermeta` side table.
"""

import os

import pytest

# Keep a developer's .env or shell from leaking into the tests
os.environ["TABLEQUERY_STRICT_ARGUMENTS"] = "false"
os.environ["TABLEQUERY_TABLE_PREFIX"] = ""

from tablequery.cache.store import MemoryCacheStore
from tablequery.config import EngineSettings
from tablequery.db.sqlite import SQLiteTransport
from tablequery.errors import ValidationError
from tablequery.meta.store import SQLiteSideTableStore
from tablequery.query.engine import Query
from tablequery.query.shaping import CapabilityContext
from tablequery.schema.columns import Column, ColumnCaps, ColumnType
from tablequery.schema.table import Schema, TableDefinition

ORDERS_DDL = """
CREATE TABLE orders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_key VARCHAR(255) NOT NULL DEFAULT '',
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    email VARCHAR(100) NOT NULL DEFAULT '',
    total DECIMAL(18,9) NOT NULL DEFAULT 0,
    internal_note TEXT NOT NULL DEFAULT '',
    date_created DATETIME NOT NULL DEFAULT '',
    date_modified DATETIME NOT NULL DEFAULT ''
);
"""


def non_negative(value):
    """Validator for order totals."""
    if value < 0:
        return ValidationError("Total cannot be negative", field="total", value=value)
    return value


def build_orders_table(note_validator=None, meta_keys=frozenset({"gift_note"})):
    """The orders table definition used throughout the suite."""
    return TableDefinition(
        name="orders",
        alias="o",
        item_name="order",
        meta_keys=set(meta_keys) if meta_keys is not None else None,
        schema=Schema(
            [
                Column("id", ColumnType.INTEGER, primary=True, sortable=True, in_=True, not_in=True),
                Column("order_key", searchable=True, cache_key=True, sortable=True, in_=True),
                Column("status", default="pending", sortable=True, in_=True, not_in=True, transition=True),
                Column("email", searchable=True, sortable=True),
                Column("total", ColumnType.DECIMAL, sortable=True, validate=non_negative),
                Column(
                    "internal_note",
                    transition=True,
                    validate=note_validator,
                    caps=ColumnCaps(
                        select="manage_orders",
                        insert="manage_orders",
                        update="manage_orders",
                        delete="exist",
                    ),
                ),
                Column("date_created", ColumnType.DATETIME, created=True, date_query=True, sortable=True),
                Column("date_modified", ColumnType.DATETIME, modified=True, date_query=True, sortable=True),
            ]
        ),
    )


@pytest.fixture
def engine_settings():
    """Settings isolated from the environment and any .env file."""
    return EngineSettings(_env_file=None, strict_arguments=False, table_prefix="", default_number=100)


@pytest.fixture
def transport():
    """In-memory SQLite database with the orders table."""
    db = SQLiteTransport(":memory:")
    db.executescript(ORDERS_DDL)
    yield db
    db.close()


@pytest.fixture
def cache_store():
    return MemoryCacheStore()


@pytest.fixture
def side_table(transport, cache_store):
    """Side table for order attributes, sharing the database and cache."""
    store = SQLiteSideTableStore(transport, cache_store)
    store.install("order")
    return store


@pytest.fixture
def orders_table():
    return build_orders_table()


@pytest.fixture
def make_orders(transport, cache_store, side_table, engine_settings):
    """Factory for Query instances over the shared database and cache."""

    def _make(table=None, context=None, settings=None, **kwargs):
        return Query(
            table or build_orders_table(),
            transport,
            cache=cache_store,
            side_table=side_table,
            context=context or CapabilityContext.of("exist", "manage_orders"),
            settings=settings or engine_settings,
            **kwargs,
        )

    return _make


@pytest.fixture
def orders(make_orders):
    """Query over orders, acting with every capability the table uses."""
    return make_orders()


@pytest.fixture
def sample_orders():
    """Order rows for seeding."""
    return [
        {"order_key": "K-100", "status": "pending", "email": "ann@example.com", "total": 12.5},
        {"order_key": "K-101", "status": "paid", "email": "bob@example.com", "total": 40},
        {"order_key": "K-102", "status": "paid", "email": "cy@example.org", "total": 7.25},
        {"order_key": "K-103", "status": "refunded", "email": "dee@example.org", "total": 99},
        {"order_key": "K-104", "status": "pending", "email": "eve@example.com", "total": 0},
    ]


@pytest.fixture
def seeded(orders, sample_orders):
    """Insert sample_orders; returns their ids in insertion order."""
    ids = [orders.add_item(order) for order in sample_orders]
    assert all(ids)
    return ids


@pytest.fixture
def build_table():
    """build_orders_table, for tests that need a variant of the table."""
    return build_orders_table
