"""
tablequery - Schema-driven query engine with a read-through object cache.

Describe a table's columns once; get parameterized select/count/insert/
update/delete, item shaping, capability checks and cache invalidation
without per-table SQL.
"""

from tablequery.cache import CacheCoordinator, MemoryCacheStore
from tablequery.db import SQLiteTransport
from tablequery.meta import SQLiteSideTableStore
from tablequery.query import CapabilityContext, Query, QueryHooks, QueryState, Row
from tablequery.schema import Column, ColumnCaps, ColumnType, Schema, TableDefinition, load_table

__version__ = "1.0.0"

__all__ = [
    "CacheCoordinator",
    "CapabilityContext",
    "Column",
    "ColumnCaps",
    "ColumnType",
    "MemoryCacheStore",
    "Query",
    "QueryHooks",
    "QueryState",
    "Row",
    "SQLiteSideTableStore",
    "SQLiteTransport",
    "Schema",
    "TableDefinition",
    "load_table",
]
