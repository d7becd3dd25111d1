"""
tablequery - Column schema package.

Provides:
- Column / ColumnType / ColumnCaps: per-column metadata
- Schema: ordered column collection with predicate lookups
- TableDefinition: table names, alias, cache group, item shape
- load_table: YAML table definitions
"""

from tablequery.schema.columns import (
    DATE_FORMAT,
    DATETIME_FORMAT,
    Column,
    ColumnCaps,
    ColumnType,
)
from tablequery.schema.loader import load_table, table_from_dict
from tablequery.schema.table import Schema, TableDefinition

__all__ = [
    "Column",
    "ColumnCaps",
    "ColumnType",
    "DATE_FORMAT",
    "DATETIME_FORMAT",
    "Schema",
    "TableDefinition",
    "load_table",
    "table_from_dict",
]
