"""
tablequery - Side-table attributes and comparison trees.

- SideTableStore / SQLiteSideTableStore: per-item key/value attributes
- CompareQuery: nested comparisons over a table's own columns
- MetaQuery: nested comparisons over side-table attributes
"""

from tablequery.meta.store import SideTableStore, SQLiteSideTableStore
from tablequery.meta.tree import COMPARE_OPERATORS, CompareQuery, MetaQuery

__all__ = [
    "COMPARE_OPERATORS",
    "CompareQuery",
    "MetaQuery",
    "SideTableStore",
    "SQLiteSideTableStore",
]
