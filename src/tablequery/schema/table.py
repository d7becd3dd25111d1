"""
tablequery - Table schema and definition.

Key concepts:
- Schema: ordered, immutable set of Columns with predicate lookups
- TableDefinition: everything a Query needs to know about one table
  (names, alias, cache group, item shape, side-table registration)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from tablequery.schema.columns import Column

_MISSING = object()


class Schema:
    """
    Ordered collection of Column metadata.

    Predicates are keyword arguments AND-ed together as exact matches on
    column attributes:

        schema.filter(in_=True)          # every column accepting __in
        schema.find(name="status")       # the status column, or None
        schema.find(primary=True)
    """

    def __init__(self, columns: Iterable[Column]) -> None:
        self._columns: tuple[Column, ...] = tuple(columns)

        seen: set[str] = set()
        for column in self._columns:
            if column.name in seen:
                raise ValueError(f"Duplicate column name: {column.name}")
            seen.add(column.name)

        if len([c for c in self._columns if c.primary]) > 1:
            raise ValueError("A schema may declare at most one primary column")

        self._by_name = {c.name: c for c in self._columns}

    def __iter__(self):
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def columns(self) -> tuple[Column, ...]:
        return self._columns

    @staticmethod
    def _matches(column: Column, predicate: dict[str, Any]) -> bool:
        return all(getattr(column, key, _MISSING) == value for key, value in predicate.items())

    def filter(self, **predicate: Any) -> list[Column]:
        """Return every column matching all predicate fields, in schema order."""
        return [c for c in self._columns if self._matches(c, predicate)]

    def find(self, **predicate: Any) -> Column | None:
        """Return the first column matching all predicate fields."""
        for column in self._columns:
            if self._matches(column, predicate):
                return column
        return None

    def get(self, name: str) -> Column | None:
        return self._by_name.get(name)

    def names(self, **predicate: Any) -> list[str]:
        return [c.name for c in self.filter(**predicate)]

    @property
    def primary(self) -> Column | None:
        return self.find(primary=True)

    @property
    def primary_name(self) -> str:
        primary = self.primary
        return primary.name if primary else "id"

    @property
    def created(self) -> Column | None:
        return self.find(created=True)

    @property
    def modified(self) -> Column | None:
        return self.find(modified=True)

    def defaults(self) -> dict[str, Any]:
        """An item comprised of every column's default value."""
        return {c.name: c.default for c in self._columns}


@dataclass
class TableDefinition:
    """
    Configuration for a single queryable table.

    Attributes:
        name: Table name without prefix (e.g., "orders")
        schema: Column schema
        alias: Short alias used in SQL to avoid JOIN collisions (e.g., "o")
        item_name: Singular item name, used in hook and side-table names
        item_name_plural: Plural item name, used in cache keys and hooks
        cache_group: Primary cache scope; alternate scopes derive from it
        item_shape: Class items are shaped into (None = Row)
        prefix: Prefix for table, alias, and cache group
        meta_type: Side-table entity type (defaults to item_name)
        meta_keys: Side-table keys add/update may persist (None = any key)
    """

    name: str
    schema: Schema
    alias: str = ""
    item_name: str = ""
    item_name_plural: str = ""
    cache_group: str = ""
    item_shape: type | None = None
    prefix: str = ""
    meta_type: str = ""
    meta_keys: set[str] | None = field(default=None)

    def __post_init__(self) -> None:
        if not self.alias:
            self.alias = self.name[:1] or "t"
        if not self.item_name:
            self.item_name = self.name.rstrip("s") or self.name
        if not self.item_name_plural:
            self.item_name_plural = f"{self.item_name}s"
        if not self.cache_group:
            self.cache_group = self.item_name_plural
        if not self.meta_type:
            self.meta_type = self.item_name

    def _apply_prefix(self, value: str, sep: str = "_") -> str:
        return f"{self.prefix}{sep}{value}" if self.prefix else value

    @property
    def table_name(self) -> str:
        return self._apply_prefix(self.name)

    @property
    def table_alias(self) -> str:
        return self._apply_prefix(self.alias)

    @property
    def cache_scope(self) -> str:
        return self._apply_prefix(self.cache_group, "-")

    @property
    def side_table_type(self) -> str:
        return self._apply_prefix(self.meta_type)
