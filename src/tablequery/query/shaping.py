"""
tablequery - Item shaping and capability reduction.

- Row: default item shape, a plain attribute bag built from a result row
- CapabilityContext: what the acting caller is allowed to do
- reduce_item: strip attributes the context may not touch for an operation
- shape_item / get_item_fields: rows to caller-facing items and projections
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import BaseModel

from tablequery.schema.columns import Operation
from tablequery.schema.table import Schema

WILDCARD = "*"


class Row:
    """
    Default item shape.

    Every key of the source row becomes an attribute:

        row = Row({"id": 3, "status": "paid"})
        row.status  # "paid"
    """

    def __init__(self, item: dict[str, Any] | None = None) -> None:
        for key, value in (item or {}).items():
            setattr(self, key, value)

    def to_dict(self) -> dict[str, Any]:
        return dict(vars(self))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Row):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({fields})"


@dataclass(frozen=True)
class CapabilityContext:
    """
    Capabilities held by whoever is acting on the table.

    A column whose required capability is an empty string is off-limits to
    everyone, including the wildcard.
    """

    capabilities: frozenset[str] = field(default_factory=lambda: frozenset({"exist"}))

    @classmethod
    def default(cls) -> "CapabilityContext":
        return cls()

    @classmethod
    def of(cls, *capabilities: str) -> "CapabilityContext":
        return cls(frozenset(capabilities))

    @classmethod
    def everything(cls) -> "CapabilityContext":
        return cls(frozenset({WILDCARD}))

    def can(self, capability: str) -> bool:
        if not capability:
            return False
        return WILDCARD in self.capabilities or capability in self.capabilities


# =============================================================================
# Reduction
# =============================================================================


def _item_keys(item: Any) -> list[str]:
    if isinstance(item, dict):
        return list(item)
    if isinstance(item, BaseModel):
        return list(type(item).model_fields)
    return list(vars(item))


def reduce_item(
    operation: Operation,
    item: Any,
    schema: Schema,
    context: CapabilityContext,
) -> Any:
    """
    Drop every attribute the context lacks the capability for.

    Dicts lose the key; objects keep the attribute set to None. Attributes
    with no matching column count as not allowed.

    Args:
        operation: select / insert / update / delete
        item: A dict or a shaped object
        schema: Column schema of the table
        context: Acting capabilities

    Returns:
        The reduced item (dicts are copied, objects modified in place)
    """
    if not item:
        return item

    if isinstance(item, dict):
        item = dict(item)

    for key in _item_keys(item):
        column = schema.get(key)
        allowed = column is not None and context.can(column.required_cap(operation))
        if allowed:
            continue
        if isinstance(item, dict):
            del item[key]
        else:
            setattr(item, key, None)

    return item


# =============================================================================
# Shaping
# =============================================================================


def shape_item(row: dict[str, Any], item_shape: type | None = None) -> Any:
    """Build an item of the configured shape from a raw row."""
    shape = item_shape or Row
    if issubclass(shape, Row):
        return shape(row)
    if issubclass(shape, BaseModel):
        return shape.model_validate(row)
    return shape(**row)


def item_to_dict(item: Any) -> dict[str, Any]:
    if isinstance(item, dict):
        return dict(item)
    if isinstance(item, BaseModel):
        return item.model_dump()
    if isinstance(item, Row):
        return item.to_dict()
    return dict(vars(item))


def get_item_fields(items: Iterable[Any], fields: str | list[str], primary: str) -> Any:
    """
    Project shaped items onto requested fields.

    - "ids": list of primary key values
    - a single field name: {primary: value} per item
    - a list of names: one dict per item restricted to those names
    """
    rows = [item_to_dict(item) for item in items]

    if isinstance(fields, str):
        if fields == "ids":
            return [row.get(primary) for row in rows]
        return {row.get(primary): row.get(fields) for row in rows}

    wanted = list(fields)
    return [{name: row[name] for name in wanted if name in row} for row in rows]
