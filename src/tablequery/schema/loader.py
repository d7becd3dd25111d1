"""
tablequery - YAML table definitions.

Lets the CLI (and anyone else) describe a table without writing Python:

    table:
      name: orders
      alias: o
      item_name: order
    columns:
      - name: id
        type: integer
        primary: true
        sortable: true
        in: true
      - name: status
        type: string
        default: pending
        in: true
        transition: true

`in` is accepted as an alias of `in_`. Validators cannot be expressed in YAML.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from tablequery.schema.columns import Column, ColumnCaps, ColumnType
from tablequery.schema.table import Schema, TableDefinition

_COLUMN_ALIASES = {"in": "in_"}


def _build_column(raw: dict[str, Any]) -> Column:
    data = {_COLUMN_ALIASES.get(k, k): v for k, v in raw.items()}
    if "type" in data:
        data["type"] = ColumnType(str(data["type"]).lower())
    if "caps" in data:
        data["caps"] = ColumnCaps(**(data["caps"] or {}))
    return Column(**data)


def table_from_dict(data: dict[str, Any]) -> TableDefinition:
    """Build a TableDefinition from parsed YAML/JSON data."""
    table = dict(data.get("table") or {})
    columns = [_build_column(c) for c in data.get("columns") or []]
    if not columns:
        raise ValueError("Table definition has no columns")
    if "meta_keys" in table and table["meta_keys"] is not None:
        table["meta_keys"] = set(table["meta_keys"])
    return TableDefinition(schema=Schema(columns), **table)


def load_table(path: Path | str) -> TableDefinition:
    """Load a TableDefinition from a YAML file."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return table_from_dict(data)
