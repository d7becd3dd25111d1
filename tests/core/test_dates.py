"""
Tests for date range sub-queries.

Tests cover:
- Boundary parsing for strings, dates, datetimes and dicts
- Inclusive and exclusive comparisons
- Relations between clauses
- Unknown columns and unparseable boundaries
"""

from datetime import date, datetime

import pytest

from tablequery.errors import MalformedArgumentError
from tablequery.query.dates import DateQuery, parse_boundary


class TestParseBoundary:
    """Test boundary normalization."""

    def test_date_only_string(self):
        """Should widen a date-only string to the start or end of the day."""
        assert parse_boundary("2024-02-10", end=False) == "2024-02-10 00:00:00"
        assert parse_boundary("2024-02-10", end=True) == "2024-02-10 23:59:59"

    def test_datetime_string_kept(self):
        """Should keep the time of a full timestamp."""
        assert parse_boundary("2024-02-10 08:15:00", end=True) == "2024-02-10 08:15:00"

    def test_date_and_datetime_objects(self):
        """Should accept date and datetime objects."""
        assert parse_boundary(date(2024, 2, 10), end=True) == "2024-02-10 23:59:59"
        assert parse_boundary(datetime(2024, 2, 10, 6, 0), end=True) == "2024-02-10 06:00:00"

    def test_dict_fills_missing_parts(self):
        """Should fill missing dict parts with the earliest or latest moment."""
        assert parse_boundary({"year": 2024, "month": 2}, end=True) == "2024-02-29 23:59:59"
        assert parse_boundary({"year": 2023}, end=False) == "2023-01-01 00:00:00"

    def test_unparseable(self):
        """Should return None for values it cannot read."""
        assert parse_boundary("last tuesday", end=False) is None
        assert parse_boundary({"month": 2}, end=False) is None
        assert parse_boundary(42, end=False) is None


class TestDateQuery:
    """Test date range fragments."""

    def _query(self, query, orders_table, transport, strict=False):
        return DateQuery(
            query,
            orders_table.schema,
            "o",
            transport,
            default_column="date_created",
            strict=strict,
        )

    def test_exclusive_range(self, orders_table, transport):
        """Should use strict comparisons by default."""
        sql = self._query({"after": "2024-01-01", "before": "2024-02-01"}, orders_table, transport).get_sql()
        assert sql == "((o.date_created > '2024-01-01 23:59:59' AND o.date_created < '2024-02-01 00:00:00'))"

    def test_relation_or(self, orders_table, transport):
        """Should join clauses with the requested relation."""
        sql = self._query(
            {
                "relation": "or",
                "clauses": [
                    {"column": "date_created", "before": "2024-01-01 00:00:00"},
                    {"column": "o.date_modified", "after": "2024-06-01 00:00:00"},
                ],
            },
            orders_table,
            transport,
        ).get_sql()
        assert sql == "(o.date_created < '2024-01-01 00:00:00' OR o.date_modified > '2024-06-01 00:00:00')"

    def test_unknown_column_dropped(self, orders_table, transport):
        """Should drop clauses on columns without date support."""
        sql = self._query({"column": "email", "after": "2024-01-01"}, orders_table, transport).get_sql()
        assert sql == ""

    def test_unknown_column_strict(self, orders_table, transport):
        """Should raise for unknown columns in strict mode."""
        with pytest.raises(MalformedArgumentError):
            self._query({"column": "email", "after": "2024-01-01"}, orders_table, transport, strict=True).get_sql()

    def test_bad_boundary_strict(self, orders_table, transport):
        """Should raise for unparseable boundaries in strict mode."""
        with pytest.raises(MalformedArgumentError):
            self._query({"after": "soon"}, orders_table, transport, strict=True).get_sql()
