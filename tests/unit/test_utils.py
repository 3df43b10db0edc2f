"""
Tests for the shared key, number and timestamp helpers.
"""

from datetime import datetime, timezone

import pytest

from core.utils import normalize_key, parse_timestamp, to_float, to_iso, unique_first


class TestParseTimestamp:
    """Tests for tolerant ISO-8601 parsing."""

    def test_z_suffix_and_offsets(self):
        expected = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)
        assert parse_timestamp("2026-02-10T12:00:00.000Z") == expected
        assert parse_timestamp("2026-02-10T14:00:00+02:00") == expected
        assert parse_timestamp("2026-02-10T12:00:00") == expected

    @pytest.mark.parametrize("value", [
        None, "", "   ", "yesterday", 1700000000, "2026-13-40T00:00:00Z",
        "0001-01-01T00:00:00+05:00",
        "9999-12-31T23:59:59-05:00",
    ])
    def test_unusable_values_are_none(self, value):
        assert parse_timestamp(value) is None

    def test_iso_round_trip_keeps_four_digit_year(self):
        early = datetime(1, 1, 1, tzinfo=timezone.utc)
        assert to_iso(early) == "0001-01-01T00:00:00.000Z"
        assert parse_timestamp(to_iso(early)) == early


class TestToFloat:
    """Tests for numeric coercion."""

    def test_numbers_and_strings(self):
        assert to_float(3) == 3.0
        assert to_float("2.5") == 2.5

    @pytest.mark.parametrize("value", [True, None, "abc", float("nan"), float("inf"), 10 ** 400])
    def test_unusable_values_use_default(self, value):
        assert to_float(value, -1.0) == -1.0


class TestKeys:

    def test_normalize_key(self):
        assert normalize_key("  Red-Hoodie ") == "red-hoodie"
        assert normalize_key(None) == ""

    def test_unique_first(self):
        assert unique_first(["a", "", "b", "a", "c"], limit=2) == ["a", "b"]
