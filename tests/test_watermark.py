"""Tests for watermark parsing, formatting and advancing."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from catalogsync.exceptions import MalformedRowError
from catalogsync.source.watermark import (
    advance,
    coerce_marker,
    format_watermark,
    parse_watermark,
)


class TestCoerceMarker:
    def test_timestamp_passthrough(self):
        ts = datetime(2024, 3, 1, 12, 30, tzinfo=UTC)
        assert coerce_marker("timestamp", ts) is ts

    def test_date_becomes_midnight(self):
        assert coerce_marker("timestamp", date(2024, 3, 1)) == datetime(2024, 3, 1)

    def test_iso_string(self):
        assert coerce_marker("timestamp", " 2024-03-01T12:30:00 ") == datetime(2024, 3, 1, 12, 30)

    @pytest.mark.parametrize("value", [None, "not a date", 17])
    def test_bad_timestamp(self, value):
        with pytest.raises(MalformedRowError):
            coerce_marker("timestamp", value)

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(42, 42), ("42", 42), (" -3 ", -3), (Decimal("7"), 7)],
    )
    def test_sequence(self, value, expected):
        assert coerce_marker("sequence", value) == expected

    @pytest.mark.parametrize("value", [True, Decimal("1.5"), "4.2", "abc", None])
    def test_bad_sequence(self, value):
        with pytest.raises(MalformedRowError):
            coerce_marker("sequence", value)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            coerce_marker("hash", 1)


class TestParseFormat:
    @pytest.mark.parametrize("raw", [None, ""])
    def test_empty_is_no_watermark(self, raw):
        assert parse_watermark("sequence", raw) is None

    def test_timestamp_round_trip(self):
        ts = datetime(2024, 3, 1, 12, 30, 15, tzinfo=UTC)
        assert parse_watermark("timestamp", format_watermark("timestamp", ts)) == ts

    def test_sequence_format(self):
        assert format_watermark("sequence", 12) == "12"
        assert parse_watermark("sequence", "12") == 12

    def test_format_rejects_mismatched_kind(self):
        with pytest.raises(TypeError):
            format_watermark("timestamp", 12)


class TestAdvance:
    def test_takes_later_marker(self):
        assert advance(3, 5) == 5

    def test_never_moves_backwards(self):
        assert advance(5, 3) == 5

    def test_none_handling(self):
        assert advance(None, 4) == 4
        assert advance(4, None) == 4
        assert advance(None, None) is None

    def test_naive_and_aware_timestamps_compare_as_utc(self):
        aware = datetime(2025, 1, 1, tzinfo=UTC)
        later = datetime(2025, 1, 2)
        earlier = datetime(2024, 12, 31, 23, 59)
        assert advance(aware, later) is later
        assert advance(aware, earlier) is aware
        assert advance(later, aware) is later
