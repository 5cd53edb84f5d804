"""Watermarks: parse, format and compare change markers.

A watermark is either a timestamp or a monotonically increasing integer,
depending on the datasource's ``watermark_kind``.  It is stored as text on
the datasource row and parsed back into a comparable Python value.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from decimal import Decimal
from typing import Any

from catalogsync.exceptions import MalformedRowError
from catalogsync.models.datasources import WatermarkKind

Marker = datetime | int
"""A parsed change marker."""


def parse_watermark(kind: WatermarkKind | str, raw: str | None) -> Marker | None:
    """Parse a stored watermark string.  ``None`` / empty means "no watermark"."""
    if raw is None or raw == "":
        return None
    return coerce_marker(kind, raw)


def format_watermark(kind: WatermarkKind | str, marker: Marker) -> str:
    """Serialize *marker* for storage on the datasource row."""
    if WatermarkKind(kind) == WatermarkKind.TIMESTAMP:
        if not isinstance(marker, datetime):
            msg = f"timestamp watermark expected, got {marker!r}"
            raise TypeError(msg)
        return marker.isoformat()
    return str(int(marker))


def coerce_marker(kind: WatermarkKind | str, value: Any) -> Marker:
    """Turn a raw column value into a comparable marker.

    Timestamps keep the naive/aware flavour they were read with, so they
    can be bound straight back into the source query.

    Raises:
        MalformedRowError: if *value* cannot be read as a marker of *kind*.
    """
    kind = WatermarkKind(kind)
    if value is None:
        msg = "row has no change marker"
        raise MalformedRowError(msg)

    if kind == WatermarkKind.TIMESTAMP:
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime.combine(value, time.min)
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.strip())
            except ValueError:
                pass
        msg = f"change marker {value!r} is not a timestamp"
        raise MalformedRowError(msg)

    if isinstance(value, bool):
        msg = f"change marker {value!r} is not a sequence number"
        raise MalformedRowError(msg)
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    msg = f"change marker {value!r} is not a sequence number"
    raise MalformedRowError(msg)


def advance(current: Marker | None, candidate: Marker | None) -> Marker | None:
    """Return the later of two markers; watermarks never move backwards.

    Naive timestamps are read as UTC for the comparison, so a stored
    offset-aware watermark can be compared with a naive source column.
    The winning marker is returned unchanged.
    """
    if candidate is None:
        return current
    if current is None:
        return candidate
    return candidate if comparable(candidate) > comparable(current) else current


def comparable(marker: Marker) -> Marker:
    """Return *marker* in a form that orders across naive and aware timestamps."""
    if isinstance(marker, datetime) and marker.tzinfo is None:
        return marker.replace(tzinfo=UTC)
    return marker
