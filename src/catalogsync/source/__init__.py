"""Source side: relational readers and watermark handling."""

from catalogsync.source.reader import Row, SourceReader, SqlSourceReader, resolve_connection_url
from catalogsync.source.watermark import (
    Marker,
    advance,
    coerce_marker,
    comparable,
    format_watermark,
    parse_watermark,
)

__all__ = [
    "Marker",
    "Row",
    "SourceReader",
    "SqlSourceReader",
    "advance",
    "coerce_marker",
    "comparable",
    "format_watermark",
    "parse_watermark",
    "resolve_connection_url",
]
