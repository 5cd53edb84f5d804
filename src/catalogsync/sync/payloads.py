"""Row → point mapping: stable ids, embedding text, payloads."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from catalogsync.exceptions import MalformedRowError

if TYPE_CHECKING:
    from catalogsync.models.datasources import Datasource
    from catalogsync.source.watermark import Marker

CATALOG_NAMESPACE = uuid.UUID("b3c3e1c0-4d3e-4b3a-9c3e-1c0d3e4b3a9c")
"""uuid5 namespace for point ids; changing it orphans every existing point."""

SOURCE_ID_KEY = "_source_id"
DATASOURCE_KEY = "_datasource_id"
MARKER_KEY = "_change_marker"

EMBEDDING_TEXT_SEPARATOR = " | "


@dataclass(frozen=True, slots=True)
class PreparedRow:
    """A source row ready to embed.

    Attributes:
        record_id: Stable source-record identifier (stringified id column).
        point_id: Deterministic point id derived from ``record_id``.
        text: Text sent to the embedding provider.
        payload: Payload stored with the point.
        marker: Parsed change marker, ``None`` for rows read by id.
    """

    record_id: str
    point_id: str
    text: str
    payload: dict[str, Any]
    marker: Marker | None = None


def point_id_for(record_id: str) -> str:
    """Return the point id for *record_id*; identical across runs and processes."""
    return str(uuid.uuid5(CATALOG_NAMESPACE, record_id))


def record_id_of(datasource: Datasource, row: dict[str, Any]) -> str:
    """Return the stringified id column of *row*.

    Raises:
        MalformedRowError: if the id column is missing or blank.
    """
    value = row.get(datasource.id_field)
    record_id = str(value).strip() if value is not None else ""
    if not record_id:
        msg = f"row has no value in id column {datasource.id_field!r}"
        raise MalformedRowError(msg)
    return record_id


def collapse_whitespace(value: Any) -> str:
    return " ".join(str(value).split())


def embedding_text(row: dict[str, Any], fields: list[str]) -> str:
    """Join the non-empty *fields* of *row* with :data:`EMBEDDING_TEXT_SEPARATOR`.

    Raises:
        MalformedRowError: if none of the fields has text.
    """
    parts = [collapse_whitespace(row[f]) for f in fields if row.get(f) is not None]
    parts = [p for p in parts if p]
    if not parts:
        msg = f"row has no text in embedding fields {fields!r}"
        raise MalformedRowError(msg)
    return EMBEDDING_TEXT_SEPARATOR.join(parts)


def payload_value(value: Any) -> Any:
    """Coerce a column value to something every vector store can store as JSON."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return datetime.combine(value, time.min).isoformat()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return None
    if isinstance(value, (list, tuple)):
        return [payload_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): payload_value(v) for k, v in value.items()}
    return str(value)


def build_payload(
    datasource: Datasource,
    row: dict[str, Any],
    record_id: str,
    marker: Marker | None = None,
) -> dict[str, Any]:
    """Map *row* through ``field_mapping`` (every column when empty) and tag it."""
    mapping: dict[str, Any] = datasource.field_mapping or {col: col for col in row}
    payload = {
        str(target): payload_value(row[source])
        for source, target in mapping.items()
        if source in row
    }
    payload[SOURCE_ID_KEY] = record_id
    payload[DATASOURCE_KEY] = datasource.id
    if marker is not None:
        payload[MARKER_KEY] = payload_value(marker)
    return payload


def prepare_row(
    datasource: Datasource,
    row: dict[str, Any],
    marker: Marker | None = None,
) -> PreparedRow:
    """Turn one source row into a :class:`PreparedRow`."""
    record_id = record_id_of(datasource, row)
    return PreparedRow(
        record_id=record_id,
        point_id=point_id_for(record_id),
        text=embedding_text(row, datasource.embedding_fields),
        payload=build_payload(datasource, row, record_id, marker),
        marker=marker,
    )
