"""Sync pipeline: job orchestration and row → point mapping."""

from catalogsync.sync.orchestrator import SyncOrchestrator
from catalogsync.sync.payloads import (
    CATALOG_NAMESPACE,
    DATASOURCE_KEY,
    EMBEDDING_TEXT_SEPARATOR,
    MARKER_KEY,
    SOURCE_ID_KEY,
    PreparedRow,
    build_payload,
    embedding_text,
    point_id_for,
    prepare_row,
)

__all__ = [
    "CATALOG_NAMESPACE",
    "DATASOURCE_KEY",
    "EMBEDDING_TEXT_SEPARATOR",
    "MARKER_KEY",
    "SOURCE_ID_KEY",
    "PreparedRow",
    "SyncOrchestrator",
    "build_payload",
    "embedding_text",
    "point_id_for",
    "prepare_row",
]
