"""Custom exception hierarchy for catalogsync.

Every error carries a stable ``kind`` string so callers at the API boundary
can render a structured failure instead of a raw transport exception.
"""

from __future__ import annotations

from dataclasses import dataclass


class CatalogSyncError(Exception):
    """Base exception for all catalogsync errors."""

    kind: str = "internal"


# ------------------------------------------------------------------
# Request errors: rejected synchronously, never retried
# ------------------------------------------------------------------


class NotFoundError(CatalogSyncError):
    """Raised when a datasource, job, collection, or point does not exist."""

    kind = "not_found"


class ConflictError(CatalogSyncError):
    """Raised when a datasource already has an active sync job (or a name is taken)."""

    kind = "conflict"


class SchemaConflictError(ConflictError):
    """Raised when a collection is re-created with a different vector size or distance."""

    kind = "schema_conflict"


class InvalidStateError(CatalogSyncError):
    """Raised when an operation is not valid for the current job/datasource status."""

    kind = "invalid_state"


class InvalidRequestError(CatalogSyncError):
    """Raised when request parameters are out of range or inconsistent."""

    kind = "invalid_request"


class CapabilityNotSupportedError(CatalogSyncError):
    """Raised when a store doesn't support a requested capability."""

    kind = "capability_not_supported"


# ------------------------------------------------------------------
# Transient marker
# ------------------------------------------------------------------


class TransientError(CatalogSyncError):
    """Mixin for I/O failures worth retrying (timeouts, 5xx, dropped connections)."""


# ------------------------------------------------------------------
# Row-level errors: recorded as SyncError, the job continues
# ------------------------------------------------------------------


class RowError(CatalogSyncError):
    """Base for failures confined to a single source row."""

    kind = "row_error"


class MalformedRowError(RowError):
    """Raised when a row lacks its id or cannot be turned into a point."""


class EmbeddingError(RowError):
    """Raised when the embedding provider fails for one input."""

    kind = "embedding_error"


class EmbeddingUnavailableError(EmbeddingError, TransientError):
    """Raised when the embedding provider timed out or returned a 5xx."""


class PointRejectedError(RowError):
    """Raised when the vector store refuses a point or a batch of points."""

    kind = "point_rejected"


# ------------------------------------------------------------------
# Systemic errors: abort the job
# ------------------------------------------------------------------


class SystemicError(CatalogSyncError):
    """Base for failures that make continuing a job pointless."""

    kind = "systemic"


class SourceError(SystemicError):
    """Raised when the relational source query fails."""

    kind = "source_error"


class SourceUnavailableError(SourceError, TransientError):
    """Raised when the relational source cannot be reached."""


class StoreError(SystemicError):
    """Raised on vector store failures other than per-point rejections."""

    kind = "store_error"


class StoreUnavailableError(StoreError, TransientError):
    """Raised when the vector store cannot be reached."""


class AuthenticationError(SystemicError):
    """Raised when credentials are rejected (provider, store, or webhook secret)."""

    kind = "authentication_error"


class DimensionMismatchError(SystemicError):
    """Raised when an embedding's length differs from the collection's vector size."""

    kind = "dimension_mismatch"


# ------------------------------------------------------------------
# Classification
# ------------------------------------------------------------------


class ClassifierError(CatalogSyncError):
    """Raised when the AI classifier fails or returns an unusable answer."""

    kind = "classifier_error"


@dataclass(frozen=True, slots=True)
class ErrorResult:
    """User-visible failure: a stable kind and a human-readable message."""

    kind: str
    message: str


def error_result(exc: BaseException) -> ErrorResult:
    """Map *exc* to an :class:`ErrorResult`."""
    if isinstance(exc, CatalogSyncError):
        return ErrorResult(kind=exc.kind, message=str(exc) or type(exc).__name__)
    return ErrorResult(kind="internal", message=f"{type(exc).__name__}: {exc}")
