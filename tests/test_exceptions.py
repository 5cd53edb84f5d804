"""Tests for the error taxonomy and ErrorResult mapping."""

from __future__ import annotations

import pytest

from catalogsync.exceptions import (
    AuthenticationError,
    CapabilityNotSupportedError,
    CatalogSyncError,
    ClassifierError,
    ConflictError,
    DimensionMismatchError,
    EmbeddingError,
    EmbeddingUnavailableError,
    ErrorResult,
    InvalidRequestError,
    InvalidStateError,
    MalformedRowError,
    NotFoundError,
    PointRejectedError,
    RowError,
    SchemaConflictError,
    SourceError,
    SourceUnavailableError,
    StoreError,
    StoreUnavailableError,
    SystemicError,
    TransientError,
    error_result,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        ("cls", "kind"),
        [
            (NotFoundError, "not_found"),
            (ConflictError, "conflict"),
            (SchemaConflictError, "schema_conflict"),
            (InvalidStateError, "invalid_state"),
            (InvalidRequestError, "invalid_request"),
            (CapabilityNotSupportedError, "capability_not_supported"),
            (EmbeddingError, "embedding_error"),
            (PointRejectedError, "point_rejected"),
            (SourceError, "source_error"),
            (StoreError, "store_error"),
            (AuthenticationError, "authentication_error"),
            (DimensionMismatchError, "dimension_mismatch"),
            (ClassifierError, "classifier_error"),
        ],
    )
    def test_kinds(self, cls, kind) -> None:
        assert cls.kind == kind
        assert issubclass(cls, CatalogSyncError)

    def test_row_errors(self) -> None:
        row_classes = (
            MalformedRowError,
            EmbeddingError,
            EmbeddingUnavailableError,
            PointRejectedError,
        )
        for cls in row_classes:
            assert issubclass(cls, RowError)
            assert not issubclass(cls, SystemicError)

    def test_systemic_errors(self) -> None:
        for cls in (SourceUnavailableError, StoreUnavailableError, AuthenticationError):
            assert issubclass(cls, SystemicError)

    def test_transient_errors(self) -> None:
        for cls in (EmbeddingUnavailableError, SourceUnavailableError, StoreUnavailableError):
            assert issubclass(cls, TransientError)
        assert not issubclass(AuthenticationError, TransientError)
        assert not issubclass(EmbeddingError, TransientError)

    def test_schema_conflict_is_conflict(self) -> None:
        with pytest.raises(ConflictError):
            raise SchemaConflictError("size mismatch")


class TestErrorResult:
    def test_catalog_error(self) -> None:
        assert error_result(NotFoundError("Datasource 'x' not found")) == ErrorResult(
            kind="not_found", message="Datasource 'x' not found"
        )

    def test_empty_message_uses_class_name(self) -> None:
        assert error_result(InvalidStateError()).message == "InvalidStateError"

    def test_unexpected_exception_is_internal(self) -> None:
        result = error_result(KeyError("codigo"))
        assert result.kind == "internal"
        assert result.message.startswith("KeyError")
