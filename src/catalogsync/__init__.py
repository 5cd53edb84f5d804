"""catalogsync: keep a vector-search product catalog in sync with relational sources.

Incremental, resumable sync jobs, a collection registry, near-duplicate
detection and pre-insertion existence checks, behind one async facade.
"""

__version__ = "0.1.0"

from catalogsync._catalog import CatalogSyncAsync
from catalogsync.config import SyncSettings
from catalogsync.duplicates import (
    DuplicateCategory,
    DuplicateClassification,
    DuplicateClassifier,
    DuplicateDetector,
    DuplicateGroup,
    DuplicateReport,
    MergeRecommendation,
    SimilarProduct,
    VariantRules,
)
from catalogsync.events import EventBus, EventType, SyncEvent
from catalogsync.exceptions import (
    AuthenticationError,
    CapabilityNotSupportedError,
    CatalogSyncError,
    ConflictError,
    DimensionMismatchError,
    ErrorResult,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    SchemaConflictError,
    error_result,
)
from catalogsync.models import (
    CollectionRecord,
    Datasource,
    DatasourceStatus,
    JobStatus,
    JobType,
    SyncError,
    SyncJob,
)
from catalogsync.scheduler import ScheduleInfo, SyncScheduler
from catalogsync.search.filters import (
    FilterExpression,
    and_,
    eq,
    exists,
    from_mapping,
    gt,
    gte,
    in_,
    lt,
    lte,
    ne,
    not_in,
    or_,
)
from catalogsync.search.protocols import (
    EmbeddingProvider,
    SupportsCollectionLifecycle,
    SupportsMetadataFilter,
    VectorStore,
)
from catalogsync.search.types import (
    CollectionConfig,
    CollectionInfo,
    Distance,
    HnswParams,
    VectorEntry,
    VectorSearchResult,
)
from catalogsync.source.reader import SourceReader, SqlSourceReader
from catalogsync.validation import ExistenceValidator, Recommendation, ValidationResult

__all__ = [
    "AuthenticationError",
    "CapabilityNotSupportedError",
    "CatalogSyncAsync",
    "CatalogSyncError",
    "CollectionConfig",
    "CollectionInfo",
    "CollectionRecord",
    "ConflictError",
    "Datasource",
    "DatasourceStatus",
    "DimensionMismatchError",
    "Distance",
    "DuplicateCategory",
    "DuplicateClassification",
    "DuplicateClassifier",
    "DuplicateDetector",
    "DuplicateGroup",
    "DuplicateReport",
    "EmbeddingProvider",
    "ErrorResult",
    "EventBus",
    "EventType",
    "ExistenceValidator",
    "FilterExpression",
    "HnswParams",
    "InvalidRequestError",
    "InvalidStateError",
    "JobStatus",
    "JobType",
    "MergeRecommendation",
    "NotFoundError",
    "Recommendation",
    "ScheduleInfo",
    "SchemaConflictError",
    "SimilarProduct",
    "SourceReader",
    "SqlSourceReader",
    "SupportsCollectionLifecycle",
    "SupportsMetadataFilter",
    "SyncError",
    "SyncEvent",
    "SyncJob",
    "SyncScheduler",
    "SyncSettings",
    "ValidationResult",
    "VariantRules",
    "VectorEntry",
    "VectorSearchResult",
    "VectorStore",
    "__version__",
    "and_",
    "eq",
    "error_result",
    "exists",
    "from_mapping",
    "gt",
    "gte",
    "in_",
    "lt",
    "lte",
    "ne",
    "not_in",
    "or_",
]
