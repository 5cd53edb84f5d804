"""CatalogSyncAsync — async facade wiring datasources, sync jobs, registry and duplicates."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from catalogsync.config import SyncSettings
from catalogsync.datasources import DatasourceRepository
from catalogsync.dialect import get_dialect
from catalogsync.duplicates.detector import DuplicateDetector
from catalogsync.events import EventBus
from catalogsync.exceptions import InvalidStateError
from catalogsync.models.collections import CollectionRecord
from catalogsync.models.datasources import Datasource, DatasourceStatus
from catalogsync.models.jobs import ActiveJobSlot, JobType, SyncError, SyncJob
from catalogsync.registry import CollectionRegistry
from catalogsync.scheduler import SyncScheduler
from catalogsync.search.stores.local import LocalVectorStore
from catalogsync.search.types import Distance, HnswParams
from catalogsync.source.reader import SqlSourceReader
from catalogsync.sync.orchestrator import SyncOrchestrator
from catalogsync.validation import ExistenceValidator

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from catalogsync.duplicates.classifier import DuplicateClassifier
    from catalogsync.duplicates.rules import VariantRules
    from catalogsync.duplicates.types import DuplicateReport, SimilarProduct
    from catalogsync.models.jobs import JobStatus
    from catalogsync.scheduler import ScheduleInfo
    from catalogsync.search.filters import FilterExpression
    from catalogsync.search.protocols import EmbeddingProvider, VectorStore
    from catalogsync.search.types import CollectionInfo
    from catalogsync.source.reader import SourceReader
    from catalogsync.validation import ValidationResult

logger = logging.getLogger(__name__)

_DEFAULT_DATA_DIR = Path.home() / ".catalogsync"

_TABLES = (Datasource, SyncJob, SyncError, ActiveJobSlot, CollectionRecord)


class CatalogSyncAsync:
    """Async facade over the whole engine.

    Give it the metadata database (an engine, a session factory, or a URL),
    an embedding provider and a vector store; ``open()`` creates the
    ``catalog_*`` tables and wires the subsystems::

        async with CatalogSyncAsync(
            database_url="sqlite+aiosqlite:///catalog.db",
            embedding_provider=OpenAIEmbedding(),
            store=QdrantVectorStore(url="http://localhost:6333"),
        ) as catalog:
            ds = await catalog.create_datasource(name="erp", ...)
            job = await catalog.trigger_sync(ds.id, "full")
            await catalog.wait_for(job.id)

    Without a store a :class:`LocalVectorStore` persisted under *data_dir*
    is used.  Without an embedding provider the local sentence-transformers
    model is tried; when it is not installed, syncs and validation raise
    :class:`InvalidStateError`.
    """

    def __init__(
        self,
        *,
        engine: AsyncEngine | None = None,
        database_url: str | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
        dialect: str | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        store: VectorStore | None = None,
        source_reader: SourceReader | None = None,
        classifier: DuplicateClassifier | None = None,
        settings: SyncSettings | None = None,
        data_dir: str | Path | None = None,
    ) -> None:
        given = [x for x in (engine, database_url, session_factory) if x is not None]
        if len(given) > 1:
            raise ValueError("Provide engine, database_url, or session_factory, not several")

        self._data_dir = Path(data_dir) if data_dir else _DEFAULT_DATA_DIR
        self._default_database = not given
        if not given:
            database_url = f"sqlite+aiosqlite:///{self._data_dir / 'catalog.db'}"

        self._engine = engine
        self._database_url = database_url
        self._owns_engine = database_url is not None
        self._session_factory = session_factory
        self._dialect = dialect
        self._settings = settings or SyncSettings()
        self._event_bus = EventBus()

        self._embedding = embedding_provider
        self._store = store
        self._source = source_reader
        self._classifier = classifier

        self._datasources: DatasourceRepository | None = None
        self._registry: CollectionRegistry | None = None
        self._orchestrator: SyncOrchestrator | None = None
        self._detector: DuplicateDetector | None = None
        self._validator: ExistenceValidator | None = None
        self._scheduler: SyncScheduler | None = None
        self._opened = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create tables, connect the store and wire the subsystems.  Idempotent."""
        if self._opened:
            return
        if self._closed:
            raise InvalidStateError("CatalogSyncAsync is closed")

        if self._database_url is not None:
            if self._default_database:
                self._data_dir.mkdir(parents=True, exist_ok=True)
            self._engine = create_async_engine(self._database_url)
        if self._engine is not None:
            await self._create_tables(self._engine)
            self._session_factory = async_sessionmaker(
                self._engine, class_=AsyncSession, expire_on_commit=False
            )
            dialect = self._dialect or get_dialect(self._engine)
        else:
            dialect = self._dialect or "sqlite"
        assert self._session_factory is not None

        if self._store is None:
            self._store = LocalVectorStore(data_dir=self._data_dir / "vectors")
        await self._store.connect()

        if self._embedding is None:
            try:
                from catalogsync.search.providers.sentence_transformers import (
                    SentenceTransformerEmbedding,
                )

                self._embedding = SentenceTransformerEmbedding()
            except ImportError:
                logger.debug("No embedding provider available; sync and validation disabled")

        if self._source is None:
            self._source = SqlSourceReader()

        self._datasources = DatasourceRepository(self._session_factory)
        self._registry = CollectionRegistry(self._session_factory, self._store, dialect=dialect)
        self._detector = DuplicateDetector(
            self._store, settings=self._settings, classifier=self._classifier
        )
        if self._embedding is not None:
            self._orchestrator = SyncOrchestrator(
                self._session_factory,
                source_reader=self._source,
                embedding_provider=self._embedding,
                store=self._store,
                registry=self._registry,
                settings=self._settings,
                event_bus=self._event_bus,
            )
            self._validator = ExistenceValidator(
                self._store, self._embedding, settings=self._settings
            )
            self._scheduler = SyncScheduler(
                self._orchestrator, self._datasources, settings=self._settings
            )
        self._opened = True

    async def _create_tables(self, engine: AsyncEngine) -> None:
        async with engine.begin() as conn:
            for model in _TABLES:
                table = model.__table__  # type: ignore[attr-defined]
                await conn.run_sync(lambda c, t=table: t.create(c, checkfirst=True))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._scheduler is not None:
            await self._scheduler.stop()
        if self._orchestrator is not None:
            await self._orchestrator.close()
        if self._source is not None:
            await self._source.close()
        if self._store is not None and self._opened:
            await self._store.close()
        for client in (self._embedding, self._classifier):
            close = getattr(client, "close", None)
            if close is not None:
                await close()
        if self._owns_engine and self._engine is not None:
            await self._engine.dispose()

    async def __aenter__(self) -> CatalogSyncAsync:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Datasources
    # ------------------------------------------------------------------

    async def create_datasource(self, **fields: Any) -> Datasource:
        return await self._require(self._datasources).create(**fields)

    async def get_datasource(self, datasource_id: str) -> Datasource:
        return await self._require(self._datasources).get(datasource_id)

    async def get_datasource_by_name(self, name: str) -> Datasource:
        return await self._require(self._datasources).get_by_name(name)

    async def list_datasources(
        self, *, status: DatasourceStatus | str | None = None
    ) -> list[Datasource]:
        return await self._require(self._datasources).list(status=status)

    async def update_datasource(self, datasource_id: str, **changes: Any) -> Datasource:
        return await self._require(self._datasources).update(datasource_id, **changes)

    async def pause_datasource(self, datasource_id: str) -> Datasource:
        return await self._require(self._datasources).set_status(
            datasource_id, DatasourceStatus.PAUSED
        )

    async def resume_datasource(self, datasource_id: str) -> Datasource:
        return await self._require(self._datasources).set_status(
            datasource_id, DatasourceStatus.ACTIVE
        )

    async def delete_datasource(self, datasource_id: str) -> None:
        await self._require(self._datasources).delete(datasource_id)

    # ------------------------------------------------------------------
    # Sync jobs
    # ------------------------------------------------------------------

    async def trigger_sync(
        self,
        datasource_id: str,
        job_type: JobType | str = JobType.FULL,
        *,
        force_full: bool = False,
        record_ids: list[str] | None = None,
    ) -> SyncJob:
        return await self._sync().trigger_sync(
            datasource_id, job_type, force_full=force_full, record_ids=record_ids
        )

    async def trigger_webhook_sync(
        self, datasource_id: str, record_ids: list[str], *, secret: str | None
    ) -> SyncJob:
        return await self._sync().trigger_webhook_sync(datasource_id, record_ids, secret=secret)

    async def cancel_job(self, job_id: str) -> SyncJob:
        return await self._sync().cancel_job(job_id)

    async def get_job(self, job_id: str) -> SyncJob:
        return await self._sync().get_job(job_id)

    async def list_jobs(
        self,
        *,
        datasource_id: str | None = None,
        status: JobStatus | str | None = None,
        limit: int = 50,
    ) -> list[SyncJob]:
        return await self._sync().list_jobs(datasource_id=datasource_id, status=status, limit=limit)

    async def get_job_errors(self, job_id: str, *, limit: int | None = None) -> list[SyncError]:
        return await self._sync().get_job_errors(job_id, limit=limit)

    async def retry_errors(self, job_id: str) -> SyncJob:
        return await self._sync().retry_errors(job_id)

    async def wait_for(self, job_id: str, timeout: float | None = None) -> SyncJob:
        return await self._sync().wait_for(job_id, timeout)

    async def fail_stale_jobs(self, older_than: float | None = None) -> int:
        return await self._sync().fail_stale_jobs(older_than)

    async def purge_finished_jobs(self, days_to_keep: int = 30) -> int:
        return await self._sync().purge_finished_jobs(days_to_keep)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def set_sync_schedule(self, datasource_id: str, expression: str | None) -> Datasource:
        """Set (or clear, with ``None``) the cron that starts full syncs of a datasource."""
        return await self.update_datasource(datasource_id, sync_schedule=expression)

    def start_scheduler(self, poll_interval: float | None = None) -> None:
        """Run scheduled syncs and job housekeeping in the background until :meth:`close`."""
        self._schedule().start(poll_interval)

    async def stop_scheduler(self) -> None:
        await self._schedule().stop()

    async def run_scheduled(self, now: datetime | None = None) -> list[SyncJob]:
        """Check the crons once; return the sync jobs started."""
        return await self._schedule().tick(now)

    async def scheduled_syncs(self) -> list[ScheduleInfo]:
        return await self._schedule().scheduled()

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def create_collection(
        self,
        name: str,
        vector_size: int | None = None,
        distance: Distance | str | None = None,
        hnsw: HnswParams | None = None,
    ) -> CollectionRecord:
        """Create (or confirm) a collection; *vector_size* defaults to the embedding size."""
        if vector_size is None:
            vector_size = self._require(self._embedding).dimensions
        return await self._require(self._registry).ensure_collection(
            name,
            vector_size,
            distance or self._settings.default_distance,
            hnsw or self._settings.hnsw,
        )

    async def get_collection(self, name: str) -> CollectionRecord:
        record: CollectionRecord = await self._require(self._registry).get_collection(name)
        return record

    async def list_collections(self) -> list[CollectionRecord]:
        return await self._require(self._registry).list_collections()

    async def collection_info(self, name: str) -> CollectionInfo | None:
        return await self._require(self._registry).store_info(name)

    async def refresh_collection_stats(self, name: str) -> CollectionRecord:
        return await self._require(self._registry).refresh_stats(name)

    async def delete_collection(self, name: str) -> None:
        await self._require(self._registry).delete_collection(name)

    # ------------------------------------------------------------------
    # Duplicates and validation
    # ------------------------------------------------------------------

    async def detect_duplicates(
        self,
        collection: str,
        similarity_threshold: float | None = None,
        limit: int | None = None,
        use_ai_classification: bool = False,
        filters: dict[str, str | list[str]] | FilterExpression | None = None,
        rules: VariantRules | None = None,
    ) -> DuplicateReport:
        return await self._require(self._detector).detect_duplicates(
            collection,
            similarity_threshold=similarity_threshold,
            limit=limit,
            use_ai_classification=use_ai_classification,
            filters=filters,
            rules=rules,
        )

    async def find_similar_products(
        self,
        collection: str,
        product_id: str,
        threshold: float | None = None,
        limit: int = 20,
    ) -> list[SimilarProduct]:
        return await self._require(self._detector).find_similar_products(
            collection, product_id, threshold=threshold, limit=limit
        )

    async def get_filter_values(self, collection: str, fields: list[str]) -> dict[str, list[str]]:
        return await self._require(self._detector).get_filter_values(collection, fields)

    async def validate_product_exists(
        self,
        collection: str,
        descripcion: str,
        marca: str | None = None,
        modelo: str | None = None,
        similarity_threshold: float | None = None,
    ) -> ValidationResult:
        validator: ExistenceValidator = self._require(
            self._validator, "validation needs an embedding provider"
        )
        return await validator.validate_product_exists(
            collection,
            descripcion,
            marca=marca,
            modelo=modelo,
            similarity_threshold=similarity_threshold,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    @property
    def store(self) -> VectorStore | None:
        return self._store

    @property
    def scheduler(self) -> SyncScheduler | None:
        return self._scheduler

    @property
    def session_factory(self) -> Callable[..., AsyncSession] | None:
        return self._session_factory

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _sync(self) -> SyncOrchestrator:
        return self._require(self._orchestrator, "sync jobs need an embedding provider")

    def _schedule(self) -> SyncScheduler:
        return self._require(self._scheduler, "scheduled syncs need an embedding provider")

    def _require(self, component: Any, what: str = "component not configured") -> Any:
        if not self._opened:
            msg = "CatalogSyncAsync is not open; call open() first"
            raise InvalidStateError(msg)
        if component is None:
            msg = f"Not available: {what}"
            raise InvalidStateError(msg)
        return component
