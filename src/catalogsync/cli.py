"""catalogsync command line — manage datasources, run syncs, inspect collections and duplicates.

Every command prints one JSON document on stdout.  Failures print
``{"error": {"kind": ..., "message": ...}}`` and exit with status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import sys
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlmodel import SQLModel

from catalogsync._catalog import CatalogSyncAsync
from catalogsync.config import SyncSettings
from catalogsync.dto import (
    DetectDuplicatesDto,
    TriggerSyncDto,
    ValidateProductExistsDto,
    WebhookSyncDto,
    parse_dto,
)
from catalogsync.exceptions import (
    CatalogSyncError,
    ErrorResult,
    InvalidRequestError,
    NotFoundError,
    error_result,
)
from catalogsync.search.types import HnswParams

if TYPE_CHECKING:
    from collections.abc import Sequence

    from catalogsync.duplicates.classifier import DuplicateClassifier
    from catalogsync.models.datasources import Datasource
    from catalogsync.search.protocols import EmbeddingProvider, VectorStore

logger = logging.getLogger(__name__)

_REDACTED = "***"


# ------------------------------------------------------------------
# Parser
# ------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalogsync",
        description="Keep a vector-search product catalog in sync with relational sources.",
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get("CATALOGSYNC_DATABASE_URL"),
        help="SQLAlchemy async URL of the metadata database (env CATALOGSYNC_DATABASE_URL)",
    )
    parser.add_argument(
        "--data-dir",
        default=os.environ.get("CATALOGSYNC_DATA_DIR"),
        help="Directory for the default SQLite database and local vector store",
    )
    parser.add_argument(
        "--embedding",
        choices=["local", "openai"],
        default=os.environ.get("CATALOGSYNC_EMBEDDING", "local"),
        help="Embedding provider: sentence-transformers (local) or OpenAI",
    )
    parser.add_argument("--embedding-model", default=None, help="Embedding model name")
    parser.add_argument(
        "--store",
        choices=["local", "qdrant"],
        default=os.environ.get("CATALOGSYNC_STORE", "local"),
        help="Vector store: embedded usearch (local) or Qdrant",
    )
    parser.add_argument("--qdrant-url", default=None, help="Qdrant URL (env QDRANT_URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")

    commands = parser.add_subparsers(dest="group", required=True)
    _add_datasource_commands(commands)
    _add_sync_commands(commands)
    _add_job_commands(commands)
    _add_duplicate_commands(commands)
    _add_collection_commands(commands)
    _add_scheduler_commands(commands)

    validate = commands.add_parser("validate", help="Check whether a product already exists")
    validate.add_argument("collection")
    validate.add_argument("descripcion")
    validate.add_argument("--marca", default=None)
    validate.add_argument("--modelo", default=None)
    validate.add_argument("--threshold", type=float, default=0.90)
    return parser


def _add_datasource_commands(commands: Any) -> None:
    group = commands.add_parser("datasource", help="Manage datasources")
    sub = group.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Register a datasource")
    add.add_argument("--name", required=True)
    add.add_argument("--kind", default="postgresql")
    add.add_argument("--connection-url", required=True)
    add.add_argument("--credentials-env", default=None)
    selector = add.add_mutually_exclusive_group(required=True)
    selector.add_argument("--table", dest="table_name")
    selector.add_argument("--query")
    add.add_argument("--schema", dest="schema_name", default=None)
    add.add_argument("--id-field", default="id")
    add.add_argument("--marker-field", dest="change_marker_field", default="updated_at")
    add.add_argument("--watermark-kind", default="timestamp")
    add.add_argument(
        "--embedding-fields", required=True, help="Comma-separated columns to embed"
    )
    add.add_argument(
        "--map",
        dest="field_mapping",
        action="append",
        default=[],
        metavar="COLUMN=KEY",
        help="Copy COLUMN into the payload as KEY (repeatable; default copies every column)",
    )
    add.add_argument("--collection", dest="collection_name", required=True)
    add.add_argument("--batch-size", type=int, default=None)
    add.add_argument("--batch-delay-ms", type=int, default=None)
    add.add_argument("--webhook-secret", default=None)
    add.add_argument(
        "--schedule", dest="sync_schedule", default=None, help="Cron for scheduled full syncs"
    )
    add.add_argument("--description", default="")

    list_ = sub.add_parser("list", help="List datasources")
    list_.add_argument("--status", default=None)

    for name, help_text in (
        ("show", "Show one datasource"),
        ("pause", "Pause syncing a datasource"),
        ("resume", "Resume syncing a datasource"),
        ("remove", "Delete a datasource without sync history"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("datasource", help="Datasource id or name")

    schedule = sub.add_parser("schedule", help="Set or clear the scheduled sync cron")
    schedule.add_argument("datasource", help="Datasource id or name")
    schedule.add_argument("cron", nargs="?", default=None, help='e.g. "0 3 * * *"')
    schedule.add_argument("--clear", action="store_true", help="Stop scheduled syncs")


def _add_sync_commands(commands: Any) -> None:
    group = commands.add_parser("sync", help="Run a sync job in the foreground")
    sub = group.add_subparsers(dest="command", required=True)
    for name in ("full", "incremental", "webhook"):
        cmd = sub.add_parser(name, help=f"Run a {name} sync")
        cmd.add_argument("datasource", help="Datasource id or name")
        cmd.add_argument("--timeout", type=float, default=None, help="Seconds to wait")
        if name == "incremental":
            cmd.add_argument("--force-full", action="store_true")
        if name == "webhook":
            cmd.add_argument("records", nargs="+", help="Record ids to re-sync")
            cmd.add_argument("--secret", default=None, help="Datasource webhook secret")


def _add_job_commands(commands: Any) -> None:
    group = commands.add_parser("jobs", help="Inspect and control sync jobs")
    sub = group.add_subparsers(dest="command", required=True)

    list_ = sub.add_parser("list", help="List jobs, newest first")
    list_.add_argument("--datasource", default=None)
    list_.add_argument("--status", default=None)
    list_.add_argument("--limit", type=int, default=50)

    for name in ("show", "cancel"):
        sub.add_parser(name).add_argument("job_id")

    errors = sub.add_parser("errors", help="Show per-record errors of a job")
    errors.add_argument("job_id")
    errors.add_argument("--limit", type=int, default=None)

    retry = sub.add_parser("retry", help="Re-sync the records that failed in a job")
    retry.add_argument("job_id")
    retry.add_argument("--timeout", type=float, default=None)

    stale = sub.add_parser("stale", help="Fail active jobs that stopped making progress")
    stale.add_argument("--older-than", type=float, default=None, help="Seconds")

    purge = sub.add_parser("purge", help="Delete old completed and cancelled jobs")
    purge.add_argument("--days", type=int, default=30)


def _add_duplicate_commands(commands: Any) -> None:
    group = commands.add_parser("duplicates", help="Find near-duplicate products")
    sub = group.add_subparsers(dest="command", required=True)

    detect = sub.add_parser("detect", help="Report duplicate groups of a collection")
    detect.add_argument("collection")
    detect.add_argument("--threshold", type=float, default=0.85)
    detect.add_argument("--limit", type=int, default=None)
    detect.add_argument("--ai", action="store_true", help="Classify groups with OpenAI")
    detect.add_argument(
        "--filter",
        dest="filters",
        action="append",
        default=[],
        metavar="FIELD=VALUE[,VALUE]",
        help="Restrict to payload values (repeatable)",
    )
    detect.add_argument("--rules", type=Path, default=None, help="Variant rules JSON file")

    similar = sub.add_parser("similar", help="Neighbors of one point")
    similar.add_argument("collection")
    similar.add_argument("product_id")
    similar.add_argument("--threshold", type=float, default=0.90)
    similar.add_argument("--limit", type=int, default=20)


def _add_collection_commands(commands: Any) -> None:
    group = commands.add_parser("collections", help="Manage vector collections")
    sub = group.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List registered collections")
    create = sub.add_parser("create", help="Create a collection")
    create.add_argument("name")
    create.add_argument("--size", type=int, default=None, help="Vector size (default: model)")
    create.add_argument("--distance", default="Cosine")
    create.add_argument("--hnsw-m", type=int, default=16)
    create.add_argument("--hnsw-ef", type=int, default=100)
    for name in ("show", "delete", "refresh"):
        sub.add_parser(name).add_argument("name")


def _add_scheduler_commands(commands: Any) -> None:
    group = commands.add_parser("scheduler", help="Run scheduled syncs and job housekeeping")
    sub = group.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Check crons until interrupted")
    run.add_argument("--poll-interval", type=float, default=None, help="Seconds between checks")
    run.add_argument(
        "--once", action="store_true", help="Check once and wait for the syncs it starts"
    )
    run.add_argument("--timeout", type=float, default=None, help="Seconds to wait per job")

    sub.add_parser("list", help="Show registered crons and their next run")


# ------------------------------------------------------------------
# Wiring
# ------------------------------------------------------------------


def _embedding_provider(args: argparse.Namespace) -> EmbeddingProvider:
    if args.embedding == "openai":
        from catalogsync.search.providers.openai import OpenAIEmbedding

        if args.embedding_model:
            return OpenAIEmbedding(model=args.embedding_model)
        return OpenAIEmbedding()

    from catalogsync.search.providers.sentence_transformers import SentenceTransformerEmbedding

    if args.embedding_model:
        return SentenceTransformerEmbedding(args.embedding_model)
    return SentenceTransformerEmbedding()


def _vector_store(args: argparse.Namespace) -> VectorStore | None:
    if args.store == "qdrant":
        from catalogsync.search.stores.qdrant import QdrantVectorStore

        return QdrantVectorStore(url=args.qdrant_url)
    return None


def _classifier(args: argparse.Namespace) -> DuplicateClassifier | None:
    if getattr(args, "ai", False):
        from catalogsync.duplicates.classifier import OpenAIDuplicateClassifier

        return OpenAIDuplicateClassifier()
    return None


def build_catalog(args: argparse.Namespace) -> CatalogSyncAsync:
    return CatalogSyncAsync(
        database_url=args.database_url,
        data_dir=args.data_dir,
        embedding_provider=_embedding_provider(args),
        store=_vector_store(args),
        classifier=_classifier(args),
        settings=SyncSettings.from_env(),
    )


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


async def _resolve_datasource(catalog: CatalogSyncAsync, ref: str) -> Datasource:
    try:
        return await catalog.get_datasource(ref)
    except NotFoundError:
        return await catalog.get_datasource_by_name(ref)


def _pairs(items: list[str], option: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            msg = f"{option} expects KEY=VALUE, got {item!r}"
            raise InvalidRequestError(msg)
        pairs[key.strip()] = value.strip()
    return pairs


async def _datasource_command(catalog: CatalogSyncAsync, args: argparse.Namespace) -> Any:
    if args.command == "add":
        fields: dict[str, Any] = {
            "name": args.name,
            "description": args.description,
            "kind": args.kind,
            "connection_url": args.connection_url,
            "credentials_env": args.credentials_env,
            "table_name": args.table_name,
            "schema_name": args.schema_name,
            "query": args.query,
            "id_field": args.id_field,
            "change_marker_field": args.change_marker_field,
            "watermark_kind": args.watermark_kind,
            "embedding_fields": [f.strip() for f in args.embedding_fields.split(",") if f.strip()],
            "field_mapping": _pairs(args.field_mapping, "--map"),
            "collection_name": args.collection_name,
            "batch_size": args.batch_size,
            "batch_delay_ms": args.batch_delay_ms,
            "webhook_secret": args.webhook_secret,
            "sync_schedule": args.sync_schedule,
        }
        return await catalog.create_datasource(**fields)
    if args.command == "list":
        return await catalog.list_datasources(status=args.status)

    ds = await _resolve_datasource(catalog, args.datasource)
    if args.command == "show":
        return ds
    if args.command == "pause":
        return await catalog.pause_datasource(ds.id)
    if args.command == "resume":
        return await catalog.resume_datasource(ds.id)
    if args.command == "schedule":
        if args.clear == (args.cron is not None):
            msg = "schedule expects either a cron expression or --clear"
            raise InvalidRequestError(msg)
        return await catalog.set_sync_schedule(ds.id, args.cron)
    await catalog.delete_datasource(ds.id)
    return {"deleted": ds.id}


async def _sync_command(catalog: CatalogSyncAsync, args: argparse.Namespace) -> Any:
    ds = await _resolve_datasource(catalog, args.datasource)
    if args.command == "webhook":
        request = parse_dto(WebhookSyncDto, {"codes": args.records})
        if args.secret is not None:
            job = await catalog.trigger_webhook_sync(ds.id, request.codes, secret=args.secret)
        else:
            job = await catalog.trigger_sync(ds.id, "webhook", record_ids=request.codes)
    else:
        trigger = parse_dto(
            TriggerSyncDto,
            {"datasourceId": ds.id, "forceFull": getattr(args, "force_full", False)},
        )
        job = await catalog.trigger_sync(
            trigger.datasource_id, args.command, force_full=trigger.force_full
        )
    return await catalog.wait_for(job.id, args.timeout)


async def _jobs_command(catalog: CatalogSyncAsync, args: argparse.Namespace) -> Any:
    if args.command == "list":
        datasource_id = None
        if args.datasource:
            datasource_id = (await _resolve_datasource(catalog, args.datasource)).id
        return await catalog.list_jobs(
            datasource_id=datasource_id, status=args.status, limit=args.limit
        )
    if args.command == "show":
        return await catalog.get_job(args.job_id)
    if args.command == "cancel":
        return await catalog.cancel_job(args.job_id)
    if args.command == "errors":
        return await catalog.get_job_errors(args.job_id, limit=args.limit)
    if args.command == "retry":
        job = await catalog.retry_errors(args.job_id)
        return await catalog.wait_for(job.id, args.timeout)
    if args.command == "stale":
        return {"failed": await catalog.fail_stale_jobs(args.older_than)}
    return {"purged": await catalog.purge_finished_jobs(args.days)}


async def _duplicates_command(catalog: CatalogSyncAsync, args: argparse.Namespace) -> Any:
    if args.command == "similar":
        return await catalog.find_similar_products(
            args.collection, args.product_id, threshold=args.threshold, limit=args.limit
        )

    filters: dict[str, str | list[str]] = {}
    for key, value in _pairs(args.filters, "--filter").items():
        values = [v.strip() for v in value.split(",") if v.strip()]
        filters[key] = values if len(values) > 1 else value
    request = parse_dto(
        DetectDuplicatesDto,
        {
            "collection": args.collection,
            "similarityThreshold": args.threshold,
            "limit": args.limit,
            "useAiClassification": args.ai,
            "filters": filters or None,
        },
    )

    rules = None
    if args.rules is not None:
        from catalogsync.duplicates.rules import VariantRules

        try:
            rules = VariantRules.from_dict(json.loads(args.rules.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError) as exc:
            msg = f"Cannot read variant rules from {args.rules}: {exc}"
            raise InvalidRequestError(msg) from exc

    return await catalog.detect_duplicates(
        request.collection,
        similarity_threshold=request.similarity_threshold,
        limit=request.limit,
        use_ai_classification=request.use_ai_classification,
        filters=request.filters,
        rules=rules,
    )


async def _collections_command(catalog: CatalogSyncAsync, args: argparse.Namespace) -> Any:
    if args.command == "list":
        return await catalog.list_collections()
    if args.command == "create":
        return await catalog.create_collection(
            args.name,
            args.size,
            args.distance,
            HnswParams(m=args.hnsw_m, ef_construct=args.hnsw_ef),
        )
    if args.command == "show":
        record = await catalog.get_collection(args.name)
        info = await catalog.collection_info(args.name)
        return {"registry": record, "store": info}
    if args.command == "refresh":
        return await catalog.refresh_collection_stats(args.name)
    await catalog.delete_collection(args.name)
    return {"deleted": args.name}


async def _validate_command(catalog: CatalogSyncAsync, args: argparse.Namespace) -> Any:
    request = parse_dto(
        ValidateProductExistsDto,
        {
            "collection": args.collection,
            "descripcion": args.descripcion,
            "marca": args.marca,
            "modelo": args.modelo,
            "similarityThreshold": args.threshold,
        },
    )
    return await catalog.validate_product_exists(
        request.collection,
        request.descripcion,
        marca=request.marca,
        modelo=request.modelo,
        similarity_threshold=request.similarity_threshold,
    )


async def _scheduler_command(catalog: CatalogSyncAsync, args: argparse.Namespace) -> Any:
    if args.command == "list":
        return await catalog.scheduled_syncs()
    if args.once:
        started = await catalog.run_scheduled()
        jobs = [await catalog.wait_for(job.id, args.timeout) for job in started]
        return {"jobs": jobs, "schedule": await catalog.scheduled_syncs()}

    catalog.start_scheduler(args.poll_interval)
    await asyncio.Event().wait()
    return None


_HANDLERS = {
    "datasource": _datasource_command,
    "sync": _sync_command,
    "jobs": _jobs_command,
    "duplicates": _duplicates_command,
    "collections": _collections_command,
    "validate": _validate_command,
    "scheduler": _scheduler_command,
}


async def run(args: argparse.Namespace, catalog: CatalogSyncAsync | None = None) -> Any:
    """Execute the parsed command and return its JSON-ready result."""
    catalog = catalog or build_catalog(args)
    async with catalog:
        return to_jsonable(await _HANDLERS[args.group](catalog, args))


# ------------------------------------------------------------------
# Output
# ------------------------------------------------------------------


def to_jsonable(value: Any) -> Any:
    if isinstance(value, SQLModel):
        data = value.model_dump(mode="json")
        if data.get("webhook_secret"):
            data["webhook_secret"] = _REDACTED
        return data
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(dataclasses.asdict(value))
    if isinstance(value, Enum):
        return value.value
    return value


def _print(document: Any) -> None:
    sys.stdout.write(json.dumps(document, indent=2, default=str, ensure_ascii=False) + "\n")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        result = asyncio.run(run(args))
    except CatalogSyncError as exc:
        _print({"error": dataclasses.asdict(error_result(exc))})
        return 1
    except (ValueError, ImportError) as exc:
        failure = ErrorResult(kind="invalid_request", message=str(exc))
        _print({"error": dataclasses.asdict(failure)})
        return 1
    except TimeoutError:
        failure = ErrorResult(kind="timeout", message="Timed out waiting for the sync job")
        _print({"error": dataclasses.asdict(failure)})
        return 1

    _print(result)
    return 0
