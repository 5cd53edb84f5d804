"""DuplicateDetector — similarity-based duplicate groups over a collection."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from catalogsync._retry import retry_transient
from catalogsync.config import SyncSettings
from catalogsync.duplicates.graph import SimilarityGraph
from catalogsync.duplicates.types import (
    CATEGORY_SUMMARY_KEYS,
    DuplicateClassification,
    DuplicateGroup,
    DuplicateProduct,
    DuplicateReport,
    SimilarProduct,
)
from catalogsync.exceptions import InvalidRequestError, NotFoundError
from catalogsync.search.filters import from_mapping
from catalogsync.sync.payloads import MARKER_KEY

if TYPE_CHECKING:
    from catalogsync.duplicates.classifier import DuplicateClassifier
    from catalogsync.duplicates.rules import VariantRules
    from catalogsync.search.filters import FilterExpression
    from catalogsync.search.protocols import VectorStore
    from catalogsync.search.types import VectorEntry, VectorSearchResult

logger = logging.getLogger(__name__)

_SCROLL_PAGE_SIZE = 256
_RECENCY_KEYS = ("updated_at", MARKER_KEY)

Filters = Mapping[str, str | list[str]] | None


class DuplicateDetector:
    """Finds groups of near-duplicate points in a collection.

    Every point is queried for its nearest neighbors; pairs scoring at or
    above the threshold become edges of a :class:`SimilarityGraph` and each
    connected component of two or more points is a group.  Grouping is
    transitive: if A~B and B~C pass the threshold, A, B and C form one group
    even when A~C does not, so long chains can merge distinct products.

    The detector never writes to the store.
    """

    def __init__(
        self,
        store: VectorStore,
        *,
        settings: SyncSettings | None = None,
        classifier: DuplicateClassifier | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or SyncSettings()
        self._classifier = classifier

    # ------------------------------------------------------------------
    # Group detection
    # ------------------------------------------------------------------

    async def detect_duplicates(
        self,
        collection: str,
        similarity_threshold: float | None = None,
        limit: int | None = None,
        use_ai_classification: bool = False,
        filters: Filters | FilterExpression = None,
        rules: VariantRules | None = None,
    ) -> DuplicateReport:
        """Scan *collection* and report its duplicate groups.

        Args:
            collection: Collection to scan.
            similarity_threshold: Minimum score for two points to be linked
                (inclusive, default ``settings.duplicate_threshold``).
            limit: Maximum number of groups returned; totals describe the
                returned groups.
            use_ai_classification: Classify each group with the configured
                :class:`DuplicateClassifier`.
            filters: Payload filter restricting both the scanned points and
                their neighbors; a ``{field: value | [values]}`` mapping or a
                filter expression.
            rules: Variant rules; recognized variant pairs are not linked.
        """
        threshold = _check_threshold(
            similarity_threshold, self._settings.duplicate_threshold, "similarity_threshold"
        )
        if limit is not None and limit < 1:
            msg = f"limit must be at least 1, got {limit}"
            raise InvalidRequestError(msg)
        if use_ai_classification and self._classifier is None:
            msg = "AI classification was requested but no classifier is configured"
            raise InvalidRequestError(msg)

        expr = _as_expression(filters)
        points = await self._scan(collection, expr)
        payloads = {p.id: p.metadata for p in points}
        logger.info(
            "Scanning %d points of %s for duplicates (threshold %.2f)",
            len(points),
            collection,
            threshold,
        )

        semaphore = asyncio.Semaphore(self._settings.query_concurrency)

        async def neighbors(entry: VectorEntry) -> list[VectorSearchResult]:
            async with semaphore:
                return await retry_transient(
                    self._settings,
                    self._store.search,
                    collection,
                    entry.vector,
                    k=self._settings.neighbor_limit + 1,
                    filter=expr,
                    score_threshold=threshold,
                )

        results = await asyncio.gather(*(neighbors(p) for p in points))

        graph = SimilarityGraph()
        skipped_variants = 0
        for point, hits in zip(points, results, strict=True):
            for hit in hits:
                if hit.id == point.id or hit.score < threshold or hit.id not in payloads:
                    continue
                if graph.has_edge(point.id, hit.id):
                    continue
                if rules is not None and rules.are_variants(payloads[point.id], payloads[hit.id]):
                    skipped_variants += 1
                    continue
                graph.add_edge(point.id, hit.id, hit.score)
        if skipped_variants:
            logger.debug("Ignored %d variant pairs in %s", skipped_variants, collection)

        groups = [_build_group(graph, members, payloads) for members in graph.components()]
        groups.sort(key=lambda g: (-g.avg_similarity, g.products[0].id))
        if limit is not None:
            groups = groups[:limit]

        summary: dict[str, int] | None = None
        if use_ai_classification:
            groups = await self._classify(groups, self._classifier)
            summary = dict.fromkeys(CATEGORY_SUMMARY_KEYS.values(), 0)
            for group in groups:
                if group.classification is not None:
                    summary[CATEGORY_SUMMARY_KEYS[group.classification.category]] += 1

        total_duplicates = sum(g.size - 1 for g in groups)
        logger.info(
            "Found %d duplicate groups (%d redundant points) in %s",
            len(groups),
            total_duplicates,
            collection,
        )
        return DuplicateReport(
            total_groups=len(groups),
            total_duplicates=total_duplicates,
            estimated_savings=total_duplicates,
            points_analyzed=len(points),
            groups=groups,
            category_summary=summary,
        )

    # ------------------------------------------------------------------
    # Single-point queries
    # ------------------------------------------------------------------

    async def find_similar_products(
        self,
        collection: str,
        product_id: str,
        threshold: float | None = None,
        limit: int = 20,
    ) -> list[SimilarProduct]:
        """Return the neighbors of *product_id* scoring at or above *threshold*.

        Raises:
            NotFoundError: *product_id* is not a point of *collection*.
        """
        threshold = _check_threshold(threshold, self._settings.validation_threshold, "threshold")
        if limit < 1:
            msg = f"limit must be at least 1, got {limit}"
            raise InvalidRequestError(msg)

        found = await retry_transient(self._settings, self._store.fetch, collection, [product_id])
        entry = found[0] if found else None
        if entry is None:
            msg = f"Point {product_id!r} not found in collection {collection!r}"
            raise NotFoundError(msg)

        hits = await retry_transient(
            self._settings,
            self._store.search,
            collection,
            entry.vector,
            k=limit + 1,
            score_threshold=threshold,
        )
        similar = [
            SimilarProduct(id=h.id, similarity=h.score, payload=dict(h.metadata))
            for h in hits
            if h.id != product_id and h.score >= threshold
        ]
        similar.sort(key=lambda s: (-s.similarity, s.id))
        return similar[:limit]

    async def get_filter_values(self, collection: str, fields: list[str]) -> dict[str, list[str]]:
        """Return the distinct non-empty string values of *fields*, sorted."""
        values: dict[str, set[str]] = {f: set() for f in fields}
        for entry in await self._scan(collection, None):
            for f in fields:
                value = entry.metadata.get(f)
                if isinstance(value, str) and value.strip():
                    values[f].add(value.strip())
        return {f: sorted(v) for f, v in values.items()}

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _scan(self, collection: str, expr: FilterExpression | None) -> list[VectorEntry]:
        points: list[VectorEntry] = []
        offset: Any = None
        while True:
            page = await retry_transient(
                self._settings,
                self._store.scroll,
                collection,
                filter=expr,
                limit=_SCROLL_PAGE_SIZE,
                offset=offset,
            )
            points.extend(page.entries)
            if page.next_offset is None or not page.entries:
                return points
            offset = page.next_offset

    async def _classify(
        self, groups: list[DuplicateGroup], classifier: DuplicateClassifier
    ) -> list[DuplicateGroup]:
        """Classify every group; a failing group is downgraded to ``review_needed``."""
        semaphore = asyncio.Semaphore(self._settings.query_concurrency)

        async def classify(group: DuplicateGroup) -> DuplicateGroup:
            async with semaphore:
                try:
                    verdict = await classifier.classify(group.products)
                except Exception as exc:
                    logger.warning(
                        "Classification of group %s failed: %s", group.recommended, exc
                    )
                    verdict = DuplicateClassification.review_needed(f"Classification failed: {exc}")
            return dataclasses.replace(group, classification=verdict)

        return list(await asyncio.gather(*(classify(g) for g in groups)))


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _check_threshold(value: float | None, default: float, name: str) -> float:
    threshold = default if value is None else float(value)
    if not 0.0 <= threshold <= 1.0:
        msg = f"{name} must be within [0, 1], got {threshold}"
        raise InvalidRequestError(msg)
    return threshold


def _as_expression(filters: Filters | FilterExpression) -> FilterExpression | None:
    if filters is None:
        return None
    if isinstance(filters, Mapping):
        return from_mapping(filters)
    return filters


def _build_group(
    graph: SimilarityGraph, members: set[str], payloads: dict[str, dict[str, Any]]
) -> DuplicateGroup:
    edges = graph.edges_within(members)
    avg = sum(score for _, _, score in edges) / len(edges) if edges else 0.0
    ordered = sorted(members)
    recommended = min(
        ordered,
        key=lambda pid: (-_completeness(payloads[pid]), -_recency(payloads[pid]), pid),
    )
    return DuplicateGroup(
        products=[DuplicateProduct(id=pid, payload=dict(payloads[pid])) for pid in ordered],
        avg_similarity=avg,
        recommended=recommended,
        duplicate_ids=[pid for pid in ordered if pid != recommended],
        edge_count=len(edges),
    )


def _completeness(payload: dict[str, Any]) -> int:
    """Count non-empty payload fields, ignoring the ``_``-prefixed bookkeeping keys."""
    count = 0
    for key, value in payload.items():
        if key.startswith("_") or value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        if isinstance(value, (list, dict)) and not value:
            continue
        count += 1
    return count


def _recency(payload: dict[str, Any]) -> float:
    """Sortable update time of a payload; ``-inf`` when it has none."""
    for key in _RECENCY_KEYS:
        value = payload.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return float(value)
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.timestamp()
    return float("-inf")
