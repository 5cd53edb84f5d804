"""ExistenceValidator — accept, reject or review a candidate product before insertion."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from catalogsync._retry import retry_transient
from catalogsync.config import SyncSettings
from catalogsync.exceptions import InvalidRequestError
from catalogsync.sync.payloads import EMBEDDING_TEXT_SEPARATOR, collapse_whitespace

if TYPE_CHECKING:
    from catalogsync.search.protocols import EmbeddingProvider, VectorStore
    from catalogsync.search.types import VectorSearchResult

logger = logging.getLogger(__name__)

_BRAND_KEYS = ("marca", "brand")
_MODEL_KEYS = ("modelo", "model")
_DESCRIPTION_KEYS = ("descripcion", "description", "nombre")


class Recommendation(Enum):
    REJECT = "reject"
    ACCEPT = "accept"
    REVIEW = "review"


@dataclass(frozen=True, slots=True)
class MatchedProduct:
    """An existing point that matched the candidate."""

    id: str
    similarity: float
    descripcion: str = ""
    marca: str | None = None
    modelo: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "similarity": self.similarity,
            "descripcion": self.descripcion,
            "marca": self.marca,
            "modelo": self.modelo,
            "payload": dict(self.payload),
        }


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Verdict on a candidate product.

    Attributes:
        exists: At least one existing point matched.
        is_exact_match: The best match is the same product.
        is_variant: Matches exist but none is the same product.
        reason: Human-readable explanation.
        confidence: Confidence in the verdict, in ``[0, 1]``.
        matched_products: Matches, most similar first.
        recommendation: ``reject``, ``accept`` or ``review``.
    """

    exists: bool
    is_exact_match: bool
    is_variant: bool
    reason: str
    confidence: float
    matched_products: list[MatchedProduct] = field(default_factory=list)
    recommendation: Recommendation = Recommendation.ACCEPT

    def to_dict(self) -> dict[str, Any]:
        return {
            "exists": self.exists,
            "is_exact_match": self.is_exact_match,
            "is_variant": self.is_variant,
            "reason": self.reason,
            "confidence": self.confidence,
            "matched_products": [m.to_dict() for m in self.matched_products],
            "recommendation": self.recommendation.value,
        }


def candidate_text(descripcion: str, marca: str | None = None, modelo: str | None = None) -> str:
    """Embedding text of a candidate, built like the text of synced rows."""
    parts = [collapse_whitespace(p) for p in (descripcion, marca, modelo) if p is not None]
    return EMBEDDING_TEXT_SEPARATOR.join(p for p in parts if p)


class ExistenceValidator:
    """Checks whether a candidate product already exists in a collection.

    Read-only: the collection is never modified.
    """

    def __init__(
        self,
        store: VectorStore,
        embedding_provider: EmbeddingProvider,
        *,
        settings: SyncSettings | None = None,
        limit: int = 20,
    ) -> None:
        self._store = store
        self._embedding = embedding_provider
        self._settings = settings or SyncSettings()
        self._limit = limit

    async def validate_product_exists(
        self,
        collection: str,
        descripcion: str,
        marca: str | None = None,
        modelo: str | None = None,
        similarity_threshold: float | None = None,
        exact_threshold: float | None = None,
    ) -> ValidationResult:
        """Compare a candidate against *collection* and recommend what to do with it.

        Both thresholds are inclusive.  The best match is an exact match when
        its score reaches *exact_threshold* and every supplied brand and model
        equals the match's (case-insensitive; a match without the field does
        not match).

        ``matched_products`` lists the neighbors at or above the similarity
        threshold among the nearest *limit* points (20 by default, set on the
        validator), so it never holds more than *limit* entries.

        Raises:
            InvalidRequestError: empty description or inconsistent thresholds.
        """
        threshold = (
            self._settings.validation_threshold
            if similarity_threshold is None
            else float(similarity_threshold)
        )
        exact = (
            self._settings.exact_match_threshold
            if exact_threshold is None
            else float(exact_threshold)
        )
        if not 0.0 <= threshold <= 1.0 or not 0.0 <= exact <= 1.0:
            msg = f"thresholds must be within [0, 1], got {threshold} and {exact}"
            raise InvalidRequestError(msg)
        if exact < threshold:
            msg = f"exact threshold {exact} is below the similarity threshold {threshold}"
            raise InvalidRequestError(msg)
        if not descripcion or not descripcion.strip():
            msg = "descripcion must not be empty"
            raise InvalidRequestError(msg)

        text = candidate_text(descripcion, marca, modelo)
        vector = await retry_transient(self._settings, self._embedding.embed, text)
        hits = await retry_transient(
            self._settings, self._store.search, collection, vector, k=self._limit
        )

        best_seen = max((h.score for h in hits), default=0.0)
        matches = sorted(
            (h for h in hits if h.score >= threshold),
            key=lambda h: (-h.score, h.id),
        )
        if not matches:
            logger.debug("No product in %s matches %r (best %.3f)", collection, text, best_seen)
            return ValidationResult(
                exists=False,
                is_exact_match=False,
                is_variant=False,
                reason=f"No existing product reaches similarity {threshold:.2f}",
                confidence=_clamp(1.0 - best_seen),
                matched_products=[],
                recommendation=Recommendation.ACCEPT,
            )

        matched = [_matched_product(h) for h in matches]
        top = matches[0]
        if top.score >= exact and _same_identity(top.metadata, marca, modelo):
            return ValidationResult(
                exists=True,
                is_exact_match=True,
                is_variant=False,
                reason=f"Product {top.id} matches with similarity {top.score:.3f}",
                confidence=_clamp(top.score),
                matched_products=matched,
                recommendation=Recommendation.REJECT,
            )

        return ValidationResult(
            exists=True,
            is_exact_match=False,
            is_variant=True,
            reason=(
                f"{len(matched)} similar products found (best {top.id} at {top.score:.3f}); "
                "may be a variant"
            ),
            confidence=_clamp(top.score),
            matched_products=matched,
            recommendation=Recommendation.REVIEW,
        )


def _same_identity(payload: dict[str, Any], marca: str | None, modelo: str | None) -> bool:
    for supplied, keys in ((marca, _BRAND_KEYS), (modelo, _MODEL_KEYS)):
        if supplied is None or not supplied.strip():
            continue
        stored = _first(payload, keys)
        if stored is None or stored.lower() != supplied.strip().lower():
            return False
    return True


def _first(payload: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _matched_product(hit: VectorSearchResult) -> MatchedProduct:
    return MatchedProduct(
        id=hit.id,
        similarity=hit.score,
        descripcion=_first(hit.metadata, _DESCRIPTION_KEYS) or "",
        marca=_first(hit.metadata, _BRAND_KEYS),
        modelo=_first(hit.metadata, _MODEL_KEYS),
        payload={k: v for k, v in hit.metadata.items() if not k.startswith("_")},
    )


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)
