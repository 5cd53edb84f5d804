"""Duplicate detection result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# ------------------------------------------------------------------
# Classification
# ------------------------------------------------------------------


class DuplicateCategory(Enum):
    REAL_DUPLICATE = "real_duplicate"
    SIZE_VARIANT = "size_variant"
    COLOR_VARIANT = "color_variant"
    MODEL_VARIANT = "model_variant"
    DESCRIPTION_VARIANT = "description_variant"
    REVIEW_NEEDED = "review_needed"


class MergeRecommendation(Enum):
    MERGE = "merge"
    KEEP_BOTH = "keep_both"
    REVIEW = "review"


# Keys of ``DuplicateReport.category_summary``, in report order.
CATEGORY_SUMMARY_KEYS: dict[DuplicateCategory, str] = {
    DuplicateCategory.REAL_DUPLICATE: "real_duplicates",
    DuplicateCategory.SIZE_VARIANT: "size_variants",
    DuplicateCategory.COLOR_VARIANT: "color_variants",
    DuplicateCategory.MODEL_VARIANT: "model_variants",
    DuplicateCategory.DESCRIPTION_VARIANT: "description_variants",
    DuplicateCategory.REVIEW_NEEDED: "review_needed",
}


@dataclass(frozen=True, slots=True)
class DuplicateClassification:
    """Verdict of a :class:`DuplicateClassifier` on one group.

    Attributes:
        category: What kind of near-match the group is.
        confidence: Classifier confidence in ``[0, 1]``.
        reason: Short explanation of the main difference.
        differences: Individual differences found between the products.
        recommendation: Whether to merge, keep both, or review manually.
    """

    category: DuplicateCategory
    confidence: float
    reason: str
    differences: list[str] = field(default_factory=list)
    recommendation: MergeRecommendation = MergeRecommendation.REVIEW

    @classmethod
    def review_needed(cls, reason: str) -> DuplicateClassification:
        """The downgraded verdict used when classification fails."""
        return cls(
            category=DuplicateCategory.REVIEW_NEEDED,
            confidence=0.0,
            reason=reason,
            differences=[],
            recommendation=MergeRecommendation.REVIEW,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "differences": list(self.differences),
            "recommendation": self.recommendation.value,
        }


# ------------------------------------------------------------------
# Groups and reports
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DuplicateProduct:
    """One member of a duplicate group."""

    id: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "payload": dict(self.payload)}


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    """A connected component of near-duplicate points.

    Attributes:
        products: Members ordered by id (at least two).
        avg_similarity: Mean score of the measured edges inside the group.
        recommended: Id of the member to keep.
        duplicate_ids: Every member id except ``recommended``.
        edge_count: Number of measured edges inside the group.
        classification: Classifier verdict, when classification was requested.
    """

    products: list[DuplicateProduct]
    avg_similarity: float
    recommended: str
    duplicate_ids: list[str]
    edge_count: int
    classification: DuplicateClassification | None = None

    @property
    def product_ids(self) -> list[str]:
        return [p.id for p in self.products]

    @property
    def size(self) -> int:
        return len(self.products)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "products": [p.to_dict() for p in self.products],
            "avg_similarity": self.avg_similarity,
            "recommended": self.recommended,
            "duplicate_ids": list(self.duplicate_ids),
            "edge_count": self.edge_count,
        }
        if self.classification is not None:
            data["classification"] = self.classification.to_dict()
        return data


@dataclass(frozen=True, slots=True)
class DuplicateReport:
    """Result of a duplicate scan over one collection."""

    total_groups: int
    total_duplicates: int
    estimated_savings: int
    points_analyzed: int
    groups: list[DuplicateGroup] = field(default_factory=list)
    category_summary: dict[str, int] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "total_groups": self.total_groups,
            "total_duplicates": self.total_duplicates,
            "estimated_savings": self.estimated_savings,
            "points_analyzed": self.points_analyzed,
            "groups": [g.to_dict() for g in self.groups],
        }
        if self.category_summary is not None:
            data["category_summary"] = dict(self.category_summary)
        return data


@dataclass(frozen=True, slots=True)
class SimilarProduct:
    """A neighbor returned by ``find_similar_products``."""

    id: str
    similarity: float
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "similarity": self.similarity, "payload": dict(self.payload)}
