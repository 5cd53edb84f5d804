"""Duplicate detection: similarity groups, variant rules and AI classification."""

from catalogsync.duplicates.classifier import (
    DuplicateClassifier,
    OpenAIDuplicateClassifier,
    parse_classification,
)
from catalogsync.duplicates.detector import DuplicateDetector
from catalogsync.duplicates.graph import SimilarityGraph
from catalogsync.duplicates.rules import CustomPattern, VariantRules
from catalogsync.duplicates.types import (
    CATEGORY_SUMMARY_KEYS,
    DuplicateCategory,
    DuplicateClassification,
    DuplicateGroup,
    DuplicateProduct,
    DuplicateReport,
    MergeRecommendation,
    SimilarProduct,
)

__all__ = [
    "CATEGORY_SUMMARY_KEYS",
    "CustomPattern",
    "DuplicateCategory",
    "DuplicateClassification",
    "DuplicateClassifier",
    "DuplicateDetector",
    "DuplicateGroup",
    "DuplicateProduct",
    "DuplicateReport",
    "MergeRecommendation",
    "OpenAIDuplicateClassifier",
    "SimilarProduct",
    "SimilarityGraph",
    "VariantRules",
    "parse_classification",
]
