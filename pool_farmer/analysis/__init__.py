"""Pool classification, scoring and selection."""
from .classifier import Classification, PoolClassifier
from .scorer import PoolScorer, enrich_pool
from .selector import (
    PoolSelector,
    detection_candidates,
    passes_floors,
    validate_candidates,
)

__all__ = [
    "Classification",
    "PoolClassifier",
    "PoolScorer",
    "PoolSelector",
    "detection_candidates",
    "enrich_pool",
    "passes_floors",
    "validate_candidates",
]
