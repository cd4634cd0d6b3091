"""SimHash and token-similarity scoring for near-duplicate detection."""

from .simhash import (
    build_simhash,
    build_record_simhash,
    hamming,
    are_similar,
    simhash_stats,
)
from .similarity import (
    SimilarityResult,
    SimilarMatch,
    Recommendation,
    similarity,
    find_similar,
    recommended_action,
    categorize_similarity,
    jaccard_similarity,
)

__all__ = [
    "build_simhash",
    "build_record_simhash",
    "hamming",
    "are_similar",
    "simhash_stats",
    "SimilarityResult",
    "SimilarMatch",
    "Recommendation",
    "similarity",
    "find_similar",
    "recommended_action",
    "categorize_similarity",
    "jaccard_similarity",
]
