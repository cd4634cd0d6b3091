"""Weighted multi-field Jaccard similarity between test cases."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Set, Union

from ..config import ActionThresholds, SimilarityWeights
from ..core.canonical import extract_tokens
from ..core.types import TestCaseRecord

Action = Literal["auto_merge", "review_merge", "keep_separate"]
Confidence = Literal["high", "medium", "low"]

RecordLike = Union[TestCaseRecord, Mapping[str, Any]]


def jaccard_similarity(tokens_a: Iterable[str], tokens_b: Iterable[str]) -> float:
    """|A ∩ B| / |A ∪ B|; two empty sets are identical (1.0)."""
    set_a: Set[str] = set(tokens_a)
    set_b: Set[str] = set(tokens_b)
    union = set_a | set_b
    if not union:
        return 1.0
    return len(set_a & set_b) / len(union)


@dataclass
class SimilarityResult:
    score: float
    title_similarity: float
    steps_similarity: float
    module_similarity: float
    breakdown: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "titleSimilarity": self.title_similarity,
            "stepsSimilarity": self.steps_similarity,
            "moduleSimilarity": self.module_similarity,
            "breakdown": dict(self.breakdown),
        }


@dataclass
class SimilarMatch:
    record: TestCaseRecord
    similarity: SimilarityResult


@dataclass
class Recommendation:
    action: Action
    confidence: Confidence
    reason: str


def _as_record(record: RecordLike) -> TestCaseRecord:
    return record if isinstance(record, TestCaseRecord) else TestCaseRecord.from_dict(record)


def similarity(a: RecordLike, b: RecordLike, weights: Optional[SimilarityWeights] = None) -> SimilarityResult:
    """
    Score two records in [0, 1].

    Title, concatenated step actions and module are tokenized and compared
    with Jaccard similarity, then combined with fixed field weights. The
    score is symmetric and ``similarity(a, a).score == 1.0``.
    """
    weights = weights or SimilarityWeights()
    rec_a, rec_b = _as_record(a), _as_record(b)

    title_sim = jaccard_similarity(extract_tokens(rec_a.title), extract_tokens(rec_b.title))
    steps_sim = jaccard_similarity(
        extract_tokens(" ".join(rec_a.step_actions)),
        extract_tokens(" ".join(rec_b.step_actions)),
    )
    module_sim = jaccard_similarity(extract_tokens(rec_a.module), extract_tokens(rec_b.module))

    breakdown = {
        "title": weights.title * title_sim,
        "steps": weights.steps * steps_sim,
        "module": weights.module * module_sim,
    }
    # Clamp float noise so identical records score exactly 1.0.
    score = min(1.0, round(sum(breakdown.values()), 12))

    return SimilarityResult(
        score=score,
        title_similarity=title_sim,
        steps_similarity=steps_sim,
        module_similarity=module_sim,
        breakdown=breakdown,
    )


def find_similar(
    target: RecordLike,
    candidates: Sequence[RecordLike],
    min_similarity: float = 0.7,
    weights: Optional[SimilarityWeights] = None,
) -> List[SimilarMatch]:
    """Candidates scoring at least ``min_similarity``, best first.

    The target's own id is skipped. Ties keep candidate order.
    """
    target_rec = _as_record(target)
    matches: List[SimilarMatch] = []
    for candidate in candidates:
        cand_rec = _as_record(candidate)
        if target_rec.id and cand_rec.id == target_rec.id:
            continue
        result = similarity(target_rec, cand_rec, weights)
        if result.score >= min_similarity:
            matches.append(SimilarMatch(record=cand_rec, similarity=result))
    # list.sort is stable
    matches.sort(key=lambda m: m.similarity.score, reverse=True)
    return matches


def categorize_similarity(score: float, thresholds: Optional[ActionThresholds] = None) -> str:
    """Descriptive band of a score; the top two bands follow the action thresholds."""
    thresholds = thresholds or ActionThresholds()
    if score >= thresholds.auto_merge:
        return "identical"
    if score >= thresholds.review_merge:
        return "very_high"
    if score >= 0.75:
        return "high"
    if score >= 0.60:
        return "medium"
    return "low"


def recommended_action(score: float, thresholds: Optional[ActionThresholds] = None) -> Recommendation:
    """Three-tier action policy driven by configurable score thresholds."""
    thresholds = thresholds or ActionThresholds()
    if score >= thresholds.auto_merge:
        return Recommendation(
            action="auto_merge",
            confidence="high",
            reason=f"Test cases are virtually identical ({thresholds.auto_merge:.0%}+ similarity)",
        )
    if score >= thresholds.review_merge:
        return Recommendation(
            action="review_merge",
            confidence="medium",
            reason=f"Test cases are very similar ({thresholds.review_merge:.0%}+ similarity) - human review recommended",
        )
    return Recommendation(
        action="keep_separate",
        confidence="high",
        reason=f"Test cases are sufficiently different (<{thresholds.review_merge:.0%} similarity)",
    )
