"""
Per-batch ingest decision pipeline.

Each incoming record is classified against a snapshot of the project taken
once at the start of the batch:

1. exact fingerprint already seen earlier in the batch -> skipped
2. exact fingerprint matches a stored record -> exact duplicate, skipped
3. similarity vs stored + earlier persisted batch records:
   auto_merge (and safe) -> merged in place, review_merge -> queued for a
   human, keep_separate -> persisted as new
4. nothing similar -> persisted as new

A batch where most records collide with stored fingerprints is treated as a
misfiring detector and imported without dedup (fail-open).
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from ..config import DedupConfig
from ..core.fingerprint import fingerprint, legacy_signature, loose_fingerprint
from ..core.types import SessionInfo, TestCaseRecord
from ..semantic.simhash import build_record_simhash
from ..semantic.similarity import SimilarityResult, find_similar, recommended_action
from ..store.base import RecordStore
from ..utils.logging_setup import get_logger, log_operation
from .merge import MergeResult, is_safe_merge, merge

logger = get_logger(__name__)

NO_NEW_CASES = "no-new-cases"


@dataclass
class IngestOptions:
    """Context accompanying a batch of generated records."""

    document_names: List[str] = field(default_factory=list)
    model: str = ""
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    continue_session_id: Optional[str] = None


@dataclass
class ReviewItem:
    """A near-duplicate held back for human adjudication."""

    incoming: TestCaseRecord
    existing: TestCaseRecord
    score: float
    similarity: Optional[SimilarityResult] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "incoming": self.incoming.to_dict(),
            "existing": self.existing.to_dict(),
            "score": self.score,
            "similarity": self.similarity.to_dict() if self.similarity else None,
            "reason": self.reason,
        }


@dataclass
class IngestResult:
    session_id: str = NO_NEW_CASES
    saved: int = 0
    skipped: int = 0
    exact_duplicates: int = 0
    auto_merged: int = 0
    review_required: int = 0
    merge_conflicts: List[ReviewItem] = field(default_factory=list)
    merges: List[MergeResult] = field(default_factory=list)
    dedup_bypassed: bool = False
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "saved": self.saved,
            "skipped": self.skipped,
            "exactDuplicates": self.exact_duplicates,
            "autoMerged": self.auto_merged,
            "reviewRequired": self.review_required,
            "mergeConflicts": [item.to_dict() for item in self.merge_conflicts],
            "merges": [m.to_dict() for m in self.merges],
            "dedupBypassed": self.dedup_bypassed,
            "warnings": list(self.warnings),
        }


def attach_metadata(record: TestCaseRecord, bits: int = 64) -> TestCaseRecord:
    """Compute and attach fingerprint, loose fingerprint and SimHash in place."""
    record.dedup.fingerprint = fingerprint(record)
    record.dedup.loose_fingerprint = loose_fingerprint(record)
    record.dedup.simhash = build_record_simhash(record, bits)
    return record


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def new_record_id() -> str:
    return f"TC-{uuid.uuid4().hex[:12]}"


class IngestOrchestrator:
    """Runs the dedup decision pipeline for one batch at a time."""

    def __init__(self, store: RecordStore, config: Optional[DedupConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.config = config or DedupConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _prepare(self, raw: Any, index: int, options: IngestOptions,
                 session_id: str, now: datetime, taken_ids: Set[str]) -> TestCaseRecord:
        record = TestCaseRecord.from_dict(raw, index=index)
        if record.id in taken_ids:
            # Ids are unique across the snapshot and the batch.
            fresh = new_record_id()
            logger.debug("Record %d reuses id %s; assigned %s", index, record.id, fresh)
            record.id = fresh
        elif not record.id:
            record.id = new_record_id()
        taken_ids.add(record.id)
        if options.project_id is not None:
            record.project_id = options.project_id
        record.session_id = session_id
        record.created_at = record.created_at or now
        record.updated_at = record.updated_at or now
        return attach_metadata(record, self.config.simhash_bits)

    def _should_bypass(self, prepared: Sequence[TestCaseRecord], collisions: int) -> bool:
        valve = self.config.safety_valve
        total = len(prepared)
        if not valve.enabled or total <= valve.min_batch_size:
            return False
        return collisions / total > valve.max_skip_rate

    def ingest(self, records: Sequence[Any], options: Optional[IngestOptions] = None) -> IngestResult:
        """
        Classify and persist one batch.

        Per-record failures are logged and counted as skipped; store failures
        propagate.
        """
        options = options or IngestOptions()
        log_operation(logger, "ingest", project_id=options.project_id, batch_size=len(records))

        now = self.clock()
        session_id = options.continue_session_id or new_session_id()
        result = IngestResult()

        # Snapshot read once; later records in the batch see earlier ones only
        # through ``working``.
        snapshot = self.store.read_all(options.project_id)
        stored_fps: Set[str] = set()
        legacy_only: Set[str] = set()
        for stored in snapshot:
            if stored.dedup.fingerprint:
                stored_fps.add(stored.dedup.fingerprint)
            elif stored.dedup.legacy_signature:
                legacy_only.add(stored.dedup.legacy_signature)
                stored_fps.add(fingerprint(stored))
            else:
                stored_fps.add(fingerprint(stored))

        taken_ids: Set[str] = {stored.id for stored in snapshot if stored.id}
        prepared: List[TestCaseRecord] = []
        for index, raw in enumerate(records):
            try:
                prepared.append(self._prepare(raw, index, options, session_id, now, taken_ids))
            except Exception:
                logger.exception("Skipping record %d: could not prepare it for dedup", index)
                result.skipped += 1

        def collides(rec: TestCaseRecord) -> bool:
            if rec.dedup.fingerprint in stored_fps:
                return True
            return bool(legacy_only) and legacy_signature(rec) in legacy_only

        collisions = sum(1 for rec in prepared if collides(rec))
        if self._should_bypass(prepared, collisions):
            rate = collisions / len(prepared)
            message = (
                f"Duplicate detector flagged {collisions}/{len(prepared)} records "
                f"({rate:.0%}) as exact duplicates; bypassing dedup and importing the whole batch"
            )
            logger.warning(message)
            result.dedup_bypassed = True
            result.warnings.append(message)

        working: List[TestCaseRecord] = list(snapshot)
        batch_fps: Set[str] = set()

        for rec in prepared:
            try:
                if result.dedup_bypassed:
                    working.append(rec)
                    result.saved += 1
                    continue
                self._decide(rec, working, batch_fps, collides, result, now)
            except Exception:
                logger.exception("Skipping record %s after a processing error", rec.id)
                result.skipped += 1

        if result.saved or result.auto_merged:
            self._register_session(session_id, options, now)
            self.store.write_all(options.project_id, working)
            result.session_id = session_id

        logger.info(
            "Ingest complete: saved=%d skipped=%d exact=%d merged=%d review=%d bypassed=%s",
            result.saved, result.skipped, result.exact_duplicates,
            result.auto_merged, result.review_required, result.dedup_bypassed,
        )
        return result

    def _decide(self, rec: TestCaseRecord, working: List[TestCaseRecord], batch_fps: Set[str],
                collides: Callable[[TestCaseRecord], bool], result: IngestResult, now: datetime) -> None:
        fp = rec.dedup.fingerprint

        if fp in batch_fps:
            logger.debug("Record %s repeats an earlier record in this batch", rec.id)
            result.skipped += 1
            result.exact_duplicates += 1
            return
        batch_fps.add(fp)

        if collides(rec):
            logger.debug("Record %s is an exact duplicate of a stored record", rec.id)
            result.skipped += 1
            result.exact_duplicates += 1
            return

        matches = find_similar(
            rec, working,
            min_similarity=self.config.ingest_min_similarity,
            weights=self.config.weights,
        )
        if not matches:
            working.append(rec)
            result.saved += 1
            return

        best = matches[0]
        recommendation = recommended_action(best.similarity.score, self.config.actions)
        action = recommendation.action
        reason = recommendation.reason

        if action == "auto_merge":
            if is_safe_merge(best.record, rec, self.config.max_priority_rank_gap):
                merged = merge(best.record, rec, now)
                attach_metadata(merged.merged_case, self.config.simhash_bits)
                position = next(i for i, r in enumerate(working) if r is best.record)
                working[position] = merged.merged_case
                batch_fps.add(merged.merged_case.dedup.fingerprint)
                result.auto_merged += 1
                result.merges.append(merged)
                logger.debug("Auto-merged %s into %s (score %.3f)", rec.id, best.record.id, best.similarity.score)
                return
            action = "review_merge"
            reason = "Near-identical score but module, title or priority differ; review required"
            logger.info("Auto-merge of %s into %s blocked by safety check", rec.id, best.record.id)

        if action == "review_merge":
            result.merge_conflicts.append(ReviewItem(
                incoming=rec,
                existing=best.record.clone(),
                score=best.similarity.score,
                similarity=best.similarity,
                reason=reason,
            ))
            result.review_required += 1
            return

        working.append(rec)
        result.saved += 1

    def _register_session(self, session_id: str, options: IngestOptions, now: datetime) -> None:
        if options.continue_session_id and self.store.get_session(session_id) is not None:
            return
        self.store.save_session(SessionInfo(
            id=session_id,
            generated_at=now,
            document_names=list(options.document_names),
            model=options.model,
            project_id=options.project_id,
            project_name=options.project_name,
        ))
