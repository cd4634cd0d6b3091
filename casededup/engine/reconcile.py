"""
Retroactive whole-project duplicate cleanup.

Records are bucketed by normalized module, then clustered greedily: the first
unassigned record of a bucket seeds a cluster and pulls in every later
unassigned record whose SimHash is within the Hamming threshold of the seed.
One record per cluster survives; the rest are deleted from the store.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config import DedupConfig
from ..core.canonical import normalize
from ..core.errors import ReconciliationError, StoreError
from ..core.types import TestCaseRecord, format_timestamp
from ..semantic.simhash import build_record_simhash, hamming, has_usable_simhash, parse_simhash, simhash_stats
from ..store.base import RecordStore
from ..utils.logging_setup import get_logger, log_operation

logger = get_logger(__name__)


@dataclass
class DuplicateCluster:
    """A group of near-identical records; computed per run, never stored.

    The keeper is tracked by its position in ``members`` because generators
    reuse ids, so two members may carry the same one.
    """

    members: List[TestCaseRecord]
    keep_index: int = 0

    @property
    def keep(self) -> TestCaseRecord:
        return self.members[self.keep_index]

    @property
    def removed(self) -> List[TestCaseRecord]:
        return [m for i, m in enumerate(self.members) if i != self.keep_index]

    @property
    def keep_id(self) -> str:
        return self.keep.id

    @property
    def remove_ids(self) -> List[str]:
        return [m.id for m in self.removed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duplicates": [
                {
                    "id": m.id,
                    "testCase": m.title,
                    "stepCount": len(m.steps),
                    "createdAt": format_timestamp(m.created_at),
                }
                for m in self.members
            ],
            "keepId": self.keep_id,
            "wouldRemove": len(self.members) - 1,
        }


@dataclass
class ReconcileDetail:
    keep_id: str
    keep_title: str
    removed_ids: List[str]
    removed_titles: List[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keepId": self.keep_id,
            "keepTitle": self.keep_title,
            "removedIds": list(self.removed_ids),
            "removedTitles": list(self.removed_titles),
            "reason": self.reason,
        }


@dataclass
class ReconcileResult:
    total_cases: int = 0
    duplicate_groups: int = 0
    cases_removed: int = 0
    cases_merged: int = 0
    details: List[ReconcileDetail] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCases": self.total_cases,
            "duplicateGroups": self.duplicate_groups,
            "casesRemoved": self.cases_removed,
            "casesMerged": self.cases_merged,
            "details": [d.to_dict() for d in self.details],
            "stats": dict(self.stats),
        }


@dataclass
class PreviewResult:
    duplicate_groups: List[DuplicateCluster] = field(default_factory=list)
    total_would_remove: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duplicateGroups": [c.to_dict() for c in self.duplicate_groups],
            "totalWouldRemove": self.total_would_remove,
        }


def _keep_key(position: int, record: TestCaseRecord):
    # Most steps first, then oldest; records without a timestamp sort last.
    created = record.created_at.timestamp() if record.created_at else math.inf
    return (-len(record.steps), created, position)


def keeper_index(members: Sequence[TestCaseRecord]) -> int:
    """Position of the surviving record of a cluster."""
    return min(range(len(members)), key=lambda i: _keep_key(i, members[i]))


def select_keeper(members: Sequence[TestCaseRecord]) -> TestCaseRecord:
    """Pick the surviving record of a cluster."""
    return members[keeper_index(members)]


class BatchReconciler:
    """Clusters a project's stored records by SimHash and removes duplicates."""

    def __init__(self, store: RecordStore, config: Optional[DedupConfig] = None):
        self.store = store
        self.config = config or DedupConfig()

    def find_clusters(self, records: Sequence[TestCaseRecord], threshold: Optional[int] = None) -> List[DuplicateCluster]:
        """
        Group near-identical records.

        Records without a usable SimHash are ignored. Buckets are visited in
        first-seen module order and members keep their input order, so the
        output is deterministic for a given snapshot.
        """
        if threshold is None:
            threshold = self.config.hamming_threshold

        buckets: Dict[str, List[TestCaseRecord]] = {}
        for record in records:
            if not has_usable_simhash(record):
                continue
            buckets.setdefault(normalize(record.module), []).append(record)

        clusters: List[DuplicateCluster] = []
        for module_key, bucket in buckets.items():
            if len(bucket) < 2:
                continue
            hashes = [parse_simhash(r.dedup.simhash) for r in bucket]
            assigned = [False] * len(bucket)

            for i, seed in enumerate(bucket):
                if assigned[i]:
                    continue
                assigned[i] = True
                members = [seed]
                for j in range(i + 1, len(bucket)):
                    if not assigned[j] and hamming(hashes[i], hashes[j]) <= threshold:
                        assigned[j] = True
                        members.append(bucket[j])
                if len(members) < 2:
                    continue

                clusters.append(DuplicateCluster(members=members, keep_index=keeper_index(members)))
            logger.debug("Module %r: %d records scanned", module_key, len(bucket))

        return clusters

    def preview(self, project_id: Optional[str] = None, threshold: Optional[int] = None) -> PreviewResult:
        """Clusters that ``reconcile`` would act on, without touching the store."""
        records = self.store.read_all(project_id)
        clusters = self.find_clusters(records, threshold)
        return PreviewResult(
            duplicate_groups=clusters,
            total_would_remove=sum(len(c.removed) for c in clusters),
        )

    def reconcile(self, project_id: Optional[str] = None, threshold: Optional[int] = None) -> ReconcileResult:
        if threshold is None:
            threshold = self.config.hamming_threshold
        log_operation(logger, "reconcile", project_id=project_id, threshold=threshold)

        try:
            records = self.store.read_all(project_id)
            result = ReconcileResult(total_cases=len(records), stats=simhash_stats(records))

            if result.stats["withSimhash"] == 0:
                logger.info("No records carry a SimHash; run a backfill first")
                return result

            clusters = self.find_clusters(records, threshold)
            doomed = set()
            for cluster in clusters:
                keeper = cluster.keep
                removed = cluster.removed
                doomed.update(id(r) for r in removed)
                result.details.append(ReconcileDetail(
                    keep_id=keeper.id,
                    keep_title=keeper.title or "Unknown",
                    removed_ids=list(cluster.remove_ids),
                    removed_titles=[r.title or "Unknown" for r in removed],
                    reason=f"Similar content (Hamming distance <= {threshold})",
                ))

            result.duplicate_groups = len(clusters)
            result.cases_merged = len(clusters)
            result.cases_removed = len(doomed)

            if doomed:
                survivors = [r for r in records if id(r) not in doomed]
                self.store.write_all(project_id, survivors)
        except (StoreError, ReconciliationError):
            raise
        except Exception as e:
            raise ReconciliationError(f"Reconciliation failed: {e}", project_id=project_id) from e

        logger.info(
            "Reconciliation complete: groups=%d removed=%d of %d",
            result.duplicate_groups, result.cases_removed, result.total_cases,
        )
        return result

    def backfill_simhash(self, project_id: Optional[str] = None) -> Dict[str, int]:
        """Compute SimHash for stored records that lack one."""
        records = self.store.read_all(project_id)
        updated = 0
        for record in records:
            if record.dedup.simhash:
                continue
            record.dedup.simhash = build_record_simhash(record, self.config.simhash_bits)
            updated += 1

        if updated:
            self.store.write_all(project_id, records)
        logger.info("Backfill: %d record(s) updated with SimHash", updated)
        return {"updated": updated}

    def stats(self, project_id: Optional[str] = None, threshold: Optional[int] = None) -> Dict[str, int]:
        records = self.store.read_all(project_id)
        would_remove = sum(len(c.removed) for c in self.find_clusters(records, threshold))
        total = len(records)
        return {
            "totalCases": total,
            "withSimhash": simhash_stats(records)["withSimhash"],
            "potentialDuplicates": would_remove,
            "estimatedSavings": math.floor(would_remove * 100 / total + 0.5) if total else 0,
        }
