"""Merge rules, the ingest pipeline and the batch reconciler."""

from .merge import MergeChanges, MergeConflict, MergeResult, merge, is_safe_merge
from .ingest import IngestOptions, IngestOrchestrator, IngestResult, ReviewItem, attach_metadata
from .reconcile import BatchReconciler, DuplicateCluster, PreviewResult, ReconcileDetail, ReconcileResult

__all__ = [
    "MergeChanges",
    "MergeConflict",
    "MergeResult",
    "merge",
    "is_safe_merge",
    "IngestOptions",
    "IngestOrchestrator",
    "IngestResult",
    "ReviewItem",
    "attach_metadata",
    "BatchReconciler",
    "DuplicateCluster",
    "PreviewResult",
    "ReconcileDetail",
    "ReconcileResult",
]
