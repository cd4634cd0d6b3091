"""
Facade over the ingest pipeline and the batch reconciler.

Both share one injected store and one configuration, so an application only
wires a single object.
"""

from typing import Any, Dict, Optional, Sequence

from .config import DedupConfig
from .engine.ingest import IngestOptions, IngestOrchestrator, IngestResult
from .engine.reconcile import BatchReconciler, PreviewResult, ReconcileResult
from .store.base import RecordStore


class DedupService:
    """Entry point for embedding applications and the CLI."""

    def __init__(self, store: RecordStore, config: Optional[DedupConfig] = None):
        self.store = store
        self.config = config or DedupConfig()
        self.orchestrator = IngestOrchestrator(store, self.config)
        self.reconciler = BatchReconciler(store, self.config)

    def ingest(self, records: Sequence[Any], options: Optional[IngestOptions] = None) -> IngestResult:
        return self.orchestrator.ingest(records, options)

    def reconcile(self, project_id: Optional[str] = None, threshold: Optional[int] = None) -> ReconcileResult:
        return self.reconciler.reconcile(project_id, threshold)

    def preview_reconcile(self, project_id: Optional[str] = None, threshold: Optional[int] = None) -> PreviewResult:
        return self.reconciler.preview(project_id, threshold)

    def backfill_simhash(self, project_id: Optional[str] = None) -> Dict[str, int]:
        return self.reconciler.backfill_simhash(project_id)

    def reconciliation_stats(self, project_id: Optional[str] = None) -> Dict[str, int]:
        return self.reconciler.stats(project_id)
