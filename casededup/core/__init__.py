"""Canonicalization, identity fingerprints and record types."""

from .canonical import normalize, extract_tokens
from .errors import DedupError, StoreError, MalformedRecordError, ReconciliationError
from .fingerprint import (
    fingerprint,
    loose_fingerprint,
    legacy_signature,
    are_exact_duplicates,
    are_loose_duplicates,
)
from .ranks import Priority, Status, priority_rank, status_rank
from .types import TestCaseRecord, Step, DedupMetadata, SessionInfo

__all__ = [
    "normalize",
    "extract_tokens",
    "DedupError",
    "StoreError",
    "MalformedRecordError",
    "ReconciliationError",
    "fingerprint",
    "loose_fingerprint",
    "legacy_signature",
    "are_exact_duplicates",
    "are_loose_duplicates",
    "Priority",
    "Status",
    "priority_rank",
    "status_rank",
    "TestCaseRecord",
    "Step",
    "DedupMetadata",
    "SessionInfo",
]
