"""
Deterministic field-level reconciliation of two test case records.

``merge`` folds an incoming near-duplicate into a stored base record;
``is_safe_merge`` gates whether that may happen without a human.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

from ..core.canonical import normalize
from ..core.ranks import Priority, Status
from ..core.types import DedupMetadata, Step, TestCaseRecord

Resolution = Literal["kept_base", "used_incoming", "merged"]

TEXT_SEPARATOR = " | "

# Compared against base to build MergeChanges.fields_modified.
_TRACKED_FIELDS = (
    "title",
    "module",
    "priority",
    "status",
    "description",
    "remarks",
    "preconditions",
    "expected_result",
    "test_data",
    "notes",
    "tags",
    "steps",
    "extra",
)


@dataclass
class MergeChanges:
    fields_modified: List[str] = field(default_factory=list)
    steps_added: int = 0
    steps_modified: int = 0
    priority_changed: bool = False
    status_changed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldsModified": list(self.fields_modified),
            "stepsAdded": self.steps_added,
            "stepsModified": self.steps_modified,
            "priorityChanged": self.priority_changed,
            "statusChanged": self.status_changed,
        }


@dataclass
class MergeConflict:
    field: str
    base_value: Any
    incoming_value: Any
    resolution: Resolution

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "baseValue": self.base_value,
            "incomingValue": self.incoming_value,
            "resolution": self.resolution,
        }


@dataclass
class MergeResult:
    merged_case: TestCaseRecord
    changes: MergeChanges
    conflicts: List[MergeConflict] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mergedCase": self.merged_case.to_dict(),
            "changes": self.changes.to_dict(),
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _longer(base: str, incoming: str) -> str:
    return base if len(base or "") >= len(incoming or "") else incoming


def _prefer_non_empty(base: Any, incoming: Any) -> Any:
    return incoming if _is_empty(base) and not _is_empty(incoming) else base


def combine_text(base: str, incoming: str) -> str:
    """Concatenate two free-text values, dropping segments already present."""
    segments: List[str] = []
    seen = set()
    for value in (base, incoming):
        if _is_empty(value):
            continue
        for segment in value.split(TEXT_SEPARATOR):
            key = normalize(segment)
            if key and key not in seen:
                seen.add(key)
                segments.append(segment.strip())
    return TEXT_SEPARATOR.join(segments) if segments else (base or "")


def union_tags(base: List[str], incoming: List[str]) -> List[str]:
    """Union preserving first occurrence order."""
    merged: List[str] = []
    for tag in [*base, *incoming]:
        if tag and tag not in merged:
            merged.append(tag)
    return merged


def merge_steps(base: List[Step], incoming: List[Step]) -> Tuple[List[Step], int, int]:
    """
    Union steps by normalized action text.

    Base steps keep their order; unseen incoming steps are appended and
    renumbered. A matching incoming step only fills blanks on its base twin.

    Returns:
        (merged steps, steps added, steps modified)
    """
    merged = [copy.copy(s) for s in base]
    index: Dict[str, int] = {}
    for i, step in enumerate(merged):
        key = normalize(step.action)
        if key and key not in index:
            index[key] = i

    added = modified = 0
    for step in incoming:
        key = normalize(step.action)
        if not key:
            continue
        if key in index:
            target = merged[index[key]]
            changed = False
            if _is_empty(target.expected_result) and not _is_empty(step.expected_result):
                target.expected_result = step.expected_result
                changed = True
            if _is_empty(target.test_data) and not _is_empty(step.test_data):
                target.test_data = step.test_data
                changed = True
            modified += int(changed)
            continue
        new_step = copy.copy(step)
        new_step.number = len(merged) + 1
        merged.append(new_step)
        index[key] = len(merged) - 1
        added += 1
    return merged, added, modified


def _merge_extra(base: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in incoming.items():
        if _is_empty(merged.get(key)) and not _is_empty(value):
            merged[key] = copy.deepcopy(value)
    return merged


def merge(base: TestCaseRecord, incoming: TestCaseRecord, now: Optional[datetime] = None) -> MergeResult:
    """
    Merge ``incoming`` into ``base`` without mutating either.

    Identity (id, created_at, created_by) always comes from base. The more
    severe priority/status wins whichever side it came from. Dedup hashes
    are reset because the merged content differs from both inputs; the
    caller recomputes them.
    """
    merged = base.clone()
    merged.updated_at = now or datetime.now(timezone.utc)
    merged.version = (base.version or 1) + 1

    merged.title = _longer(base.title, incoming.title)
    merged.preconditions = _longer(base.preconditions, incoming.preconditions)
    merged.description = combine_text(base.description, incoming.description)
    merged.remarks = combine_text(base.remarks, incoming.remarks)
    merged.notes = combine_text(base.notes, incoming.notes)

    merged.module = _prefer_non_empty(base.module, incoming.module)
    merged.expected_result = _prefer_non_empty(base.expected_result, incoming.expected_result)
    merged.test_data = _prefer_non_empty(base.test_data, incoming.test_data)
    merged.project_id = _prefer_non_empty(base.project_id, incoming.project_id)
    merged.created_by = base.created_by

    merged.priority = Priority.more_severe(base.priority, incoming.priority) or ""
    merged.status = Status.more_severe(base.status, incoming.status) or ""

    merged.tags = union_tags(base.tags, incoming.tags)
    merged.steps, steps_added, steps_modified = merge_steps(base.steps, incoming.steps)
    merged.extra = _merge_extra(base.extra, incoming.extra)
    merged.dedup = DedupMetadata(legacy_signature=base.dedup.legacy_signature)

    changes = MergeChanges(steps_added=steps_added, steps_modified=steps_modified)
    conflicts: List[MergeConflict] = []

    for name in _TRACKED_FIELDS:
        if getattr(merged, name) != getattr(base, name):
            changes.fields_modified.append(name)

    if merged.priority != base.priority:
        changes.priority_changed = True
        if base.priority:
            conflicts.append(MergeConflict("priority", base.priority, incoming.priority, "used_incoming"))

    if merged.status != base.status:
        changes.status_changed = True
        if base.status:
            conflicts.append(MergeConflict("status", base.status, incoming.status, "used_incoming"))

    return MergeResult(merged_case=merged, changes=changes, conflicts=conflicts)


def is_safe_merge(base: TestCaseRecord, incoming: TestCaseRecord, max_rank_gap: int = 1) -> bool:
    """
    Guard for automatic merging.

    Requires the same normalized module and title; when both sides carry a
    priority their ranks may differ by at most ``max_rank_gap`` levels.
    """
    if normalize(base.module) != normalize(incoming.module):
        return False
    if normalize(base.title) != normalize(incoming.title):
        return False

    if base.priority and incoming.priority:
        gap = abs(Priority.rank(base.priority) - Priority.rank(incoming.priority))
        if gap > max_rank_gap:
            return False

    return True
