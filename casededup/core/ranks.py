"""
Ordered priority and status enumerations.

Rank 0 is the most severe value. Strings that do not map to a member rank
below every member, so unknown labels coming from other tools never break a
comparison.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class RankedEnum(Enum):
    """Enum whose value is its rank, parsed from free-form labels."""

    @classmethod
    def _aliases(cls) -> Dict[str, "RankedEnum"]:
        return {}

    @classmethod
    def parse(cls, label: Optional[str]) -> Optional["RankedEnum"]:
        """Map a label such as ``"High"`` or ``"p1"`` to a member, else None."""
        if label is None:
            return None
        key = " ".join(str(label).lower().replace("_", " ").split())
        if not key:
            return None
        return cls._aliases().get(key)

    @classmethod
    def unknown_rank(cls) -> int:
        return len(cls.__members__)

    @classmethod
    def rank(cls, label: Optional[str]) -> int:
        """Total rank of a label; unknown or empty labels get the lowest rank."""
        member = cls.parse(label)
        if member is None:
            return cls.unknown_rank()
        return member.value

    @classmethod
    def more_severe(cls, base: Optional[str], incoming: Optional[str]) -> Optional[str]:
        """Return whichever label ranks more severe; base wins ties and empties."""
        if not base:
            return incoming or base
        if not incoming:
            return base
        return incoming if cls.rank(incoming) < cls.rank(base) else base


class Priority(RankedEnum):
    CRITICAL = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3

    @classmethod
    def _aliases(cls) -> Dict[str, "RankedEnum"]:
        return _PRIORITY_ALIASES


class Status(RankedEnum):
    FAILED = 0
    BLOCKED = 1
    PASSED = 2
    SKIPPED = 3
    NOT_RUN = 4
    PENDING = 5

    @classmethod
    def _aliases(cls) -> Dict[str, "RankedEnum"]:
        return _STATUS_ALIASES


_PRIORITY_ALIASES: Dict[str, RankedEnum] = {
    "critical": Priority.CRITICAL,
    "p0": Priority.CRITICAL,
    "high": Priority.HIGH,
    "p1": Priority.HIGH,
    "medium": Priority.MEDIUM,
    "p2": Priority.MEDIUM,
    "low": Priority.LOW,
    "p3": Priority.LOW,
}

_STATUS_ALIASES: Dict[str, RankedEnum] = {
    "failed": Status.FAILED,
    "blocked": Status.BLOCKED,
    "passed": Status.PASSED,
    "skipped": Status.SKIPPED,
    "not run": Status.NOT_RUN,
    "not executed": Status.NOT_RUN,
    "pending": Status.PENDING,
}


def priority_rank(label: Optional[str]) -> int:
    return Priority.rank(label)


def status_rank(label: Optional[str]) -> int:
    return Status.rank(label)
