"""
Record store abstraction.

The engine never talks to a persistence technology directly; it reads a
project snapshot with ``read_all`` and writes the full collection back with
``write_all``. Callers enforce single-writer discipline; the store does not
detect interleaved external writes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from ..core.types import SessionInfo, TestCaseRecord


def in_scope(record: TestCaseRecord, project_id: Optional[str]) -> bool:
    """``project_id=None`` selects every project."""
    return project_id is None or record.project_id == project_id


class RecordStore(ABC):
    """Session-keyed collection of test case records."""

    @abstractmethod
    def read_all(self, project_id: Optional[str] = None) -> List[TestCaseRecord]:
        """Return an independent snapshot of the records in scope, in stored order."""

    @abstractmethod
    def write_all(self, project_id: Optional[str], records: Sequence[TestCaseRecord]) -> None:
        """Replace every record in scope with ``records``; other projects are untouched."""

    @abstractmethod
    def save_session(self, session: SessionInfo) -> None:
        """Register or update session metadata."""

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[SessionInfo]:
        """Look up session metadata, None if unknown."""

    @contextmanager
    def transaction(self, project_id: Optional[str] = None) -> Iterator[List[TestCaseRecord]]:
        """
        Read-modify-write in one block.

        The yielded list is written back only if the block exits cleanly.
        """
        records = self.read_all(project_id)
        yield records
        self.write_all(project_id, records)
