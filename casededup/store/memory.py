"""In-process record store, used by tests and embedding applications."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from ..core.types import SessionInfo, TestCaseRecord
from .base import RecordStore, in_scope


class InMemoryRecordStore(RecordStore):
    """Keeps records in a list; every read and write copies."""

    def __init__(self, records: Optional[Iterable[TestCaseRecord]] = None):
        self._records: List[TestCaseRecord] = [r.clone() for r in records or []]
        self._sessions: Dict[str, SessionInfo] = {}
        self.write_count = 0

    def read_all(self, project_id: Optional[str] = None) -> List[TestCaseRecord]:
        return [r.clone() for r in self._records if in_scope(r, project_id)]

    def write_all(self, project_id: Optional[str], records: Sequence[TestCaseRecord]) -> None:
        kept = [r for r in self._records if not in_scope(r, project_id)]
        self._records = kept + [r.clone() for r in records]
        self.write_count += 1

    def save_session(self, session: SessionInfo) -> None:
        self._sessions[session.id] = session

    def get_session(self, session_id: str) -> Optional[SessionInfo]:
        return self._sessions.get(session_id)

    def __len__(self) -> int:
        return len(self._records)
