"""
JSON file store holding an ordered list of generation sessions.

Layout::

    [
      {"id": "session_...", "generatedAt": "...", "documentNames": [...],
       "model": "...", "projectId": "...", "projectName": "...",
       "totalCount": 2, "testCases": [{...}, {...}]},
      ...
    ]

Writes go to a temporary file first and replace the original atomically.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..core.errors import StoreError
from ..core.types import SessionInfo, TestCaseRecord
from ..utils.logging_setup import get_logger
from .base import RecordStore, in_scope

logger = get_logger(__name__)

UNASSIGNED_SESSION = "session_unassigned"


class JsonSessionStore(RecordStore):
    """Session-structured store persisted to a single JSON file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreError(f"Store file is not valid JSON: {e}", operation="decode", path=str(self.path))
        except OSError as e:
            raise StoreError(f"Failed to read store: {e}", operation="read", path=str(self.path))

        if isinstance(data, dict):
            data = data.get("sessions", [])
        if not isinstance(data, list):
            raise StoreError("Store file must contain a list of sessions", operation="decode", path=str(self.path))
        return [s for s in data if isinstance(s, dict)]

    def _save(self, sessions: List[Dict[str, Any]]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(sessions, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreError(f"Failed to write store: {e}", operation="write", path=str(self.path))

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    def _records(self, sessions: List[Dict[str, Any]]) -> List[TestCaseRecord]:
        records: List[TestCaseRecord] = []
        for session in sessions:
            for raw in session.get("testCases") or []:
                record = TestCaseRecord.from_dict(raw)
                if record.session_id is None:
                    record.session_id = session.get("id")
                if record.project_id is None:
                    record.project_id = session.get("projectId")
                records.append(record)
        return records

    def read_all(self, project_id: Optional[str] = None) -> List[TestCaseRecord]:
        return [r for r in self._records(self._load()) if in_scope(r, project_id)]

    def write_all(self, project_id: Optional[str], records: Sequence[TestCaseRecord]) -> None:
        sessions = self._load()
        known = {s.get("id") for s in sessions}

        buckets: Dict[str, List[Dict[str, Any]]] = {s.get("id"): [] for s in sessions}
        for session in sessions:
            for raw in session.get("testCases") or []:
                record = TestCaseRecord.from_dict(raw)
                if record.project_id is None:
                    record.project_id = session.get("projectId")
                if not in_scope(record, project_id):
                    buckets[session.get("id")].append(raw)

        for record in records:
            session_id = record.session_id if record.session_id in known else None
            if session_id is None:
                session_id = record.session_id or UNASSIGNED_SESSION
                if session_id not in known:
                    sessions.append(SessionInfo(id=session_id, project_id=record.project_id).to_dict())
                    known.add(session_id)
                    buckets[session_id] = []
            buckets[session_id].append(record.to_dict())

        updated = []
        for session in sessions:
            cases = buckets.get(session.get("id"), [])
            if not cases:
                continue
            session["testCases"] = cases
            session["totalCount"] = len(cases)
            updated.append(session)

        dropped = len(sessions) - len(updated)
        if dropped:
            logger.debug("Dropping %d empty session(s) from %s", dropped, self.path)
        self._save(updated)

    def save_session(self, session: SessionInfo) -> None:
        sessions = self._load()
        for existing in sessions:
            if existing.get("id") == session.id:
                existing.update(session.to_dict())
                break
        else:
            entry = session.to_dict()
            entry.update({"testCases": [], "totalCount": 0})
            sessions.append(entry)
        self._save(sessions)

    def get_session(self, session_id: str) -> Optional[SessionInfo]:
        for session in self._load():
            if session.get("id") == session_id:
                return SessionInfo.from_dict(session)
        return None

    def list_sessions(self) -> List[SessionInfo]:
        return [SessionInfo.from_dict(s) for s in self._load()]
