"""Core record data structures."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, TypedDict

from .errors import MalformedRecordError


class StepDict(TypedDict, total=False):
    """Stored representation of a step."""
    step: int
    description: str
    testData: str
    expectedResult: str


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings, epoch milliseconds or datetimes; None on failure."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "; ".join(str(v) for v in value if v not in (None, ""))
    return str(value)


def _first(sources: Sequence[Mapping[str, Any]], *keys: str) -> Any:
    """Return the first non-empty value found for any key, searching sources in order."""
    for source in sources:
        for key in keys:
            value = source.get(key)
            if value not in (None, "", []):
                return value
    return None


@dataclass
class Step:
    """A single ordered test step."""

    action: str = ""
    test_data: str = ""
    expected_result: str = ""
    number: Optional[int] = None

    def to_dict(self) -> StepDict:
        result: StepDict = {
            "description": self.action,
            "testData": self.test_data,
            "expectedResult": self.expected_result,
        }
        if self.number is not None:
            result["step"] = self.number
        return result

    @classmethod
    def from_value(cls, value: Any, index: int = 0) -> "Step":
        """Build a step from a stored dict or a bare action string."""
        if isinstance(value, Step):
            return copy.copy(value)
        if isinstance(value, Mapping):
            number = value.get("step", value.get("number"))
            return cls(
                action=_text(_first([value], "description", "action", "step_description")),
                test_data=_text(_first([value], "testData", "data", "test_data")),
                expected_result=_text(_first([value], "expectedResult", "expected", "expected_result")),
                number=number if isinstance(number, int) else index + 1,
            )
        return cls(action=_text(value), number=index + 1)


@dataclass
class DedupMetadata:
    """Identity and similarity hashes attached to a processed record."""

    fingerprint: str = ""
    loose_fingerprint: str = ""
    simhash: str = ""
    # Read-only migration data from the pre-fingerprint signature scheme.
    legacy_signature: str = ""

    def is_complete(self) -> bool:
        return bool(self.fingerprint and self.loose_fingerprint and self.simhash)


# Keys consumed by TestCaseRecord.from_dict; everything else lands in ``extra``.
_KNOWN_KEYS = {
    "id", "title", "testCase", "module", "category", "priority", "status",
    "testSteps", "steps", "description", "remarks", "preconditions",
    "expectedResult", "testData", "notes", "automationNote", "tags",
    "projectId", "sessionId", "createdAt", "updatedAt", "createdBy", "version",
    "fingerprint", "looseFingerprint", "simhash", "legacySignature",
    "signature", "data",
}


@dataclass
class TestCaseRecord:
    """The unit being deduplicated."""

    # Not a pytest test class despite the name.
    __test__ = False

    id: str = ""
    title: str = ""
    module: str = ""
    priority: str = ""
    status: str = ""
    steps: List[Step] = field(default_factory=list)
    description: str = ""
    remarks: str = ""
    preconditions: str = ""
    expected_result: str = ""
    test_data: str = ""
    notes: str = ""
    tags: List[str] = field(default_factory=list)
    project_id: Optional[str] = None
    session_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    version: int = 1
    extra: Dict[str, Any] = field(default_factory=dict)
    dedup: DedupMetadata = field(default_factory=DedupMetadata)

    @property
    def step_actions(self) -> List[str]:
        return [s.action for s in self.steps]

    def clone(self) -> "TestCaseRecord":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored camelCase layout."""
        result: Dict[str, Any] = dict(self.extra)
        result.update({
            "id": self.id,
            "title": self.title,
            "module": self.module,
            "priority": self.priority,
            "status": self.status,
            "testSteps": [s.to_dict() for s in self.steps],
            "description": self.description,
            "remarks": self.remarks,
            "preconditions": self.preconditions,
            "expectedResult": self.expected_result,
            "testData": self.test_data,
            "notes": self.notes,
            "tags": list(self.tags),
            "projectId": self.project_id,
            "sessionId": self.session_id,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "createdBy": self.created_by,
            "version": self.version,
            "fingerprint": self.dedup.fingerprint,
            "looseFingerprint": self.dedup.loose_fingerprint,
            "simhash": self.dedup.simhash,
        })
        if self.dedup.legacy_signature:
            result["legacySignature"] = self.dedup.legacy_signature
        return result

    @classmethod
    def from_dict(cls, data: Any, index: Optional[int] = None) -> "TestCaseRecord":
        """
        Build a record from a stored or freshly generated mapping.

        Accepts the generator's legacy aliases (``testCase``, ``category``,
        ``testSteps``) and a nested ``data`` object. Missing fields become
        empty values; only a non-mapping input is rejected.
        """
        if isinstance(data, TestCaseRecord):
            return data.clone()
        if not isinstance(data, Mapping):
            raise MalformedRecordError(
                f"Expected a mapping for a test case, got {type(data).__name__}",
                record_index=index,
            )

        nested = data.get("data") if isinstance(data.get("data"), Mapping) else {}
        sources = [data, nested]

        raw_steps = _first(sources, "testSteps", "steps") or []
        if not isinstance(raw_steps, (list, tuple)):
            raw_steps = [raw_steps]
        steps = [Step.from_value(s, i) for i, s in enumerate(raw_steps)]

        raw_tags = _first(sources, "tags") or []
        if isinstance(raw_tags, str):
            raw_tags = [t.strip() for t in raw_tags.split(",")]
        tags = [str(t) for t in raw_tags if t not in (None, "")]

        version = data.get("version")
        extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}
        for key, value in nested.items():
            if key not in _KNOWN_KEYS and key not in extra:
                extra[key] = value

        return cls(
            id=_text(data.get("id")),
            title=_text(_first(sources, "testCase", "title")),
            module=_text(_first(sources, "module", "category")),
            priority=_text(_first(sources, "priority")),
            status=_text(_first(sources, "status")),
            steps=steps,
            description=_text(_first(sources, "description")),
            remarks=_text(_first(sources, "remarks")),
            preconditions=_text(_first(sources, "preconditions")),
            expected_result=_text(_first(sources, "expectedResult")),
            test_data=_text(_first(sources, "testData")),
            notes=_text(_first(sources, "notes", "automationNote")),
            tags=tags,
            project_id=_first(sources, "projectId"),
            session_id=_first(sources, "sessionId"),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            created_by=_first(sources, "createdBy"),
            version=version if isinstance(version, int) and version > 0 else 1,
            extra=extra,
            dedup=DedupMetadata(
                fingerprint=_text(_first(sources, "fingerprint")),
                loose_fingerprint=_text(_first(sources, "looseFingerprint")),
                simhash=_text(_first(sources, "simhash")),
                legacy_signature=_text(_first(sources, "legacySignature", "signature")),
            ),
        )


@dataclass
class SessionInfo:
    """Metadata for one ingest session; the store owns its record list."""

    id: str
    generated_at: Optional[datetime] = None
    document_names: List[str] = field(default_factory=list)
    model: str = ""
    project_id: Optional[str] = None
    project_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "generatedAt": format_timestamp(self.generated_at),
            "documentNames": list(self.document_names),
            "model": self.model,
            "projectId": self.project_id,
            "projectName": self.project_name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionInfo":
        return cls(
            id=str(data.get("id", "")),
            generated_at=parse_timestamp(data.get("generatedAt")),
            document_names=list(data.get("documentNames") or []),
            model=str(data.get("model") or ""),
            project_id=data.get("projectId"),
            project_name=data.get("projectName"),
        )


def coerce_records(items: Sequence[Any]) -> List[TestCaseRecord]:
    """Coerce a list of mappings/records, raising on the first malformed item."""
    return [TestCaseRecord.from_dict(item, index=i) for i, item in enumerate(items)]
