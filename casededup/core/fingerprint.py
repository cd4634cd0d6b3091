"""
Exact identity fingerprints for test case records.

Two families live here and must stay separate from the SimHash token hash:

- ``fingerprint`` / ``loose_fingerprint``: SHA-256 over a canonical JSON
  tuple. Authoritative for identity decisions.
- ``legacy_signature``: the old 32-bit shift-add hash, kept only so records
  written before fingerprints existed can still be compared.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Mapping, Union

from .canonical import normalize
from .types import TestCaseRecord
from ..utils.logging_setup import get_logger

logger = get_logger(__name__)

RecordLike = Union[TestCaseRecord, Mapping[str, Any]]

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _as_record(record: RecordLike) -> TestCaseRecord:
    if isinstance(record, TestCaseRecord):
        return record
    return TestCaseRecord.from_dict(record)


def _joined_actions(record: TestCaseRecord) -> str:
    actions = (normalize(step.action) for step in record.steps)
    return "|".join(a for a in actions if a)


def canonical_core(record: RecordLike, loose: bool = False) -> Dict[str, str]:
    """Build the normalized identity tuple that defines a record."""
    rec = _as_record(record)
    core = {
        "section": normalize(rec.module),
        "title": normalize(rec.title),
        "steps": _joined_actions(rec),
        "preconditions": normalize(rec.preconditions),
    }
    if not loose:
        core["expected"] = normalize(rec.expected_result)
        core["data"] = normalize(rec.test_data)
    return core


def _digest(core: Mapping[str, str]) -> str:
    canonical_json = json.dumps(core, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def fingerprint(record: RecordLike) -> str:
    """SHA-256 hex digest of the full canonical tuple.

    Order of steps matters; order of keys in the input never does.
    """
    core = canonical_core(record)
    digest = _digest(core)
    logger.debug(
        "Fingerprint %s... section=%r steps=%d expected=%s data=%s",
        digest[:16],
        core["section"],
        len(core["steps"].split("|")) if core["steps"] else 0,
        bool(core["expected"]),
        bool(core["data"]),
    )
    return digest


def loose_fingerprint(record: RecordLike) -> str:
    """Fingerprint ignoring expected result and test data."""
    return _digest(canonical_core(record, loose=True))


def are_exact_duplicates(a: RecordLike, b: RecordLike) -> bool:
    return fingerprint(a) == fingerprint(b)


def are_loose_duplicates(a: RecordLike, b: RecordLike) -> bool:
    return loose_fingerprint(a) == loose_fingerprint(b)


# ---------------------------------------------------------------------------
# Legacy signature
# ---------------------------------------------------------------------------

def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def simple_hash(text: str) -> str:
    """32-bit ``h = h * 31 + c`` string hash over UTF-16 code units, base 36."""
    if not text:
        return "0"
    encoded = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def _legacy_steps(rec: TestCaseRecord) -> str:
    """``action|data|expected`` per step joined by ``||``.

    A record without steps contributes a single step built from its
    description, test data and expected result when it has either a
    description or an expected result.
    """
    if rec.steps:
        triples = [(s.action, s.test_data, s.expected_result) for s in rec.steps]
    elif rec.description or rec.expected_result:
        triples = [(rec.description, rec.test_data, rec.expected_result)]
    else:
        triples = []
    return "||".join("|".join(normalize(part) for part in triple) for triple in triples)


def legacy_canonical(record: RecordLike) -> str:
    """The ``##``-joined string the old scheme hashed.

    Preconditions and acceptance criteria were never populated by that
    scheme, so the last two segments are always empty.
    """
    rec = _as_record(record)
    return "##".join([
        normalize(rec.title),
        normalize(rec.module),
        normalize(rec.priority),
        _legacy_steps(rec),
        "",
        "",
    ])


def legacy_signature(record: RecordLike) -> str:
    """Signature used by records stored before cryptographic fingerprints.

    Read-only compatibility: never use it for new identity decisions.
    """
    return simple_hash(legacy_canonical(record))


def matches_legacy_signature(record: RecordLike, stored_signature: str) -> bool:
    """Compare a record against a signature stored by the old scheme."""
    return bool(stored_signature) and legacy_signature(record) == stored_signature
