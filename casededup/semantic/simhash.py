"""
SimHash for token-free soft deduplication.

Detects near-duplicate test cases across chunks without calling a model.
Small edits flip few output bits, so the Hamming distance between two
hashes approximates how different the underlying texts are.

Every token is hashed once with 32-bit FNV-1a over its UTF-16 code units,
so hashes stored by earlier releases stay comparable. Positions at or above
bit 32 never receive a positive vote and are always 0. Token hashing is
independent of the SHA-256 identity fingerprint.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Optional, Union

import numpy as np

from ..core.canonical import normalize
from ..core.types import TestCaseRecord
from ..utils.logging_setup import get_logger

logger = get_logger(__name__)

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193
TOKEN_HASH_BITS = 32
MAX_BITS = 64

# Joins the per-field parts before hashing; never occurs in record text.
RECORD_SEPARATOR = "\x1e"

_NON_WORD = re.compile(r"\W+")

HashLike = Union[int, str, None]


def utf16_units(text: str) -> List[int]:
    """UTF-16 code units of ``text``; astral characters become surrogate pairs."""
    encoded = text.encode("utf-16-le", "surrogatepass")
    return [encoded[i] | (encoded[i + 1] << 8) for i in range(0, len(encoded), 2)]


def fnv1a_32(text: str) -> int:
    """32-bit FNV-1a over the UTF-16 code units of ``text``."""
    h = FNV_OFFSET_BASIS
    for unit in utf16_units(text):
        h ^= unit
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def token_hash(token: str) -> int:
    return fnv1a_32(token)


def tokenize(text: Any) -> List[str]:
    return [t for t in _NON_WORD.split(normalize(text)) if t]


def build_simhash(text: Any, bits: int = 64) -> int:
    """
    Build a ``bits``-wide SimHash of normalized text.

    Every token votes +1/-1 on each output position according to the
    matching bit of its 32-bit hash; a position is set iff its vote total
    is positive. Empty or whitespace-only text yields 0.
    """
    if not 1 <= bits <= MAX_BITS:
        raise ValueError(f"bits must be between 1 and {MAX_BITS}, got {bits}")

    tokens = tokenize(text)
    if not tokens:
        return 0

    hashes = np.array([token_hash(t) for t in tokens], dtype=np.uint64)
    shifts = np.arange(bits, dtype=np.uint64)
    token_bits = ((hashes[:, None] >> shifts[None, :]) & np.uint64(1)).astype(np.int64)
    votes = (2 * token_bits - 1).sum(axis=0)

    out = 0
    for position in np.flatnonzero(votes > 0):
        out |= 1 << int(position)
    return out


def parse_simhash(value: HashLike) -> Optional[int]:
    """Parse a stored hash (decimal string or int); None when absent or invalid."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


def hamming(a: int, b: int) -> int:
    """Number of differing bits between two hashes."""
    return bin(a ^ b).count("1")


def are_similar(a: HashLike, b: HashLike, threshold: int = 4) -> bool:
    """True when both hashes parse and differ in at most ``threshold`` bits."""
    left, right = parse_simhash(a), parse_simhash(b)
    if left is None or right is None:
        logger.warning("SimHash comparison skipped: unparsable hash (%r, %r)", a, b)
        return False
    distance = hamming(left, right)
    logger.debug("SimHash distance=%d threshold=%d similar=%s", distance, threshold, distance <= threshold)
    return distance <= threshold


def record_text(record: Union[TestCaseRecord, Mapping[str, Any]]) -> str:
    """Title, module and per-step ``action|data|expected`` joined for hashing.

    Returns "" when the record has neither a title nor any step content;
    a module name alone is shared by every record of that module.
    """
    rec = record if isinstance(record, TestCaseRecord) else TestCaseRecord.from_dict(record)
    step_parts = [
        f"{s.action}|{s.test_data}|{s.expected_result}"
        for s in rec.steps
        if s.action or s.test_data or s.expected_result
    ]
    if not rec.title.strip() and not step_parts:
        return ""
    parts = [p for p in [rec.title, rec.module, *step_parts] if p]
    return RECORD_SEPARATOR.join(parts)


def build_record_simhash(record: Union[TestCaseRecord, Mapping[str, Any]], bits: int = 64) -> str:
    """SimHash of a test case as a decimal string, the stored form."""
    return str(build_simhash(record_text(record), bits))


def has_usable_simhash(record: TestCaseRecord) -> bool:
    """Records without a hash, or with the all-zero hash, are never clustered."""
    value = parse_simhash(record.dedup.simhash)
    return value is not None and value != 0


def simhash_stats(records: Iterable[TestCaseRecord]) -> dict:
    """Coverage statistics used by reconciliation reports."""
    records = list(records)
    hashes = [r.dedup.simhash for r in records if r.dedup.simhash]
    return {
        "totalCases": len(records),
        "withSimhash": len(hashes),
        "withoutSimhash": len(records) - len(hashes),
        "uniqueHashes": len(set(hashes)),
    }
