"""Text canonicalization shared by every hash and tokenizer."""

from __future__ import annotations

import re
from typing import Any, List

_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize(text: Any) -> str:
    """Lower-case, collapse whitespace runs to one space and trim.

    Total: ``None`` becomes the empty string and anything else is coerced
    with ``str``. ``normalize(normalize(x)) == normalize(x)``.
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)
    return _WHITESPACE.sub(" ", text.lower()).strip()


def extract_tokens(text: Any) -> List[str]:
    """Split text into lower-case alphanumeric tokens for Jaccard scoring."""
    cleaned = _NON_ALNUM.sub(" ", normalize(text)).strip()
    if not cleaned:
        return []
    return cleaned.split()
