"""
Cadence — Taste token normalization.

Genres, artists and songs arrive either as comma-delimited strings (the
legacy form) or as lists.  Both collapse to the same canonical shape:
lowercase, whitespace-collapsed, trimmed, de-duplicated and sorted.
"""

from __future__ import annotations

import re
from typing import Iterable

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_token(token: str) -> str:
    return _WHITESPACE_RE.sub(" ", token).strip().lower()


def normalize_tokens(raw: str | Iterable[str] | None) -> list[str]:
    """Return the canonical token list for a delimited string or iterable.

    >>> normalize_tokens("Rock,  Indie Pop ,rock,,")
    ['indie pop', 'rock']
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        parts: Iterable[str] = raw.split(",")
    else:
        parts = raw

    tokens = {normalize_token(str(part)) for part in parts if part is not None}
    tokens.discard("")
    return sorted(tokens)
