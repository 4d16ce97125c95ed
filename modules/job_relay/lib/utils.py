from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def clean(s: str | None) -> str:
    """Lowercase + trim; None becomes ''."""
    return (s or "").strip().lower()


def contains_any(text: str, terms: Iterable[str]) -> str | None:
    """
    Case-insensitive substring test. Returns the first matching term
    (useful for logging *why* something matched), or None.
    """
    hay = (text or "").lower()
    for term in terms:
        t = term.lower()
        if t and t in hay:
            return term
    return None


def contains_word(text: str, terms: Iterable[str]) -> str | None:
    """
    Like contains_any(), but each term must appear as a whole word/phrase,
    so "intern" does not fire on "internal" or "international".
    """
    hay = (text or "").lower()
    for term in terms:
        t = term.strip().lower()
        if t and re.search(r"(?<![a-z0-9])" + re.escape(t) + r"(?![a-z0-9])", hay):
            return term
    return None


def chunked(items: list[Any], size: int) -> list[list[Any]]:
    """Split `items` into consecutive slices of at most `size` elements."""
    if size <= 0:
        raise ValueError("chunk size must be >= 1")
    return [items[i : i + size] for i in range(0, len(items), size)]
