from __future__ import annotations

import hashlib
from datetime import datetime, timezone

from .models import RECENT, CanonicalRecord, RawPosting
from .utils import clean


def normalized_key(title: str | None, company: str | None, location: str | None) -> str:
    """
    The pre-hash identity string: lowercased/trimmed title, company and
    location joined with '-'. Missing parts are empty strings.
    """
    return f"{clean(title)}-{clean(company)}-{clean(location)}"


def content_id(title: str | None, company: str | None, location: str | None) -> str:
    """sha256 hex digest of normalized_key(); the sole dedupe key."""
    return hashlib.sha256(normalized_key(title, company, location).encode("utf-8")).hexdigest()


def normalize(raw: RawPosting, *, first_seen: datetime | None = None) -> CanonicalRecord:
    """
    RawPosting -> CanonicalRecord. Pure and deterministic: no I/O, no
    exceptions. Display fields are copied unchanged (None becomes '').
    `posted_at` starts as RECENT; the recency stage resolves it.
    """
    key = normalized_key(raw.title, raw.company, raw.location)
    return CanonicalRecord(
        id=content_id(raw.title, raw.company, raw.location),
        normalized_key=key,
        normalized_title=clean(raw.title),
        normalized_company=clean(raw.company),
        normalized_location=clean(raw.location),
        title=raw.title or "",
        company=raw.company or "",
        location=raw.location or "",
        url=raw.url or "",
        posted_date=raw.posted_date or "",
        description=raw.description or "",
        source=raw.source,
        sources=frozenset([raw.source]) if raw.source else frozenset(),
        first_seen=first_seen or datetime.now(timezone.utc),
        posted_at=RECENT,
        role=(raw.role or "").strip().lower() or None,
        category=None,
        category_hint=raw.category,
    )
