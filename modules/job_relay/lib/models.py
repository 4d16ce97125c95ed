from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Role scopes. "both" is only ever an *input* scope; routed records carry
# INTERN or NEW_GRAD.
INTERN = "intern"
NEW_GRAD = "new_grad"
BOTH = "both"
ROLES = (INTERN, NEW_GRAD, BOTH)

# Canonical categories
SOFTWARE_ENGINEERING = "software_engineering"
DATA_ANALYSIS = "data_analysis"
DATA_SCIENCE_ENGINEER = "data_science_engineer"
CATEGORIES = (SOFTWARE_ENGINEERING, DATA_ANALYSIS, DATA_SCIENCE_ENGINEER)


@dataclass(frozen=True)
class RawPosting:
    """
    A single job posting as handed over by a producer (pre-normalization).
    Only `title` is mandatory; everything else is best-effort.
    """

    title: str
    source: str
    company: str | None = None
    location: str | None = None
    url: str | None = None
    posted_date: str | None = None  # free-form: "2 days ago", "Aug 24", "1d", ...
    description: str | None = None
    role: str | None = None  # intern | new_grad | both
    category: str | None = None  # producer hint, e.g. "business_analyst"

    @classmethod
    def from_dict(cls, item: dict[str, Any], *, source: str, defaults: dict[str, Any] | None = None) -> RawPosting:
        """
        Build from a loosely-shaped dict. Accepts camelCase ("postedDate") and
        snake_case ("posted_date") keys. `defaults` fills role/category hints
        the item itself lacks.
        """
        d = defaults or {}

        def _s(*keys: str) -> str | None:
            for k in keys:
                v = item.get(k)
                if v is not None and str(v).strip() != "":
                    return str(v)
            return None

        return cls(
            title=_s("title") or "",
            source=_s("source") or source,
            company=_s("company"),
            location=_s("location"),
            url=_s("url", "link", "applyUrl", "apply_url"),
            posted_date=_s("postedDate", "posted_date", "posted", "date"),
            description=_s("description"),
            role=_s("role") or d.get("role"),
            category=_s("category") or d.get("category"),
        )


@dataclass(frozen=True)
class ResolvedDate:
    """
    Result of date resolution: a concrete aware datetime, or (at=None) the
    "unparseable, treat as recent" sentinel.
    """

    at: datetime | None = None

    @property
    def is_sentinel(self) -> bool:
        return self.at is None


RECENT = ResolvedDate(None)


@dataclass(frozen=True)
class CanonicalRecord:
    """
    Pipeline-owned record. `id` is the content hash of the normalized
    (title, company, location) tuple and is the only dedupe key.
    """

    id: str
    normalized_key: str
    normalized_title: str
    normalized_company: str
    normalized_location: str
    title: str
    company: str
    location: str
    url: str
    posted_date: str
    description: str
    source: str
    sources: frozenset[str]
    first_seen: datetime
    posted_at: ResolvedDate = RECENT
    role: str | None = None
    category: str | None = None
    category_hint: str | None = None

    @property
    def id_prefix(self) -> str:
        return self.id[:8]


@dataclass
class FeedResult:
    """
    Result bundle produced by a producer for one source.
    - items: all raw postings found (NOT filtered).
    - trusted: curated feeds skip the relevance rule table.
    - errors: non-fatal issues the producer decided to surface.
    """

    source: str
    items: list[RawPosting] = field(default_factory=list)
    trusted: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Notification:
    """
    One unit handed to a sink: either a bucket header (records empty,
    count = bucket size) or a batch of record summaries.
    """

    kind: str  # "header" | "batch"
    bucket: str  # "role::category"
    role: str
    category: str
    count: int
    records: tuple[CanonicalRecord, ...] = ()
    index: int = 0  # batch index within the bucket (0 for headers)


@dataclass
class DispatchReport:
    sent: int = 0
    failed: int = 0
    skipped_buckets: list[str] = field(default_factory=list)
    batches_by_bucket: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "skipped_buckets": list(self.skipped_buckets),
            "batches_by_bucket": dict(self.batches_by_bucket),
        }
