"""
Posted-date resolution.

Producers report dates as anything from "2 days ago" to "Aug 24" to a full
ISO timestamp. `RecencyResolver.resolve()` runs a fixed chain of handlers;
each returns an aware datetime or None, and the first hit wins. When nothing
matches the record resolves to the RECENT sentinel and is kept.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime, timedelta, tzinfo

from dateutil import parser as date_parser
from dateutil import tz as date_tz

from .models import RECENT, CanonicalRecord, ResolvedDate

_MAX_PLUS_DAYS = 90

_TODAY_WORDS = {"today", "just posted", "ongoing", "hiring ongoing", "just now", "now"}
_PLUS_DAYS_RE = re.compile(r"^(\d+)\+\s*days?\s+ago$")
_SHORTHAND_RE = re.compile(r"^(\d+)\s*(d|mo|m)$")
_AGO_RE = re.compile(r"^(\d+)\s*(hour|day|week|month)s?\s+ago$")
_MONTH_DAY_RE = re.compile(
    r"^(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+(\d{1,2})$"
)
_MONTHS = {m: i for i, m in enumerate(
    ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"), start=1
)}

# period -> cutoff(now)
_PERIOD_DAYS = {"three_days": 3, "week": 7, "month": 30, "three_months": 90}

Handler = Callable[[str, datetime], "datetime | None"]


class Unresolvable(ValueError):
    """A handler recognised the format but the value is invalid; resolve to RECENT."""


def _relative_words(text: str, now: datetime) -> datetime | None:
    if text in _TODAY_WORDS:
        return now
    if text == "yesterday":
        return (now - timedelta(days=1)).replace(hour=12, minute=0, second=0, microsecond=0)
    return None


def _plus_days(text: str, now: datetime) -> datetime | None:
    m = _PLUS_DAYS_RE.match(text)
    if not m:
        return None
    return now - timedelta(days=min(int(m.group(1)), _MAX_PLUS_DAYS))


def _shorthand(text: str, now: datetime) -> datetime | None:
    # "3d" = days; "2mo" and "2m" = months (30 days), never minutes.
    m = _SHORTHAND_RE.match(text)
    if not m:
        return None
    n, unit = int(m.group(1)), m.group(2)
    return now - timedelta(days=n if unit == "d" else n * 30)


def _n_units_ago(text: str, now: datetime) -> datetime | None:
    m = _AGO_RE.match(text)
    if not m:
        return None
    n, unit = int(m.group(1)), m.group(2)
    offsets = {
        "hour": timedelta(hours=n),
        "day": timedelta(days=n),
        "week": timedelta(weeks=n),
        "month": timedelta(days=30 * n),
    }
    return now - offsets[unit]


def _month_day(text: str, now: datetime) -> datetime | None:
    # "Aug 24" carries no year: assume the current one.
    m = _MONTH_DAY_RE.match(text)
    if not m:
        return None
    try:
        return now.replace(month=_MONTHS[m.group(1)[:3]], day=int(m.group(2)), hour=0, minute=0, second=0, microsecond=0)
    except ValueError as e:
        # "Aug 32" is a month-day string with a bad day; no later handler may guess at it.
        raise Unresolvable(text) from e


class RecencyResolver:
    def __init__(self, timezone: str | tzinfo | None = "UTC") -> None:
        if isinstance(timezone, tzinfo):
            self.tz = timezone
        else:
            self.tz = date_tz.gettz(timezone or "UTC") or date_tz.UTC
        self.handlers: list[Handler] = [
            _relative_words,
            _plus_days,
            _shorthand,
            _n_units_ago,
            _month_day,
            self._generic,
        ]

    # ---- Public API ----
    def resolve(self, text: str | None, now: datetime | None = None) -> ResolvedDate:
        now = self.aware(now or datetime.now(self.tz))
        s = " ".join((text or "").strip().lower().split())
        if not s:
            return RECENT
        for handler in self.handlers:
            try:
                hit = handler(s, now)
            except Unresolvable:
                return RECENT
            except (ValueError, OverflowError):
                hit = None
            if hit is not None:
                return ResolvedDate(self.aware(hit))
        return RECENT

    def cutoff(self, period: str, now: datetime | None = None) -> datetime:
        """
        day          -> start of yesterday
        three_days   -> now - 3 days
        week         -> now - 7 days
        month        -> now - 30 days
        three_months -> now - 90 days
        """
        now = self.aware(now or datetime.now(self.tz))
        if period == "day":
            return (now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        if period not in _PERIOD_DAYS:
            raise ValueError(f"Unknown period: {period!r}")
        return now - timedelta(days=_PERIOD_DAYS[period])

    def is_recent(self, record: CanonicalRecord | ResolvedDate, period: str, now: datetime | None = None) -> bool:
        """
        True when the resolved date is on/after the period cutoff.
        The RECENT sentinel (unparseable or missing date) is always recent.
        """
        resolved = record if isinstance(record, ResolvedDate) else record.posted_at
        if resolved.is_sentinel:
            return True
        return resolved.at >= self.cutoff(period, now)

    # ---- Internals ----
    def _generic(self, text: str, now: datetime) -> datetime | None:
        try:
            return date_parser.parse(text, default=now.replace(hour=0, minute=0, second=0, microsecond=0))
        except (ValueError, OverflowError):
            return None

    def aware(self, dt: datetime) -> datetime:
        return dt if dt.tzinfo is not None else dt.replace(tzinfo=self.tz)
