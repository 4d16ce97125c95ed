"""
Engine for running job producers and pushing their postings through the
ingestion pipeline.

Features:
  - Parallel producer execution by kind (thread pool)
  - Per-source sequential pipeline: normalize -> relevance -> recency ->
    existence check -> classify -> route -> dispatch -> upsert -> prune
  - Dry-run sink (activity log) or webhook sink
  - Dependency injection for testability (`get_producer`, `sink`, `now`, `sleep`)
  - Store cleanup pass that re-applies the relevance rules to cached rows
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from . import cache as cache_db
from . import logging_bridge
from .cache import JobCache, StoreError
from .classify import Classifier
from .config import FilterRules, ProducerConfig, Settings
from .dispatch import Dispatcher
from .models import CanonicalRecord, DispatchReport, FeedResult, RawPosting
from .normalize import normalize
from .recency import RecencyResolver
from .relevance import RelevanceRuleEngine
from .router import Router
from .sinks import DestinationResolver, LogSink, NotificationSink, WebhookSink

Sleep = Callable[[float], Awaitable[None]]


# =============================================================================
# DEFAULT PRODUCER LOOKUP (PRODUCTION)
# =============================================================================
def _default_get_producer(kind: str) -> type:
    """
    Resolve producer class from registry.

    Only called if no `get_producer` override is provided.
    """
    from .producers.registry import get as get_producer_class

    return get_producer_class(kind)


# =============================================================================
# PIPELINE
# =============================================================================
@dataclass
class PipelineReport:
    source: str
    received: int = 0
    rejected_by_rule: dict[str, int] = field(default_factory=dict)
    stale: int = 0
    duplicates_in_run: int = 0
    seen: int = 0
    capped: int = 0
    new: int = 0
    buckets: dict[str, int] = field(default_factory=dict)
    dispatch: DispatchReport | None = None
    stored: int = 0
    pruned: int = 0
    store_error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "received": self.received,
            "rejected_by_rule": dict(self.rejected_by_rule),
            "stale": self.stale,
            "duplicates_in_run": self.duplicates_in_run,
            "seen": self.seen,
            "capped": self.capped,
            "new": self.new,
            "buckets": dict(self.buckets),
            "dispatch": self.dispatch.as_dict() if self.dispatch else None,
            "stored": self.stored,
            "pruned": self.pruned,
            "store_error": self.store_error,
        }


class Pipeline:
    """
    One source's postings in, notifications and store writes out.
    Pure stages are synchronous; dispatch and store calls are awaited.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        sink: NotificationSink,
        resolver: DestinationResolver | None = None,
        rules: FilterRules | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings
        rules = rules or settings.filter_rules()
        self.relevance = RelevanceRuleEngine(rules)
        self.recency = RecencyResolver(settings.timezone)
        self.classifier = Classifier(rules)
        self.router = Router(self.relevance)
        self.dispatcher = Dispatcher(
            sink,
            resolver or DestinationResolver(settings.destinations),
            batch_size=settings.batch_size,
            inter_send_delay=settings.inter_send_delay,
            sleep=sleep,
        )

    async def run(
        self,
        feed: FeedResult,
        cache: JobCache,
        *,
        now: datetime | None = None,
    ) -> PipelineReport:
        s = self.settings
        now = self.recency.aware(now) if now else datetime.now(self.recency.tz)
        report = PipelineReport(source=feed.source, received=len(feed.items))

        # ---- normalize + relevance ------------------------------------------
        accepted: list[CanonicalRecord] = []
        for raw in feed.items:
            rec = normalize(raw, first_seen=now)
            if not feed.trusted:
                decision = self.relevance.evaluate(rec, s.role)
                if not decision.accepted:
                    report.rejected_by_rule[decision.rule] = report.rejected_by_rule.get(decision.rule, 0) + 1
                    continue
            accepted.append(rec)

        # ---- recency ----------------------------------------------------------
        fresh: list[CanonicalRecord] = []
        for rec in accepted:
            rec = replace(rec, posted_at=self.recency.resolve(rec.posted_date, now))
            if self.recency.is_recent(rec, s.period, now):
                fresh.append(rec)
            else:
                report.stale += 1

        # ---- collapse duplicates inside this batch (same id) ------------------
        by_id: dict[str, CanonicalRecord] = {}
        for rec in fresh:
            prior = by_id.get(rec.id)
            if prior is None:
                by_id[rec.id] = rec
            else:
                report.duplicates_in_run += 1
                by_id[rec.id] = replace(prior, sources=prior.sources | rec.sources)

        # ---- existence check against the pre-run snapshot ---------------------
        new: list[CanonicalRecord] = []
        seen: list[CanonicalRecord] = []
        for rec in by_id.values():
            (seen if cache.exists(rec.id) else new).append(rec)
        report.seen = len(seen)

        if s.max_new_per_run and len(new) > s.max_new_per_run:
            report.capped = len(new) - s.max_new_per_run
            new = new[: s.max_new_per_run]
        report.new = len(new)

        # ---- classify + route -------------------------------------------------
        buckets = self.router.route(
            [replace(r, category=self.classifier.classify(r)) for r in new],
            s.default_role,
        )
        refreshed = [
            r
            for bucket in self.router.route(
                [replace(r, category=self.classifier.classify(r)) for r in seen],
                s.default_role,
            ).values()
            for r in bucket
        ]
        report.buckets = {k: len(v) for k, v in buckets.items()}

        logging_bridge.activity({
            "component": "job_relay.engine",
            "op": "filtered",
            "source": feed.source,
            "trusted": feed.trusted,
            "received": report.received,
            "rejected_by_rule": report.rejected_by_rule,
            "stale": report.stale,
            "seen": report.seen,
            "new": report.new,
            "buckets": report.buckets,
        })

        # ---- dispatch -----------------------------------------------------------
        if buckets:
            report.dispatch = await self.dispatcher.dispatch(buckets)

        # ---- persist + prune ----------------------------------------------------
        # Dry runs leave the store untouched so the real run still sees these as new.
        to_store = [r for bucket in buckets.values() for r in bucket] + refreshed
        if to_store and not s.dry_run:
            try:
                report.stored = await cache.upsert(to_store, now=now)
                report.pruned = await cache.prune()
            except StoreError as e:
                report.store_error = str(e)
                logging_bridge.error({
                    "component": "job_relay.engine",
                    "op": "store",
                    "source": feed.source,
                    "records": len(to_store),
                    "error": repr(e),
                })

        return report


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    get_producer: Callable[[str], type] | None = None,
    *,
    sink: NotificationSink | None = None,
    now: datetime | None = None,
    sleep: Sleep = asyncio.sleep,
) -> dict[str, Any]:
    """
    Run one complete cycle: producers (parallel by kind), then each source's
    postings through the pipeline in turn.

    Returns a meta dict (message, subject, per-source reports, durations).
    """
    start_ns = time.perf_counter_ns()
    feeds, durations_us = _collect_feeds(settings, get_producer or _default_get_producer)

    own_sink = sink is None
    if sink is None:
        sink = LogSink() if settings.dry_run else WebhookSink()
    try:
        reports = asyncio.run(_run_feeds(settings, feeds, sink=sink, now=now, sleep=sleep))
    finally:
        if own_sink:
            sink.close()

    total_us = int((time.perf_counter_ns() - start_ns) // 1000)
    new_total = sum(r.new for r in reports)
    sent = sum(r.dispatch.sent for r in reports if r.dispatch)
    failed = sum(r.dispatch.failed for r in reports if r.dispatch)
    message = f"{new_total} new postings across {len(reports)} sources ({sent} sends, {failed} failed)"

    meta = {
        "message": message,
        "subject": f"Job Relay: {new_total} new",
        "new_total": new_total,
        "sent": sent,
        "failed": failed,
        "dry_run": settings.dry_run,
        "sources": {r.source: r.as_dict() for r in reports},
        "durations_us": {**durations_us, "_total_us": total_us},
    }
    logging_bridge.activity({
        "component": "job_relay.engine",
        "op": "summary",
        "new_total": new_total,
        "sent": sent,
        "failed": failed,
        "sources": sorted(meta["sources"]),
        "durations_us": meta["durations_us"],
    })
    return meta


async def _run_feeds(
    settings: Settings,
    feeds: list[FeedResult],
    *,
    sink: NotificationSink,
    now: datetime | None,
    sleep: Sleep,
) -> list[PipelineReport]:
    resolver = DestinationResolver(settings.destinations, fallback="dry-run" if settings.dry_run else None)
    pipeline = Pipeline(settings, sink=sink, resolver=resolver, sleep=sleep)
    reports: list[PipelineReport] = []
    for feed in feeds:
        cache = JobCache(settings.sqlite_path, feed.source, max_size=settings.max_cache_size)
        try:
            await cache.load(all_sources=settings.cross_source_dedupe)
        except StoreError as e:
            # Without a snapshot every record looks new; better to skip the source.
            logging_bridge.error({
                "component": "job_relay.engine",
                "op": "cache_load",
                "source": feed.source,
                "error": repr(e),
            })
            continue
        reports.append(await pipeline.run(feed, cache, now=now))
    return reports


def _collect_feeds(
    settings: Settings,
    get_producer: Callable[[str], type],
) -> tuple[list[FeedResult], dict[str, int]]:
    by_kind: dict[str, list[ProducerConfig]] = settings.group_by_kind()
    durations_us: dict[str, int] = {}
    feeds: list[FeedResult] = []

    def _run_kind(kind: str, specs: list[ProducerConfig]) -> tuple[str, list[FeedResult], int]:
        t0 = time.perf_counter_ns()
        producer = get_producer(kind)()
        results = producer.run(specs, skip_network=settings.skip_network)
        return kind, results, int((time.perf_counter_ns() - t0) // 1000)

    with ThreadPoolExecutor(max_workers=min(len(by_kind) or 1, settings.max_threads)) as pool:
        futures = {pool.submit(_run_kind, k, specs): k for k, specs in by_kind.items()}
        for fut in as_completed(futures):
            kind = futures[fut]
            try:
                k, results, dt_us = fut.result()
            except Exception as e:
                durations_us[kind] = 0
                logging_bridge.error({
                    "component": "job_relay.engine",
                    "op": "producer_run",
                    "kind": kind,
                    "error": repr(e),
                })
                continue
            durations_us[k] = dt_us
            for res in results:
                if res.errors:
                    logging_bridge.error({
                        "component": "job_relay.engine",
                        "op": "producer_errors",
                        "kind": k,
                        "source": res.source,
                        "errors": res.errors,
                    })
            feeds.extend(results)

    # Keep configured order so runs are reproducible regardless of thread timing.
    order = {pc.source: i for i, pc in enumerate(settings.selected_producers())}
    feeds.sort(key=lambda f: order.get(f.source, len(order)))
    return feeds, durations_us


# =============================================================================
# STORE MAINTENANCE
# =============================================================================
def cleanup_store(
    sqlite_path: str,
    rules: FilterRules | None = None,
    *,
    namespace: str | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """
    Re-apply the content rules (blacklist, excluded, required) to cached rows
    and delete the ones that no longer pass, e.g. after tightening the rule
    lists. Role scope is not re-checked.
    """
    engine = RelevanceRuleEngine(rules)
    rows = cache_db.fetch_rows(sqlite_path, namespace)
    doomed: dict[str, list[str]] = {}
    reasons: dict[str, int] = {}
    for row in rows:
        rec = normalize(
            RawPosting(
                title=row["title"],
                source=row["source"],
                company=row["company"],
                location=row["location"],
                description=row["description"],
            )
        )
        decision = engine.evaluate(rec, check_role=False)
        if not decision.accepted:
            doomed.setdefault(row["namespace"], []).append(row["id"])
            reasons[decision.rule] = reasons.get(decision.rule, 0) + 1

    removed = 0
    if not dry_run:
        for ns, ids in doomed.items():
            removed += cache_db.delete_ids(sqlite_path, ids, ns)

    summary = {
        "checked": len(rows),
        "irrelevant": sum(len(v) for v in doomed.values()),
        "removed": removed,
        "by_rule": reasons,
        "by_namespace": {ns: len(ids) for ns, ids in doomed.items()},
        "dry_run": dry_run,
    }
    logging_bridge.activity({"component": "job_relay.engine", "op": "cleanup", **summary})
    return summary
