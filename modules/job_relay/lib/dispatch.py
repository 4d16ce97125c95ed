"""
Rate-limited, round-robin fan-out of routed buckets to sink destinations.

Each bucket becomes a queue: one header, then batches of at most
`batch_size` records. The scheduler takes one item from each non-empty queue
in turn (header A, header B, batch A0, batch B0, batch A1, ...) so a large
bucket cannot starve a small one, and it finishes once every queue is
empty. A fixed delay is awaited before every send. A failed send is logged
and skipped; the schedule keeps going.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterator, Mapping

from . import logging_bridge
from .models import CanonicalRecord, DispatchReport, Notification
from .router import split_bucket_key
from .sinks import DestinationResolver, NotificationSink
from .utils import chunked

Sleep = Callable[[float], Awaitable[None]]


def build_queue(bucket: str, records: list[CanonicalRecord], batch_size: int) -> deque[Notification]:
    role, category = split_bucket_key(bucket)
    queue: deque[Notification] = deque()
    queue.append(Notification(kind="header", bucket=bucket, role=role, category=category, count=len(records)))
    for i, batch in enumerate(chunked(records, batch_size)):
        queue.append(
            Notification(
                kind="batch",
                bucket=bucket,
                role=role,
                category=category,
                count=len(batch),
                records=tuple(batch),
                index=i,
            )
        )
    return queue


def round_robin(queues: Mapping[str, deque[Notification]]) -> Iterator[Notification]:
    """Yield one item per non-empty queue per pass until all are drained."""
    active = deque(key for key, q in queues.items() if q)
    while active:
        key = active.popleft()
        q = queues[key]
        yield q.popleft()
        if q:
            active.append(key)


class Dispatcher:
    def __init__(
        self,
        sink: NotificationSink,
        resolver: DestinationResolver,
        *,
        batch_size: int = 10,
        inter_send_delay: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be >= 1")
        self.sink = sink
        self.resolver = resolver
        self.batch_size = batch_size
        self.inter_send_delay = max(0.0, float(inter_send_delay))
        self.sleep = sleep

    async def dispatch(self, buckets: Mapping[str, list[CanonicalRecord]]) -> DispatchReport:
        report = DispatchReport()
        queues: dict[str, deque[Notification]] = {}
        destinations: dict[str, str] = {}

        for bucket, records in buckets.items():
            if not records:
                continue
            dest = self.resolver.resolve(bucket)
            if not dest:
                report.skipped_buckets.append(bucket)
                logging_bridge.error({
                    "component": "job_relay.dispatch",
                    "op": "route_unresolved",
                    "bucket": bucket,
                    "records": len(records),
                })
                continue
            destinations[bucket] = dest
            queues[bucket] = build_queue(bucket, records, self.batch_size)
            report.batches_by_bucket[bucket] = len(queues[bucket]) - 1

        for message in round_robin(queues):
            await self.sleep(self.inter_send_delay)
            try:
                await self.sink.send(destinations[message.bucket], message)
                report.sent += 1
            except Exception as e:
                report.failed += 1
                logging_bridge.error({
                    "component": "job_relay.dispatch",
                    "op": "send_failed",
                    "bucket": message.bucket,
                    "kind": message.kind,
                    "batch_index": message.index,
                    "count": message.count,
                    "error": repr(e),
                })

        logging_bridge.activity({
            "component": "job_relay.dispatch",
            "op": "summary",
            **report.as_dict(),
        })
        return report
