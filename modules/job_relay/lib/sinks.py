from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Mapping

from . import logging_bridge, render
from .http_client import HttpClient
from .models import Notification


class SinkError(RuntimeError):
    """A single send failed. The dispatcher logs it and moves on."""


class NotificationSink(ABC):
    """
    Delivery interface. One call delivers one notification (header or batch)
    to one destination; failures raise SinkError.
    """

    @abstractmethod
    async def send(self, destination: str, message: Notification) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release any held resources. Default: nothing to do."""


class DestinationResolver:
    """
    bucket key -> destination (webhook URL, channel id, ...), or None.
    `fallback` is only meant for dry runs, where every bucket should be
    previewed even without configured destinations.
    """

    def __init__(self, mapping: Mapping[str, str] | None = None, *, fallback: str | None = None) -> None:
        self._mapping = {str(k).strip(): str(v).strip() for k, v in (mapping or {}).items() if str(v).strip()}
        self.fallback = fallback

    def resolve(self, bucket: str) -> str | None:
        return self._mapping.get(bucket) or self.fallback

    def __contains__(self, bucket: str) -> bool:
        return bucket in self._mapping


class WebhookSink(NotificationSink):
    """
    POST rendered payloads to a webhook URL. Blocking requests calls run in a
    worker thread so the dispatcher's event loop keeps its timing.
    """

    def __init__(self, http: HttpClient | None = None) -> None:
        self.http = http or HttpClient()

    async def send(self, destination: str, message: Notification) -> None:
        for payload in render.to_webhook_payloads(message):
            try:
                await asyncio.to_thread(self.http.post_json, destination, payload)
            except Exception as e:
                raise SinkError(f"webhook POST failed for {message.bucket} ({message.kind}): {e!r}") from e

    def close(self) -> None:
        self.http.close()


class LogSink(NotificationSink):
    """Dry-run sink: every notification becomes an activity record."""

    async def send(self, destination: str, message: Notification) -> None:
        logging_bridge.activity({
            "component": "job_relay.sinks",
            "op": "dry_run_send",
            "bucket": message.bucket,
            "kind": message.kind,
            "count": message.count,
            "batch_index": message.index,
            "text": render.to_text(message),
        })
