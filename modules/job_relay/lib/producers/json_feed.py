from __future__ import annotations

import json
from typing import Any

from ..config import ProducerConfig
from ..http_client import HttpClient
from ..models import FeedResult
from .base import BaseProducer, build_result
from .registry import register


@register
class JsonFeedProducer(BaseProducer):
    """
    Reads postings exported by an external scraper.

    spec.params:
      - path: local file holding a JSON array, {"jobs": [...]}, or JSON Lines
      - url:  alternatively, an HTTP endpoint returning the same JSON shapes
      - role / category / trusted defaults (see build_result)

    Read failures are reported in FeedResult.errors; the run carries on with
    the other sources.
    """

    kind = "json_feed"

    def __init__(self, http: HttpClient | None = None) -> None:
        self._http = http

    def run(
        self,
        specs: list[ProducerConfig],
        *,
        skip_network: bool,
    ) -> list[FeedResult]:
        results: list[FeedResult] = []
        try:
            for spec in specs:
                params = dict(spec.params or {})
                try:
                    if params.get("path"):
                        data = _read_file(str(params["path"]))
                    elif params.get("url"):
                        if skip_network:
                            results.append(FeedResult(source=spec.source, errors=["skipped: skip_network"]))
                            continue
                        data = self._client().get_json(str(params["url"]))
                    else:
                        results.append(FeedResult(source=spec.source, errors=["json_feed needs 'path' or 'url'"]))
                        continue
                except (OSError, ValueError) as e:
                    results.append(FeedResult(source=spec.source, errors=[f"read failed: {e}"]))
                    continue
                results.append(build_result(spec, _unwrap(data)))
        finally:
            if self._http is not None:
                self._http.close()
        return results

    def _client(self) -> HttpClient:
        if self._http is None:
            self._http = HttpClient()
        return self._http


def _unwrap(data: Any) -> Any:
    if isinstance(data, dict):
        for key in ("jobs", "items", "postings"):
            if isinstance(data.get(key), list):
                return data[key]
    return data


def _read_file(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        text = f.read()
    stripped = text.lstrip()
    if stripped.startswith(("[", "{")) and not path.lower().endswith(".jsonl"):
        return json.loads(text)
    # JSON Lines
    return [json.loads(line) for line in text.splitlines() if line.strip()]
