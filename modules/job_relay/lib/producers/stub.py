from __future__ import annotations

from typing import Any

from ..config import ProducerConfig
from ..models import FeedResult
from .base import BaseProducer, build_result
from .registry import register


@register
class StubProducer(BaseProducer):
    """
    A zero-network producer used for tests and dry-runs.

    Each spec.params may contain:
      - items: list[{title, company, location, url, postedDate, ...}]
      - errors: list[str]   # OPTIONAL, propagated to FeedResult
      - role / category / trusted defaults (see build_result)
    """

    kind = "stub"

    def run(
        self,
        specs: list[ProducerConfig],
        *,
        skip_network: bool,
    ) -> list[FeedResult]:
        results: list[FeedResult] = []
        for spec in specs:
            params: dict[str, Any] = dict(spec.params or {})
            errors = params.get("errors") or []
            if not isinstance(errors, list):
                errors = [str(errors)]
            results.append(build_result(spec, params.get("items") or [], [str(e) for e in errors]))
        return results
