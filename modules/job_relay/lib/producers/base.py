from __future__ import annotations

from abc import ABC, abstractmethod

from ..config import ProducerConfig
from ..models import FeedResult, RawPosting
from ..utils import truthy


class ProducerError(Exception):
    """Base exception for producer failures."""


class BaseProducer(ABC):
    """
    Abstract producer interface.

    One instance processes a list of specs for a given 'kind' SEQUENTIALLY;
    the engine may run different kinds in parallel.

    Contract:
      - run(specs, skip_network) returns a LIST of FeedResult, one per spec/source.
      - Do NOT send notifications, print, or mutate global state.
      - Return *all* postings found (filtering and dedupe happen downstream).
    """

    # Concrete subclasses MUST set this to a stable string, e.g. "json_feed", "stub"
    kind: str = ""

    @abstractmethod
    def run(
        self,
        specs: list[ProducerConfig],
        *,
        skip_network: bool,
    ) -> list[FeedResult]:
        raise NotImplementedError


def build_result(spec: ProducerConfig, raw_items: object, errors: list[str] | None = None) -> FeedResult:
    """
    Turn a list of loosely-shaped dicts into a FeedResult for `spec`.
    Items without a title are dropped (and counted as an error line).
    spec.params may carry defaults applied to every item:
      role: "intern" | "new_grad" | "both"
      category: category hint, e.g. "business_analyst"
      trusted: curated feed, skips the relevance rule table
    """
    params = dict(spec.params or {})
    defaults = {k: params[k] for k in ("role", "category") if params.get(k)}
    errs = list(errors or [])

    items: list[RawPosting] = []
    if not isinstance(raw_items, list):
        raw_items = []
    untitled = 0
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        posting = RawPosting.from_dict(item, source=spec.source, defaults=defaults)
        if not posting.title.strip():
            untitled += 1
            continue
        items.append(posting)
    if untitled:
        errs.append(f"{untitled} item(s) without a title were dropped")

    return FeedResult(source=spec.source, items=items, trusted=truthy(params.get("trusted")), errors=errs)
