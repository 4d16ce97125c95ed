from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from . import models
from .models import CanonicalRecord
from .relevance import RelevanceRuleEngine

SEPARATOR = "::"


def bucket_key(role: str, category: str) -> str:
    return f"{role}{SEPARATOR}{category}"


def split_bucket_key(key: str) -> tuple[str, str]:
    role, _, category = key.partition(SEPARATOR)
    return role, category


class Router:
    """
    Partition classified records into "role::category" buckets.

    Effective role: the record's explicit intern/new_grad role; otherwise
    ("both" or unknown) the title's intern markers, then its new-grad
    markers; otherwise the default role ("both" collapses to intern).
    """

    def __init__(self, engine: RelevanceRuleEngine | None = None) -> None:
        self.engine = engine or RelevanceRuleEngine()

    def effective_role(self, record: CanonicalRecord, default_role: str = models.BOTH) -> str:
        if record.role in (models.INTERN, models.NEW_GRAD):
            return record.role
        if self.engine.is_intern_title(record.normalized_title):
            return models.INTERN
        if self.engine.is_new_grad_title(record.normalized_title):
            return models.NEW_GRAD
        return models.NEW_GRAD if default_role == models.NEW_GRAD else models.INTERN

    def route(
        self,
        records: Iterable[CanonicalRecord],
        default_role: str = models.BOTH,
    ) -> dict[str, list[CanonicalRecord]]:
        buckets: dict[str, list[CanonicalRecord]] = {}
        for rec in records:
            role = self.effective_role(rec, default_role)
            category = rec.category or models.SOFTWARE_ENGINEERING
            routed = replace(rec, role=role, category=category)
            buckets.setdefault(bucket_key(role, category), []).append(routed)
        return buckets
