"""
Ordered relevance rule table.

Rules run top to bottom and stop at the first rejection:

    company_blacklist -> excluded_terms -> required_terms -> role_scope -> accept

Term lists match as case-insensitive substrings of the *title* (the
required-terms rule may optionally retry against title + description +
company). Role markers match whole words so "intern" never fires on
"internal".
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from . import models
from .config import FilterRules
from .models import CanonicalRecord
from .utils import contains_any, contains_word


@dataclass(frozen=True)
class RuleDecision:
    accepted: bool
    rule: str  # name of the deciding rule ("accept" when nothing rejected)
    reason: str = ""


# A rule returns a rejection reason, or None to pass the record on.
Rule = Callable[[CanonicalRecord, "str | None"], "str | None"]


class RelevanceRuleEngine:
    def __init__(self, rules: FilterRules | None = None) -> None:
        self.rules = rules or FilterRules.defaults()
        self._new_grad_res = [re.compile(p, re.IGNORECASE) for p in self.rules.new_grad_patterns]
        self.table: list[tuple[str, Rule]] = [
            ("company_blacklist", self._company_blacklist),
            ("excluded_terms", self._excluded_terms),
            ("required_terms", self._required_terms),
            ("role_scope", self._role_scope),
        ]

    # ---- Public API ----
    def evaluate(self, record: CanonicalRecord, role: str | None = None, *, check_role: bool = True) -> RuleDecision:
        if not record.normalized_title:
            return RuleDecision(False, "missing_title", "record has no title")
        for name, rule in self.table:
            if name == "role_scope" and not check_role:
                continue
            reason = rule(record, role)
            if reason is not None:
                return RuleDecision(False, name, reason)
        return RuleDecision(True, "accept")

    def is_relevant(self, record: CanonicalRecord, role: str | None = None) -> bool:
        return self.evaluate(record, role).accepted

    # ---- Markers (shared with the router) ----
    def is_intern_title(self, title: str) -> bool:
        return contains_word(title, self.rules.intern_markers) is not None

    def is_new_grad_title(self, title: str) -> bool:
        if contains_word(title, self.rules.new_grad_markers) is not None:
            return True
        return any(rx.search(title or "") for rx in self._new_grad_res)

    # ---- Rules ----
    def _company_blacklist(self, record: CanonicalRecord, role: str | None) -> str | None:
        company = record.normalized_company
        if not company:
            return None
        for term in self.rules.company_blacklist:
            if company == term or term in company:
                return f"company {record.company!r} is blacklisted ({term!r})"
        return None

    def _excluded_terms(self, record: CanonicalRecord, role: str | None) -> str | None:
        hit = contains_any(record.normalized_title, self.rules.excluded_terms)
        if hit:
            return f"title contains excluded term {hit!r}"
        return None

    def _required_terms(self, record: CanonicalRecord, role: str | None) -> str | None:
        if contains_any(record.normalized_title, self.rules.required_terms):
            return None
        if self.rules.required_terms_secondary_pass:
            full_text = f"{record.normalized_title} {record.description.lower()} {record.normalized_company}"
            if contains_any(full_text, self.rules.required_terms):
                return None
        return "no required term in title"

    def _role_scope(self, record: CanonicalRecord, role: str | None) -> str | None:
        title = record.normalized_title
        if role == models.INTERN:
            return None if self.is_intern_title(title) else "not an intern title"
        if role == models.NEW_GRAD:
            return None if self.is_new_grad_title(title) else "not a new-grad title"
        # both / unspecified
        if self.is_intern_title(title) or self.is_new_grad_title(title):
            return None
        return "neither an intern nor a new-grad title"
