from __future__ import annotations

from . import models
from .config import FilterRules
from .models import CanonicalRecord
from .utils import contains_any

# Fixed priority: the more specific families win over generic "software".
PRIORITY = (models.DATA_SCIENCE_ENGINEER, models.DATA_ANALYSIS, models.SOFTWARE_ENGINEERING)


class Classifier:
    """
    Title keywords first, then the producer's category hint (through the
    alias table), then keywords over the full text, then the
    software_engineering default.
    """

    def __init__(self, rules: FilterRules | None = None) -> None:
        self.rules = rules or FilterRules.defaults()

    def classify(self, record: CanonicalRecord) -> str:
        by_title = self._match(record.normalized_title)
        if by_title:
            return by_title

        hinted = self.resolve_alias(record.category_hint)
        if hinted:
            return hinted

        full_text = f"{record.normalized_title} {record.description.lower()} {record.normalized_company}"
        return self._match(full_text) or models.SOFTWARE_ENGINEERING

    def resolve_alias(self, hint: str | None) -> str | None:
        if not hint:
            return None
        key = hint.strip().lower().replace("-", "_").replace(" ", "_")
        return self.rules.category_aliases.get(key)

    def _match(self, text: str) -> str | None:
        for category in PRIORITY:
            if contains_any(text, self.rules.category_keywords.get(category, ())):
                return category
        return None
