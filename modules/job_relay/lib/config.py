from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

import yaml

from . import models
from .utils import truthy


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env/files cannot form valid Settings or FilterRules."""


# -----------------------------
# Filter rule data
# -----------------------------
_EXCLUDED_TERMS = [
    # Non-software engineering disciplines
    "geotechnical", "civil", "mechanical", "electrical", "chemical", "biomedical",
    "environmental", "aerospace", "nuclear", "petroleum", "mining", "construction",
    "hvac", "plumbing", "welding", "manufacturing", "assembly",
    "field service", "field engineer", "field technician", "maintenance", "repair",
    "quality assurance engineer", "qa engineer", "test engineer", "validation engineer",
    "process engineer", "project engineer", "design engineer", "sales engineer",
    "application engineer", "field application", "technical support engineer",
    "hardware engineer", "firmware engineer", "embedded engineer", "rf engineer",
    "analog engineer", "digital design engineer", "circuit", "pcb", "asic", "fpga",
    "water resources", "structural", "transportation", "urban planning", "surveying",
    "materials engineer", "metallurgical", "packaging engineer",
    "safety engineer", "compliance engineer", "clinical engineer",
    "bioprocess", "pharmaceutical", "medical device", "laboratory",
    "facility engineer", "building engineer", "energy engineer",
    "power engineer", "control engineer", "instrumentation", "automation engineer",
    "industrial engineer", "logistics engineer", "supply chain engineer",
    # Seniority / non-engineering roles
    "manager", "director", "lead", "principal", "senior", "sr.", "staff", "architect",
    "consultant", "advisor", "coordinator", "recruiter", "human resources",
    "marketing", "sales", "finance", "accounting", "legal",
    "scrum master", "agile coach", "financial analyst", "market analyst", "policy analyst",
]

_REQUIRED_TERMS = [
    "software engineer",
    "software developer",
    "software development",
    "developer",
    "backend",
    "frontend",
    "full stack",
    "data engineer",
    "data scientist",
    "data science",
    "machine learning",
    "ml engineer",
    "ai engineer",
    "artificial intelligence",
    "data analyst",
    "business analyst",
    "analytics",
    "business intelligence",
]

_INTERN_MARKERS = ["intern", "interns", "internship", "co-op", "coop", "student"]

_NEW_GRAD_MARKERS = [
    "new grad",
    "new graduate",
    "graduate",
    "entry level",
    "entry-level",
    "junior",
    "early career",
]

_NEW_GRAD_PATTERNS = [
    r"\b(?:engineer|developer|scientist|analyst)\s*(?:i|1)\b",
    r"\b(?:sde|swe)\s*-?\s*(?:i|1)\b",
    r"\blevel\s*(?:i|1)\b",
]

_CATEGORY_KEYWORDS: dict[str, list[str]] = {
    models.DATA_SCIENCE_ENGINEER: [
        "data scientist",
        "data science",
        "data engineer",
        "machine learning",
        "ml engineer",
        "mlops",
        "ai engineer",
        "artificial intelligence",
        "deep learning",
        "computer vision",
        "nlp",
        "research scientist",
        "applied scientist",
    ],
    models.DATA_ANALYSIS: [
        "data analyst",
        "data analysis",
        "business analyst",
        "analytics",
        "business intelligence",
        "bi analyst",
        "reporting analyst",
    ],
    models.SOFTWARE_ENGINEERING: [
        "software",
        "developer",
        "backend",
        "back-end",
        "frontend",
        "front-end",
        "full stack",
        "fullstack",
        "devops",
        "site reliability",
        "platform engineer",
        "mobile engineer",
        "web engineer",
    ],
}

_CATEGORY_ALIASES = {
    "software_engineering": models.SOFTWARE_ENGINEERING,
    "software_engineer": models.SOFTWARE_ENGINEERING,
    "software": models.SOFTWARE_ENGINEERING,
    "swe": models.SOFTWARE_ENGINEERING,
    "data_analysis": models.DATA_ANALYSIS,
    "data_analyst": models.DATA_ANALYSIS,
    "business_analyst": models.DATA_ANALYSIS,
    "business_analysis": models.DATA_ANALYSIS,
    "analytics": models.DATA_ANALYSIS,
    "data_science_engineer": models.DATA_SCIENCE_ENGINEER,
    "data_science": models.DATA_SCIENCE_ENGINEER,
    "data_scientist": models.DATA_SCIENCE_ENGINEER,
    "data_engineer": models.DATA_SCIENCE_ENGINEER,
    "machine_learning": models.DATA_SCIENCE_ENGINEER,
    "ai_ml": models.DATA_SCIENCE_ENGINEER,
}

_COMPANY_BLACKLIST = [
    "confidential",
    "confidential company",
    "hiring company",
    "unknown company",
    "company name not available",
    "not specified",
    "n/a",
]


@dataclass(frozen=True)
class FilterRules:
    """
    All term lists, marker lists and keyword tables the pipeline matches
    against. Defaults live in this module; a JSON/YAML file may override any
    field by name.
    """

    excluded_terms: tuple[str, ...] = tuple(_EXCLUDED_TERMS)
    required_terms: tuple[str, ...] = tuple(_REQUIRED_TERMS)
    required_terms_secondary_pass: bool = False
    intern_markers: tuple[str, ...] = tuple(_INTERN_MARKERS)
    new_grad_markers: tuple[str, ...] = tuple(_NEW_GRAD_MARKERS)
    new_grad_patterns: tuple[str, ...] = tuple(_NEW_GRAD_PATTERNS)
    category_keywords: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: {k: tuple(v) for k, v in _CATEGORY_KEYWORDS.items()}
    )
    category_aliases: dict[str, str] = field(default_factory=lambda: dict(_CATEGORY_ALIASES))
    company_blacklist: tuple[str, ...] = tuple(_COMPANY_BLACKLIST)

    @classmethod
    def defaults(cls) -> FilterRules:
        return cls()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> FilterRules:
        """
        Overlay `data` onto the defaults. Unknown keys raise ConfigError so
        typos in rule files do not silently fall back to defaults.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown filter rule field(s): {unknown}")

        updates: dict[str, Any] = {}
        for key, value in data.items():
            if key == "required_terms_secondary_pass":
                updates[key] = truthy(value)
            elif key == "category_keywords":
                if not isinstance(value, Mapping):
                    raise ConfigError("'category_keywords' must be a mapping of category -> list.")
                merged = dict(cls().category_keywords)
                for cat, terms in value.items():
                    merged[str(cat)] = _as_terms(terms, f"category_keywords.{cat}")
                updates[key] = merged
            elif key == "category_aliases":
                if not isinstance(value, Mapping):
                    raise ConfigError("'category_aliases' must be a mapping of alias -> category.")
                merged_aliases = dict(cls().category_aliases)
                merged_aliases.update({str(k).strip().lower(): str(v) for k, v in value.items()})
                updates[key] = merged_aliases
            else:
                updates[key] = _as_terms(value, key)

        rules = replace(cls(), **updates)
        _validate_rules(rules)
        return rules

    @classmethod
    def from_file(cls, path: str) -> FilterRules:
        return cls.from_mapping(_read_mapping(path))


# -----------------------------
# Producer + run settings
# -----------------------------
PERIODS = ("day", "three_days", "week", "month", "three_months")


@dataclass(frozen=True)
class ProducerConfig:
    """
    One logical producer invocation specification.
    - kind: producer family (e.g., "json_feed", "stub")
    - source: stable label used in logs, the store namespace and summaries
    - params: arbitrary dict passed to the producer (path, items, role, category, trusted, ...)
    """

    kind: str
    source: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Settings:
    """
    Canonical configuration for a 'job_relay' run.

    Producers come from either an inline `producers` list or a JSON/YAML file
    at `producers_path` (a flat list of {"kind", "source", "params"} objects).
    """

    producers_path: str | None = None
    producers: list[ProducerConfig] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)  # optional subset filter

    # Store
    sqlite_path: str = "/app/local/state/jobrelay.db"
    max_cache_size: int = 5000
    cross_source_dedupe: bool = False

    # Filtering
    rules_path: str | None = None
    role: str | None = models.BOTH
    period: str = "day"
    default_role: str = models.BOTH
    timezone: str = "UTC"
    max_new_per_run: int = 0  # 0 = unlimited

    # Dispatch
    batch_size: int = 10
    inter_send_delay_ms: int = 2000
    destinations: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    # Runtime behavior
    max_threads: int = 8
    skip_network: bool = False

    _rules: FilterRules | None = field(default=None, repr=False)

    # ------------- convenience -------------
    @property
    def inter_send_delay(self) -> float:
        return self.inter_send_delay_ms / 1000.0

    def filter_rules(self) -> FilterRules:
        if self._rules is None:
            self._rules = FilterRules.from_file(self.rules_path) if self.rules_path else FilterRules.defaults()
        return self._rules

    def selected_producers(self) -> list[ProducerConfig]:
        if not self.sources:
            return list(self.producers)
        wanted = {s.strip().lower() for s in self.sources}
        return [p for p in self.producers if p.source.lower() in wanted]

    def group_by_kind(self) -> dict[str, list[ProducerConfig]]:
        """
        Partition selected producers by their 'kind' for the engine's fan-out.
        """
        by_kind: dict[str, list[ProducerConfig]] = {}
        for pc in self.selected_producers():
            by_kind.setdefault(pc.kind, []).append(pc)
        return by_kind

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional unless stated otherwise):

            producers_path: str          # JSON/YAML list of producers
            producers: list[dict]        # inline alternative (one of the two is required)
            sources: list[str] | str     # run only these sources (comma-separated ok)

            sqlite_path: str = "/app/local/state/jobrelay.db"
            max_cache_size: int = 5000   # per source
            cross_source_dedupe: bool = false

            rules_path: str              # optional FilterRules override file
            role: "intern" | "new_grad" | "both" | "" = "both"
            period: "day" | "three_days" | "week" | "month" | "three_months" = "day"
            default_role: "intern" | "new_grad" | "both" = "both"
            timezone: str = "UTC"
            max_new_per_run: int = 0

            batch_size: int = 10
            inter_send_delay_ms: int = 2000
            destinations: {"intern::software_engineering": "https://...", ...}
            destinations_env: {"intern::software_engineering": "ENV_VAR_NAME", ...}
            dry_run: bool = false        # log notifications instead of POSTing

            max_threads: int = 8
            skip_network: bool = false

        Environment fallbacks: JOB_RELAY_SQLITE_PATH, JOB_RELAY_RULES_PATH,
        JOB_RELAY_DRY_RUN.
        """
        kw = dict(kwargs or {})

        producers_path = kw.get("producers_path")
        if producers_path is not None:
            producers_path = str(producers_path).strip() or None

        inline = kw.get("producers")
        if inline:
            producers = _parse_producers_list(inline)
        elif producers_path:
            producers = _parse_producers_list(_read_any(producers_path))
        else:
            raise ConfigError("Missing producers. Provide 'producers_path' or an inline 'producers' list.")

        sources = kw.get("sources") or []
        if isinstance(sources, str):
            sources = [s for s in (x.strip() for x in sources.split(",")) if s]

        role = kw.get("role", models.BOTH)
        role = (str(role).strip().lower() or None) if role is not None else None

        rules_path = kw.get("rules_path") or os.getenv("JOB_RELAY_RULES_PATH") or None

        settings = cls(
            producers_path=producers_path,
            producers=producers,
            sources=[str(s) for s in sources],
            sqlite_path=str(kw.get("sqlite_path") or os.getenv("JOB_RELAY_SQLITE_PATH") or "/app/local/state/jobrelay.db"),
            max_cache_size=_int(kw.get("max_cache_size"), 5000),
            cross_source_dedupe=truthy(kw.get("cross_source_dedupe")),
            rules_path=str(rules_path) if rules_path else None,
            role=role,
            period=str(kw.get("period") or "day").strip().lower(),
            default_role=str(kw.get("default_role") or models.BOTH).strip().lower(),
            timezone=str(kw.get("timezone") or "UTC"),
            max_new_per_run=_int(kw.get("max_new_per_run"), 0),
            batch_size=_int(kw.get("batch_size"), 10),
            inter_send_delay_ms=_int(kw.get("inter_send_delay_ms"), 2000),
            destinations=_resolve_destinations(kw.get("destinations"), kw.get("destinations_env")),
            dry_run=truthy(kw.get("dry_run", os.getenv("JOB_RELAY_DRY_RUN"))),
            max_threads=_int(kw.get("max_threads"), 8),
            skip_network=truthy(kw.get("skip_network")),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _int(v: Any, default: int) -> int:
    if v is None or v == "":
        return default
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Expected an integer, got {v!r}") from e


def _as_terms(value: Any, name: str) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{name}' must be a list of strings.")
    out = []
    for i, v in enumerate(value):
        if not isinstance(v, str) or not v.strip():
            raise ConfigError(f"'{name}[{i}]' must be a non-empty string.")
        out.append(v.strip().lower())
    return tuple(out)


def _validate_rules(rules: FilterRules) -> None:
    for pat in rules.new_grad_patterns:
        try:
            re.compile(pat)
        except re.error as e:
            raise ConfigError(f"Invalid new_grad pattern {pat!r}: {e}") from e
    for alias, target in rules.category_aliases.items():
        if target not in models.CATEGORIES:
            raise ConfigError(f"Category alias {alias!r} points to unknown category {target!r}.")
    for cat in rules.category_keywords:
        if cat not in models.CATEGORIES:
            raise ConfigError(f"Unknown category in category_keywords: {cat!r}")


def _resolve_destinations(direct: Any, via_env: Any) -> dict[str, str]:
    """
    Merge literal destinations with env-indirected ones
    ({"bucket": "ENV_VAR_NAME"} -> os.getenv). Empty env values are dropped.
    """
    out: dict[str, str] = {}
    for label, value in (("destinations", direct), ("destinations_env", via_env)):
        if not value:
            continue
        if not isinstance(value, Mapping):
            raise ConfigError(f"'{label}' must be an object mapping bucket -> value.")
        for bucket, v in value.items():
            target = os.getenv(str(v).strip(), "") if label == "destinations_env" else str(v)
            if target.strip():
                out[str(bucket).strip()] = target.strip()
    return out


def _read_mapping(path: str) -> dict[str, Any]:
    data = _read_any(path)
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level of {path} must be an object.")
    return data


def _read_any(path: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"job_relay config file not found: {path}") from e
    if path.lower().endswith((".yml", ".yaml")):
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"job_relay config file is invalid YAML: {path}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"job_relay config file is invalid JSON: {path}") from e


def _parse_producers_list(value: Any) -> list[ProducerConfig]:
    """
    Parse a flat list into ProducerConfig objects.
    Accepts: [{"kind": "...", "source": "...", "params": {...}}, ...]
    """
    if not value:
        return []
    if not isinstance(value, list):
        raise ConfigError("Expected a list of producer objects.")
    out: list[ProducerConfig] = []
    for i, item in enumerate(value):
        if isinstance(item, ProducerConfig):
            out.append(item)
            continue
        if not isinstance(item, dict):
            raise ConfigError(f"Item[{i}] must be an object.")
        kind = item.get("kind")
        source = item.get("source")
        params = item.get("params") or {}
        if not kind or not source:
            raise ConfigError(f"Item[{i}] requires 'kind' and 'source'.")
        if not isinstance(params, dict):
            raise ConfigError(f"Item[{i}].params must be an object.")
        out.append(ProducerConfig(kind=str(kind), source=str(source), params=dict(params)))
    return out


def _validate_settings(s: Settings) -> None:
    if not s.producers:
        raise ConfigError("No producers configured.")
    if s.sources and not s.selected_producers():
        raise ConfigError(f"None of the requested sources are configured: {s.sources}")
    if s.role is not None and s.role not in models.ROLES:
        raise ConfigError(f"'role' must be one of {models.ROLES} (got {s.role!r}).")
    if s.default_role not in models.ROLES:
        raise ConfigError(f"'default_role' must be one of {models.ROLES} (got {s.default_role!r}).")
    if s.period not in PERIODS:
        raise ConfigError(f"'period' must be one of {PERIODS} (got {s.period!r}).")
    if s.batch_size <= 0:
        raise ConfigError("'batch_size' must be >= 1.")
    if s.inter_send_delay_ms < 0:
        raise ConfigError("'inter_send_delay_ms' must be >= 0.")
    if s.max_cache_size <= 0:
        raise ConfigError("'max_cache_size' must be >= 1.")
    if s.max_new_per_run < 0:
        raise ConfigError("'max_new_per_run' must be >= 0.")
    if s.max_threads <= 0:
        raise ConfigError("'max_threads' must be >= 1.")
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
    for bucket in s.destinations:
        role, _, category = bucket.partition("::")
        if role not in (models.INTERN, models.NEW_GRAD) or category not in models.CATEGORIES:
            raise ConfigError(f"Destination key {bucket!r} is not a valid 'role::category' bucket.")

    # Load rules eagerly so a broken rules file fails at config time.
    s.filter_rules()
