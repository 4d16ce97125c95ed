# modules/job_relay/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .cache import JobCache, StoreError
from .config import ConfigError, FilterRules, ProducerConfig, Settings
from .engine import Pipeline, cleanup_store, run_once
from .models import CanonicalRecord, FeedResult, Notification, RawPosting

# Ensure built-in producers register themselves.
from .producers import json_feed as _json_feed  # noqa: F401
from .producers import stub as _stub  # noqa: F401

__all__ = [
    "CanonicalRecord",
    "ConfigError",
    "FeedResult",
    "FilterRules",
    "JobCache",
    "Notification",
    "Pipeline",
    "ProducerConfig",
    "RawPosting",
    "Settings",
    "StoreError",
    "cleanup_store",
    "run_once",
]
