# service/config_schema.py
"""
Service configuration: which pipeline runs to schedule and when.

    {
      "timezone": "America/New_York",
      "jobs": [
        {
          "id": "daily-relay",
          "module": "modules.job_relay",          # default when omitted
          "trigger": {"cron": "0 14 * * *"},      # or {"interval": {"hours": 6}}
          "kwargs": {"producers_path": "...", "period": "day"},
          "timeout_sec": 1800,
          "max_instances": 1,
          "coalesce": true,
          "misfire_grace_time": 300
        }
      ]
    }

JSON or YAML (PyYAML). Path: explicit argument, else $CONFIG_PATH, else an
empty config.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_MODULE = "modules.job_relay"

_TRIGGER_FIELDS = ("cron", "interval")
_INTERVAL_FIELDS = {"weeks", "days", "hours", "minutes", "seconds", "jitter", "timezone", "start_date", "end_date"}


class ConfigError(ValueError):
    """Raised when the config is invalid."""


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the service configuration.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['CONFIG_PATH'] (if set)
      3) Internal default (empty config with empty jobs list)

    Returns:
        dict with at least {"jobs": [...], "timezone": str}.
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if not resolved_path:
        logger.info("CONFIG_PATH not provided; using empty default config.")
        cfg: dict[str, Any] = {"jobs": []}
    else:
        cfg = _read_any(resolved_path)

    _apply_top_level_defaults(cfg)
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate the configuration. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    jobs = cfg.get("jobs")
    if jobs is None:
        raise ConfigError("Missing required top-level 'jobs' list.")
    if not isinstance(jobs, list):
        raise ConfigError("'jobs' must be a list.")

    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    seen_ids: set[str] = set()
    for idx, job in enumerate(jobs):
        if not isinstance(job, dict):
            raise ConfigError(f"Job at index {idx} must be an object/dict.")

        module = job.get("module", DEFAULT_MODULE)
        if not isinstance(module, str) or not module.strip():
            raise ConfigError(f"Job {idx}: 'module' must be a non-empty string.")

        job_id = _derive_job_id(job, idx)
        if job_id in seen_ids:
            raise ConfigError(f"Duplicate job id '{job_id}'.")
        seen_ids.add(job_id)

        trigger = job.get("trigger")
        if not isinstance(trigger, dict):
            raise ConfigError(f"Job '{job_id}': 'trigger' object is required.")
        present = [k for k in _TRIGGER_FIELDS if trigger.get(k) is not None]
        if len(present) != 1:
            raise ConfigError(f"Job '{job_id}': exactly one trigger required among {', '.join(_TRIGGER_FIELDS)}.")

        if "cron" in present:
            cron = trigger["cron"]
            if isinstance(cron, str):
                if len(cron.split()) not in (5, 6):
                    raise ConfigError(f"Job '{job_id}': cron string must have 5 or 6 fields.")
            elif not isinstance(cron, dict):
                raise ConfigError(f"Job '{job_id}': cron must be a crontab string or an object.")
        else:
            interval = trigger["interval"]
            if not isinstance(interval, dict):
                raise ConfigError(f"Job '{job_id}': interval must be an object of time kwargs.")
            unknown = set(interval) - _INTERVAL_FIELDS
            if unknown:
                raise ConfigError(f"Job '{job_id}': interval has unknown field(s): {sorted(unknown)}")
            for k in ("weeks", "days", "hours", "minutes", "seconds"):
                if k in interval:
                    _to_int(interval[k], field=f"interval.{k}", job_id=job_id, allow_zero=True)

        _require_optional_bool(job, "coalesce", job_id)
        _require_optional_int(job, "timeout_sec", job_id, allow_zero=True)
        _require_optional_int(job, "max_instances", job_id, allow_zero=False)
        _require_optional_int(job, "misfire_grace_time", job_id, allow_zero=True)

        if "kwargs" in job and not isinstance(job["kwargs"], dict):
            raise ConfigError(f"Job '{job_id}': 'kwargs' must be a dict if provided.")

        for opt_str in ("summary", "description"):
            if opt_str in job and not isinstance(job[opt_str], str):
                raise ConfigError(f"Job '{job_id}': '{opt_str}' must be a string if provided.")


def _apply_top_level_defaults(cfg: dict[str, Any]) -> None:
    if "jobs" not in cfg or not isinstance(cfg["jobs"], list):
        cfg["jobs"] = []

    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    normalized_jobs: list[dict[str, Any]] = []
    for idx, job in enumerate(cfg["jobs"]):
        if not isinstance(job, dict):
            raise ConfigError(f"Job at index {idx} must be an object/dict.")
        job_copy = dict(job)
        job_copy.setdefault("module", DEFAULT_MODULE)
        job_copy["id"] = _derive_job_id(job_copy, idx)

        if "coalesce" in job_copy:
            job_copy["coalesce"] = _to_bool(job_copy["coalesce"], field="coalesce", job_id=job_copy["id"])
        for n, allow_zero in (("timeout_sec", True), ("max_instances", False), ("misfire_grace_time", True)):
            if n in job_copy:
                job_copy[n] = _to_int(job_copy[n], field=n, job_id=job_copy["id"], allow_zero=allow_zero)

        normalized_jobs.append(job_copy)

    cfg["jobs"] = normalized_jobs


def _derive_job_id(job: dict[str, Any], idx: int) -> str:
    # id | name | module -> id
    for key in ("id", "name", "module"):
        v = job.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return f"job_{idx}"


def _require_optional_bool(job: dict[str, Any], field: str, job_id: str) -> None:
    if field in job:
        _to_bool(job[field], field=field, job_id=job_id)


def _require_optional_int(job: dict[str, Any], field: str, job_id: str, *, allow_zero: bool) -> None:
    if field in job:
        _to_int(job[field], field=field, job_id=job_id, allow_zero=allow_zero)


def _to_bool(value: Any, *, field: str, job_id: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Job '{job_id}': '{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str, job_id: str, allow_zero: bool) -> int:
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Job '{job_id}': '{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"Job '{job_id}': '{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _read_any(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if path.lower().endswith((".yml", ".yaml")):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level of {path} must be a mapping/object.")
    return data
