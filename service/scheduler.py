# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema, runner
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)


# ---- Internal structures ----------------------------------------------------


@dataclass(frozen=True, slots=True)
class JobSpec:
    id: str
    trigger: Any  # "apscheduler.triggers.base.BaseTrigger"
    module: str
    kwargs: dict[str, Any]
    timeout_sec: int | None
    max_instances: int
    coalesce: bool
    misfire_grace_time: int | None
    summary: str | None


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler so the CLI can manage lifecycle cleanly.
    """

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            # wait=False -> stop immediately; jobs in-flight are allowed to finish.
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """
        Block until the scheduler is fully stopped (or timeout).
        Returns True if stopped before timeout, else False.
        """
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def build_scheduler(cfg: dict[str, Any]) -> BackgroundScheduler:
    """
    Build an APScheduler instance with every valid job from `cfg` registered.
    Jobs with a bad trigger are logged and skipped. The scheduler is not started.
    """
    tz = _resolve_timezone(cfg)

    job_defaults = {
        "coalesce": True,  # run only the latest if many were missed
        "max_instances": 1,
    }
    executors = {"default": ThreadPoolExecutor(_int_or(cfg.get("executor_workers"), 4))}
    jobstores = {"default": MemoryJobStore()}

    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults=job_defaults,
        executors=executors,
        jobstores=jobstores,
    )

    jobs_cfg = cfg.get("jobs", [])
    if not isinstance(jobs_cfg, list):
        raise ValueError("config.jobs must be a list")

    for raw in jobs_cfg:
        try:
            spec = make_job_spec(raw, default_job_defaults=job_defaults, tz=tz)
        except (ValueError, TypeError, KeyError):
            LOG.exception("Skipping job due to config error: %r", raw)
            continue
        _add_job(scheduler, spec)

    return scheduler


def start(config_path: str | None = None) -> SchedulerController:
    """
    Load configuration, build the scheduler, add jobs, and start.
    Returns a SchedulerController that exposes stop() and join().

    APScheduler 3.x prefers a pytz scheduler timezone, so both the scheduler
    and every trigger are built with pytz zones.
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    scheduler = build_scheduler(cfg)
    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return SchedulerController(scheduler)


def preview_trigger(trigger: Any, tz: Any, count: int = 6, start: datetime | None = None) -> list[datetime]:
    """
    Return next `count` fire times for visibility in logs/prints.
    Deterministic: lookups start at `start` (or "now" in tz) and `now` advances
    by 1µs after each hit so the next lookup moves forward.
    """
    now = start or datetime.now(tz=tz)
    prev = None
    times: list[datetime] = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


def make_job_spec(raw: dict[str, Any], default_job_defaults: dict[str, Any], tz: Any) -> JobSpec:
    """Convert a raw config job dict into a normalized JobSpec + APScheduler trigger."""
    module = raw.get("module") or config_schema.DEFAULT_MODULE
    jid = str(raw.get("id") or raw.get("name") or module)

    max_instances = _int_or(raw.get("max_instances"), default_job_defaults.get("max_instances", 1))
    coalesce = bool(raw.get("coalesce", default_job_defaults.get("coalesce", True)))

    if "trigger" not in raw:
        raise ValueError(f"job {jid!r} has no trigger")

    return JobSpec(
        id=jid,
        trigger=build_trigger(raw["trigger"], tz),
        module=module,
        kwargs=dict(raw.get("kwargs") or {}),
        timeout_sec=_int_or(raw.get("timeout_sec"), None),
        max_instances=max_instances or 1,
        coalesce=coalesce,
        misfire_grace_time=_int_or(raw.get("misfire_grace_time"), None),
        summary=raw.get("summary") or raw.get("description"),
    )


def build_trigger(trig_def: dict[str, Any], tz: Any) -> Any:
    """
    Build an APScheduler trigger from a job's `trigger` block.

    Accepted shapes:
      {"interval": {"hours": 6}}                      # any of _INTERVAL_UNITS, plus jitter/start_date/end_date/timezone
      {"cron": "0 14 * * *"}                          # crontab; a 6th leading field means seconds
      {"cron": {"hour": 14, "day_of_week": "mon-fri"}}

    The block's own 'timezone' wins over the scheduler tz.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")

    present = [k for k in ("interval", "cron") if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError("exactly one of {'interval','cron'} must be provided")

    if present[0] == "interval":
        return _interval_trigger(trig_def["interval"], _tz(tz))
    return _cron_trigger(trig_def["cron"], _tz(tz))


_INTERVAL_UNITS = ("weeks", "days", "hours", "minutes", "seconds")
_INTERVAL_FIELDS = frozenset(_INTERVAL_UNITS) | {"jitter", "timezone", "start_date", "end_date"}
_CRON_FIELDS = frozenset(
    {"second", "minute", "hour", "day", "day_of_week", "month", "timezone", "start_date", "end_date", "jitter"}
)


def _interval_trigger(spec: Any, default_tz: Any) -> IntervalTrigger:
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object with time fields")
    _reject_unknown("interval", spec, _INTERVAL_FIELDS)

    amounts = {unit: _non_negative_int(spec, unit) for unit in _INTERVAL_UNITS}
    if not any(amounts.values()):
        raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")

    extra = {k: spec[k] for k in ("start_date", "end_date") if k in spec}
    jitter = _non_negative_int(spec, "jitter")
    if jitter:
        extra["jitter"] = jitter
    return IntervalTrigger(
        timezone=_tz(spec.get("timezone")) or default_tz,
        **{unit: n for unit, n in amounts.items() if n},
        **extra,
    )


def _cron_trigger(spec: Any, default_tz: Any) -> CronTrigger:
    if isinstance(spec, str):
        fields = spec.split()
        if len(fields) == 5:
            return CronTrigger.from_crontab(spec, timezone=default_tz)
        if len(fields) == 6:
            names = ("second", "minute", "hour", "day", "month", "day_of_week")
            return CronTrigger(timezone=default_tz, **dict(zip(names, fields)))
        raise ValueError(f"cron string must have 5 or 6 fields (got {len(fields)}): {spec!r}")

    if not isinstance(spec, dict):
        raise ValueError("cron must be a crontab string or an object")
    _reject_unknown("cron", spec, _CRON_FIELDS)

    # Unset second/minute/hour pin to 0 so {"hour": 14} fires once, not every minute.
    fields = {"second": 0, "minute": 0, "hour": 0}
    fields.update({k: v for k, v in spec.items() if k != "timezone"})
    return CronTrigger(timezone=_tz(spec.get("timezone")) or default_tz, **fields)


def _reject_unknown(kind: str, spec: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(spec) - allowed
    if unknown:
        raise ValueError(f"{kind} has unknown field(s): {sorted(unknown)}")


def _non_negative_int(spec: dict[str, Any], name: str) -> int:
    if name not in spec:
        return 0
    try:
        n = int(spec[name])
    except (TypeError, ValueError) as err:
        raise ValueError(f"interval.{name} must be an integer") from err
    if n < 0:
        raise ValueError(f"interval.{name} must be >= 0")
    return n


# ---- Helpers ----------------------------------------------------------------


def _resolve_timezone(cfg: dict[str, Any]) -> Any:
    """
    APScheduler 3.x expects a pytz timezone. We accept either:
    - config['timezone'] (e.g., 'America/Indiana/Indianapolis')
    - env TZ
    - default to UTC
    """
    tz_name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid or missing tz '%s')", tz_name)
        return pytz.UTC


def _tz(z: Any) -> Any:
    if not z:
        return None
    if isinstance(z, str):
        return pytz.timezone(z)
    return z


def _add_job(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    """
    Register the APScheduler job with a wrapper that:

      - Logs start/finish + duration
      - Writes structured activity log
      - Executes the module via ``runner.run_module_once()`` with the job's
        kwargs, timeout and a small job_context
    """

    def _job_wrapper() -> None:
        started = _time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)

        try:
            meta, run_id = runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs or {}),
                timeout_sec=spec.timeout_sec,
                trigger_type="scheduled",
                job_context=_build_job_context(spec),
            )
        except Exception:
            LOG.exception("Job[%s] raised an exception.", spec.id)
            _write_activity(spec, status="error", duration_s=_time.monotonic() - started)
            return

        duration = _time.monotonic() - started
        LOG.info("Job[%s] finished in %.3fs (run_id=%s)", spec.id, duration, run_id)
        _write_activity(spec, status="ok", duration_s=duration, result=meta)

    if os.getenv("SCHEDULER_PREVIEW", None) == "1":
        preview = preview_trigger(spec.trigger, scheduler.timezone, count=int(os.getenv("SCHEDULER_PREVIEW_COUNT", "6")))
        LOG.info("PREVIEW[%s]: %s", spec.id, ", ".join(t.isoformat() for t in preview) if preview else "(none)")

    scheduler.add_job(
        func=_job_wrapper,
        trigger=spec.trigger,
        id=spec.id,
        max_instances=spec.max_instances,
        coalesce=spec.coalesce,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
    )
    LOG.debug(
        "Registered job[%s] (module=%s, summary=%r, trigger=%s, max_instances=%s, coalesce=%s, misfire_grace_time=%s)",
        spec.id,
        spec.module,
        spec.summary,
        spec.trigger,
        spec.max_instances,
        spec.coalesce,
        spec.misfire_grace_time,
    )


def _write_activity(spec: JobSpec, status: str, duration_s: float, result: Any = None) -> None:
    """Best-effort activity logging; non-fatal on errors."""
    try:
        write_activity_log({
            "ts": datetime.now(timezone.utc).isoformat(),
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": spec.id,
                "module": spec.module,
                "status": status,
                "duration_ms": int(duration_s * 1000),
                "summary": spec.summary,
                "new_total": result.get("new_total") if isinstance(result, dict) else None,
            },
        })
    except OSError:
        LOG.debug("write_activity_log failed for job[%s]", spec.id, exc_info=True)


def _int_or(v: Any, default: int | None) -> int | None:
    """Return int(v) or default if v is None/invalid (lenient for config)."""
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default


def _build_job_context(spec: JobSpec) -> dict[str, Any]:
    return {
        "job_id": spec.id,
        "module": spec.module,
        "now_iso": datetime.now(timezone.utc).isoformat(),
    }
