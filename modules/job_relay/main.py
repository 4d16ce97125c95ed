from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.logging_bridge import activity as log_activity


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'job_relay' module.

    Accepts kwargs (from scheduler/runner), including:
      producers_path: str                 # or inline producers=[...]
      sqlite_path: str = "/app/local/state/jobrelay.db"
      role: "intern" | "new_grad" | "both" = "both"
      period: "day" | "three_days" | "week" | "month" | "three_months" = "day"
      destinations / destinations_env: {"intern::software_engineering": ...}
      batch_size: int = 10
      inter_send_delay_ms: int = 2000
      dry_run: bool = False

    See Settings.from_env_and_kwargs for the full list.

    Returns:
      meta dict (message, subject, per-source reports); the runner logs it.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "job_relay.main",
        "op": "start",
        "kinds": sorted(settings.group_by_kind().keys()),
        "sources": [p.source for p in settings.selected_producers()],
        "role": settings.role,
        "period": settings.period,
        "flags": {
            "dry_run": settings.dry_run,
            "skip_network": settings.skip_network,
            "cross_source_dedupe": settings.cross_source_dedupe,
        },
    })

    return _run_engine(settings)
