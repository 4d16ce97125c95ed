# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the APScheduler service loop via service.scheduler.start()
    - Registers signal handlers for graceful shutdown

run [--module MODULE] [--kwargs k=v ...] [--dry-run] [--print-meta]
    - Executes a module ad-hoc via runner.run_module_once(...)
    - Displays a concise success/failure summary

list-jobs
    - Loads config via config_schema.load_config() and prints configured jobs

validate-config
    - Loads/validates config and returns nonzero on error

cache-stats [--sqlite-path PATH]
    - Prints row counts and last_updated range per source namespace

clear-cache [--sqlite-path PATH] [--source NAME]
    - Drops cached postings for one source (or all)

cleanup [--sqlite-path PATH] [--rules-path PATH] [--source NAME] [--dry-run]
    - Re-applies the relevance rules to cached postings and deletes misses
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from datetime import datetime
from types import SimpleNamespace
from typing import Any

from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")

_DEFAULT_SQLITE_PATH = "/app/local/state/jobrelay.db"


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict.
    - Values that look like JSON (true/false/null/number/object/array) are parsed.
    - Otherwise keep as raw strings.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _print_table(rows: Iterable[tuple[str, str]], headers: tuple[str, str] = ("ID", "DETAILS")) -> None:
    """Very simple two-column table printer."""
    rows = list(rows)
    w0 = max(len(headers[0]), *(len(r[0]) for r in rows)) if rows else len(headers[0])
    w1 = max(len(headers[1]), *(len(r[1]) for r in rows)) if rows else len(headers[1])
    sep = f"+-{'-' * w0}-+-{'-' * w1}-+"
    print(sep)
    print(f"| {headers[0].ljust(w0)} | {headers[1].ljust(w1)} |")
    print(sep)
    for c0, c1 in rows:
        print(f"| {c0.ljust(w0)} | {c1.ljust(w1)} |")
    print(sep)


def _extract_jobs_from_config(cfg: dict[str, Any]) -> list[tuple[str, str]]:
    out = []
    for idx, j in enumerate(cfg.get("jobs") or []):
        jid = str(j.get("id") or j.get("name") or idx)
        trigger = j.get("trigger") or {}
        desc = j.get("summary") or j.get("description") or json.dumps(trigger, default=str)
        out.append((jid, str(desc)))
    return out


def _sqlite_path(args: argparse.Namespace) -> str:
    return args.sqlite_path or os.getenv("JOB_RELAY_SQLITE_PATH") or _DEFAULT_SQLITE_PATH


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        print("OK: configuration is valid.")
        return 0
    except KeyboardInterrupt:
        return 130
    except _config_schema.ConfigError as e:
        LOG.error("Configuration validation failed: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        rows = _extract_jobs_from_config(cfg)
        if not rows:
            print("No jobs found in config.")
            return 0
        _print_table(rows, headers=("JOB", "DETAILS"))
        return 0
    except KeyboardInterrupt:
        return 130
    except _config_schema.ConfigError as e:
        LOG.error("Failed to list jobs: %s", e)
        print(f"ERROR: failed to list jobs: {e}", file=sys.stderr)
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    start_time = time.monotonic()

    kwargs = _parse_kv_pairs(args.kwargs or [])
    if args.dry_run:
        kwargs["dry_run"] = True
    LOG.debug("Run module %s with kwargs=%s", args.module, kwargs)

    try:
        meta, run_id = _runner.run_module_once(
            module=args.module,
            kwargs=kwargs,
            trigger_type="adhoc",
        )
        L.write_activity_log({
            "ts": _now_iso(),
            "event": "cli_run",
            "run_id": run_id,
            "module": args.module,
            "trigger_type": "adhoc",
            "dry_run": bool(args.dry_run),
            "kwargs": kwargs,
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })

        if meta and args.print_meta:
            print(json.dumps(meta, indent=2, default=str))
        message = (meta or {}).get("message")
        print(f"DONE: {message}" if message else "DONE: Module run completed.")
        return 0

    except KeyboardInterrupt:
        return 130
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "where": "cli.run",
            "module": args.module,
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        return 1


def cmd_cache_stats(args: argparse.Namespace) -> int:
    from modules.job_relay.lib import cache as _cache

    path = _sqlite_path(args)
    try:
        stats = _cache.cache_stats(path)
    except _cache.StoreError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    if not stats:
        print(f"No cached postings in {path}.")
        return 0
    rows = [(ns, f"{s['count']} rows, {s['oldest']} .. {s['newest']}") for ns, s in stats.items()]
    _print_table(rows, headers=("SOURCE", "CACHE"))
    return 0


def cmd_clear_cache(args: argparse.Namespace) -> int:
    from modules.job_relay.lib import cache as _cache

    path = _sqlite_path(args)
    try:
        removed = _cache.clear_cache(path, args.source)
    except _cache.StoreError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    L.write_activity_log({"ts": _now_iso(), "event": "clear_cache", "source": args.source, "removed": removed})
    print(f"Removed {removed} cached postings ({args.source or 'all sources'}).")
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    from modules.job_relay.lib import cache as _cache
    from modules.job_relay.lib.config import ConfigError, FilterRules
    from modules.job_relay.lib.engine import cleanup_store

    rules_path = args.rules_path or os.getenv("JOB_RELAY_RULES_PATH")
    try:
        rules = FilterRules.from_file(rules_path) if rules_path else FilterRules.defaults()
        summary = cleanup_store(_sqlite_path(args), rules, namespace=args.source, dry_run=args.dry_run)
    except (ConfigError, _cache.StoreError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    verb = "Would remove" if args.dry_run else "Removed"
    count = summary["irrelevant"] if args.dry_run else summary["removed"]
    print(f"{verb} {count} of {summary['checked']} cached postings.")
    for rule, n in sorted(summary["by_rule"].items()):
        print(f"  {rule}: {n}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the scheduler loop in a daemon-like fashion until a termination
    signal is received.
    """
    L.write_activity_log({"ts": _now_iso(), "event": "serve_start"})

    stop_event = threading.Event()
    running = SimpleNamespace(sched=None)

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()
        _safe_stop("scheduler", running.sched)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        running.sched = _scheduler.start(config_path=args.config)
        LOG.info("Scheduler started; jobs: %s", ", ".join(running.sched.get_job_ids()) or "(none)")

        # Main wait loop (respond quickly to signals)
        while not stop_event.is_set():
            time.sleep(0.3)

        _safe_stop("scheduler", running.sched)
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
        return 0

    except KeyboardInterrupt:
        _graceful_shutdown("KeyboardInterrupt")
        return 130
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        _graceful_shutdown("UnhandledException")
        return 1


def _safe_stop(name: str, handle: Any) -> None:
    """Best-effort stop & join for a scheduler controller."""
    if handle is None:
        return
    try:
        handle.stop()
        handle.join(timeout=10.0)
    except Exception:  # pragma: no cover
        LOG.exception("Error stopping %s", name)


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Job relay service command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or an empty config).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # serve
    sp = sub.add_parser("serve", help="Run the main scheduler loop.")
    sp.set_defaults(func=cmd_serve)

    # run
    sp = sub.add_parser("run", help="Execute a module ad-hoc via runner.run_module_once().")
    sp.add_argument(
        "--module",
        default=_config_schema.DEFAULT_MODULE,
        help=f"Module path to run (default: {_config_schema.DEFAULT_MODULE}).",
    )
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Extra keyword arguments for the module (JSON values supported).",
    )
    sp.add_argument(
        "--dry-run",
        action="store_true",
        help="Run the full pipeline but log notifications instead of sending them.",
    )
    sp.add_argument(
        "--print-meta",
        action="store_true",
        help="Print the run's meta dict as JSON.",
    )
    sp.set_defaults(func=cmd_run)

    # list-jobs
    sp = sub.add_parser("list-jobs", help="Print all jobs from config.")
    sp.set_defaults(func=cmd_list_jobs)

    # validate-config
    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    # cache maintenance
    sp = sub.add_parser("cache-stats", help="Show cached posting counts per source.")
    sp.add_argument("--sqlite-path", help="SQLite store (default: $JOB_RELAY_SQLITE_PATH).")
    sp.set_defaults(func=cmd_cache_stats)

    sp = sub.add_parser("clear-cache", help="Drop cached postings.")
    sp.add_argument("--sqlite-path", help="SQLite store (default: $JOB_RELAY_SQLITE_PATH).")
    sp.add_argument("--source", help="Only this source namespace (default: all).")
    sp.set_defaults(func=cmd_clear_cache)

    sp = sub.add_parser("cleanup", help="Delete cached postings that no longer pass the relevance rules.")
    sp.add_argument("--sqlite-path", help="SQLite store (default: $JOB_RELAY_SQLITE_PATH).")
    sp.add_argument("--rules-path", help="FilterRules JSON/YAML (default: built-in rules).")
    sp.add_argument("--source", help="Only this source namespace (default: all).")
    sp.add_argument("--dry-run", action="store_true", help="Report what would be removed without deleting.")
    sp.set_defaults(func=cmd_cleanup)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
