# tests/conftest.py
import json
import os
import pathlib
import tempfile
from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from modules.job_relay.lib import config as jr_config
from modules.job_relay.lib.models import RawPosting
from modules.job_relay.lib.sinks import NotificationSink, SinkError
from service import logging_utils

# A fixed "now" for pipeline tests: Monday 2025-08-25, noon UTC.
NOW = datetime(2025, 8, 25, 12, 0, 0, tzinfo=timezone.utc)

DESTINATIONS = {
    "intern::software_engineering": "https://hooks.example.invalid/api/webhooks/1/intern-swe",
    "intern::data_analysis": "https://hooks.example.invalid/api/webhooks/2/intern-da",
    "intern::data_science_engineer": "https://hooks.example.invalid/api/webhooks/3/intern-dse",
    "new_grad::software_engineering": "https://hooks.example.invalid/api/webhooks/4/ng-swe",
    "new_grad::data_analysis": "https://hooks.example.invalid/api/webhooks/5/ng-da",
    "new_grad::data_science_engineer": "https://hooks.example.invalid/api/webhooks/6/ng-dse",
}


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="jr-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("ACTIVITY_LOG_MAX_BYTES", raising=False)

    # Nothing from the developer's shell may leak into Settings
    for name in ("JOB_RELAY_SQLITE_PATH", "JOB_RELAY_RULES_PATH", "JOB_RELAY_DRY_RUN", "CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TZ", "UTC")
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-08-25T12:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Pipeline building blocks
# ---------------------------------------------------------------------
@pytest.fixture
def sqlite_path(tmp_path: pathlib.Path) -> str:
    return str(tmp_path / "state" / "jobrelay.db")


@pytest.fixture
def posting():
    """Factory for RawPosting with sensible defaults."""

    def _make(title: str, *, source: str = "feed-a", **kw) -> RawPosting:
        kw.setdefault("company", "Acme")
        kw.setdefault("location", "Remote")
        kw.setdefault("url", f"https://jobs.example.com/{abs(hash((title, source))) % 10**8}")
        return RawPosting(title=title, source=source, **kw)

    return _make


def activity_records():
    """Every activity record written during the current test."""
    return logging_utils.read_records(logging_utils.get_activity_log_path())


def error_records():
    return logging_utils.read_records(logging_utils.get_error_log_path())


class RecordingSink(NotificationSink):
    """Collects every (destination, notification); can fail chosen sends by index."""

    def __init__(self, fail_on=()):
        self.sent = []
        self.attempts = 0
        self.fail_on = set(fail_on)
        self.closed = False

    async def send(self, destination, message):
        idx = self.attempts
        self.attempts += 1
        if idx in self.fail_on:
            raise SinkError(f"boom on send #{idx}")
        self.sent.append((destination, message))

    def close(self):
        self.closed = True


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def sleeps():
    """An awaitable sleep stand-in that records the requested delays."""
    calls = []

    async def _sleep(delay):
        calls.append(delay)

    _sleep.calls = calls
    return _sleep


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------
SAMPLE_ITEMS = [
    {"title": "Software Engineer Intern", "company": "Acme", "location": "Remote", "postedDate": "1d"},
    {"title": "Senior Software Engineer", "company": "Acme", "location": "NYC", "postedDate": "Aug 24"},
    {"title": "Data Scientist New Grad", "company": "Globex", "location": "Austin, TX", "postedDate": "Aug 24"},
]


@pytest.fixture
def producers_json(tmp_path: pathlib.Path) -> pathlib.Path:
    """A producers file with one stub source carrying SAMPLE_ITEMS."""
    path = tmp_path / "producers.json"
    data = [{"kind": "stub", "source": "feed-a", "params": {"items": SAMPLE_ITEMS}}]
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def settings(producers_json, sqlite_path):
    """A brand-new Settings instance per test, with a fresh SQLite file."""
    return jr_config.Settings.from_env_and_kwargs({
        "producers_path": str(producers_json),
        "sqlite_path": sqlite_path,
        "destinations": dict(DESTINATIONS),
        "role": "both",
        "period": "day",
        "max_threads": 2,
    })
