# tests/test_runner_and_cli.py
import json
import re

import pytest
from conftest import NOW, activity_records

from modules.job_relay.lib import cache
from modules.job_relay.lib.models import RawPosting
from modules.job_relay.lib.normalize import normalize
from service import cli, runner


@pytest.fixture
def relay_kwargs(producers_json, sqlite_path):
    return {
        "producers_path": str(producers_json),
        "sqlite_path": sqlite_path,
        "dry_run": "true",
        "inter_send_delay_ms": "0",
    }


# ----------------------------------------------------------------------
# runner
# ----------------------------------------------------------------------
def test_normalize_kwargs_types(monkeypatch):
    monkeypatch.setenv("MY_HOOK", "https://hooks.example.invalid/x")
    out = runner._normalize_kwargs_types({
        "dry_run": "yes",
        "batch_size": "5",
        "ratio": "0.5",
        "sources": '["a", "b"]',
        "hook_env": "MY_HOOK",
        "destinations_env": {"intern::software_engineering": "MY_HOOK"},
        "name": "plain",
    })
    assert out["dry_run"] is True
    assert out["batch_size"] == 5
    assert out["ratio"] == 0.5
    assert out["sources"] == ["a", "b"]
    assert out["hook_env"] == "https://hooks.example.invalid/x"
    # mappings pass through untouched; Settings resolves them
    assert out["destinations_env"] == {"intern::software_engineering": "MY_HOOK"}
    assert out["name"] == "plain"


def test_runner_runs_job_relay_and_logs_activity(relay_kwargs):
    meta, run_id = runner.run_module_once("modules.job_relay", kwargs=relay_kwargs, trigger_type="adhoc")

    assert re.match(r"^[a-f0-9]{32}$", run_id)
    assert meta["dry_run"] is True
    assert meta["sources"]["feed-a"]["received"] == 3
    runs = [r for r in activity_records() if r.get("run_id") == run_id and "ok" in r]
    assert runs and runs[0]["ok"] is True
    assert runs[0]["trigger_type"] == "adhoc"


def test_runner_propagates_module_errors_after_logging(sqlite_path):
    with pytest.raises(Exception, match="producers"):
        runner.run_module_once("modules.job_relay", kwargs={"sqlite_path": sqlite_path})
    failed = [r for r in activity_records() if r.get("ok") is False]
    assert failed and failed[0]["meta"]["exception_type"] == "ConfigError"


def test_runner_rejects_module_without_run():
    with pytest.raises(AttributeError):
        runner.run_module_once("modules.job_relay.lib.render")


def test_coerce_result_shapes():
    assert runner._coerce_result(None).message == "OK"
    assert runner._coerce_result({"message": "3 new"}).message == "3 new"
    assert runner._coerce_result("done").meta is None
    with pytest.raises(TypeError):
        runner._coerce_result(42)


# ----------------------------------------------------------------------
# cli
# ----------------------------------------------------------------------
def test_cli_run_dry_run_prints_summary(relay_kwargs, capsys):
    pairs = [f"{k}={v}" for k, v in relay_kwargs.items() if k != "dry_run"]
    rc = cli.main(["run", "--dry-run", "--print-meta", "--kwargs", *pairs])

    out = capsys.readouterr().out
    assert rc == 0
    assert "DONE: " in out and "new postings across 1 sources" in out
    assert '"dry_run": true' in out
    assert any(r.get("event") == "cli_run" for r in activity_records())


def test_cli_run_failure_returns_nonzero(capsys):
    rc = cli.main(["run", "--kwargs", "period=day"])
    assert rc == 1
    assert "FAILURE" in capsys.readouterr().err


def test_cli_parse_kv_pairs():
    out = cli._parse_kv_pairs(["a=1", "b=true", "c=hello", 'd={"x": 1}'])
    assert out == {"a": 1, "b": True, "c": "hello", "d": {"x": 1}}
    with pytest.raises(Exception):
        cli._parse_kv_pairs(["novalue"])


def test_cli_validate_and_list_jobs(tmp_path, capsys):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"jobs": [{"id": "relay", "trigger": {"cron": "0 14 * * *"}, "summary": "daily"}]}))

    assert cli.main(["--config", str(cfg), "validate-config"]) == 0
    assert cli.main(["--config", str(cfg), "list-jobs"]) == 0
    out = capsys.readouterr().out
    assert "OK: configuration is valid." in out
    assert "relay" in out and "daily" in out

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"jobs": [{"id": "relay"}]}))
    assert cli.main(["--config", str(bad), "validate-config"]) == 1


def test_cli_cache_commands(sqlite_path, capsys):
    recs = [normalize(RawPosting(title=t, source="feed-a", company="Acme"), first_seen=NOW) for t in ("A Intern", "B Intern")]
    cache.upsert_records(sqlite_path, "feed-a", recs, NOW)

    assert cli.main(["cache-stats", "--sqlite-path", sqlite_path]) == 0
    assert "feed-a" in capsys.readouterr().out

    assert cli.main(["cleanup", "--sqlite-path", sqlite_path, "--dry-run"]) == 0
    assert "Would remove 2 of 2" in capsys.readouterr().out
    assert cache.count_rows(sqlite_path) == 2

    assert cli.main(["clear-cache", "--sqlite-path", sqlite_path, "--source", "feed-a"]) == 0
    assert "Removed 2" in capsys.readouterr().out
    assert cache.count_rows(sqlite_path) == 0


def test_cli_cache_stats_uses_env_path(sqlite_path, monkeypatch, capsys):
    monkeypatch.setenv("JOB_RELAY_SQLITE_PATH", sqlite_path)
    assert cli.main(["cache-stats"]) == 0
    assert "No cached postings" in capsys.readouterr().out

