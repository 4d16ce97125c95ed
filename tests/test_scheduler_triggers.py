from datetime import datetime, timedelta

import pytest
import pytz

from service import scheduler

UTC = pytz.UTC


# Helpers ----------------------------------------------------------------------


def _next_times(trigger, count=5, start=None):
    """Fire times strictly after `start` (seeded as both prev and now)."""
    prev = start
    now = start
    out = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        out.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return out


# Tests ------------------------------------------------------------------------


def test_build_trigger_accepts_interval_hours():
    trig = scheduler.build_trigger({"interval": {"hours": 6}}, "UTC")
    assert trig.interval.total_seconds() == 6 * 3600

    ts = UTC.localize(datetime(2099, 1, 1, 0, 0, 0))
    times = _next_times(trig, count=3, start=ts)
    assert times == [ts + timedelta(hours=6), ts + timedelta(hours=12), ts + timedelta(hours=18)]


def test_build_trigger_accepts_crontab_string():
    trig = scheduler.build_trigger({"cron": "0 14 * * mon-fri"}, "UTC")
    # 2096-01-02 is a Monday
    start = UTC.localize(datetime(2096, 1, 2, 0, 0, 0))
    times = scheduler.preview_trigger(trig, UTC, count=3, start=start)
    assert [t.day for t in times] == [2, 3, 4]
    assert all(t.hour == 14 and t.minute == 0 for t in times)


def test_build_trigger_accepts_six_field_cron():
    trig = scheduler.build_trigger({"cron": "30 0 9 * * *"}, "UTC")
    start = UTC.localize(datetime(2099, 1, 5, 0, 0, 0))
    (first,) = scheduler.preview_trigger(trig, UTC, count=1, start=start)
    assert (first.hour, first.minute, first.second) == (9, 0, 30)


def test_build_trigger_cron_dict_uses_own_timezone():
    trig = scheduler.build_trigger(
        {"cron": {"minute": 0, "hour": 8, "timezone": "America/New_York"}},
        "UTC",
    )
    start = UTC.localize(datetime(2099, 7, 1, 0, 0, 0))
    (first,) = scheduler.preview_trigger(trig, UTC, count=1, start=start)
    # 08:00 EDT == 12:00 UTC
    assert first.astimezone(UTC).hour == 12


@pytest.mark.parametrize(
    "trig",
    [
        {},
        {"cron": "0 14 * *"},
        {"cron": 5},
        {"interval": {"hours": 0}},
        {"interval": {"hourz": 1}},
        {"cron": {"minutes": 5}},
        {"cron": "* * * * *", "interval": {"hours": 1}},
        {"date": "2099-01-01T00:00:00Z"},
    ],
)
def test_build_trigger_rejects_bad_specs(trig):
    with pytest.raises(ValueError):
        scheduler.build_trigger(trig, "UTC")


def test_build_scheduler_registers_valid_jobs_and_skips_bad_ones():
    cfg = {
        "timezone": "America/Chicago",
        "jobs": [
            {"id": "relay", "trigger": {"cron": "0 14 * * *"}, "kwargs": {"dry_run": True}},
            {"id": "broken", "trigger": {"interval": {"hours": 0}}},
        ],
    }
    sched = scheduler.build_scheduler(cfg)
    try:
        assert str(sched.timezone) == "America/Chicago"
        assert [j.id for j in sched.get_jobs()] == ["relay"]
    finally:
        if sched.running:
            sched.shutdown(wait=False)


def test_make_job_spec_defaults_module():
    spec = scheduler.make_job_spec(
        {"id": "relay", "trigger": {"interval": {"minutes": 30}}, "timeout_sec": "600"},
        default_job_defaults={"max_instances": 1, "coalesce": True},
        tz=UTC,
    )
    assert spec.module == "modules.job_relay"
    assert spec.timeout_sec == 600
    assert spec.max_instances == 1 and spec.coalesce is True


def test_job_wrapper_calls_runner(monkeypatch):
    calls = []

    def fake_run(module, **kw):
        calls.append((module, kw))
        return {"message": "ok", "new_total": 0}, "run-1"

    monkeypatch.setattr(scheduler.runner, "run_module_once", fake_run)
    sched = scheduler.build_scheduler({"jobs": [{"id": "relay", "trigger": {"interval": {"hours": 1}}, "kwargs": {"a": 1}}]})
    job = sched.get_job("relay")
    job.func()

    (module, kw) = calls[0]
    assert module == "modules.job_relay"
    assert kw["kwargs"] == {"a": 1}
    assert kw["trigger_type"] == "scheduled"
    assert kw["job_context"]["job_id"] == "relay"


def test_start_returns_controller(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text('{"jobs": [{"id": "relay", "trigger": {"cron": "0 14 * * *"}}]}')

    ctl = scheduler.start(str(cfg))
    try:
        assert list(ctl.get_job_ids()) == ["relay"]
    finally:
        ctl.stop()
    assert ctl.join(timeout=1.0) is True
