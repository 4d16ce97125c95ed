# tests/test_logging_and_sinks.py
import asyncio
import os
import threading
from dataclasses import replace
from http.server import BaseHTTPRequestHandler, HTTPServer
from unittest import mock

import pytest
from conftest import activity_records, error_records

from modules.job_relay.lib import logging_bridge
from modules.job_relay.lib.dispatch import build_queue
from modules.job_relay.lib.http_client import HttpClient
from modules.job_relay.lib.models import RawPosting
from modules.job_relay.lib.normalize import normalize
from modules.job_relay.lib.sinks import LogSink, SinkError, WebhookSink
from service import logging_utils

HOOK = "https://discord.example.invalid/api/webhooks/123456/s3cr3t-t0ken"


def _batch(n=2):
    recs = [
        replace(normalize(RawPosting(title=f"SWE Intern {i}", source="s")), role="intern", category="software_engineering")
        for i in range(n)
    ]
    return build_queue("intern::software_engineering", recs, batch_size=10)


# ----------------------------------------------------------------------
# service.logging_utils
# ----------------------------------------------------------------------
def test_activity_log_path_is_dated_under_log_dir(frozen_utc):
    path = logging_utils.get_activity_log_path()
    assert path == os.path.join(os.environ["LOG_DIR"], "activity-test-2025-08-25.jsonl")


def test_write_adds_metadata_and_redacts_deeply():
    logging_utils.write_activity_log({
        "event": "x",
        "nested": {"api_key": "k", "list": [{"password": "p"}]},
        "url": HOOK,
        "header": "Bearer abc.def",
    })
    (rec,) = activity_records()
    assert rec["nested"]["api_key"] == "***REDACTED***"
    assert rec["nested"]["list"][0]["password"] == "***REDACTED***"
    assert "s3cr3t" not in rec["url"] and rec["url"].endswith("/123456/***REDACTED***")
    assert rec["header"] == "Bearer ***REDACTED***"
    assert rec["_meta"]["pid"] == os.getpid()
    assert "ts" in rec


def test_redact_does_not_mutate_input():
    src = {"token": "abc", "inner": {"secret": "s"}}
    out = logging_utils.redact(src)
    assert src == {"token": "abc", "inner": {"secret": "s"}}
    assert out == {"token": "***REDACTED***", "inner": {"secret": "***REDACTED***"}}


def test_size_rotation(monkeypatch):
    monkeypatch.setenv("ACTIVITY_LOG_MAX_BYTES", "10")
    logging_utils.write_activity_log({"event": "first"})
    logging_utils.write_activity_log({"event": "second"})
    path = logging_utils.get_activity_log_path()
    assert [r["event"] for r in logging_utils.read_records(path)] == ["second"]
    rotated = [f for f in os.listdir(os.path.dirname(path)) if f.startswith(os.path.basename(path) + ".")]
    assert len(rotated) == 1


# ----------------------------------------------------------------------
# logging_bridge
# ----------------------------------------------------------------------
def test_bridge_routes_to_service_logs_and_scrubs_webhooks():
    logging_bridge.activity({"component": "t", "op": "a", "webhook_url": HOOK, "note": f"posted to {HOOK}"})
    logging_bridge.error({"component": "t", "op": "b", "error": f"HTTPError for {HOOK}"})

    (act,) = activity_records()
    assert act["webhook_url"] == "***REDACTED***"
    assert "s3cr3t" not in act["note"]
    (err,) = error_records()
    assert "s3cr3t" not in err["error"]


def test_bridge_falls_back_to_stdlib_logging(monkeypatch, caplog):
    broken = mock.Mock()
    broken.write_activity_log.side_effect = OSError("disk full")
    monkeypatch.setattr(logging_bridge, "_logging_backend", broken)
    with caplog.at_level("INFO", logger="job_relay.activity"):
        logging_bridge.activity({"component": "t", "op": "fallback"})
    assert "fallback" in caplog.text


# ----------------------------------------------------------------------
# Sinks
# ----------------------------------------------------------------------
def test_webhook_sink_posts_each_payload():
    http = mock.Mock()
    sink = WebhookSink(http=http)
    q = _batch(2)

    asyncio.run(sink.send(HOOK, q[0]))
    asyncio.run(sink.send(HOOK, q[1]))

    assert http.post_json.call_count == 2
    url, header_payload = http.post_json.call_args_list[0].args
    assert url == HOOK
    assert header_payload["content"].startswith("**2 new jobs**")
    batch_payload = http.post_json.call_args_list[1].args[1]
    assert [e["title"] for e in batch_payload["embeds"]] == ["SWE Intern 0", "SWE Intern 1"]

    sink.close()
    http.close.assert_called_once()


def test_webhook_sink_wraps_failures():
    http = mock.Mock()
    http.post_json.side_effect = RuntimeError("429 Too Many Requests")
    with pytest.raises(SinkError, match="intern::software_engineering"):
        asyncio.run(WebhookSink(http=http).send(HOOK, _batch(1)[0]))


def test_log_sink_records_rendered_text():
    q = _batch(1)
    asyncio.run(LogSink().send("dry-run", q[1]))
    (rec,) = [r for r in activity_records() if r.get("op") == "dry_run_send"]
    assert rec["bucket"] == "intern::software_engineering"
    assert "SWE Intern 0" in rec["text"]


@pytest.fixture
def failing_hook():
    """Local endpoint that answers every POST with a 500 and records the hit."""
    hits = []

    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):
            self.rfile.read(int(self.headers.get("Content-Length") or 0))
            hits.append(self.path)
            self.send_response(500)
            self.send_header("Content-Length", "0")
            self.end_headers()

        def log_message(self, *args):
            pass

    server = HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_port}/hook", hits
    finally:
        server.shutdown()
        server.server_close()


def test_webhook_sink_sends_failed_batch_once(failing_hook):
    url, hits = failing_hook
    http = HttpClient(timeout=5)
    http.session.trust_env = False  # ignore proxy env vars for the loopback server
    sink = WebhookSink(http=http)

    with pytest.raises(SinkError):
        asyncio.run(sink.send(url, _batch(1)[1]))
    sink.close()

    assert hits == ["/hook"]


def test_http_client_retries_reads_only():
    retry = HttpClient().session.get_adapter("https://hooks.example.invalid").max_retries
    assert "POST" not in retry.allowed_methods
    assert "GET" in retry.allowed_methods
