# tests/test_producers.py
import json
from unittest import mock

import pytest
import requests

from modules.job_relay.lib.config import ProducerConfig
from modules.job_relay.lib.producers import registry
from modules.job_relay.lib.producers.base import BaseProducer
from modules.job_relay.lib.producers.json_feed import JsonFeedProducer
from modules.job_relay.lib.producers.stub import StubProducer


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------
def test_builtin_kinds_registered():
    kinds = registry.all_kinds()
    assert kinds["stub"] is StubProducer
    assert kinds["json_feed"] is JsonFeedProducer
    assert registry.get("JSON_FEED") is JsonFeedProducer


def test_unknown_kind_raises():
    with pytest.raises(KeyError):
        registry.get("workday")


def test_register_requires_kind():
    class NoKind(BaseProducer):
        def run(self, specs, *, skip_network):
            return []

    with pytest.raises(ValueError):
        registry.register(NoKind)


# ----------------------------------------------------------------------
# Stub producer
# ----------------------------------------------------------------------
def test_stub_applies_defaults_and_drops_untitled():
    spec = ProducerConfig(
        kind="stub",
        source="curated",
        params={
            "items": [{"title": "Data Intern"}, {"company": "No Title Inc"}, "not-a-dict"],
            "role": "intern",
            "category": "business_analyst",
            "trusted": "true",
            "errors": "partial page",
        },
    )
    (res,) = StubProducer().run([spec], skip_network=True)
    assert res.source == "curated"
    assert res.trusted is True
    assert [p.title for p in res.items] == ["Data Intern"]
    assert res.items[0].role == "intern"
    assert res.items[0].category == "business_analyst"
    assert res.errors[0] == "partial page"
    assert "without a title" in res.errors[1]


# ----------------------------------------------------------------------
# JSON feed producer
# ----------------------------------------------------------------------
def test_json_feed_reads_array_object_and_jsonl(tmp_path):
    arr = tmp_path / "a.json"
    arr.write_text(json.dumps([{"title": "SWE Intern", "postedDate": "1d"}]))
    obj = tmp_path / "b.json"
    obj.write_text(json.dumps({"jobs": [{"title": "Data Analyst Intern"}, {"title": "ML Intern"}]}))
    lines = tmp_path / "c.jsonl"
    lines.write_text('{"title": "Backend Intern"}\n\n{"title": "Frontend Intern"}\n')

    specs = [
        ProducerConfig("json_feed", "a", {"path": str(arr)}),
        ProducerConfig("json_feed", "b", {"path": str(obj)}),
        ProducerConfig("json_feed", "c", {"path": str(lines)}),
    ]
    results = JsonFeedProducer().run(specs, skip_network=False)

    assert [len(r.items) for r in results] == [1, 2, 2]
    assert results[0].items[0].posted_date == "1d"
    assert all(not r.errors for r in results)


def test_json_feed_errors_are_reported_not_raised(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("[{not json")
    specs = [
        ProducerConfig("json_feed", "missing", {"path": str(tmp_path / "nope.json")}),
        ProducerConfig("json_feed", "bad", {"path": str(bad)}),
        ProducerConfig("json_feed", "empty", {}),
    ]
    results = JsonFeedProducer().run(specs, skip_network=False)
    assert [r.source for r in results] == ["missing", "bad", "empty"]
    assert all(r.errors and not r.items for r in results)


def test_json_feed_url_uses_http_client_and_honours_skip_network():
    http = mock.Mock()
    http.get_json.return_value = {"postings": [{"title": "SWE Intern"}]}
    spec = ProducerConfig("json_feed", "remote", {"url": "https://feeds.example.invalid/jobs.json"})

    (skipped,) = JsonFeedProducer(http=http).run([spec], skip_network=True)
    assert skipped.errors == ["skipped: skip_network"]
    http.get_json.assert_not_called()

    (res,) = JsonFeedProducer(http=http).run([spec], skip_network=False)
    http.get_json.assert_called_once_with("https://feeds.example.invalid/jobs.json")
    assert [p.title for p in res.items] == ["SWE Intern"]


def test_json_feed_http_failure_becomes_error():
    http = mock.Mock()
    http.get_json.side_effect = requests.ConnectionError("refused")
    spec = ProducerConfig("json_feed", "remote", {"url": "https://feeds.example.invalid/jobs.json"})
    (res,) = JsonFeedProducer(http=http).run([spec], skip_network=False)
    assert res.items == []
    assert "refused" in res.errors[0]


@pytest.mark.live
def test_json_feed_live_url():
    import os

    url = os.getenv("JOB_RELAY_LIVE_FEED_URL")
    if not url:
        pytest.skip("JOB_RELAY_LIVE_FEED_URL not set")
    (res,) = JsonFeedProducer().run([ProducerConfig("json_feed", "live", {"url": url})], skip_network=False)
    assert not res.errors
