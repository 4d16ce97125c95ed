# tests/test_config.py
import json

import pytest
import yaml

from modules.job_relay.lib.config import ConfigError, FilterRules, Settings


def _kw(sqlite_path, **extra):
    kw = {
        "producers": [{"kind": "stub", "source": "feed-a", "params": {}}],
        "sqlite_path": sqlite_path,
    }
    kw.update(extra)
    return kw


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------
def test_defaults(sqlite_path):
    s = Settings.from_env_and_kwargs(_kw(sqlite_path))
    assert s.role == "both"
    assert s.period == "day"
    assert s.batch_size == 10
    assert s.inter_send_delay == 2.0
    assert s.max_cache_size == 5000
    assert s.dry_run is False
    assert s.destinations == {}


def test_producers_path_yaml(tmp_path, sqlite_path):
    p = tmp_path / "producers.yaml"
    p.write_text(yaml.safe_dump([{"kind": "json_feed", "source": "export", "params": {"path": "x.json"}}]))
    s = Settings.from_env_and_kwargs({"producers_path": str(p), "sqlite_path": sqlite_path})
    assert [(pc.kind, pc.source) for pc in s.producers] == [("json_feed", "export")]
    assert s.group_by_kind() == {"json_feed": s.producers}


def test_missing_producers_rejected(sqlite_path):
    with pytest.raises(ConfigError, match="producers"):
        Settings.from_env_and_kwargs({"sqlite_path": sqlite_path})


@pytest.mark.parametrize(
    "extra",
    [
        {"role": "senior"},
        {"period": "fortnight"},
        {"default_role": "staff"},
        {"batch_size": 0},
        {"inter_send_delay_ms": -1},
        {"max_cache_size": 0},
        {"batch_size": "ten"},
        {"destinations": {"intern::marketing": "https://x"}},
        {"destinations": {"software_engineering": "https://x"}},
        {"sources": ["not-configured"]},
    ],
)
def test_invalid_settings_rejected(sqlite_path, extra):
    with pytest.raises(ConfigError):
        Settings.from_env_and_kwargs(_kw(sqlite_path, **extra))


def test_destinations_env_indirection(sqlite_path, monkeypatch):
    monkeypatch.setenv("HOOK_INTERN_SWE", "https://hooks.example.invalid/api/webhooks/1/abc")
    monkeypatch.delenv("HOOK_UNSET", raising=False)
    s = Settings.from_env_and_kwargs(
        _kw(
            sqlite_path,
            destinations_env={
                "intern::software_engineering": "HOOK_INTERN_SWE",
                "new_grad::data_analysis": "HOOK_UNSET",
            },
        )
    )
    assert s.destinations == {"intern::software_engineering": "https://hooks.example.invalid/api/webhooks/1/abc"}


def test_env_fallbacks(tmp_path, monkeypatch):
    db = str(tmp_path / "env.db")
    monkeypatch.setenv("JOB_RELAY_SQLITE_PATH", db)
    monkeypatch.setenv("JOB_RELAY_DRY_RUN", "1")
    s = Settings.from_env_and_kwargs({"producers": [{"kind": "stub", "source": "a"}]})
    assert s.sqlite_path == db
    assert s.dry_run is True


def test_sources_subset_and_role_none(sqlite_path):
    s = Settings.from_env_and_kwargs(
        _kw(
            sqlite_path,
            producers=[
                {"kind": "stub", "source": "A"},
                {"kind": "stub", "source": "b"},
            ],
            sources="a",
            role="",
        )
    )
    assert [p.source for p in s.selected_producers()] == ["A"]
    assert s.role is None


# ----------------------------------------------------------------------
# FilterRules
# ----------------------------------------------------------------------
def test_rules_defaults_are_lowercase_and_secondary_pass_off():
    rules = FilterRules.defaults()
    assert "senior" in rules.excluded_terms
    assert "intern" in rules.intern_markers
    assert rules.required_terms_secondary_pass is False
    assert rules.category_aliases["business_analyst"] == "data_analysis"


def test_rules_file_overlays_defaults(tmp_path, sqlite_path):
    p = tmp_path / "rules.json"
    p.write_text(
        json.dumps({
            "excluded_terms": ["Senior", "Staff"],
            "category_aliases": {"Quant": "data_science_engineer"},
            "required_terms_secondary_pass": "yes",
        })
    )
    s = Settings.from_env_and_kwargs(_kw(sqlite_path, rules_path=str(p)))
    rules = s.filter_rules()
    assert rules.excluded_terms == ("senior", "staff")
    assert rules.category_aliases["quant"] == "data_science_engineer"
    assert rules.category_aliases["swe"] == "software_engineering"
    assert rules.required_terms_secondary_pass is True
    assert rules.required_terms == FilterRules.defaults().required_terms


@pytest.mark.parametrize(
    "data",
    [
        {"exclude_terms": ["typo"]},
        {"new_grad_patterns": ["(unclosed"]},
        {"category_aliases": {"x": "marketing"}},
        {"category_keywords": {"marketing": ["seo"]}},
        {"required_terms": [""]},
        {"intern_markers": 5},
    ],
)
def test_bad_rules_rejected(data):
    with pytest.raises(ConfigError):
        FilterRules.from_mapping(data)


def test_broken_rules_file_fails_at_config_time(tmp_path, sqlite_path):
    p = tmp_path / "rules.yaml"
    p.write_text("excluded_terms: [unclosed\n")
    with pytest.raises(ConfigError, match="invalid YAML"):
        Settings.from_env_and_kwargs(_kw(sqlite_path, rules_path=str(p)))
