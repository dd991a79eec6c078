import pytest
from pydantic import ValidationError

from urlrisk_agent.config import ENVIRONMENTS, SOURCE_IDS, build, config_from_env, merge


def test_build_is_reproducible():
    assert build("production") == build("production")
    assert build("Production ") == build("production")


def test_every_environment_configures_every_source():
    for env in ENVIRONMENTS:
        cfg = build(env)
        assert cfg.environment == env
        assert set(cfg.sources) == set(SOURCE_IDS)
        assert all(s.cache_enabled for s in cfg.sources.values())


@pytest.mark.parametrize("source_id", SOURCE_IDS)
def test_timeouts_ordered_by_environment(source_id):
    prod, staging, dev = (build(e).source(source_id).timeout_s for e in ("production", "staging", "development"))
    assert prod < staging < dev


def test_production_defaults():
    cfg = build("production")
    assert cfg.log_level == "INFO"
    assert cfg.source("reputation").timeout_s == 5
    assert cfg.source("reputation").max_retries == 3
    assert cfg.source("whois").cache_ttl_s == 24 * 60 * 60
    assert cfg.total_deadline_s == 45


def test_overrides_win_field_by_field():
    cfg = build("production", {"sources": {"ai": {"timeout_s": 3}}, "log_level": "WARNING"})
    ai = cfg.source("ai")
    assert ai.timeout_s == 3
    assert ai.max_retries == build("production").source("ai").max_retries
    assert cfg.log_level == "WARNING"
    assert cfg.source("ssl") == build("production").source("ssl")


def test_merge_does_not_mutate_base():
    base = build("staging")
    merged = merge(base, {"sources": {"whois": {"enabled": False}}})
    assert not merged.source("whois").enabled
    assert base.source("whois").enabled


def test_config_is_frozen():
    cfg = build("development")
    with pytest.raises(ValidationError):
        cfg.log_level = "ERROR"


@pytest.mark.parametrize(
    "overrides",
    [
        {"sources": {"nope": {"timeout_s": 1}}},
        {"bogus_field": 1},
        {"environment": "production"},
    ],
)
def test_bad_overrides_rejected(overrides):
    with pytest.raises(ValueError):
        build("development", overrides)


def test_invalid_override_value_rejected():
    with pytest.raises(ValidationError):
        build("development", {"sources": {"ai": {"timeout_s": -1}}})


def test_unknown_environment():
    with pytest.raises(ValueError):
        build("qa")


def test_config_from_env(monkeypatch):
    monkeypatch.setattr("urlrisk_agent.config.load_env_file", lambda: None)
    monkeypatch.setenv("URLRISK_ENV", "staging")
    monkeypatch.setenv("URLRISK_LOG_LEVEL", "warning")
    monkeypatch.setenv("URLRISK_TOTAL_DEADLINE_S", "12.5")
    cfg = config_from_env()
    assert cfg.environment == "staging"
    assert cfg.log_level == "WARNING"
    assert cfg.total_deadline_s == 12.5


def test_env_files_loaded_once_per_config(monkeypatch):
    loaded = []
    monkeypatch.setattr("urlrisk_agent.config.load_dotenv", lambda *args, **kwargs: loaded.append(args))
    config_from_env()
    # repo root .env, then the working directory
    assert len(loaded) == 2


def test_app_module_leaves_env_loading_to_config():
    import urlrisk_agent.main as main

    assert not hasattr(main, "load_dotenv")
