import pytest
from pydantic import ValidationError

from event_stats.cache import ResultCache
from event_stats.config import StatisticsConfig, load_config


def test_defaults():
    config = StatisticsConfig()

    assert config.database_url is None
    assert config.low_registration_threshold == 10
    assert config.default_capacity == 100
    assert config.cache_ttl_seconds == 0


def test_load_config_reads_environment(monkeypatch):
    monkeypatch.delenv("EVENT_STATS_DATABASE_URL", raising=False)
    monkeypatch.setenv("DATABASE_URL", "postgresql://stats@db/events")
    monkeypatch.setenv("EVENT_STATS_LOW_REGISTRATION_THRESHOLD", "4")
    monkeypatch.setenv("EVENT_STATS_STRICT_ROWS", "true")
    monkeypatch.setenv("EVENT_STATS_CACHE_TTL", "30")
    monkeypatch.setenv("EVENT_STATS_MAX_LIMIT", "not-a-number")

    config = load_config(dotenv=False)

    assert config.database_url == "postgresql://stats@db/events"
    assert config.low_registration_threshold == 4
    assert config.strict_rows is True
    assert config.cache_ttl_seconds == 30.0
    assert config.max_limit == 100


def test_dedicated_database_url_wins(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://fallback/events")
    monkeypatch.setenv("EVENT_STATS_DATABASE_URL", "sqlite:///stats.db")

    assert load_config(dotenv=False).database_url == "sqlite:///stats.db"


def test_non_positive_capacity_is_rejected():
    with pytest.raises(ValidationError):
        StatisticsConfig(default_capacity=0)


def test_disabled_cache_stores_nothing():
    cache = ResultCache(ttl_s=0)
    cache.set("key", 1)

    assert cache.get("key") is None
    assert len(cache) == 0


def test_cache_entries_expire(monkeypatch):
    clock = [100.0]
    monkeypatch.setattr("event_stats.cache.time.monotonic", lambda: clock[0])
    cache = ResultCache(ttl_s=10)

    cache.set("key", "value")
    clock[0] = 105.0
    assert cache.get("key") == "value"
    clock[0] = 200.0
    assert cache.get("key") is None
    assert len(cache) == 0
