"""
Runtime configuration for the statistics engine.

Values come from the environment (optionally seeded from a ``.env`` file).
The low-registration threshold and placeholder capacity live here instead of
being literals in the queries.
"""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class StatisticsConfig(BaseModel):
    database_url: Optional[str] = None
    pool_size: int = Field(default=5, ge=1)
    low_registration_threshold: int = Field(default=10, ge=1)
    default_capacity: int = Field(default=100, ge=1)
    recent_events_limit: int = Field(default=5, ge=1)
    max_limit: int = Field(default=100, ge=1)
    max_days: int = Field(default=3660, ge=1)
    strict_rows: bool = False
    """Fail the whole operation on an undecodable row instead of skipping it."""

    cache_ttl_seconds: float = 0.0
    """Result cache lifetime; 0 disables caching."""

    request_timeout_seconds: float = 10.0
    log_level: str = "INFO"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config(dotenv: bool = True) -> StatisticsConfig:
    if dotenv:
        load_dotenv()
    defaults = StatisticsConfig()
    return StatisticsConfig(
        database_url=os.getenv("EVENT_STATS_DATABASE_URL") or os.getenv("DATABASE_URL"),
        pool_size=_env_int("EVENT_STATS_POOL_SIZE", defaults.pool_size),
        low_registration_threshold=_env_int(
            "EVENT_STATS_LOW_REGISTRATION_THRESHOLD", defaults.low_registration_threshold
        ),
        default_capacity=_env_int("EVENT_STATS_DEFAULT_CAPACITY", defaults.default_capacity),
        recent_events_limit=_env_int("EVENT_STATS_RECENT_EVENTS_LIMIT", defaults.recent_events_limit),
        max_limit=_env_int("EVENT_STATS_MAX_LIMIT", defaults.max_limit),
        max_days=_env_int("EVENT_STATS_MAX_DAYS", defaults.max_days),
        strict_rows=_env_bool("EVENT_STATS_STRICT_ROWS", defaults.strict_rows),
        cache_ttl_seconds=_env_float("EVENT_STATS_CACHE_TTL", defaults.cache_ttl_seconds),
        request_timeout_seconds=_env_float("EVENT_STATS_REQUEST_TIMEOUT", defaults.request_timeout_seconds),
        log_level=os.getenv("EVENT_STATS_LOG_LEVEL", defaults.log_level),
    )
