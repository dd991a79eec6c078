"""
Per-environment service configuration.

The defaults table below is the main tuning surface: for each environment
it fixes, per signal source, the lookup timeout, retry budget and cache
policy, plus the total analysis deadline and log level. ``build`` is pure,
so the same environment name (and overrides) always yields the same
configuration.

Environment variables (read by ``config_from_env``):
- URLRISK_ENV: development | staging | production (default: development)
- URLRISK_LOG_LEVEL: overrides the environment's log level
- URLRISK_TOTAL_DEADLINE_S: overrides the total analysis deadline
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

Environment = Literal["development", "staging", "production"]
ENVIRONMENTS: tuple[Environment, ...] = ("production", "staging", "development")

SOURCE_IDS: tuple[str, ...] = ("reputation", "whois", "ssl", "ai")

_HOUR = 60 * 60


class SourceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout_s: float = Field(..., gt=0)
    max_retries: int = Field(..., ge=0)
    cache_enabled: bool = True
    cache_ttl_s: float = Field(..., gt=0)
    cache_capacity: int = Field(1000, ge=1)
    enabled: bool = True


class ServiceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    environment: Environment
    sources: dict[str, SourceConfig]
    log_level: str = "INFO"
    total_deadline_s: float = Field(..., gt=0)
    retry_backoff_s: float = Field(0.25, ge=0)

    def source(self, source_id: str) -> SourceConfig:
        return self.sources[source_id]


def _src(timeout_s: float, max_retries: int, cache_ttl_s: float, cache_capacity: int) -> SourceConfig:
    return SourceConfig(
        timeout_s=timeout_s,
        max_retries=max_retries,
        cache_enabled=True,
        cache_ttl_s=cache_ttl_s,
        cache_capacity=cache_capacity,
    )


ENVIRONMENT_DEFAULTS: dict[str, ServiceConfig] = {
    "production": ServiceConfig(
        environment="production",
        sources={
            "reputation": _src(5, 3, 6 * _HOUR, 10000),
            "whois": _src(10, 2, 24 * _HOUR, 5000),
            "ssl": _src(5, 2, 6 * _HOUR, 3000),
            "ai": _src(30, 2, 24 * _HOUR, 2000),
        },
        log_level="INFO",
        total_deadline_s=45,
        retry_backoff_s=0.25,
    ),
    "staging": ServiceConfig(
        environment="staging",
        sources={
            "reputation": _src(10, 2, 3 * _HOUR, 5000),
            "whois": _src(15, 1, 12 * _HOUR, 2500),
            "ssl": _src(10, 1, 3 * _HOUR, 1500),
            "ai": _src(45, 1, 12 * _HOUR, 1000),
        },
        log_level="DEBUG",
        total_deadline_s=60,
        retry_backoff_s=0.5,
    ),
    "development": ServiceConfig(
        environment="development",
        sources={
            "reputation": _src(15, 1, 15 * 60, 300),
            "whois": _src(20, 1, 6 * _HOUR, 200),
            "ssl": _src(15, 1, 1 * _HOUR, 150),
            "ai": _src(60, 1, 6 * _HOUR, 100),
        },
        log_level="DEBUG",
        total_deadline_s=90,
        retry_backoff_s=0.5,
    ),
}


def merge(base: ServiceConfig, overrides: Mapping[str, Any] | None) -> ServiceConfig:
    """Field-by-field merge; any field present in ``overrides`` wins.

    ``overrides`` mirrors the shape of ``ServiceConfig`` with every field
    optional, e.g. ``{"sources": {"ai": {"timeout_s": 5}}, "log_level": "WARNING"}``.
    Unknown source ids are rejected.
    """
    if not overrides:
        return base

    data = base.model_dump()
    for key, value in overrides.items():
        if key == "sources":
            for source_id, fields in (value or {}).items():
                if source_id not in data["sources"]:
                    raise ValueError(f"Unknown signal source: {source_id}")
                data["sources"][source_id] = {**data["sources"][source_id], **dict(fields)}
        elif key == "environment":
            raise ValueError("environment cannot be overridden; pass it to build()")
        elif key in data:
            data[key] = value
        else:
            raise ValueError(f"Unknown configuration field: {key}")
    return ServiceConfig.model_validate(data)


def build(environment: str, overrides: Mapping[str, Any] | None = None) -> ServiceConfig:
    env = (environment or "").strip().lower()
    if env not in ENVIRONMENT_DEFAULTS:
        raise ValueError(f"Unknown environment {environment!r}; expected one of {', '.join(ENVIRONMENTS)}")
    return merge(ENVIRONMENT_DEFAULTS[env], overrides)


def load_env_file() -> None:
    """Load .env from the project root and the working directory. Safe to call multiple times."""
    load_dotenv(Path(__file__).resolve().parents[1] / ".env", override=False)
    load_dotenv(override=False)


def config_from_env() -> ServiceConfig:
    load_env_file()
    overrides: dict[str, Any] = {}
    level = (os.getenv("URLRISK_LOG_LEVEL") or "").strip()
    if level:
        overrides["log_level"] = level.upper()
    deadline = (os.getenv("URLRISK_TOTAL_DEADLINE_S") or "").strip()
    if deadline:
        overrides["total_deadline_s"] = float(deadline)
    return build(os.getenv("URLRISK_ENV", "development"), overrides)
