"""
tickflow — Configuration Management
=====================================
Centralized, validated configuration with environment-based overrides.
All settings are loaded from environment variables with sensible defaults.

Usage:
    from tickflow.core.config import get_settings
    settings = get_settings()
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Root configuration object.

    All values can be overridden via environment variables prefixed with ``TICKFLOW_``.
    Example: ``TICKFLOW_BRIDGE_TIMEOUT_SECONDS=5``
    """

    model_config = SettingsConfigDict(
        env_prefix="TICKFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────────────────
    app_name: str = "tickflow"
    environment: Environment = Environment.DEVELOPMENT

    # ── Logging ──────────────────────────────────────────────────────────
    log_level: str = Field(
        default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = Field(default="json", pattern=r"^(json|console)$")

    # ── Tick bridge ──────────────────────────────────────────────────────
    bridge_timeout_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Deadline for a queued host operation when the caller gives none.",
    )

    # ── Simulated host ───────────────────────────────────────────────────
    tick_interval_seconds: float = Field(
        default=0.6,
        gt=0,
        description="Period of the simulated host tick clock.",
    )

    # ── Runner ───────────────────────────────────────────────────────────
    runner_log_transitions: bool = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the singleton Settings instance.

    Cached so environment is read exactly once per process lifetime.
    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    return Settings()
