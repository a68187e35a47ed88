from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

from sales_tool_detector.errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_DB_PATH = PROJECT_ROOT / "data" / "pipeline.sqlite"

SCRAPER_REQUIRED_ENVS = ("APIFY_TOKEN",)
ANALYZER_REQUIRED_ENVS = ("OPENAI_API_KEY",)


class Settings(BaseModel):
    apify_token: str = ""
    apify_actor: str = "bebity~linkedin-jobs-scraper"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-5-mini-2025-08-07"
    slack_webhook_url: str = ""
    slack_notification_types: str = "company_discovered,error"
    db_path: Path = Field(default=DEFAULT_DB_PATH)
    staleness_window_days: float = Field(default=7, gt=0)
    skip_window_days: float = Field(default=90, ge=0)
    analysis_batch_size: int = Field(default=100, ge=1)
    analyzer_interval_minutes: float = Field(default=5, gt=0)
    scheduler_interval_minutes: float = Field(default=60, gt=0)
    max_postings_per_term: int = Field(default=500, ge=1)
    provider_timeout_seconds: float = Field(default=300.0, gt=0)
    classifier_timeout_seconds: float = Field(default=30.0, gt=0)
    request_retry_attempts: int = Field(default=3, ge=1)
    request_retry_delay_seconds: float = Field(default=1.0, ge=0.0)
    request_retry_max_delay_seconds: float = Field(default=30.0, ge=0.0)
    analysis_request_delay_seconds: float = Field(default=0.5, ge=0.0)
    max_analysis_attempts: int = Field(default=0, ge=0)
    skip_known_companies: bool = True
    scrape_lease_seconds: int = Field(default=3600, ge=1)
    backlog_degraded_threshold: int = Field(default=5000, ge=0)
    overdue_terms_degraded_threshold: int = Field(default=10, ge=0)
    user_agent: str = "sales-tool-detector/0.1"
    log_level: str = "INFO"

    @field_validator("slack_webhook_url")
    @classmethod
    def _validate_webhook_url(cls, value: str) -> str:
        if value and not value.startswith("https://"):
            raise ValueError("SLACK_WEBHOOK_URL must use https://")
        return value

    @field_validator("openai_base_url")
    @classmethod
    def _validate_openai_base_url(cls, value: str) -> str:
        if not value.startswith("https://"):
            raise ValueError("OPENAI_BASE_URL must use https://")
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown LOG_LEVEL: {value}")
        return level

    @property
    def staleness_window(self) -> timedelta:
        return timedelta(days=self.staleness_window_days)

    @property
    def skip_window(self) -> timedelta:
        return timedelta(days=self.skip_window_days)

    @property
    def slack_types(self) -> frozenset[str]:
        return frozenset(item.strip() for item in self.slack_notification_types.split(",") if item.strip())


def _env_value(environ: Mapping[str, str], key: str) -> str:
    return environ.get(key, "").strip()


def _env_bool(raw: str, default: bool) -> bool:
    if not raw:
        return default
    return raw.casefold() in {"1", "true", "yes", "on"}


def missing_settings(required: Sequence[str], settings: Settings) -> list[str]:
    return [key for key in required if not str(getattr(settings, key.lower(), "")).strip()]


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    source = os.environ if environ is None else environ
    try:
        payload = {
            "apify_token": _env_value(source, "APIFY_TOKEN"),
            "apify_actor": _env_value(source, "APIFY_ACTOR") or "bebity~linkedin-jobs-scraper",
            "openai_api_key": _env_value(source, "OPENAI_API_KEY"),
            "openai_base_url": _env_value(source, "OPENAI_BASE_URL") or "https://api.openai.com/v1",
            "openai_model": _env_value(source, "OPENAI_MODEL") or "gpt-5-mini-2025-08-07",
            "slack_webhook_url": _env_value(source, "SLACK_WEBHOOK_URL"),
            "slack_notification_types": _env_value(source, "SLACK_NOTIFICATION_TYPES")
            or "company_discovered,error",
            "db_path": Path(_env_value(source, "DB_PATH") or DEFAULT_DB_PATH),
            "staleness_window_days": float(_env_value(source, "STALENESS_WINDOW_DAYS") or "7"),
            "skip_window_days": float(_env_value(source, "SKIP_WINDOW_DAYS") or "90"),
            "analysis_batch_size": int(_env_value(source, "ANALYSIS_BATCH_SIZE") or "100"),
            "analyzer_interval_minutes": float(_env_value(source, "ANALYZER_INTERVAL_MINUTES") or "5"),
            "scheduler_interval_minutes": float(_env_value(source, "SCHEDULER_INTERVAL_MINUTES") or "60"),
            "max_postings_per_term": int(_env_value(source, "MAX_POSTINGS_PER_TERM") or "500"),
            "provider_timeout_seconds": float(_env_value(source, "PROVIDER_TIMEOUT_SECONDS") or "300"),
            "classifier_timeout_seconds": float(_env_value(source, "CLASSIFIER_TIMEOUT_SECONDS") or "30"),
            "request_retry_attempts": int(_env_value(source, "REQUEST_RETRY_ATTEMPTS") or "3"),
            "request_retry_delay_seconds": float(_env_value(source, "REQUEST_RETRY_DELAY_SECONDS") or "1"),
            "request_retry_max_delay_seconds": float(
                _env_value(source, "REQUEST_RETRY_MAX_DELAY_SECONDS") or "30"
            ),
            "analysis_request_delay_seconds": float(
                _env_value(source, "ANALYSIS_REQUEST_DELAY_SECONDS") or "0.5"
            ),
            "max_analysis_attempts": int(_env_value(source, "MAX_ANALYSIS_ATTEMPTS") or "0"),
            "skip_known_companies": _env_bool(_env_value(source, "SKIP_KNOWN_COMPANIES"), True),
            "scrape_lease_seconds": int(_env_value(source, "SCRAPE_LEASE_SECONDS") or "3600"),
            "backlog_degraded_threshold": int(_env_value(source, "BACKLOG_DEGRADED_THRESHOLD") or "5000"),
            "overdue_terms_degraded_threshold": int(
                _env_value(source, "OVERDUE_TERMS_DEGRADED_THRESHOLD") or "10"
            ),
            "user_agent": _env_value(source, "USER_AGENT") or "sales-tool-detector/0.1",
            "log_level": _env_value(source, "LOG_LEVEL") or "INFO",
        }
        return Settings(**payload)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


def require_settings(required: Sequence[str], settings: Settings) -> None:
    missing = missing_settings(required, settings)
    if missing:
        keys = ", ".join(missing)
        raise ConfigurationError(f"Missing required environment variables: {keys}")


def mask_secret(value: str, visible_prefix: int = 3, visible_suffix: int = 2) -> str:
    if not value:
        return ""
    if len(value) <= visible_prefix + visible_suffix:
        return "*" * len(value)
    hidden = "*" * (len(value) - visible_prefix - visible_suffix)
    return f"{value[:visible_prefix]}{hidden}{value[-visible_suffix:]}"
