"""Configuration management for the triage request tracker."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from triage_tracker.utils.http import normalize_endpoint_url

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class EndpointSettings(BaseModel):
    """Remote workflow endpoints for the three request operations."""

    lookup_url: str | None = Field(default=None)
    create_url: str | None = Field(default=None)
    update_url: str | None = Field(default=None)
    timeout_seconds: float = Field(default=30.0, ge=0.1, le=300.0)

    @field_validator("lookup_url", "create_url", "update_url")
    @classmethod
    def _validate_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_endpoint_url(value)

    @property
    def complete(self) -> bool:
        return bool(self.lookup_url and self.create_url and self.update_url)


class ReconciliationSettings(BaseModel):
    delays_seconds: tuple[float, ...] = Field(
        default=(2.5, 5.0),
        description="Sleep before each reconciliation attempt; one attempt per entry.",
    )

    @field_validator("delays_seconds")
    @classmethod
    def _validate_delays(cls, value: tuple[float, ...]) -> tuple[float, ...]:
        if not value:
            raise ValueError("at least one reconciliation delay is required")
        if any(delay <= 0 for delay in value):
            raise ValueError("reconciliation delays must be positive")
        return value


class SessionSettings(BaseModel):
    correlation_key_mode: Literal["message", "conversation"] = Field(
        default="message",
        description="Which email identity correlates a request with its email.",
    )
    success_banner_seconds: float = Field(default=4.0, ge=0.0, le=60.0)


class Settings(BaseModel):
    endpoints: EndpointSettings = Field(default_factory=EndpointSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_KEYS = {
    "lookup_url": "TRACKER_LOOKUP_URL",
    "create_url": "TRACKER_CREATE_URL",
    "update_url": "TRACKER_UPDATE_URL",
    "timeout": "TRACKER_HTTP_TIMEOUT_SECONDS",
    "reconcile_delays": "TRACKER_RECONCILE_DELAYS",
    "correlation_key_mode": "TRACKER_CORRELATION_KEY_MODE",
    "success_banner_seconds": "TRACKER_SUCCESS_BANNER_SECONDS",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
}


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _env_float_tuple(key: str, default: tuple[float, ...]) -> tuple[float, ...]:
    items = _split_csv(os.getenv(key))
    if not items:
        return default
    try:
        return tuple(float(item) for item in items)
    except ValueError:
        _config_logger.warning(
            "Invalid float list for %s: %r, using default %s", key, os.getenv(key), default
        )
        return default


def _env_url(key: str) -> str | None:
    value = os.getenv(key, "").strip()
    return value or None


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "endpoints": {
            "lookup_url": _env_url(ENV_KEYS["lookup_url"]),
            "create_url": _env_url(ENV_KEYS["create_url"]),
            "update_url": _env_url(ENV_KEYS["update_url"]),
            "timeout_seconds": _env_float(
                ENV_KEYS["timeout"], EndpointSettings().timeout_seconds
            ),
        },
        "reconciliation": {
            "delays_seconds": _env_float_tuple(
                ENV_KEYS["reconcile_delays"], ReconciliationSettings().delays_seconds
            ),
        },
        "session": {
            "correlation_key_mode": os.getenv(
                ENV_KEYS["correlation_key_mode"], SessionSettings().correlation_key_mode
            )
            .strip()
            .lower(),
            "success_banner_seconds": _env_float(
                ENV_KEYS["success_banner_seconds"],
                SessionSettings().success_banner_seconds,
            ),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    return settings
