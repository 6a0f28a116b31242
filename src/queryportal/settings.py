"""Runtime settings loaded from QUERYPORTAL_* environment variables."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BACKEND_URL = "http://localhost:8000"

_DURATION_PATTERN = re.compile(
    r"^(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>[a-zA-Z]*)$",
)
_DURATION_UNITS = {
    "": 1.0,
    "ms": 0.001,
    "s": 1.0,
    "sec": 1.0,
    "secs": 1.0,
    "seconds": 1.0,
    "m": 60.0,
    "min": 60.0,
    "mins": 60.0,
    "minutes": 60.0,
    "h": 3600.0,
    "hr": 3600.0,
    "hours": 3600.0,
}


def parse_duration(raw_value: Any, *, field_name: str) -> float:
    """Return a duration in seconds from a number or a string like ``"15s"``."""

    if isinstance(raw_value, bool):
        raise ValueError(f"{field_name} must be a number of seconds")
    if isinstance(raw_value, (int, float)):
        seconds = float(raw_value)
    elif isinstance(raw_value, str):
        text = raw_value.strip()
        match = _DURATION_PATTERN.match(text)
        if not match:
            raise ValueError(
                f"{field_name} must be numeric seconds or a value like '500ms', '15s' or '5m'",
            )
        multiplier = _DURATION_UNITS.get(match.group("unit").lower())
        if multiplier is None:
            raise ValueError(f"Unsupported duration unit for {field_name}")
        seconds = float(match.group("value")) * multiplier
    else:
        raise ValueError(f"{field_name} must be a number of seconds")

    if seconds < 0:
        raise ValueError(f"{field_name} must not be negative")
    return seconds


class Settings(BaseSettings):
    """Framework configuration shared by the server and client sides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="QUERYPORTAL_",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "queryportal"
    backend_url: str = DEFAULT_BACKEND_URL

    # Cache hints (seconds)
    default_stale_time: float = 60.0
    default_cache_time: float = 300.0
    default_refresh_delay: float = 0.05
    request_timeout: float = 30.0

    # Auth
    jwt_secret: SecretStr = SecretStr("change-me")
    jwt_algorithm: str = "HS256"

    # Logging
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    @field_validator(
        "default_stale_time",
        "default_cache_time",
        "default_refresh_delay",
        "request_timeout",
        mode="before",
    )
    @classmethod
    def _coerce_duration(cls, value: Any, info: Any) -> float:
        return parse_duration(value, field_name=info.field_name)

    @field_validator("backend_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings loaded from the environment."""

    return Settings()


def reload_settings() -> Settings:
    """Reload settings from the environment and refresh the cache."""

    get_settings.cache_clear()
    return get_settings()
