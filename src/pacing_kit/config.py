from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_SECONDS_UNTIL_GIVING_UP = 10.0
DEFAULT_SCRIPT_TIMEOUT = 10.0
DEFAULT_POLL_INTERVAL = 0.2
DEFAULT_TIMEZONE = "UTC"
DEFAULT_BASE_URL = "http://localhost:3000"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    seconds_until_giving_up: float = DEFAULT_SECONDS_UNTIL_GIVING_UP
    script_timeout: float = DEFAULT_SCRIPT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    timezone: str = DEFAULT_TIMEZONE
    base_url: str = DEFAULT_BASE_URL

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            seconds_until_giving_up=_env_float(
                "PACING_SECONDS_UNTIL_GIVING_UP", DEFAULT_SECONDS_UNTIL_GIVING_UP
            ),
            script_timeout=_env_float("PACING_SCRIPT_TIMEOUT", DEFAULT_SCRIPT_TIMEOUT),
            poll_interval=_env_float("PACING_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            timezone=os.getenv("PACING_TIMEZONE", "").strip() or DEFAULT_TIMEZONE,
            base_url=os.getenv("PACING_BASE_URL", "").strip().rstrip("/") or DEFAULT_BASE_URL,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    return Settings.from_env()
