from __future__ import annotations

import pytest

from pacing_kit.config import get_settings


class FakeClock:
    """Monotonic clock that only advances when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    for name in (
        "PACING_SECONDS_UNTIL_GIVING_UP",
        "PACING_SCRIPT_TIMEOUT",
        "PACING_POLL_INTERVAL",
        "PACING_TIMEZONE",
        "PACING_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
