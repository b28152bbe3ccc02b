"""Shared pytest fixtures for cmc-pro tests.

Fixture summary
---------------
clock        : FrozenClock at 2026-10-19 12:00:00 UTC, advanced explicitly.
store        : MemoryStore whose expiry follows ``clock``.
core_config  : Default CoreConfig (basic plan, balanced cache strategy).

Unit tests run against ``MemoryStore`` and never touch Redis or the network.
Client tests mock the HTTP transport with respx.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pytest

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set env vars before any application modules are imported so that Settings()
# never picks up a developer's real key or Redis server.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "CMC_API_KEY": "test-api-key",
    "CMC_PLAN_TYPE": "basic",
    "CMC_EVENTS_ENABLED": "true",
    "CMC_LOG_LEVEL": "INFO",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)
os.environ.pop("CMC_REDIS_URL", None)

from cmc_pro.config.options import CoreConfig  # noqa: E402
from cmc_pro.config.settings import get_settings  # noqa: E402
from cmc_pro.core.store import MemoryStore  # noqa: E402

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()


class FrozenClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def epoch(self) -> float:
        return self.current.timestamp()

    def advance(self, **delta: float) -> None:
        self.current += timedelta(**delta)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: FrozenClock) -> MemoryStore:
    return MemoryStore(clock=clock.epoch)


@pytest.fixture
def core_config() -> CoreConfig:
    return CoreConfig()
