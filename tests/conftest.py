"""Shared pytest fixtures for SnapScrape tests.

Fixture summary
---------------
memory_store    — Fresh in-process MemoryKeyValueStore.
clock           — Manually advanced millisecond clock (FakeClock).
seeded_rng      — random.Random with a fixed seed.
identity_pool   — IdentityPool driven by ``seeded_rng``.

No test needs Redis, a browser, or network access: Redis is replaced by
the in-memory store or an AsyncMock, Playwright by mocks, and outbound HTTP
by respx.
"""

from __future__ import annotations

import os
import random

import pytest

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set env vars before any application modules are imported so that the
# cached Settings() reflects the test configuration.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "STORAGE_BACKEND": "memory",
    "REDIS_URL": "redis://localhost:6379/0",
    "LOG_LEVEL": "INFO",
    "BACKEND_SECURITY_TOKEN": "test-backend-token",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

from snapscrape.config.settings import get_settings  # noqa: E402
from snapscrape.core.storage import MemoryKeyValueStore  # noqa: E402
from snapscrape.scraper.identity import IdentityPool  # noqa: E402

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: float = 1_700_000_000_000.0) -> None:
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def identity_pool(seeded_rng: random.Random) -> IdentityPool:
    return IdentityPool(seeded_rng)
