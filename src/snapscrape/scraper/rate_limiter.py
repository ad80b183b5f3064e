"""Fixed-window per-key rate limiter backed by the durable key-value store.

Each key owns one window described by two stored values::

    {prefix}:{key}:last_request   — epoch milliseconds of the latest call
    {prefix}:{key}:count          — calls counted in the current window

On every call the window is reset to 1 when more than ``window_ms`` has
passed since ``last_request``, otherwise the count is incremented.  The new
``(now, count)`` pair is written back whether or not the call is admitted,
so a denied call still refreshes the window timestamp.  The read-modify-write
is not atomic; two concurrent sessions on the same key can miscount.

Storage failures deny the call (fail-closed).

Typical usage::

    limiter = FixedWindowRateLimiter(store, max_requests=5, window_ms=10_000)

    if not await limiter.limit(client_ip):
        raise AdmissionDeniedError(client_ip)

    ran = await limiter.admit_and_run(client_ip, fetch_page)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from snapscrape.api.metrics import rate_limit_decisions_total
from snapscrape.core.storage import KeyValueStore

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class RateWindow:
    """Persisted state of one key's window.

    Attributes:
        last_request_ms: Timestamp of the most recent call (epoch ms), ``0``
            when the key has never been seen.
        request_count: Calls counted in the current window.
    """

    last_request_ms: float = 0
    request_count: int = 0


class FixedWindowRateLimiter:
    """Admission control with a fixed number of calls per window and key.

    Args:
        store: Durable key-value store.
        max_requests: Calls admitted per window.
        window_ms: Window length in milliseconds.
        prefix: Namespace separating this limiter's keys from others sharing
            the store (also used as the metrics label).
        clock: Millisecond clock; defaults to wall-clock time.
    """

    def __init__(
        self,
        store: KeyValueStore,
        max_requests: int,
        window_ms: int,
        *,
        prefix: str = "ratelimit",
        clock: Callable[[], float] | None = None,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self._store = store
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.prefix = prefix
        self._clock = clock or _now_ms

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _key(self, key: str, field: str) -> str:
        return f"{self.prefix}:{key}:{field}"

    async def _load_window(self, key: str) -> RateWindow:
        last = await self._store.get(self._key(key, "last_request"))
        count = await self._store.get(self._key(key, "count"))
        return RateWindow(
            last_request_ms=float(last) if last else 0,
            request_count=int(count) if count else 0,
        )

    async def _save_window(self, key: str, window: RateWindow) -> None:
        await self._store.put(self._key(key, "last_request"), repr(window.last_request_ms))
        await self._store.put(self._key(key, "count"), str(window.request_count))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def limit(self, key: str) -> bool:
        """Count one call against ``key`` and decide whether it is admitted.

        Args:
            key: Rate-limit subject, e.g. a client IP address.

        Returns:
            ``True`` if the call fits in the current window.  ``False`` when
            the window is exhausted or the store is unavailable.
        """
        now = self._clock()
        try:
            window = await self._load_window(key)
            if now - window.last_request_ms > self.window_ms:
                count = 1
            else:
                count = window.request_count + 1
            await self._save_window(key, RateWindow(last_request_ms=now, request_count=count))
        except Exception:
            logger.exception(
                "Rate limiter storage error, denying request",
                extra={"limiter": self.prefix, "key": key},
            )
            rate_limit_decisions_total.labels(limiter=self.prefix, outcome="error").inc()
            return False

        admitted = count <= self.max_requests
        rate_limit_decisions_total.labels(
            limiter=self.prefix, outcome="admitted" if admitted else "denied"
        ).inc()
        if not admitted:
            logger.debug(
                "Rate limited",
                extra={"limiter": self.prefix, "key": key, "count": count},
            )
        return admitted

    async def admit_and_run(self, key: str, work: Callable[[], Awaitable[Any]]) -> bool:
        """Run ``work`` only if a call against ``key`` is admitted.

        Exceptions raised by ``work`` propagate to the caller.

        Returns:
            Whether ``work`` ran.
        """
        if not await self.limit(key):
            return False
        await work()
        return True
