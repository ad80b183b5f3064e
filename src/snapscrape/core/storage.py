"""Durable key-value storage shared by the rate limiters and rotation manager.

Two implementations of :class:`KeyValueStore` are provided:

- :class:`RedisKeyValueStore` — production backend on ``redis.asyncio``.
- :class:`MemoryKeyValueStore` — process-local dict, for local runs and tests.

Values are plain strings; callers own serialization.  Keys are namespaced
with ``:`` separators, e.g. ``snapscrape:ratelimit:inbound:203.0.113.9:count``.
Backend failures surface as :class:`~snapscrape.core.exceptions.StorageError`
so that callers can apply their own fail-safe policy.

Usage::

    store = get_key_value_store()
    limiter_store = store.scoped("ratelimit")
    await limiter_store.put("1.2.3.4:count", "3")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import redis.asyncio as aioredis

from snapscrape.core.exceptions import StorageError

if TYPE_CHECKING:
    from snapscrape.config.settings import Settings

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal async string key-value capability."""

    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key`` or ``None`` when absent."""
        ...

    async def put(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    def scoped(self, namespace: str) -> "KeyValueStore":
        """Return a view of this store with ``namespace`` prepended to every key."""
        ...

    async def aclose(self) -> None:
        """Release connections held by the store.  Scoped views share them."""
        ...


def _join(namespace: str, key: str) -> str:
    return f"{namespace}:{key}" if namespace else key


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisKeyValueStore:
    """Key-value store backed by an async Redis client.

    Args:
        redis_client: A ``redis.asyncio.Redis`` created with
            ``decode_responses=True``.
        namespace: Prefix applied to every key.
    """

    def __init__(self, redis_client: aioredis.Redis, namespace: str = "") -> None:
        self._redis = redis_client
        self._namespace = namespace

    @property
    def client(self) -> aioredis.Redis:
        return self._redis

    async def get(self, key: str) -> str | None:
        full_key = _join(self._namespace, key)
        try:
            value = await self._redis.get(full_key)
        except Exception as exc:
            raise StorageError(f"Redis get failed for key '{full_key}': {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def put(self, key: str, value: str) -> None:
        full_key = _join(self._namespace, key)
        try:
            await self._redis.set(full_key, value)
        except Exception as exc:
            raise StorageError(f"Redis set failed for key '{full_key}': {exc}") from exc

    def scoped(self, namespace: str) -> RedisKeyValueStore:
        return RedisKeyValueStore(self._redis, _join(self._namespace, namespace))

    async def ping(self) -> bool:
        """Return ``True`` when Redis answers ``PING``."""
        try:
            return bool(await self._redis.ping())
        except Exception:
            logger.exception("Redis ping failed")
            return False

    async def aclose(self) -> None:
        try:
            await self._redis.aclose()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Closing Redis client failed: %s", exc)


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------


class MemoryKeyValueStore:
    """Dict-backed store.  Scoped views share the parent's dict.

    Args:
        namespace: Prefix applied to every key.
        data: Backing dict; a fresh one is created when ``None``.
    """

    def __init__(self, namespace: str = "", data: dict[str, str] | None = None) -> None:
        self._namespace = namespace
        self._data: dict[str, str] = data if data is not None else {}

    @property
    def data(self) -> dict[str, str]:
        return self._data

    async def get(self, key: str) -> str | None:
        return self._data.get(_join(self._namespace, key))

    async def put(self, key: str, value: str) -> None:
        self._data[_join(self._namespace, key)] = value

    def scoped(self, namespace: str) -> MemoryKeyValueStore:
        return MemoryKeyValueStore(_join(self._namespace, namespace), self._data)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def get_key_value_store(settings: Settings | None = None) -> KeyValueStore:
    """Build the store selected by ``Settings.storage_backend``.

    The Redis client is created lazily by ``redis.asyncio`` — no connection
    is opened until the first command.

    Args:
        settings: Settings to use; defaults to :func:`get_settings`.

    Returns:
        A namespaced :class:`KeyValueStore`.
    """
    if settings is None:
        from snapscrape.config.settings import get_settings  # noqa: PLC0415

        settings = get_settings()
    if settings.storage_backend == "memory":
        logger.warning(
            "Using in-memory storage; rate windows and identity ledger are not durable"
        )
        return MemoryKeyValueStore(settings.storage_namespace)

    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    return RedisKeyValueStore(client, settings.storage_namespace)
