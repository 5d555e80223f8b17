"""Key/value cache with per-key TTL.

Two backends share the ``TTLCache`` protocol: an in-process map whose clock can
be injected (tests advance a fake clock to observe expiry) and a Redis backend
for multi-process deployments. Values are JSON-serialisable dicts.
"""

import asyncio
import json
import time
from collections.abc import Callable
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()


class TTLCache(Protocol):
    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryTTLCache:
    """Concurrent in-process cache. Expired entries are evicted lazily on read."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return dict(value)

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        async with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, dict(value))

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisTTLCache:
    """Redis-backed cache storing JSON strings with ``SET key value EX ttl``."""

    def __init__(self, client: Any, prefix: str = "loginwatch:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "loginwatch:") -> "RedisTTLCache":
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True), prefix=prefix)

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self._client.get(self._prefix + key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("cache_value_undecodable", key=key)
            return None

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        await self._client.set(self._prefix + key, json.dumps(value, default=str), ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._prefix + key)

    async def close(self) -> None:
        await self._client.aclose()
