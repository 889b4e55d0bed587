"""Identity cache: external subject -> internal user id.

Entries live under ``user:<external_id>`` and expire after a fixed TTL.
There is no explicit invalidation; a revoked credential can keep resolving
for at most one TTL window.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as aioredis

from service_fabric.core.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
MEMORY_URL = "memory://"


@dataclass(frozen=True)
class Identity:
    """A resolved user: the internal id plus the provider's subject."""

    internal_id: str
    external_id: str


def cache_key(external_id: str) -> str:
    return f"user:{external_id}"


class IdentityCache(Protocol):
    ttl_seconds: int

    async def get(self, external_id: str) -> Identity | None: ...

    async def set(self, identity: Identity) -> None: ...

    async def close(self) -> None: ...


class RedisIdentityCache:
    """Cache backed by Redis (``SET key value EX ttl``)."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._redis = client or aioredis.from_url(redis_url, decode_responses=True)
        self.ttl_seconds = ttl_seconds

    async def get(self, external_id: str) -> Identity | None:
        value = await self._redis.get(cache_key(external_id))
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return Identity(internal_id=value, external_id=external_id)

    async def set(self, identity: Identity) -> None:
        await self._redis.set(
            cache_key(identity.external_id),
            identity.internal_id,
            ex=self.ttl_seconds,
        )

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryIdentityCache:
    """Process-local TTL cache for tests and single-process runs."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, external_id: str) -> Identity | None:
        key = cache_key(external_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        internal_id, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return Identity(internal_id=internal_id, external_id=external_id)

    async def set(self, identity: Identity) -> None:
        self._entries[cache_key(identity.external_id)] = (
            identity.internal_id,
            self._clock() + self.ttl_seconds,
        )

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def create_identity_cache(settings: Settings) -> IdentityCache:
    """Pick the cache backend from ``settings.redis_url``."""
    ttl = settings.identity.cache_ttl_seconds
    if settings.redis_url.startswith(MEMORY_URL):
        logger.info("Using in-memory identity cache (ttl=%ds)", ttl)
        return InMemoryIdentityCache(ttl_seconds=ttl)
    logger.info("Using Redis identity cache (ttl=%ds)", ttl)
    return RedisIdentityCache(settings.redis_url, ttl_seconds=ttl)
