"""
access_roster.cache

Read-through cache for roster queries.

Responsibilities:
- Build deterministic cache keys per operation kind.
- Memoize role checks and listings with per-kind TTLs.
- Centralize invalidation for every mutating roster operation.
- Provide an in-process LRU backend and a shared Redis backend.
"""

from __future__ import annotations

import enum
import fnmatch
import hashlib
import pickle
import threading
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol, TypeVar

import redis.asyncio as redis

from access_roster.identity import IdentityRef
from access_roster.observability.logging import get_logger
from access_roster.settings import CacheSettings

log = get_logger(__name__)

T = TypeVar("T")


class CacheKind(enum.StrEnum):
    role_check = "role_check"
    participants = "participants"
    assigned_entities = "assigned_entities"


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...


class MemoryCacheBackend:
    """
    In-process TTL cache with least-recently-used eviction.

    Values must be immutable; they are returned as stored. When `max_size` is exceeded,
    expired entries are purged first, then the least recently used ones.
    """

    def __init__(
        self, *, max_size: int = 10_000, clock: Callable[[], float] = time.monotonic
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    async def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)
            self._entries.move_to_end(key)
            if len(self._entries) > self.max_size:
                self._evict()

    async def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        # Caller holds the lock.
        now = self._clock()
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)


class RedisCacheBackend:
    """
    Shared cache over `redis.asyncio`, so every worker process sees the same invalidations.

    Values are pickled; Redis enforces the TTL. Only connect this to a Redis instance the
    application trusts.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCacheBackend:
        return cls(redis.from_url(url))

    async def get(self, key: str) -> Any | None:
        data = await self._client.get(key)
        if data is None:
            return None
        return pickle.loads(data)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        await self._client.set(key, pickle.dumps(value), ex=ttl)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._client.delete(*keys)

    async def delete_pattern(self, pattern: str) -> int:
        doomed = [key async for key in self._client.scan_iter(match=pattern)]
        if not doomed:
            return 0
        return await self._client.delete(*doomed)

    async def close(self) -> None:
        await self._client.aclose()


def build_backend(settings: CacheSettings) -> CacheBackend:
    if settings.backend == "redis":
        return RedisCacheBackend.from_url(settings.redis_url)
    return MemoryCacheBackend(max_size=settings.max_entries)


class RosterCache:
    def __init__(self, settings: CacheSettings, backend: CacheBackend | None = None) -> None:
        self._settings = settings
        self._backend = backend if backend is not None else build_backend(settings)
        # Bumped by every invalidation; a load that overlaps one is not written back.
        self._generation = 0

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    # Key builders ----------------------------------------------------------

    def role_check_key(self, subject: IdentityRef, target: IdentityRef, role_key: str) -> str:
        digest = hashlib.sha256(role_key.encode("utf-8")).hexdigest()
        return (
            f"{self._settings.key_prefix}:{CacheKind.role_check}:"
            f"{subject.type_tag}:{subject.id}:{target.type_tag}:{target.id}:{digest}"
        )

    def participants_key(self, target: IdentityRef) -> str:
        return f"{self._settings.key_prefix}:{CacheKind.participants}:{target.type_tag}:{target.id}"

    def assigned_key(self, subject: IdentityRef, target_type: str) -> str:
        return (
            f"{self._settings.key_prefix}:{CacheKind.assigned_entities}:"
            f"{subject.type_tag}:{subject.id}:{target_type}"
        )

    # Read-through ----------------------------------------------------------

    async def remember(
        self, kind: CacheKind, key: str, loader: Callable[[], Awaitable[T]]
    ) -> T:
        if not self.enabled:
            return await loader()
        cached = await self._backend.get(key)
        if cached is not None:
            log.debug("roster.cache.hit", kind=str(kind), key=key)
            return cached

        generation = self._generation
        value = await loader()
        if generation != self._generation:
            log.debug("roster.cache.stale_load_dropped", kind=str(kind), key=key)
            return value
        await self._backend.set(key, value, self._settings.ttl_for(kind))
        if generation != self._generation:
            # An invalidation ran while the write was in flight.
            await self._backend.delete(key)
        log.debug("roster.cache.miss", kind=str(kind), key=key)
        return value

    # Invalidation ----------------------------------------------------------

    async def invalidate_pair(
        self, subject: IdentityRef, target: IdentityRef, role_keys: Iterable[str]
    ) -> None:
        """Single invalidation entry point for writes on one (subject, target) pair."""

        if not self.enabled:
            return
        self._generation += 1
        keys = {self.role_check_key(subject, target, rk) for rk in role_keys}
        keys.add(self.participants_key(target))
        keys.add(self.assigned_key(subject, target.type_tag))
        await self._backend.delete(*keys)
        log.debug("roster.cache.invalidated", subject=subject, target=target, keys=len(keys))

    async def invalidate_target(self, target: IdentityRef) -> None:
        # Subjects on the target are unknown here, so subject-keyed entries are matched by pattern.
        if not self.enabled:
            return
        self._generation += 1
        prefix = self._settings.key_prefix
        await self._backend.delete(self.participants_key(target))
        await self._backend.delete_pattern(
            f"{prefix}:{CacheKind.role_check}:*:{target.type_tag}:{target.id}:*"
        )
        await self._backend.delete_pattern(
            f"{prefix}:{CacheKind.assigned_entities}:*:{target.type_tag}"
        )

    async def clear(self) -> int:
        self._generation += 1
        return await self._backend.delete_pattern(f"{self._settings.key_prefix}:*")


# --- Module Notes -----------------------------------------------------------
# A miss is signalled by `None`, so loaders never produce `None`; listings are cached as tuples.
# The generation counter is per process. Across processes sharing Redis, a load racing a
# remote write can still be written back; it then lives at most one `role_check` TTL.
