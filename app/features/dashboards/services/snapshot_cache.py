"""
Short-TTL snapshot cache with single-flight builds.

Within one process at most one build runs per key; every concurrent caller
for that key awaits the same task. Successful snapshots are stored with a
TTL, failures are never stored and reach every waiter of the failed build.
Entries live in a pluggable store: an in-process dict by default, or Redis
so several workers share the same snapshots.
"""

import asyncio
import json
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from typing import Protocol, TypeVar

from pydantic import ValidationError as PydanticValidationError

from app.features.dashboards.domain.snapshots import SNAPSHOT_MODELS, SnapshotModel
from app.features.dashboards.errors import CacheBuildError, DataSourceError
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient

logger = get_logger(__name__)

S = TypeVar("S", bound=SnapshotModel)


@dataclass(slots=True, frozen=True)
class CacheEntry:
    key: str
    snapshot: SnapshotModel
    stored_at: float
    ttl_seconds: float

    def is_live(self, now: float) -> bool:
        return now - self.stored_at <= self.ttl_seconds


class SnapshotStore(Protocol):
    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, entry: CacheEntry) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_prefix(self, prefix: str) -> int: ...


class InMemorySnapshotStore:
    """Process-local store. Expired entries are evicted lazily by the cache."""

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._entries)


class RedisSnapshotStore:
    """
    Redis-backed store shared by every worker.

    Each key holds a JSON envelope with the snapshot model name, the store
    timestamp and the TTL; Redis expires the key on its own via SETEX. Any
    Redis failure reads as a miss.
    """

    def __init__(self, client: FastRedisClient):
        self.client = client

    async def get(self, key: str) -> CacheEntry | None:
        raw = await self.client.get(key)
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
            model = SNAPSHOT_MODELS[envelope["model"]]
            return CacheEntry(
                key=key,
                snapshot=model.model_validate(envelope["payload"]),
                stored_at=float(envelope["storedAt"]),
                ttl_seconds=float(envelope["ttlSeconds"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, PydanticValidationError) as e:
            logger.warning("Discarding unreadable cached snapshot", key=key, error=str(e))
            return None

    async def set(self, entry: CacheEntry) -> None:
        envelope = {
            "model": type(entry.snapshot).__name__,
            "storedAt": entry.stored_at,
            "ttlSeconds": entry.ttl_seconds,
            "payload": entry.snapshot.model_dump(mode="json", by_alias=True),
        }
        stored = await self.client.set_with_ttl(
            entry.key, json.dumps(envelope), max(1, math.ceil(entry.ttl_seconds))
        )
        if not stored:
            logger.warning("Snapshot not written to Redis", key=entry.key)

    async def delete(self, key: str) -> bool:
        return await self.client.delete(key)

    async def delete_prefix(self, prefix: str) -> int:
        return await self.client.delete_prefix(prefix)


@dataclass(slots=True)
class _InFlight:
    task: asyncio.Task
    waiters: int = 0


class SnapshotCache:
    """
    Keyed TTL cache with single-flight de-duplication.

    The cache owns both the entry store and the in-flight registry; nothing
    else mutates them. A build is cancelled only when its last waiter goes
    away, so one impatient caller cannot fail the others.
    """

    def __init__(self, store: SnapshotStore | None = None, *, clock: Callable[[], float] = time.time):
        self.store = store if store is not None else InMemorySnapshotStore()
        self._clock = clock
        self._in_flight: dict[str, _InFlight] = {}

    @property
    def in_flight_keys(self) -> list[str]:
        return list(self._in_flight)

    async def get_or_compute(
        self,
        key: str,
        ttl_seconds: float,
        build: Callable[[], Awaitable[S]],
        *,
        bypass: bool = False,
    ) -> S:
        """
        Return the live snapshot for key, building it at most once.

        With ``bypass`` the cache is neither read nor written and the existing
        entry is left untouched.
        """
        if bypass:
            logger.debug("Snapshot cache bypassed", key=key)
            return await self._build(key, build)

        entry = await self.store.get(key)
        if entry is not None:
            if entry.is_live(self._clock()):
                logger.debug("Snapshot cache hit", key=key)
                return entry.snapshot
            await self.store.delete(key)

        flight = self._in_flight.get(key)
        if flight is None:
            logger.debug("Snapshot cache miss", key=key)
            task = asyncio.create_task(self._build_and_store(key, ttl_seconds, build))
            flight = _InFlight(task=task)
            self._in_flight[key] = flight
            task.add_done_callback(partial(self._forget, key, flight))
        else:
            logger.debug("Joining in-flight snapshot build", key=key, waiters=flight.waiters)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                logger.info("Cancelling abandoned snapshot build", key=key)
                flight.task.cancel()
                self._forget(key, flight)

    async def invalidate(self, key: str) -> bool:
        removed = await self.store.delete(key)
        logger.info("Snapshot cache entry invalidated", key=key, removed=removed)
        return removed

    async def invalidate_prefix(self, prefix: str) -> int:
        removed = await self.store.delete_prefix(prefix)
        logger.info("Snapshot cache namespace invalidated", prefix=prefix, removed=removed)
        return removed

    async def _build(self, key: str, build: Callable[[], Awaitable[S]]) -> S:
        started = time.perf_counter()
        try:
            snapshot = await build()
        except DataSourceError as e:
            logger.error("Snapshot build failed", key=key, source=e.source, error=str(e))
            raise CacheBuildError(key, e) from e
        logger.debug(
            "Snapshot built",
            key=key,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return snapshot

    async def _build_and_store(self, key: str, ttl_seconds: float, build: Callable[[], Awaitable[S]]) -> S:
        snapshot = await self._build(key, build)
        if ttl_seconds > 0:
            await self.store.set(
                CacheEntry(key=key, snapshot=snapshot, stored_at=self._clock(), ttl_seconds=ttl_seconds)
            )
        return snapshot

    def _forget(self, key: str, flight: _InFlight, task: asyncio.Task | None = None) -> None:
        # Mark the outcome retrieved; waiters that already left never will
        if task is not None and not task.cancelled():
            task.exception()
        if self._in_flight.get(key) is flight:
            del self._in_flight[key]
