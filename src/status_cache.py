"""
Short-TTL cache of provider capacity snapshots.

Absorbs repeated status lookups for the same provider within the TTL window,
collapses concurrent refreshes of the same key into one in-flight request,
and never caches a failed fetch: every lookup on a failing provider goes back
to the remote status API until it answers.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, Optional

import redis.asyncio as redis

from config import settings
from errors import UpstreamUnreachable
from models import CapacitySnapshot, ProviderContext

logger = logging.getLogger(__name__)


SnapshotFetcher = Callable[[ProviderContext], Awaitable[CapacitySnapshot]]


class SnapshotStore(ABC):
    """Storage backend for capacity snapshots keyed by provider context id"""

    @abstractmethod
    async def get(self, key: str) -> Optional[CapacitySnapshot]:
        ...

    @abstractmethod
    async def set(self, key: str, snapshot: CapacitySnapshot, ttl: int) -> None:
        ...

    async def close(self) -> None:
        pass


class MemorySnapshotStore(SnapshotStore):
    def __init__(self):
        self._entries: Dict[str, CapacitySnapshot] = {}

    async def get(self, key: str) -> Optional[CapacitySnapshot]:
        return self._entries.get(key)

    async def set(self, key: str, snapshot: CapacitySnapshot, ttl: int) -> None:
        self._entries[key] = snapshot

    def clear(self):
        self._entries.clear()


class RedisSnapshotStore(SnapshotStore):
    """Shares snapshots between workers so a provider is polled once per TTL overall"""

    def __init__(self, redis_url: str, prefix: str = "capacity"):
        self.redis_client = redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[CapacitySnapshot]:
        raw = await self.redis_client.get(self._key(key))
        if not raw:
            return None
        return CapacitySnapshot.from_dict(json.loads(raw))

    async def set(self, key: str, snapshot: CapacitySnapshot, ttl: int) -> None:
        await self.redis_client.set(self._key(key), json.dumps(snapshot.to_dict()), ex=ttl)

    async def close(self) -> None:
        await self.redis_client.close()


class ProviderStatusCache:
    def __init__(
        self,
        fetcher: SnapshotFetcher,
        store: Optional[SnapshotStore] = None,
        ttl: int = settings.CAPACITY_CACHE_TTL,
        fetch_timeout: float = settings.CAPACITY_FETCH_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.fetcher = fetcher
        self.store = store or MemorySnapshotStore()
        self.ttl = ttl
        self.fetch_timeout = fetch_timeout
        self.clock = clock
        self._in_flight: Dict[str, asyncio.Task] = {}

    async def get_snapshot(self, context: ProviderContext) -> CapacitySnapshot:
        """
        Return a snapshot no older than the TTL for this provider context.

        Raises UpstreamUnreachable when the remote status call fails or exceeds
        the fetch timeout. Failures are not cached.
        """
        key = context.context_id
        cached = await self._read(key)
        if cached is not None:
            logger.debug(f"Capacity cache hit for {key}")
            return cached

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._refresh(key, context))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug(f"Joining in-flight capacity fetch for {key}")

        # Shielded so one cancelled caller does not abort the fetch for the others
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task):
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Consume the failure; every awaiting caller may have been cancelled
        if not task.cancelled():
            task.exception()

    async def _read(self, key: str) -> Optional[CapacitySnapshot]:
        try:
            snapshot = await self.store.get(key)
        except Exception as e:
            logger.warning(f"Capacity cache read failed for {key}: {e}")
            return None
        if snapshot is None:
            return None
        if self.clock() - snapshot.fetched_at >= self.ttl:
            return None
        return snapshot

    async def _refresh(self, key: str, context: ProviderContext) -> CapacitySnapshot:
        try:
            snapshot = await asyncio.wait_for(self.fetcher(context), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Capacity fetch for {key} timed out after {self.fetch_timeout}s")
            raise UpstreamUnreachable(f"Capacity fetch for {key} timed out")
        except UpstreamUnreachable as e:
            logger.warning(f"Capacity fetch for {key} failed: {e.message}")
            raise
        except Exception as e:
            logger.warning(f"Capacity fetch for {key} failed unexpectedly: {e}")
            raise UpstreamUnreachable(f"Capacity fetch for {key} failed: {e}") from e

        snapshot.fetched_at = self.clock()
        try:
            await self.store.set(key, snapshot, self.ttl)
        except Exception as e:
            logger.warning(f"Capacity cache write failed for {key}: {e}")
        return snapshot

    async def close(self):
        await self.store.close()


def create_snapshot_store() -> SnapshotStore:
    """Pick the snapshot store from settings"""
    if settings.REDIS_ENABLED:
        logger.info(
            f"Using Redis capacity cache at {settings.REDIS_HOST}:{settings.REDIS_SERVER_PORT}/{settings.REDIS_DB}")
        return RedisSnapshotStore(settings.redis_url)
    return MemorySnapshotStore()
