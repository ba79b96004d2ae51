"""
Expiring in-memory caches.

ExpiringCache is a lock-guarded dict of (expires_at, value) pairs swept on
access. MovieDetailCache sits in front of the catalog client and shares
in-flight loads; ResultCache holds finished rankings for a short window.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

from .config import MOVIE_CACHE_TTL, RESULT_CACHE_TTL
from .models import MovieRecord, RecommendationResult

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ExpiringCache(Generic[K, V]):
    """Key-value store whose entries expire after a per-entry TTL."""

    def __init__(
        self,
        default_ttl: float,
        max_items: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.max_items = max_items
        self._clock = clock
        self._entries: dict[K, tuple[float, V]] = {}
        self._lock = threading.RLock()

    def get(self, key: K) -> V | None:
        """Return the live value for key, or None on a miss or expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, key: K, value: V, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)
            if self.max_items is not None and len(self._entries) > self.max_items:
                self.sweep()
                # Still full: drop the entries closest to expiry
                overflow = len(self._entries) - self.max_items
                if overflow > 0:
                    for stale in sorted(self._entries, key=lambda k: self._entries[k][0])[:overflow]:
                        del self._entries[stale]

    def evict(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        """Remove all expired entries; returns how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        self.sweep()
        return len(self._entries)


@dataclass
class _InflightLoad:
    task: asyncio.Future
    waiters: int = 0


class MovieDetailCache:
    """
    Memoizes enriched MovieRecords per movie id.

    A miss is always satisfiable from the client; concurrent misses for the
    same id on the same event loop share a single upstream load. Loads are
    never shared across loops (threads each running asyncio.run), since a
    task can only be awaited from the loop that created it. Failed loads
    are not cached.
    """

    def __init__(self, client, ttl: float = MOVIE_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.ttl = ttl
        self._cache: ExpiringCache[int, MovieRecord] = ExpiringCache(ttl, clock=clock)
        self._inflight: dict[tuple[asyncio.AbstractEventLoop, int], _InflightLoad] = {}
        self._lock = threading.RLock()

    def get(self, movie_id: int) -> MovieRecord | None:
        return self._cache.get(movie_id)

    def put(self, movie_id: int, record: MovieRecord, ttl: float | None = None) -> None:
        self._cache.put(movie_id, record, ttl)

    def evict(self, movie_id: int) -> None:
        self._cache.evict(movie_id)

    async def fetch(self, movie_id: int) -> MovieRecord:
        """Return the cached record or load it through the catalog client."""
        record = self.get(movie_id)
        if record is not None:
            logger.debug(f"Movie cache hit for {movie_id}")
            return record

        key = (asyncio.get_running_loop(), movie_id)
        with self._lock:
            load = self._inflight.get(key)
            if load is None:
                load = _InflightLoad(asyncio.ensure_future(self._load(movie_id)))
                self._inflight[key] = load
            load.waiters += 1

        try:
            return await asyncio.shield(load.task)
        finally:
            with self._lock:
                load.waiters -= 1
                # The last waiter to leave cancels a load nobody needs any more
                if not load.task.done() and load.waiters == 0:
                    load.task.cancel()
                if (load.task.done() or load.waiters == 0) and self._inflight.get(key) is load:
                    del self._inflight[key]

    async def _load(self, movie_id: int) -> MovieRecord:
        record = await self.client.fetch_movie(movie_id)
        self.put(movie_id, record)
        return record


class ResultCache:
    """Short-lived cache of finished rankings, keyed by RankingRequest.cache_key()."""

    def __init__(self, ttl: float = RESULT_CACHE_TTL, max_items: int = 256, clock: Callable[[], float] = time.monotonic):
        self._cache: ExpiringCache[tuple, RecommendationResult] = ExpiringCache(
            ttl, max_items=max_items, clock=clock
        )

    def get(self, key: tuple) -> RecommendationResult | None:
        return self._cache.get(key)

    def put(self, key: tuple, result: RecommendationResult) -> None:
        self._cache.put(key, result)

    def evict(self, key: tuple) -> None:
        self._cache.evict(key)

    def clear(self) -> None:
        self._cache.clear()
