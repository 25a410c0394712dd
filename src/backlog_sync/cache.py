"""TTL-bounded in-memory cache with single-flight fetches.

One map per resource kind, keyed by project id or a singleton key. Entries
live for ``CACHE_TTL_SECONDS`` and are only dropped by an explicit
invalidation or ``clear()``.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 10 * 60

BUCKET_SET = "bucket_set"
STATUSES = "statuses"
CATEGORIES = "categories"
ISSUE_TYPES = "issue_types"
USERS = "users"
PROJECT_INFO = "project_info"
CURRENT_USER = "current_user"

SINGLETON_KEY = "_"

Fetcher = Callable[[], Awaitable[Any]]


@dataclass
class CacheEntry:
    """A cached value and the wall-clock time it was fetched."""

    data: Any
    fetched_at: float


class CacheStore:
    """Per-kind TTL cache shared by every component of one sync service."""

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, dict[Hashable, CacheEntry]] = {}
        self._inflight: dict[tuple[str, Hashable], asyncio.Future] = {}
        self._generation = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get(self, kind: str, key: Hashable = SINGLETON_KEY) -> CacheEntry | None:
        return self._entries.get(kind, {}).get(key)

    def put(self, kind: str, key: Hashable, data: Any) -> CacheEntry:
        entry = CacheEntry(data=data, fetched_at=self._clock())
        self._entries.setdefault(kind, {})[key] = entry
        return entry

    def is_fresh(self, entry: CacheEntry | None) -> bool:
        if entry is None:
            return False
        return self._clock() - entry.fetched_at < self._ttl_seconds

    def keys(self, kind: str) -> list[Hashable]:
        return list(self._entries.get(kind, {}))

    def invalidate(self, kind: str, key: Hashable | None = None) -> None:
        if key is None:
            self._entries.pop(kind, None)
        else:
            self._entries.get(kind, {}).pop(key, None)

    def clear(self) -> None:
        """Drop every entry and detach in-flight fetches from the store."""
        self._entries.clear()
        self._inflight.clear()
        self._generation += 1

    async def share(self, kind: str, key: Hashable, fetcher: Fetcher) -> Any:
        """Run ``fetcher`` once for all concurrent callers of the same key.

        The result is stored on success. Failures reach every waiter and leave
        the previous entry untouched.
        """
        slot = (kind, key)
        task = self._inflight.get(slot)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(kind, key, fetcher))
            self._inflight[slot] = task

            def _release(done: asyncio.Future, slot=slot) -> None:
                if self._inflight.get(slot) is done:
                    del self._inflight[slot]

            task.add_done_callback(_release)
        else:
            logger.debug("Joining in-flight fetch for %s/%s", kind, key)
        return await asyncio.shield(task)

    async def _fetch_and_store(self, kind: str, key: Hashable, fetcher: Fetcher) -> Any:
        generation = self._generation
        data = await fetcher()
        if generation == self._generation:
            self.put(kind, key, data)
        else:
            logger.debug("Discarding %s/%s fetched before cache was cleared", kind, key)
        return data

    async def get_or_fetch(
        self,
        kind: str,
        key: Hashable,
        fetcher: Fetcher,
        *,
        default: Callable[[], Any],
        force: bool = False,
    ) -> Any:
        """Return fresh data, fetching on miss; never raises.

        On fetch failure the last cached value is returned, or ``default()``
        if nothing was ever cached for the key.
        """
        entry = self.get(kind, key)
        if not force and self.is_fresh(entry):
            return entry.data
        try:
            return await self.share(kind, key, fetcher)
        except Exception as exc:
            logger.warning("Failed to fetch %s for %s: %s", kind, key, exc)
            fallback = self.get(kind, key)
            if fallback is not None:
                return fallback.data
            return default()

    async def memoize(self, kind: str, key: Hashable, fetcher: Fetcher) -> Any:
        """Fetch once and keep the value until the next ``clear()``."""
        entry = self.get(kind, key)
        if entry is not None:
            return entry.data
        return await self.share(kind, key, fetcher)
