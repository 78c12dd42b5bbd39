"""
Cache Coordinator

Read-through cache for rendered enrichment fragments.

Behavior
--------
- Single-flight: within a process, concurrent misses on one key share one
  computation. Across processes the store's per-key lock serializes them
  on a best-effort basis (see `CacheStore.lock`).
- Freshness floor: a caller may pass `min_as_of`, the time of the last
  write this viewer made to the backing source. A cached value computed
  before it is a miss even if its TTL has not run out.
- Elastic TTL: a recomputed value identical to the previous one is kept for
  twice the previous entry's age (capped at `max_ttl`); a new or changed
  value is kept for `min_ttl`.
- Purge on divergence: when the floor forced the recomputation and the
  value changed, the entry is deleted everywhere instead of overwritten.
- Uncacheable results (failed fetches) are returned but never stored.
- A computation whose every caller has been cancelled (e.g. by a request
  deadline) is cancelled too, aborting its remote fetches.
- Store failures degrade to computing without the cache.

State per key: Absent -> Computing -> Cached -> (Cached | Computing), and
Cached -> Absent on purge, Computing -> Absent once no caller is waiting.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from ..config import settings
from ..core.errors import CacheBackendFailure
from .store import CacheEntry, CacheStore

logger = logging.getLogger("fa.cache")


@dataclass(frozen=True)
class ComputeResult:
    """Output of a compute function. Failed fetches set `cacheable=False`."""
    value: str
    cacheable: bool = True


ComputeFn = Callable[[], Awaitable[ComputeResult]]


@dataclass
class _Flight:
    task: "asyncio.Future[str]"
    started_at: float
    waiters: int = 0


class CacheCoordinator:
    """
    Parameters
    ----------
    store : CacheStore
        Backing store (in-memory or Redis).
    min_ttl, max_ttl, stale_ttl : Optional[int]
        Elastic TTL bounds and how long expired entries are retained for
        comparison. Default to the configured values.
    clock : Callable[[], float]
        UNIX time source, injectable for tests.
    """

    def __init__(
        self,
        store: CacheStore,
        min_ttl: Optional[int] = None,
        max_ttl: Optional[int] = None,
        stale_ttl: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.min_ttl = settings.cache_min_ttl if min_ttl is None else min_ttl
        self.max_ttl = settings.cache_max_ttl if max_ttl is None else max_ttl
        self.stale_ttl = settings.cache_stale_ttl if stale_ttl is None else stale_ttl
        self._clock = clock
        self._inflight: Dict[str, _Flight] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_or_compute(
        self,
        key: str,
        compute: ComputeFn,
        max_ttl: Optional[int] = None,
        min_as_of: Optional[float] = None,
        elastic: bool = True,
    ) -> str:
        """
        Return the cached value for `key`, computing it on a miss.

        Parameters
        ----------
        key : str
            Cache key.
        compute : ComputeFn
            Produces the value; called at most once per process at a time.
        max_ttl : Optional[int]
            TTL ceiling for this key (defaults to the coordinator's).
        min_as_of : Optional[float]
            Freshness floor. Values computed before it are not served.
        elastic : bool
            When False, every stored value gets `max_ttl` outright.
        """
        max_ttl = self.max_ttl if max_ttl is None else max_ttl

        entry = await self._safe_get(key)
        if self._usable(entry, self._clock(), min_as_of):
            return entry.value

        flight = self._inflight.get(key)
        if flight is not None and (min_as_of is None or flight.started_at >= min_as_of):
            logger.debug("Joining in-flight computation of %s", key)
            return await self._wait(key, flight)

        flight = _Flight(
            task=asyncio.ensure_future(self._fill(key, compute, max_ttl, min_as_of, elastic)),
            started_at=self._clock(),
        )
        self._inflight[key] = flight
        flight.task.add_done_callback(lambda task: self._land(key, flight))
        return await self._wait(key, flight)

    def elastic_ttl(
        self,
        previous: Optional[CacheEntry],
        value: str,
        now: float,
        max_ttl: int,
    ) -> float:
        """
        TTL for a freshly computed value.

        Unchanged from `previous`: min(2 * previous age, max_ttl).
        New or changed: min(min_ttl, max_ttl).
        """
        if previous is None or previous.value != value:
            return min(self.min_ttl, max_ttl)
        return min(2 * previous.age(now), max_ttl)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _usable(entry: Optional[CacheEntry], now: float, min_as_of: Optional[float]) -> bool:
        if entry is None or entry.is_expired(now):
            return False
        return min_as_of is None or entry.stored_at >= min_as_of

    async def _wait(self, key: str, flight: _Flight) -> str:
        # The shield keeps one cancelled caller from killing a computation
        # others still share; the last one to leave cancels it.
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                logger.info("Abandoning computation of %s: no callers left", key)
                if self._inflight.get(key) is flight:
                    del self._inflight[key]
                flight.task.cancel()

    def _land(self, key: str, flight: _Flight) -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]
        if not flight.task.cancelled() and flight.task.exception() is not None:
            logger.warning("Computation of %s failed: %s", key, flight.task.exception())

    async def _fill(
        self,
        key: str,
        compute: ComputeFn,
        max_ttl: int,
        min_as_of: Optional[float],
        elastic: bool,
    ) -> str:
        async with AsyncExitStack() as stack:
            try:
                await stack.enter_async_context(self._store.lock(key))
            except CacheBackendFailure as exc:
                logger.warning("Computing %s without a lock: %s", key, exc)

            # Another process may have filled the key while we waited.
            previous = await self._safe_get(key)
            if self._usable(previous, self._clock(), min_as_of):
                return previous.value

            # Entries are stamped with the time the computation started, so
            # writes landing during a fetch are still ahead of the entry.
            now = self._clock()
            result = await compute()

            if not result.cacheable:
                logger.info("Not caching %s: computation reported a failure", key)
                return result.value

            if (
                previous is not None
                and min_as_of is not None
                and previous.stored_at < min_as_of
                and previous.value != result.value
            ):
                logger.info("Purging %s: value changed since the viewer's last write", key)
                await self._safe_delete(key)
                return result.value

            ttl = self.elastic_ttl(previous, result.value, now, max_ttl) if elastic else max_ttl
            await self._safe_set(
                CacheEntry(
                    key=key,
                    value=result.value,
                    stored_at=now,
                    ttl=ttl,
                    stale_ttl=self.stale_ttl,
                )
            )
            return result.value

    async def _safe_get(self, key: str) -> Optional[CacheEntry]:
        try:
            return await self._store.get(key)
        except CacheBackendFailure as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    async def _safe_set(self, entry: CacheEntry) -> None:
        try:
            await self._store.set(entry)
        except CacheBackendFailure as exc:
            logger.warning("Cache write failed for %s: %s", entry.key, exc)

    async def _safe_delete(self, key: str) -> None:
        try:
            await self._store.delete(key)
        except CacheBackendFailure as exc:
            logger.warning("Cache purge failed for %s: %s", key, exc)
