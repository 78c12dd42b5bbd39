"""
Cache Store

Storage capability behind the cache coordinator: get / set / delete plus a
per-key lock used for single-flight computation.

Design choices
--------------
- Entries carry their own bookkeeping (stored_at, ttl, stale_ttl). Stores
  keep an entry physically until `ttl + stale_ttl` has passed, so the
  coordinator can still compare a recomputed value with the expired one.
- Logical expiry is the coordinator's decision, not the store's.
- Store failures surface as `CacheBackendFailure` and nothing else.
- `InMemoryCacheStore` serves single-process deployments and tests;
  `RedisCacheStore` (see `cache.redis_store`) serves replicated ones.
"""

from __future__ import annotations

import abc
import asyncio
import time
from contextlib import asynccontextmanager
from threading import RLock
from typing import AsyncContextManager, AsyncIterator, Callable, Dict, Optional

from pydantic import BaseModel, Field, ConfigDict


class CacheEntry(BaseModel):
    """
    A cached HTML fragment and the data the elastic TTL policy needs.
    """
    key: str = Field(..., min_length=1)
    value: str
    stored_at: float = Field(..., description="UNIX time the value was computed.")
    ttl: float = Field(..., ge=0)
    stale_ttl: float = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    @property
    def retain_until(self) -> float:
        return self.stored_at + self.ttl + self.stale_ttl

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStore(abc.ABC):
    """
    Interface every cache backend implements.
    """

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry (possibly logically expired) or None."""

    @abc.abstractmethod
    async def set(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous one."""

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove an entry everywhere it is replicated."""

    @abc.abstractmethod
    def lock(self, key: str) -> AsyncContextManager[bool]:
        """
        Async context manager serializing computations of `key`.

        Yields True when the lock is held and False when it could not be
        obtained in time, in which case the caller proceeds without it.
        """


class InMemoryCacheStore(CacheStore):
    """
    Process-local cache store.

    Entries live in a dict guarded by a re-entrant lock; computations are
    serialized with one asyncio.Lock per key, created on demand and dropped
    once nobody holds or awaits it.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = RLock()
        self._key_locks: Dict[str, asyncio.Lock] = {}
        self._key_lock_users: Dict[str, int] = {}
        self._clock = clock

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.retain_until:
                del self._entries[key]
                return None
            return entry

    async def set(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[bool]:
        with self._lock:
            key_lock = self._key_locks.setdefault(key, asyncio.Lock())
            self._key_lock_users[key] = self._key_lock_users.get(key, 0) + 1

        try:
            async with key_lock:
                yield True
        finally:
            with self._lock:
                self._key_lock_users[key] -= 1
                if self._key_lock_users[key] == 0:
                    del self._key_lock_users[key]
                    del self._key_locks[key]

    # ------------------------------------------------------------------
    # Utility operations
    # ------------------------------------------------------------------

    def clear_all(self) -> None:
        """
        Remove every entry. Intended for test setup/teardown.
        """
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
