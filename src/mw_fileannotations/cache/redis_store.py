"""
Redis-backed cache store for replicated deployments.

Keys:
- `<prefix><key>`       : JSON-serialized CacheEntry, expiring after ttl + stale_ttl
- `<prefix>lock:<key>`  : single-flight lease (SET NX PX), released by token

The lease gives cross-process single-flight on a best-effort basis: a
process that cannot get the lease within `lock_wait` proceeds without it.
Deletes go to the primary and replicate from there, so a purge reaches
every replica.
"""
import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from ..config import settings
from ..core.errors import CacheBackendFailure
from .store import CacheEntry, CacheStore

logger = logging.getLogger("fa.cache")

# Delete the lease only if we still own it.
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisCacheStore(CacheStore):
    """
    Cache store over a Redis primary (and its replicas).
    """

    def __init__(
        self,
        client,
        prefix: str = "fileannotations:",
        lock_ttl: Optional[int] = None,
        lock_wait: Optional[float] = None,
        poll_interval: float = 0.05,
    ):
        self.redis = client
        self.prefix = prefix
        self.lock_ttl = lock_ttl or settings.cache_lock_ttl_seconds
        self.lock_wait = settings.cache_lock_wait_seconds if lock_wait is None else lock_wait
        self.poll_interval = poll_interval

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _lock_key(self, key: str) -> str:
        return f"{self.prefix}lock:{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self.redis.get(self._key(key))
        except RedisError as exc:
            raise CacheBackendFailure(f"GET {key} failed: {exc}") from exc

        if raw is None:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry %s", key)
            return None

    async def set(self, entry: CacheEntry) -> None:
        lifetime_ms = max(1, int((entry.ttl + entry.stale_ttl) * 1000))
        try:
            await self.redis.set(self._key(entry.key), entry.model_dump_json(), px=lifetime_ms)
        except RedisError as exc:
            raise CacheBackendFailure(f"SET {entry.key} failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(self._key(key))
        except RedisError as exc:
            raise CacheBackendFailure(f"DEL {key} failed: {exc}") from exc

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[bool]:
        lock_key = self._lock_key(key)
        token = uuid.uuid4().hex
        deadline = time.monotonic() + self.lock_wait

        try:
            while True:
                acquired = await self.redis.set(lock_key, token, nx=True, px=self.lock_ttl * 1000)
                if acquired or time.monotonic() >= deadline:
                    break
                await asyncio.sleep(self.poll_interval)
        except RedisError as exc:
            raise CacheBackendFailure(f"Lock {key} failed: {exc}") from exc

        if not acquired:
            logger.info("Gave up waiting for lease on %s", key)
            yield False
            return

        try:
            yield True
        finally:
            try:
                await self.redis.eval(RELEASE_SCRIPT, 1, lock_key, token)
            except RedisError as exc:
                # The lease expires on its own after lock_ttl.
                logger.warning("Could not release lease on %s: %s", key, exc)
