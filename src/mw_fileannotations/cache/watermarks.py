"""
Freshness Watermarks

Records, per viewer and per backing data source, when the viewer last wrote
to that source (e.g. edited a Wikidata item). The enrichment pipeline uses
the timestamp as the cache freshness floor so viewers never see their own
recent edit rendered from a stale cache entry.

Source names: "wikidata", "commons", or a Wikipedia host such as
"en.wikipedia.org".

A watermark older than the maximum cache TTL can no longer exclude any
entry and is forgotten.
"""

from __future__ import annotations

import abc
import time
from threading import RLock
from typing import Callable, Dict, Optional, Tuple

from redis.exceptions import RedisError

from ..config import settings
from ..core.errors import CacheBackendFailure

# Keep the later of the stored and the new mark, then refresh the hash TTL.
RECORD_MAX_SCRIPT = """
local current = redis.call("hget", KEYS[1], ARGV[1])
if not current or tonumber(ARGV[2]) > tonumber(current) then
    redis.call("hset", KEYS[1], ARGV[1], ARGV[2])
    current = ARGV[2]
end
redis.call("expire", KEYS[1], ARGV[3])
return current
"""


class WatermarkStore(abc.ABC):

    @abc.abstractmethod
    async def record_write(self, username: str, source: str, at: Optional[float] = None) -> float:
        """Record a write; returns the stored timestamp."""

    @abc.abstractmethod
    async def get_last_observed_write(self, username: str, source: str) -> Optional[float]:
        """Timestamp of the viewer's last write to `source`, or None."""


class InMemoryWatermarkStore(WatermarkStore):
    """
    Process-local watermarks. Sufficient when one process serves a viewer's
    requests; replicated deployments use `RedisWatermarkStore`.
    """

    def __init__(
        self,
        horizon: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._marks: Dict[Tuple[str, str], float] = {}
        self._lock = RLock()
        self._horizon = settings.cache_max_ttl if horizon is None else horizon
        self._clock = clock

    async def record_write(self, username: str, source: str, at: Optional[float] = None) -> float:
        at = self._clock() if at is None else at
        with self._lock:
            current = self._marks.get((username, source))
            if current is None or at > current:
                self._marks[(username, source)] = at
            return self._marks[(username, source)]

    async def get_last_observed_write(self, username: str, source: str) -> Optional[float]:
        with self._lock:
            at = self._marks.get((username, source))
            if at is None:
                return None
            if self._clock() - at > self._horizon:
                del self._marks[(username, source)]
                return None
            return at


class RedisWatermarkStore(WatermarkStore):
    """
    Watermarks in a Redis hash per viewer, expiring after the horizon.
    """

    def __init__(self, client, prefix: str = "fileannotations:watermarks:", horizon: Optional[int] = None):
        self.redis = client
        self.prefix = prefix
        self.horizon = settings.cache_max_ttl if horizon is None else horizon

    async def record_write(self, username: str, source: str, at: Optional[float] = None) -> float:
        at = time.time() if at is None else at
        key = f"{self.prefix}{username}"
        try:
            stored = await self.redis.eval(RECORD_MAX_SCRIPT, 1, key, source, repr(at), self.horizon)
        except RedisError as exc:
            raise CacheBackendFailure(f"Recording watermark failed: {exc}") from exc
        return float(stored)

    async def get_last_observed_write(self, username: str, source: str) -> Optional[float]:
        try:
            raw = await self.redis.hget(f"{self.prefix}{username}", source)
        except RedisError as exc:
            raise CacheBackendFailure(f"Reading watermark failed: {exc}") from exc
        return float(raw) if raw is not None else None
