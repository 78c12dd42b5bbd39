import pytest
from unittest.mock import AsyncMock
from redis.exceptions import ConnectionError as RedisConnectionError

from mw_fileannotations.cache.redis_store import RELEASE_SCRIPT, RedisCacheStore
from mw_fileannotations.cache.store import CacheEntry, InMemoryCacheStore
from mw_fileannotations.cache.watermarks import InMemoryWatermarkStore, RECORD_MAX_SCRIPT, RedisWatermarkStore
from mw_fileannotations.core.errors import CacheBackendFailure


def make_entry(stored_at=1000.0, ttl=60, stale_ttl=3600, value="<div>x</div>"):
    return CacheEntry(key="k", value=value, stored_at=stored_at, ttl=ttl, stale_ttl=stale_ttl)


# ---------------------------------------------------------------------
# CacheEntry
# ---------------------------------------------------------------------

def test_entry_expiry_bookkeeping():
    entry = make_entry()

    assert entry.expires_at == 1060
    assert entry.retain_until == 4660
    assert not entry.is_expired(1059.9)
    assert entry.is_expired(1060)
    assert entry.age(1100) == 100
    assert entry.age(900) == 0


# ---------------------------------------------------------------------
# InMemoryCacheStore
# ---------------------------------------------------------------------

class TestInMemoryCacheStore:

    @pytest.mark.asyncio
    async def test_expired_entry_is_retained_for_comparison(self, clock):
        store = InMemoryCacheStore(clock=clock)
        entry = make_entry(stored_at=clock.now)
        await store.set(entry)

        clock.advance(120)
        assert await store.get("k") == entry

    @pytest.mark.asyncio
    async def test_entry_dropped_after_retention(self, clock):
        store = InMemoryCacheStore(clock=clock)
        await store.set(make_entry(stored_at=clock.now))

        clock.advance(60 + 3600)
        assert await store.get("k") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, clock):
        store = InMemoryCacheStore(clock=clock)
        await store.set(make_entry(stored_at=clock.now))
        await store.delete("k")
        await store.delete("k")
        assert await store.get("k") is None

        await store.set(make_entry(stored_at=clock.now))
        store.clear_all()
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_key_locks_are_released(self):
        store = InMemoryCacheStore()

        async with store.lock("k") as held:
            assert held
        async with store.lock("k") as held:
            assert held

        assert store._key_locks == {}


# ---------------------------------------------------------------------
# RedisCacheStore
# ---------------------------------------------------------------------

@pytest.fixture
def mock_redis():
    return AsyncMock()


class TestRedisCacheStore:

    @pytest.mark.asyncio
    async def test_get_round_trips_entry(self, mock_redis):
        entry = make_entry()
        mock_redis.get.return_value = entry.model_dump_json()
        store = RedisCacheStore(client=mock_redis)

        assert await store.get("k") == entry
        mock_redis.get.assert_awaited_once_with("fileannotations:k")

    @pytest.mark.asyncio
    async def test_get_missing_and_unreadable(self, mock_redis):
        store = RedisCacheStore(client=mock_redis)

        mock_redis.get.return_value = None
        assert await store.get("k") is None

        mock_redis.get.return_value = "{not json"
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_set_keeps_entry_through_stale_period(self, mock_redis):
        store = RedisCacheStore(client=mock_redis)
        entry = make_entry(ttl=60, stale_ttl=3600)

        await store.set(entry)

        args, kwargs = mock_redis.set.call_args
        assert args[0] == "fileannotations:k"
        assert kwargs["px"] == 3660 * 1000

    @pytest.mark.asyncio
    async def test_delete(self, mock_redis):
        store = RedisCacheStore(client=mock_redis)
        await store.delete("k")
        mock_redis.delete.assert_awaited_once_with("fileannotations:k")

    @pytest.mark.asyncio
    async def test_redis_errors_become_backend_failures(self, mock_redis):
        mock_redis.get.side_effect = RedisConnectionError("down")
        mock_redis.set.side_effect = RedisConnectionError("down")
        store = RedisCacheStore(client=mock_redis)

        with pytest.raises(CacheBackendFailure):
            await store.get("k")
        with pytest.raises(CacheBackendFailure):
            await store.set(make_entry())

    @pytest.mark.asyncio
    async def test_lock_acquired_and_released_by_token(self, mock_redis):
        mock_redis.set.return_value = True
        store = RedisCacheStore(client=mock_redis, lock_ttl=30)

        async with store.lock("k") as held:
            assert held

        set_args, set_kwargs = mock_redis.set.call_args
        assert set_args[0] == "fileannotations:lock:k"
        assert set_kwargs == {"nx": True, "px": 30000}

        token = set_args[1]
        mock_redis.eval.assert_awaited_once_with(RELEASE_SCRIPT, 1, "fileannotations:lock:k", token)

    @pytest.mark.asyncio
    async def test_lock_gives_up_after_wait(self, mock_redis):
        mock_redis.set.return_value = None
        store = RedisCacheStore(client=mock_redis, lock_wait=0.05, poll_interval=0.01)

        async with store.lock("k") as held:
            assert held is False

        assert mock_redis.set.await_count >= 2
        mock_redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_release_is_not_raised(self, mock_redis):
        mock_redis.set.return_value = True
        mock_redis.eval.side_effect = RedisConnectionError("gone")
        store = RedisCacheStore(client=mock_redis)

        async with store.lock("k") as held:
            assert held


# ---------------------------------------------------------------------
# Watermarks
# ---------------------------------------------------------------------

class TestWatermarks:

    @pytest.mark.asyncio
    async def test_in_memory_keeps_latest_write(self, clock):
        marks = InMemoryWatermarkStore(horizon=86400, clock=clock)

        await marks.record_write("Alice", "wikidata", at=clock.now)
        await marks.record_write("Alice", "wikidata", at=clock.now - 50)

        assert await marks.get_last_observed_write("Alice", "wikidata") == clock.now
        assert await marks.get_last_observed_write("Alice", "commons") is None
        assert await marks.get_last_observed_write("Bob", "wikidata") is None

    @pytest.mark.asyncio
    async def test_in_memory_forgets_marks_past_horizon(self, clock):
        marks = InMemoryWatermarkStore(horizon=100, clock=clock)
        await marks.record_write("Alice", "wikidata")

        clock.advance(101)
        assert await marks.get_last_observed_write("Alice", "wikidata") is None

    @pytest.mark.asyncio
    async def test_redis_record_and_read(self, mock_redis):
        marks = RedisWatermarkStore(mock_redis, horizon=86400)
        mock_redis.eval.return_value = "1234.5"

        recorded = await marks.record_write("Alice", "en.wikipedia.org", at=1234.5)

        assert recorded == 1234.5
        mock_redis.eval.assert_awaited_once_with(
            RECORD_MAX_SCRIPT, 1, "fileannotations:watermarks:Alice", "en.wikipedia.org", "1234.5", 86400
        )

        mock_redis.hget.return_value = "1234.5"
        assert await marks.get_last_observed_write("Alice", "en.wikipedia.org") == 1234.5

    @pytest.mark.asyncio
    async def test_redis_keeps_latest_write(self, mock_redis):
        """Verify an older write does not move the mark backwards."""
        marks = RedisWatermarkStore(mock_redis)
        mock_redis.eval.return_value = "2000.0"

        assert await marks.record_write("Alice", "wikidata", at=1500.0) == 2000.0
        mock_redis.hset.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_failure(self, mock_redis):
        mock_redis.hget.side_effect = RedisConnectionError("down")
        marks = RedisWatermarkStore(mock_redis)

        with pytest.raises(CacheBackendFailure):
            await marks.get_last_observed_write("Alice", "wikidata")
