import asyncio
from unittest.mock import AsyncMock

import pytest

from factories import FakeFetcher, account, key
from openbook.cache import OpenOrdersCache
from openbook.fetcher import CachedAccountFetcher
from openbook.program_ids import SYSTEM_PROGRAM_ID


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_fresh_entry_served_without_refresh():
    clock = FakeClock()
    cache = OpenOrdersCache(clock)
    refresh = AsyncMock(side_effect=["first", "second"])

    assert await cache.get_or_refresh("alice", 5, refresh) == "first"
    clock.now = 4.9
    assert await cache.get_or_refresh("alice", 5, refresh) == "first"
    assert refresh.await_count == 1

    clock.now = 5.0
    assert await cache.get_or_refresh("alice", 5, refresh) == "second"
    assert refresh.await_count == 2


@pytest.mark.asyncio
async def test_zero_max_age_always_refreshes():
    cache = OpenOrdersCache(FakeClock())
    refresh = AsyncMock(side_effect=[1, 2])
    await cache.get_or_refresh("alice", 0, refresh)
    assert await cache.get_or_refresh("alice", 0, refresh) == 2


@pytest.mark.asyncio
async def test_owners_are_independent():
    cache = OpenOrdersCache(FakeClock())
    await cache.get_or_refresh("alice", 5, AsyncMock(return_value="a"))
    await cache.get_or_refresh("bob", 5, AsyncMock(return_value="b"))

    assert len(cache) == 2
    cache.invalidate("alice")
    assert "alice" not in cache
    assert cache.get("bob", 5) == "b"


@pytest.mark.asyncio
async def test_concurrent_refreshes_last_writer_wins():
    cache = OpenOrdersCache(FakeClock())
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return "slow"

    async def fast():
        return "fast"

    slow_task = asyncio.ensure_future(cache.get_or_refresh("alice", 5, slow))
    await asyncio.sleep(0)
    assert await cache.get_or_refresh("alice", 5, fast) == "fast"
    release.set()
    assert await slow_task == "slow"
    assert cache.get("alice", 5) == "slow"


@pytest.mark.asyncio
async def test_cached_fetcher_reuses_recent_accounts():
    clock = FakeClock()
    inner = FakeFetcher({key(1): account(key(1), SYSTEM_PROGRAM_ID, b"one")})
    fetcher = CachedAccountFetcher(inner, max_age=2, clock=clock)

    assert (await fetcher.fetch(key(1))).data == b"one"
    results = await fetcher.fetch_multiple([key(1), key(2), key(2)])
    assert [r and r.data for r in results] == [b"one", None, None]
    assert inner.requested == [key(1), key(2)]

    clock.now = 2
    await fetcher.fetch(key(1))
    assert inner.requested == [key(1), key(2), key(1)]
