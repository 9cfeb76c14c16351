import asyncio

import pytest

from analysis_engine.cache.dedup_cache import DedupCache, dedup_key


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_call(clock):
    dedup = DedupCache(clock=clock)
    calls = []

    async def fetch():
        calls.append(1)
        await asyncio.sleep(0.01)
        return "payload"

    results = await asyncio.gather(*[dedup.run("k", fetch) for _ in range(3)])
    assert len(calls) == 1
    assert [r for r, _ in results] == ["payload"] * 3
    assert sorted(shared for _, shared in results) == [False, True, True]


@pytest.mark.asyncio
async def test_result_kept_until_ttl(clock):
    dedup = DedupCache(ttl_s=30, clock=clock)
    calls = []

    async def fetch():
        calls.append(1)
        return len(calls)

    assert await dedup.run("k", fetch) == (1, False)
    clock.advance(29)
    assert await dedup.run("k", fetch) == (1, True)
    clock.advance(1)
    assert await dedup.run("k", fetch) == (2, False)


@pytest.mark.asyncio
async def test_clear_between_passes(clock):
    dedup = DedupCache(clock=clock)

    async def fetch():
        return "x"

    await dedup.run("k", fetch)
    assert dedup.get("k") == "x"
    dedup.clear()
    assert dedup.get("k") is None
    assert dedup.stats()["size"] == 0


@pytest.mark.asyncio
async def test_rejected_results_are_not_kept(clock):
    dedup = DedupCache(clock=clock)

    async def fetch():
        return "error"

    await dedup.run("k", fetch, keep=lambda r: r != "error")
    assert dedup.get("k") is None


@pytest.mark.asyncio
async def test_exceptions_propagate_and_are_not_cached(clock):
    dedup = DedupCache(clock=clock)

    async def boom():
        raise RuntimeError("provider down")

    with pytest.raises(RuntimeError):
        await dedup.run("k", boom)
    assert dedup.stats() == {"size": 0, "in_flight": 0, "entries": []}


def test_dedup_key_ignores_arg_order():
    assert dedup_key("get_stock_news", {"a": 1, "b": 2}) == dedup_key("get_stock_news", {"b": 2, "a": 1})


@pytest.mark.asyncio
async def test_cancelled_owner_does_not_orphan_the_fetch(clock):
    dedup = DedupCache(clock=clock)
    release = asyncio.Event()
    calls = []

    async def fetch():
        calls.append(1)
        await release.wait()
        return "payload"

    owner = asyncio.ensure_future(dedup.run("k", fetch))
    await asyncio.sleep(0)
    assert dedup.stats()["in_flight"] == 1

    owner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await owner
    assert dedup.stats()["in_flight"] == 1

    follower = asyncio.ensure_future(dedup.run("k", fetch))
    await asyncio.sleep(0)
    release.set()
    assert await follower == ("payload", True)
    assert len(calls) == 1
    assert dedup.get("k") == "payload"
    assert dedup.stats()["in_flight"] == 0
