from __future__ import annotations
import asyncio, json

import pytest

from mintdex.application.cache import TieredCache
from mintdex.domain.models import CacheEntry
from mintdex.domain.errors import ChainUnavailable, NotFound

from _fakes import Clock, MemoryBlobStore


class Source:
    def __init__(self, value="v1"):
        self.value = value
        self.calls = 0
        self.error: Exception | None = None

    async def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


def _cache(blobs=None, clock=None, **kw) -> TieredCache:
    return TieredCache(
        "things", blobs if blobs is not None else MemoryBlobStore(),
        fresh_s=60,
        encode=lambda v: v,
        decode=lambda v: v,
        clock=clock or Clock(),
        **kw,
    )


def test_miss_then_memory_hit():
    async def main():
        cache, src = _cache(), Source()
        first = await cache.read("k", src)
        second = await cache.read("k", src)
        return first, second, src.calls

    first, second, calls = asyncio.run(main())
    assert (first.status, first.payload) == ("MISS", "v1")
    assert (second.status, second.payload) == ("MEMORY_HIT", "v1")
    assert calls == 1


def test_blob_hit_fills_memory():
    async def main():
        blobs, clock = MemoryBlobStore(), Clock()
        await _cache(blobs, clock).read("k", Source("shared"))
        other, src = _cache(blobs, clock), Source("unused")
        clock.now += 10
        a = await other.read("k", src)
        b = await other.read("k", src)
        return a, b, src.calls

    a, b, calls = asyncio.run(main())
    assert (a.status, a.payload, a.age_s) == ("BLOB_HIT", "shared", 10)
    assert b.status == "MEMORY_HIT"
    assert calls == 0


def test_blob_key_is_namespaced_by_cache_name():
    blobs = MemoryBlobStore()
    asyncio.run(_cache(blobs).read("all", Source()))
    assert list(blobs.data) == ["things/v1/all"]


def test_stale_copy_is_served_while_refreshing():
    async def main():
        clock = Clock()
        cache, src = _cache(clock=clock), Source("old")
        await cache.read("k", src)
        clock.now += 100
        src.value = "new"
        stale = await cache.read("k", src)
        await cache.drain()
        entry = cache.memory.get("k")
        fresh = await cache.read("k", src)
        return stale, entry, fresh, clock.now

    stale, entry, fresh, now = asyncio.run(main())
    assert (stale.status, stale.payload, stale.age_s) == ("STALE_REFRESH", "old", 100)
    assert entry.timestamp == now
    assert (fresh.status, fresh.payload) == ("MEMORY_HIT", "new")


def test_hours_old_blob_copy_is_still_served_stale():
    async def main():
        blobs, clock = MemoryBlobStore(), Clock()
        blobs.data["things/v1/k"] = json.dumps({"payload": "old", "timestamp": clock.now - 3_601})
        cache, src = _cache(blobs, clock), Source("new")
        stale = await cache.read("k", src)
        await cache.drain()
        return stale, cache.memory.get("k").payload

    stale, refreshed = asyncio.run(main())
    assert (stale.status, stale.payload, stale.age_s) == ("STALE_REFRESH", "old", 3_601)
    assert refreshed == "new"


def test_fresh_memory_copy_wins_over_blob():
    async def main():
        blobs, clock = MemoryBlobStore(), Clock()
        blobs.data["things/v1/k"] = json.dumps({"payload": "blob", "timestamp": clock.now})
        cache, src = _cache(blobs, clock), Source("fetched")
        cache.memory.put("k", CacheEntry("mem", clock.now - 10))
        return await cache.read("k", src), src.calls

    res, calls = asyncio.run(main())
    assert (res.status, res.payload, res.age_s) == ("MEMORY_HIT", "mem", 10)
    assert calls == 0


def test_stale_blob_with_empty_memory_is_rewritten_by_refresh():
    async def main():
        blobs, clock = MemoryBlobStore(), Clock()
        blobs.data["things/v1/k"] = json.dumps({"payload": "old", "timestamp": clock.now - 100})
        cache = _cache(blobs, clock)
        stale = await cache.read("k", Source("new"))
        await cache.drain()
        return stale, json.loads(blobs.data["things/v1/k"]), clock.now

    stale, stored, now = asyncio.run(main())
    assert (stale.status, stale.payload, stale.age_s) == ("STALE_REFRESH", "old", 100)
    assert stored == {"payload": "new", "timestamp": now}

def test_one_background_refresh_per_key():
    async def main():
        clock = Clock()
        cache = _cache(clock=clock)
        await cache.read("k", Source("old"))
        clock.now += 100

        gate = asyncio.Event()
        calls = 0

        async def slow():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "new"

        await cache.read("k", slow)
        await cache.read("k", slow)
        gate.set()
        await cache.drain()
        return calls

    assert asyncio.run(main()) == 1


def test_failed_background_refresh_keeps_stale_copy():
    async def main():
        clock = Clock()
        cache, src = _cache(clock=clock), Source("old")
        await cache.read("k", src)
        clock.now += 100
        src.error = ChainUnavailable("down")
        await cache.read("k", src)
        await cache.drain()
        return await cache.read("k", src)

    again = asyncio.run(main())
    assert (again.status, again.payload) == ("STALE_REFRESH", "old")


def test_warm_up_returns_empty_then_fills():
    async def main():
        cache, src = _cache(cold_policy="warm_up", empty=list), Source(["t1", "t2"])
        cold = await cache.read("all", src)
        await cache.drain()
        warm = await cache.read("all", src)
        return cold, warm

    cold, warm = asyncio.run(main())
    assert (cold.status, cold.payload, cold.age_s) == ("WARMING_UP", [], 0.0)
    assert (warm.status, warm.payload) == ("MEMORY_HIT", ["t1", "t2"])


def test_warm_up_needs_an_empty_factory():
    with pytest.raises(ValueError):
        _cache(cold_policy="warm_up")


def test_too_stale_memory_copy_served_on_fetch_error():
    async def main():
        clock = Clock()
        cache, src = _cache(clock=clock, max_stale_s=300), Source("old")
        await cache.read("k", src)
        clock.now += 1_000
        src.error = ChainUnavailable("down")
        return await cache.read("k", src)

    res = asyncio.run(main())
    assert (res.status, res.payload, res.age_s) == ("ERROR_MEMORY", "old", 1_000)


def test_too_stale_blob_copy_served_on_fetch_error():
    async def main():
        blobs, clock = MemoryBlobStore(), Clock()
        await _cache(blobs, clock, max_stale_s=300).read("k", Source("old"))
        clock.now += 1_000
        src = Source()
        src.error = ChainUnavailable("down")
        return await _cache(blobs, clock, max_stale_s=300).read("k", src)

    res = asyncio.run(main())
    assert (res.status, res.payload) == ("ERROR_BLOB", "old")


def test_nothing_to_fall_back_on_raises():
    src = Source()
    src.error = ChainUnavailable("down")
    with pytest.raises(ChainUnavailable):
        asyncio.run(_cache().read("k", src))


def test_not_found_propagates_and_is_not_cached():
    async def main():
        cache, src = _cache(), Source()
        src.error = NotFound("nope")
        for _ in range(2):
            with pytest.raises(NotFound):
                await cache.read("k", src)
        return src.calls, len(cache.memory)

    assert asyncio.run(main()) == (2, 0)


def test_blob_store_outage_degrades_to_memory():
    async def main():
        blobs = MemoryBlobStore()
        blobs.fail = True
        cache, src = _cache(blobs), Source()
        first = await cache.read("k", src)
        second = await cache.read("k", src)
        return first.status, second.status

    assert asyncio.run(main()) == ("MISS", "MEMORY_HIT")


def test_unreadable_blob_is_ignored():
    blobs = MemoryBlobStore()
    blobs.data["things/v1/k"] = '{"unexpected": true}'
    res = asyncio.run(_cache(blobs).read("k", Source("fresh")))
    assert (res.status, res.payload) == ("MISS", "fresh")


def test_invalidate_drops_memory_copy():
    async def main():
        cache, src = _cache(MemoryBlobStore()), Source()
        await cache.read("k", src)
        cache.invalidate("k")
        return (await cache.read("k", src)).status

    assert asyncio.run(main()) == "BLOB_HIT"


def _seeded(value):
    seen = []

    async def seed(key):
        seen.append(key)
        if isinstance(value, Exception):
            raise value
        return value
    return seed, seen


def test_cold_read_serves_seed_and_refreshes():
    async def main():
        seed, seen = _seeded(["s1"])
        cache = _cache(cold_policy="warm_up", empty=list, seed=seed)
        first = await cache.read("all", Source(["t1", "t2"]))
        await cache.drain()
        second = await cache.read("all", Source(["t3"]))
        return first, second, seen

    first, second, seen = asyncio.run(main())
    assert (first.status, first.payload, first.age_s) == ("STALE_REFRESH", ["s1"], 60)
    assert (second.status, second.payload) == ("MEMORY_HIT", ["t1", "t2"])
    assert seen == ["all"]


@pytest.mark.parametrize("value", [None, OSError("disk gone")])
def test_missing_or_failing_seed_falls_back_to_warm_up(value):
    seed, _ = _seeded(value)
    cache = _cache(cold_policy="warm_up", empty=list, seed=seed)

    async def main():
        res = await cache.read("all", Source(["t1"]))
        await cache.drain()
        return res

    res = asyncio.run(main())
    assert (res.status, res.payload) == ("WARMING_UP", [])
