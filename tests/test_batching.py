from __future__ import annotations
import asyncio

import pytest

from mintdex.application.batching import BatchReader, gather_in_windows
from mintdex.application.planning import plan_chunks, split_range, windows
from mintdex.domain import abi
from mintdex.domain.errors import ChainUnavailable

from _fakes import FakeChain, addr


def test_plan_chunks_covers_range_inclusively():
    assert plan_chunks(10, 34, 10) == [(10, 19), (20, 29), (30, 34)]
    assert plan_chunks(5, 5, 100) == [(5, 5)]
    assert plan_chunks(6, 5, 100) == []
    with pytest.raises(ValueError):
        plan_chunks(0, 10, 0)


def test_split_range_halves_left_first():
    assert split_range(0, 9) == [(0, 4), (5, 9)]
    assert split_range(3, 3) == [(3, 3)]


def test_windows():
    assert [list(w) for w in windows([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    assert list(windows([], 3)) == []


def test_fifty_calls_one_failing_keeps_positions():
    chain = FakeChain()
    contracts = [addr(i) for i in range(1, 51)]
    for i, c in enumerate(contracts, start=1):
        if i != 17:
            chain.set_latest(c, i)
    reader = BatchReader(chain, window_size=50)

    results = asyncio.run(reader.read([abi.latest_token_id(c) for c in contracts]))

    assert len(results) == 50
    assert results[16] is None
    assert [r[0] for i, r in enumerate(results) if i != 16] == [i for i in range(1, 51) if i != 17]
    assert reader.failed_calls == 1
    assert chain.batch_sizes == [50]


def test_windows_are_sequential_round_trips_in_order():
    chain = FakeChain()
    contracts = [addr(i) for i in range(1, 121)]
    for i, c in enumerate(contracts, start=1):
        chain.set_latest(c, i)
    reader = BatchReader(chain, window_size=50)

    results = asyncio.run(reader.read([abi.latest_token_id(c) for c in contracts]))

    assert chain.batch_sizes == [50, 50, 20]
    assert [r[0] for r in results] == list(range(1, 121))


def test_empty_read_makes_no_round_trip():
    chain = FakeChain()
    assert asyncio.run(BatchReader(chain).read([])) == []
    assert chain.batch_sizes == []


def test_failed_round_trip_raises():
    chain = FakeChain()
    chain.fail_batches = True
    with pytest.raises(ChainUnavailable):
        asyncio.run(BatchReader(chain).read([abi.latest_token_id(addr(1))]))


def test_short_batch_response_raises():
    class ShortChain(FakeChain):
        async def batch_read(self, calls):
            return [None] * (len(calls) - 1)

    with pytest.raises(ChainUnavailable):
        asyncio.run(BatchReader(ShortChain()).read([abi.latest_token_id(addr(1)), abi.latest_token_id(addr(2))]))


def test_gather_in_windows_returns_exceptions_in_place():
    async def fn(i: int) -> int:
        if i == 3:
            raise ValueError("boom")
        return i * 10

    results = asyncio.run(gather_in_windows([1, 2, 3, 4], 2, fn))
    assert results[:2] == [10, 20]
    assert isinstance(results[2], ValueError)
    assert results[3] == 40
