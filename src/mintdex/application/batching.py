from __future__ import annotations
import asyncio, logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from ..domain.errors import ChainUnavailable, PartialReadFailure
from ..domain.models import ContractCall
from ..ports.chain import ChainClient
from .planning import windows

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_WINDOW = 50


class BatchReader:
    """
    Turns N logical contract reads into sequential windows of `window_size` calls.

    Each window is one ChainClient.batch_read round trip. A call that fails or reverts
    comes back as None at its own position; the caller can tell "absent" from a
    successful zero/False. A window whose round trip fails raises ChainUnavailable.
    """
    def __init__(self, chain: ChainClient, *, window_size: int = DEFAULT_WINDOW) -> None:
        self.chain = chain
        self.window_size = window_size
        self.failed_calls = 0

    async def read(self, calls: Sequence[ContractCall]) -> list[tuple[Any, ...] | None]:
        out: list[tuple[Any, ...] | None] = []
        for window in windows(calls, self.window_size):
            results = await self.chain.batch_read(window)
            if len(results) != len(window):
                raise ChainUnavailable(f"batch returned {len(results)} results for {len(window)} calls")
            for call, res in zip(window, results):
                if res is None:
                    self.failed_calls += 1
                    logger.debug("%s", PartialReadFailure(call.address, call.function, "absent result"))
            out.extend(results)
        return out


async def gather_in_windows(
    items: Sequence[T],
    size: int,
    fn: Callable[[T], Awaitable[R]],
) -> list[R | Exception]:
    """Run fn over items, `size` at a time, windows strictly sequential. Exceptions are returned in place."""
    out: list[R | Exception] = []
    for window in windows(items, size):
        results = await asyncio.gather(*(fn(i) for i in window), return_exceptions=True)
        for r in results:
            if isinstance(r, BaseException) and not isinstance(r, Exception):
                raise r
        out.extend(results)  # type: ignore[arg-type]
    return out
