from __future__ import annotations

from typing import Any, Protocol, Sequence
from ..domain.models import ContractCall, EventLog
from ..domain.value_types import Address


class ChainClient(Protocol):
    """Port for the Ethereum JSON-RPC capabilities the indexer needs. No retries at this layer."""

    async def get_logs(
        self,
        address: Address,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Return logs for [from_block, to_block] inclusive. Raises ChainUnavailable on RPC failure."""

    async def batch_read(self, calls: Sequence[ContractCall]) -> list[tuple[Any, ...] | None]:
        """
        Execute eth_calls in one round trip. Result i belongs to call i; a reverted or
        undecodable call yields None. Raises ChainUnavailable if the round trip itself fails.
        """

    async def latest_block(self) -> int:
        """Return the latest block number as an integer."""

    async def block_timestamp(self, number: int) -> int:
        """Return the unix timestamp of block `number`."""

    async def resolve_name(self, address: Address) -> str | None:
        """Reverse-resolve an ENS name; None when no name is set."""
