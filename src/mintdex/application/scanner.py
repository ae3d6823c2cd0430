from __future__ import annotations
import logging
from typing import Sequence

from ..domain.decoding import DeploymentLayout, decode_deployment_any
from ..domain.errors import ChainUnavailable, EventDecodeError
from ..domain.models import ContractDeployment, EventLog
from ..domain.value_types import Address
from ..ports.chain import ChainClient
from .planning import plan_chunks, split_range

logger = logging.getLogger(__name__)


class EventScanner:
    """
    Replays factory deployment events over a block range.

    The range is walked once in `step`-sized chunks. A chunk the provider rejects is
    bisected until `min_split_span`; below that the scan fails with ChainUnavailable.
    No retries: whether a failed scan is fatal is the caller's call.
    """
    def __init__(self, chain: ChainClient, *, step: int = 1_000_000, min_split_span: int = 2_000) -> None:
        self.chain = chain
        self.step = step
        self.min_split_span = min_split_span

    async def scan_logs(
        self,
        address: Address,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        out: list[EventLog] = []
        if from_block > to_block:
            return out
        for fb, tb in plan_chunks(from_block, to_block, self.step):
            stack: list[tuple[int, int]] = [(fb, tb)]
            while stack:
                a, b = stack.pop()
                try:
                    logs = await self.chain.get_logs(address, topics, a, b)
                except ChainUnavailable as e:
                    if b - a + 1 > self.min_split_span:
                        left, right = split_range(a, b)
                        # left on top so the output stays in block order
                        stack.append(right); stack.append(left)
                        logger.debug("getLogs %s [%d,%d] failed, splitting: %s", address, a, b, e)
                        continue
                    raise ChainUnavailable(f"getLogs {address} [{a},{b}] failed: {e}") from e
                out.extend(logs)
        return out

    async def scan(
        self,
        factory_address: Address,
        layouts: Sequence[DeploymentLayout],
        from_block: int,
        to_block: int,
    ) -> list[ContractDeployment]:
        """Deployments in discovery order, unique by contract address (first owner wins)."""
        if not layouts:
            raise ValueError("at least one layout is required")
        topic0s = {l.topic0 for l in layouts}
        if len(topic0s) != 1:
            raise ValueError("all layouts must share one event signature")

        logs = await self.scan_logs(factory_address, [topic0s.pop()], from_block, to_block)
        logs.sort(key=lambda l: (l.block_number, l.log_index))

        seen: set[str] = set()
        out: list[ContractDeployment] = []
        skipped = 0
        for log in logs:
            try:
                owner, contract = decode_deployment_any(log, layouts)
            except EventDecodeError as e:
                skipped += 1
                logger.warning("skipping undecodable deployment log: %s", e)
                continue
            if contract.lower() in seen:
                continue
            seen.add(contract.lower())
            out.append(ContractDeployment(owner, contract, log.block_number))

        logger.info("[scan] %s: %d deployments in [%d,%d] (%d logs, %d undecodable)",
                    factory_address, len(out), from_block, to_block, len(logs), skipped)
        return out
