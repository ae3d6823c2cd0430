from __future__ import annotations
import logging
from dataclasses import replace

from ..domain import abi
from ..domain.decoding import CREATED_LAYOUT, NEW_MINT_T0, decode_new_mint, token_id_topic
from ..domain.errors import EventDecodeError, NotFound
from ..domain.models import MintEvent, TokenDetail
from ..domain.value_types import Address
from ..ports.chain import ChainClient
from .batching import BatchReader, gather_in_windows
from .bounties import LOOKUP_CONCURRENCY, resolve_names
from .scanner import EventScanner
from .token_index import build_token_record

logger = logging.getLogger(__name__)


class TokenDetailFetcher:
    """One token plus its mint history (with block timestamps and ENS names), read straight from chain."""

    def __init__(
        self,
        chain: ChainClient,
        *,
        factory_address: Address,
        deployment_block: int,
        scanner: EventScanner | None = None,
        reader: BatchReader | None = None,
    ) -> None:
        self.chain = chain
        self.factory_address = factory_address
        self.deployment_block = deployment_block
        self.scanner = scanner or EventScanner(chain)
        self.reader = reader or BatchReader(chain)

    async def fetch(self, contract: Address, token_id: int) -> TokenDetail:
        head = await self.chain.latest_block()
        deployments = await self.scanner.scan(self.factory_address, [CREATED_LAYOUT], self.deployment_block, head)
        deployment = next((d for d in deployments if d.key == contract.lower()), None)
        if deployment is None:
            raise NotFound(f"contract {contract} was not deployed by the factory")

        get_r, uri_r, open_r = await self.reader.read(abi.token_detail_calls(deployment.contract_address, token_id))
        token = build_token_record(deployment, token_id, get_r, uri_r, open_r)
        if token is None:
            raise NotFound(f"token {token_id} not found on {contract}")

        logs = await self.scanner.scan_logs(
            deployment.contract_address, [NEW_MINT_T0, token_id_topic(token_id)], self.deployment_block, head)
        logs.sort(key=lambda l: (l.block_number, l.log_index), reverse=True)

        mints = []
        for log in logs:
            try:
                mints.append((log, decode_new_mint(log)))
            except EventDecodeError as e:
                logger.warning("skipping NewMint log: %s", e)

        timestamps = await self._timestamps(sorted({log.block_number for log, _ in mints}))
        ens = await resolve_names(self.chain, [deployment.owner_address, *(m.minter for _, m in mints)])

        history = tuple(
            MintEvent(
                minter=m.minter,
                amount=m.amount,
                block_number=log.block_number,
                timestamp=timestamps.get(log.block_number, 0),
                tx_hash=log.tx_hash,
                minter_ens_name=ens.get(m.minter.lower()),
            )
            for log, m in mints
        )
        return TokenDetail(
            token=replace(token, total_minted=sum(m.amount for m in history)),
            mint_history=history,
            deployer_ens_name=ens.get(deployment.owner_address.lower()),
        )

    async def _timestamps(self, blocks: list[int]) -> dict[int, int]:
        results = await gather_in_windows(blocks, LOOKUP_CONCURRENCY, self.chain.block_timestamp)
        out: dict[int, int] = {}
        for b, ts in zip(blocks, results):
            if isinstance(ts, Exception):
                logger.warning("timestamp for block %d unavailable: %s", b, ts)
                continue
            out[b] = ts
        return out
