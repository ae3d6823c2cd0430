from __future__ import annotations
import logging, time
from dataclasses import replace
from typing import Sequence

from ..domain import abi
from ..domain.decoding import BOUNTY_DEPLOYED_LAYOUT, BOUNTY_DEPLOYED_LEGACY_LAYOUT, CREATED_LAYOUT
from ..domain.models import BountyRecord, ContractDeployment
from ..domain.value_types import Address, ZERO_ADDRESS
from ..ports.chain import ChainClient
from ..ports.metadata import MetadataFetcher
from .batching import BatchReader, gather_in_windows
from .scanner import EventScanner

logger = logging.getLogger(__name__)

LOOKUP_CONCURRENCY = 10


async def resolve_names(chain: ChainClient, addresses: Sequence[str]) -> dict[str, str | None]:
    """Best-effort reverse ENS for unique addresses, keyed lowercase. Failures map to None."""
    unique = list(dict.fromkeys(a.lower() for a in addresses if a))
    results = await gather_in_windows(unique, LOOKUP_CONCURRENCY, lambda a: chain.resolve_name(Address(a)))
    out: dict[str, str | None] = {}
    for addr, res in zip(unique, results):
        if isinstance(res, Exception):
            logger.debug("ENS lookup for %s failed: %s", addr, res)
            res = None
        out[addr] = res
    return out


class BountyAggregator:
    """
    Cross-joins bounty contracts with token contracts and reads each pair's bounty.

    Always a full recompute: balances and pause flags must be current, and the read volume
    (bounty contracts x token contracts) stays small.
    """
    def __init__(
        self,
        chain: ChainClient,
        metadata: MetadataFetcher,
        *,
        bounty_factory: Address | None,
        bounty_start_block: int,
        token_factory: Address,
        token_start_block: int,
        extra_token_contracts: Sequence[Address] = (),
        scanner: EventScanner | None = None,
        reader: BatchReader | None = None,
    ) -> None:
        self.chain = chain
        self.metadata = metadata
        self.bounty_factory = bounty_factory
        self.bounty_start_block = bounty_start_block
        self.token_factory = token_factory
        self.token_start_block = token_start_block
        self.extra_token_contracts = tuple(extra_token_contracts)
        self.scanner = scanner or EventScanner(chain)
        self.reader = reader or BatchReader(chain)

    async def collect(self) -> list[BountyRecord]:
        if self.bounty_factory is None:
            logger.warning("[bounties] no bounty factory configured for this network")
            return []
        t0 = time.monotonic()
        head = await self.chain.latest_block()
        bounty_deployments = await self.scanner.scan(
            self.bounty_factory, [BOUNTY_DEPLOYED_LAYOUT, BOUNTY_DEPLOYED_LEGACY_LAYOUT],
            self.bounty_start_block, head)
        if not bounty_deployments:
            return []
        token_deployments = await self.scanner.scan(self.token_factory, [CREATED_LAYOUT], self.token_start_block, head)

        token_contracts: dict[str, Address] = {}
        for addr in (*(d.contract_address for d in token_deployments), *self.extra_token_contracts):
            token_contracts.setdefault(addr.lower(), addr)

        records = await self.aggregate(bounty_deployments, list(token_contracts.values()))
        logger.info("[bounties] %d bounties from %d bounty x %d token contracts in %.1fs",
                    len(records), len(bounty_deployments), len(token_contracts), time.monotonic() - t0)
        return records

    async def aggregate(
        self,
        bounty_contracts: Sequence[ContractDeployment],
        token_contracts: Sequence[Address],
    ) -> list[BountyRecord]:
        pairs = [(b, t) for b in bounty_contracts for t in token_contracts]
        if not pairs:
            return []

        pair_calls = [c for b, t in pairs for c in (abi.bounty_of(b.contract_address, t),
                                                      abi.is_bounty_claimable(b.contract_address, t))]
        token_calls = [c for t in token_contracts for c in (abi.contract_uri(t), abi.owner(t), abi.latest_token_id(t))]
        results = await self.reader.read([*pair_calls, *token_calls])
        pair_res, token_res = results[:len(pair_calls)], results[len(pair_calls):]

        token_info: dict[str, dict] = {}
        for i, t in enumerate(token_contracts):
            uri_r, owner_r, latest_r = token_res[3*i:3*i + 3]
            token_info[t.lower()] = {
                "contract_uri": uri_r[0] if uri_r else None,
                "token_owner": owner_r[0] if owner_r else None,
                "latest_token_id": int(latest_r[0]) if latest_r else None,
            }

        records: list[BountyRecord] = []
        for i, (b, t) in enumerate(pairs):
            bounty_r, claimable_r = pair_res[2*i], pair_res[2*i + 1]
            if bounty_r is None:
                continue
            recipient, paused, last_minted, to_mint, reward, max_price, balance = bounty_r
            if str(recipient).lower() == ZERO_ADDRESS:
                continue
            info = token_info[t.lower()]
            records.append(BountyRecord(
                bounty_contract=b.contract_address,
                token_contract=t,
                last_minted_id=int(last_minted),
                total_artifacts=int(to_mint),
                minter_reward=int(reward),
                max_artifact_price=int(max_price),
                balance=int(balance),
                is_paused=bool(paused),
                is_claimable=bool(claimable_r[0]) if claimable_r is not None else None,
                owner=b.owner_address,
                recipient=Address(recipient),
                token_owner=info["token_owner"],
                contract_uri=info["contract_uri"],
                latest_token_id=info["latest_token_id"],
            ))
        if not records:
            return records

        names = await self._token_names({r.token_contract.lower(): r.contract_uri for r in records})
        ens = await resolve_names(self.chain, [a for r in records for a in (r.owner, r.token_owner) if a])
        return [
            _enrich(r, names.get(r.token_contract.lower()), ens)
            for r in records
        ]

    async def _token_names(self, uris: dict[str, str | None]) -> dict[str, str | None]:
        items = [(k, u) for k, u in uris.items() if u]

        async def one(item: tuple[str, str]) -> str | None:
            doc = await self.metadata.fetch_json(item[1])
            name = doc.get("name") if doc else None
            return name if isinstance(name, str) else None

        results = await gather_in_windows(items, LOOKUP_CONCURRENCY, one)
        return {k: (None if isinstance(r, Exception) else r) for (k, _), r in zip(items, results)}


def _enrich(r: BountyRecord, token_name: str | None, ens: dict[str, str | None]) -> BountyRecord:
    return replace(
        r,
        token_name=token_name,
        owner_ens_name=ens.get(r.owner.lower()),
        token_owner_ens_name=ens.get(r.token_owner.lower()) if r.token_owner else None,
    )
