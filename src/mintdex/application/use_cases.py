from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any

from ..adapters.blob_local import FileBlobStore
from ..adapters.metadata_httpx import HttpxMetadataFetcher
from ..adapters.rpc_httpx import HttpxChainClient
from ..config import Settings
from ..domain.models import BountyRecord, TokenDetail, TokenRecord
from ..domain.value_types import Address
from ..ports.blobs import BlobStore
from ..ports.chain import ChainClient
from ..ports.metadata import MetadataFetcher
from .batching import BatchReader
from .bounties import BountyAggregator
from .cache import CacheResult, TieredCache
from .scanner import EventScanner
from .token_detail import TokenDetailFetcher
from .token_index import IncrementalTokenIndex

logger = logging.getLogger(__name__)


def _encode_list(items: list[Any]) -> list[dict[str, Any]]:
    return [i.to_json() for i in items]


@dataclass
class Indexer:
    """Everything a request needs, wired once per process."""

    chain: ChainClient
    blobs: BlobStore
    metadata: MetadataFetcher
    token_index: IncrementalTokenIndex
    bounty_aggregator: BountyAggregator
    token_detail: TokenDetailFetcher
    bounties_cache: TieredCache[list[BountyRecord]]
    tokens_cache: TieredCache[list[TokenRecord]]
    token_cache: TieredCache[TokenDetail]

    async def bounties(self) -> CacheResult[list[BountyRecord]]:
        return await self.bounties_cache.read("all", self.bounty_aggregator.collect)

    async def tokens(self) -> CacheResult[list[TokenRecord]]:
        async def fetch() -> list[TokenRecord]:
            snapshot = await self.token_index.refresh()
            return list(snapshot.tokens)
        return await self.tokens_cache.read("all", fetch)

    async def token(self, contract: Address, token_id: int) -> CacheResult[TokenDetail]:
        async def fetch() -> TokenDetail:
            return await self.token_detail.fetch(contract, token_id)
        return await self.token_cache.read(f"{contract.lower()}-{token_id}", fetch)

    async def drain(self) -> None:
        for cache in (self.bounties_cache, self.tokens_cache, self.token_cache):
            await cache.drain()

    async def aclose(self) -> None:
        await self.drain()
        for res in (self.chain, self.metadata):
            close = getattr(res, "aclose", None)
            if close is not None:
                await close()


def build_indexer(
    settings: Settings,
    *,
    chain: ChainClient | None = None,
    blobs: BlobStore | None = None,
    metadata: MetadataFetcher | None = None,
) -> Indexer:
    chain = chain or HttpxChainClient(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
    blobs = blobs or FileBlobStore(settings.blob_dir, settings.blob_namespace)
    metadata = metadata or HttpxMetadataFetcher(settings.metadata_timeout_s, settings.ipfs_gateway)
    net = settings.network

    scanner = EventScanner(chain, step=settings.log_step)
    reader = BatchReader(chain, window_size=settings.batch_window)

    token_index = IncrementalTokenIndex(
        chain, blobs,
        factory_address=net.token_factory,
        deployment_block=net.token_factory_block,
        scanner=scanner, reader=reader,
        staleness_blocks=settings.staleness_blocks,
    )
    bounty_aggregator = BountyAggregator(
        chain, metadata,
        bounty_factory=net.bounty_factory,
        bounty_start_block=net.bounty_factory_block,
        token_factory=net.token_factory,
        token_start_block=net.token_factory_block,
        extra_token_contracts=settings.extra_token_contracts,
        scanner=scanner, reader=reader,
    )
    async def seed_tokens(_key: str) -> list[TokenRecord] | None:
        snapshot = await token_index.load()
        return list(snapshot.tokens) if snapshot is not None else None

    token_detail = TokenDetailFetcher(
        chain,
        factory_address=net.token_factory,
        deployment_block=net.token_factory_block,
        scanner=scanner, reader=reader,
    )

    return Indexer(
        chain=chain,
        blobs=blobs,
        metadata=metadata,
        token_index=token_index,
        bounty_aggregator=bounty_aggregator,
        token_detail=token_detail,
        bounties_cache=TieredCache(
            "bounties", blobs,
            fresh_s=settings.list_fresh_s,
            encode=_encode_list,
            decode=lambda v: [BountyRecord.from_json(d) for d in v],
        ),
        tokens_cache=TieredCache(
            "tokens", blobs,
            fresh_s=settings.list_fresh_s,
            encode=_encode_list,
            decode=lambda v: [TokenRecord.from_json(d) for d in v],
            cold_policy="warm_up",
            empty=list,
            seed=seed_tokens,
        ),
        token_cache=TieredCache(
            "token", blobs,
            fresh_s=settings.item_fresh_s,
            encode=lambda d: d.to_json(),
            decode=TokenDetail.from_json,
        ),
    )
