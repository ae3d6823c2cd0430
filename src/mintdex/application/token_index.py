from __future__ import annotations
import asyncio, enum, logging, time
from dataclasses import dataclass, replace
from typing import Any, Sequence

from ..domain import abi
from ..domain.decoding import CREATED_LAYOUT, NEW_MINT_T0, decode_new_mint
from ..domain.errors import EventDecodeError
from ..domain.models import ContractDeployment, IndexSnapshot, TokenRecord
from ..domain.value_types import Address
from ..ports.blobs import BlobStore
from ..ports.chain import ChainClient
from .batching import BatchReader, gather_in_windows
from .scanner import EventScanner

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "token-index/v2/snapshot"
STALENESS_BLOCKS = 50_000     # ~1 week of mainnet blocks
MINT_LOGS_CONCURRENCY = 10


class IndexState(enum.Enum):
    EMPTY = "empty"
    FULL_SCAN = "full_scan"
    INCREMENTAL_SCAN = "incremental_scan"
    IDLE = "idle"


@dataclass(slots=True)
class RefreshStats:
    mode: IndexState
    contracts: int = 0
    new_tokens: int = 0
    skipped_tokens: int = 0
    failed_counts: int = 0
    failed_mint_logs: int = 0
    elapsed_s: float = 0.0


def build_token_record(
    deployment: ContractDeployment,
    token_id: int,
    get_res: tuple[Any, ...] | None,
    uri_res: tuple[Any, ...] | None,
    open_res: tuple[Any, ...] | None,
    total_minted: int = 0,
) -> TokenRecord | None:
    """None when get() is absent: the token does not exist (yet) or the read failed."""
    if get_res is None:
        return None
    name, description, _artifacts, _renderer, minted_block, close_at, _data = get_res
    return TokenRecord(
        contract_address=deployment.contract_address,
        deployer_address=deployment.owner_address,
        token_id=token_id,
        minted_block=int(minted_block),
        name=name,
        description=description,
        close_at=int(close_at),
        mint_open_until=int(open_res[0]) if open_res else 0,
        total_minted=total_minted,
        metadata_uri=uri_res[0] if uri_res else None,
    )


def sort_newest_first(tokens: Sequence[TokenRecord]) -> list[TokenRecord]:
    # sorted() is stable: equal blocks keep insertion order
    return sorted(tokens, key=lambda t: -t.minted_block)


async def collect_mint_totals(
    scanner: EventScanner,
    contracts: Sequence[Address],
    from_block: int,
    to_block: int,
) -> tuple[dict[str, dict[int, int]], int]:
    """Sum NewMint amounts per (contract, tokenId). Contracts whose log query fails are left out."""
    async def one(contract: Address) -> dict[int, int]:
        logs = await scanner.scan_logs(contract, [NEW_MINT_T0], from_block, to_block)
        totals: dict[int, int] = {}
        for log in logs:
            try:
                ev = decode_new_mint(log)
            except EventDecodeError as e:
                logger.warning("skipping NewMint log: %s", e)
                continue
            totals[ev.token_id] = totals.get(ev.token_id, 0) + ev.amount
        return totals

    results = await gather_in_windows(list(contracts), MINT_LOGS_CONCURRENCY, one)
    out: dict[str, dict[int, int]] = {}
    failed = 0
    for contract, res in zip(contracts, results):
        if isinstance(res, Exception):
            failed += 1
            logger.error("mint events for %s unavailable: %s", contract, res)
            continue
        out[contract.lower()] = res
    return out, failed


class IncrementalTokenIndex:
    """
    Durable, incrementally advanced index of every token minted by factory-deployed contracts.

    Each refresh() re-scans the factory log (one cheap query), re-reads latestTokenId() for
    every contract, and fetches only ids above the stored per-contract count. A snapshot older
    than `staleness_blocks` (or missing) triggers a full scan instead.

    Writes are single-writer per instance (asyncio.Lock) and version-checked against the
    blob store, so a concurrent writer in another process is never overwritten by an older base.
    """
    def __init__(
        self,
        chain: ChainClient,
        blobs: BlobStore,
        *,
        factory_address: Address,
        deployment_block: int,
        scanner: EventScanner | None = None,
        reader: BatchReader | None = None,
        staleness_blocks: int = STALENESS_BLOCKS,
        snapshot_key: str = SNAPSHOT_KEY,
    ) -> None:
        self.chain = chain
        self.blobs = blobs
        self.factory_address = factory_address
        self.deployment_block = deployment_block
        self.scanner = scanner or EventScanner(chain)
        self.reader = reader or BatchReader(chain)
        self.staleness_blocks = staleness_blocks
        self.snapshot_key = snapshot_key
        self.state = IndexState.EMPTY
        self.last_stats: RefreshStats | None = None
        self._lock = asyncio.Lock()

    async def load(self) -> IndexSnapshot | None:
        value, found = await self.blobs.get(self.snapshot_key)
        if not found:
            return None
        try:
            return IndexSnapshot.from_json(value)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("discarding unreadable index snapshot: %s", e)
            return None

    async def refresh(self) -> IndexSnapshot:
        async with self._lock:
            return await self._refresh_locked()

    async def _refresh_locked(self) -> IndexSnapshot:
        t0 = time.monotonic()
        previous = await self.load()
        head = await self.chain.latest_block()

        if previous is None or head - previous.last_processed_block > self.staleness_blocks:
            self.state = IndexState.FULL_SCAN
            base_tokens: list[TokenRecord] = []
            prev_counts: dict[str, int] = {}
        else:
            self.state = IndexState.INCREMENTAL_SCAN
            base_tokens = list(previous.tokens)
            prev_counts = dict(previous.per_contract_token_counts)
        stats = RefreshStats(mode=self.state)
        logger.info("[tokens] %s to block %d (snapshot at %s)", self.state.value, head,
                    previous.last_processed_block if previous else "none")

        deployments = await self.scanner.scan(self.factory_address, [CREATED_LAYOUT], self.deployment_block, head)
        stats.contracts = len(deployments)

        latest = await self.reader.read([abi.latest_token_id(d.contract_address) for d in deployments])
        counts = dict(prev_counts)
        wanted: list[tuple[ContractDeployment, int]] = []
        for d, res in zip(deployments, latest):
            if res is None:
                # keep the previous count; this contract is retried next refresh
                stats.failed_counts += 1
                continue
            latest_id = int(res[0])
            previous_count = prev_counts.get(d.key, 0)
            counts[d.key] = max(latest_id, previous_count)
            wanted.extend((d, tid) for tid in range(previous_count + 1, latest_id + 1))

        new_tokens = await self._fetch_tokens(wanted, stats)

        mint_totals, stats.failed_mint_logs = await collect_mint_totals(
            self.scanner, [d.contract_address for d in deployments], self.deployment_block, head)
        merged = [self._with_totals(t, mint_totals) for t in (*base_tokens, *new_tokens)]

        snapshot = IndexSnapshot(
            tokens=tuple(sort_newest_first(merged)),
            last_processed_block=head,
            per_contract_token_counts=counts,
            version=(previous.version if previous else 0) + 1,
        )
        snapshot = await self._persist(snapshot, expected_version=previous.version if previous else None)

        stats.new_tokens = len(new_tokens)
        stats.elapsed_s = time.monotonic() - t0
        self.last_stats = stats
        self.state = IndexState.IDLE
        logger.info("[tokens] %d tokens (%d new, %d skipped) across %d contracts in %.1fs",
                    len(snapshot.tokens), stats.new_tokens, stats.skipped_tokens, stats.contracts, stats.elapsed_s)
        return snapshot

    async def _fetch_tokens(self, wanted: list[tuple[ContractDeployment, int]], stats: RefreshStats) -> list[TokenRecord]:
        if not wanted:
            return []
        calls = [c for d, tid in wanted for c in abi.token_detail_calls(d.contract_address, tid)]
        results = await self.reader.read(calls)
        out: list[TokenRecord] = []
        for i, (d, tid) in enumerate(wanted):
            get_res, uri_res, open_res = results[3*i:3*i + 3]
            rec = build_token_record(d, tid, get_res, uri_res, open_res)
            if rec is None:
                stats.skipped_tokens += 1
                if stats.skipped_tokens <= 5:
                    logger.info("[tokens] skipped %s token %d: get() absent", d.contract_address, tid)
                continue
            out.append(rec)
        return out

    @staticmethod
    def _with_totals(token: TokenRecord, totals: dict[str, dict[int, int]]) -> TokenRecord:
        per_contract = totals.get(token.contract_address.lower())
        if per_contract is None:
            return token
        minted = per_contract.get(token.token_id, 0)
        return token if minted == token.total_minted else replace(token, total_minted=minted)

    async def _persist(self, snapshot: IndexSnapshot, *, expected_version: int | None) -> IndexSnapshot:
        current = await self.load()
        current_version = current.version if current else None
        if current is not None and current_version != expected_version:
            logger.warning("[tokens] snapshot moved to v%s during refresh (expected v%s); keeping the stored one",
                           current_version, expected_version)
            return current
        await self.blobs.put(self.snapshot_key, snapshot.to_json())
        return snapshot
