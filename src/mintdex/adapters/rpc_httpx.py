from __future__ import annotations
import asyncio, httpx, logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from eth_utils import keccak

from ..domain.decoding import decode_result, encode_call
from ..domain.errors import ChainUnavailable, EventDecodeError
from ..domain.models import ContractCall, EventLog
from ..domain.value_types import Address, ZERO_ADDRESS
from ..ports.chain import ChainClient

logger = logging.getLogger(__name__)

# Same address on mainnet and Sepolia
ENS_REGISTRY = Address("0x00000000000C2E074eC69A0dFb2997BA6C7d2e1e")

def _to_hex_block(n: int) -> str: return hex(int(n))

def _normalize_topic(t: str | None) -> str | None:
    return None if t is None else str(t).strip().lower()

def namehash(name: str) -> bytes:
    node = b"\x00" * 32
    if name:
        for label in reversed(name.split(".")):
            node = keccak(node + keccak(text=label))
    return node


@dataclass(slots=True)
class RpcStats:
    get_logs: int = 0
    batches: int = 0
    calls: int = 0
    get_block: int = 0
    ens: int = 0
    failed_calls: int = 0
    by_method: dict[str, int] = field(default_factory=dict)

    def total(self) -> int:
        return self.get_logs + self.batches + self.get_block + self.ens

    def log(self, prefix: str = "rpc") -> None:
        logger.info("[%s] %d round trips: getLogs=%d batches=%d (calls=%d, failed=%d) getBlock=%d ens=%d methods=%s",
                    prefix, self.total(), self.get_logs, self.batches, self.calls,
                    self.failed_calls, self.get_block, self.ens, dict(sorted(self.by_method.items())))

    def reset(self) -> None:
        self.get_logs = self.batches = self.calls = self.get_block = self.ens = self.failed_calls = 0
        self.by_method.clear()


class HttpxChainClient(ChainClient):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: int = 20,
        max_conn: int = 64,
        *,
        max_429_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.max_429_retries = max_429_retries
        self.stats = RpcStats()
        self.client = httpx.AsyncClient(
            http2=transport is None,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
            transport=transport,
        )

    async def _post(self, payload: Any) -> Any:
        # retry on 429 with simple backoff; every other failure surfaces as ChainUnavailable
        for attempt in range(self.max_429_retries):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
                if r.status_code == 429:
                    ra = r.headers.get("Retry-After")
                    delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                    await asyncio.sleep(delay); continue
                r.raise_for_status()
                return r.json()
            except httpx.HTTPError as e:
                raise ChainUnavailable(f"RPC transport error: {type(e).__name__}: {e}") from e
            except ValueError as e:
                raise ChainUnavailable(f"RPC returned invalid JSON: {e}") from e
        raise ChainUnavailable("Retries exhausted (HTTP 429)")

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        self.stats.by_method[method] = self.stats.by_method.get(method, 0) + 1
        data = await self._post({"jsonrpc": "2.0", "id": 1, "method": method, "params": params})
        if not isinstance(data, dict):
            raise ChainUnavailable(f"{method}: unexpected response shape")
        if "error" in data:
            err = data["error"]
            code = err.get("code") if isinstance(err, dict) else None
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise ChainUnavailable(f"{method} RPC error code={code} message={msg}")
        return data.get("result")

    async def latest_block(self) -> int:
        return int(await self._rpc("eth_blockNumber", []), 16)

    async def block_timestamp(self, number: int) -> int:
        self.stats.get_block += 1
        block = await self._rpc("eth_getBlockByNumber", [_to_hex_block(number), False])
        if not block:
            raise ChainUnavailable(f"block {number} not available")
        return int(block["timestamp"], 16)

    async def get_logs(self, address: Address, topics: Sequence[str | None], from_block: int, to_block: int) -> list[EventLog]:
        self.stats.get_logs += 1
        res = await self._rpc("eth_getLogs", [{
            "address": str(address).lower(),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": [_normalize_topic(t) for t in topics],
        }])
        typed: list[EventLog] = []
        for rl in res or []:
            typed.append(EventLog(
                address=Address(rl["address"].lower()),
                topics=tuple(t.lower() for t in rl.get("topics", [])),
                data_hex=str(rl.get("data") or "0x"),
                block_number=int(rl["blockNumber"], 16),
                tx_hash=(rl.get("transactionHash") or "").lower(),
                log_index=int(rl["logIndex"], 16),
            ))
        return typed

    async def batch_read(self, calls: Sequence[ContractCall]) -> list[tuple[Any, ...] | None]:
        if not calls:
            return []
        self.stats.batches += 1
        self.stats.calls += len(calls)
        payload = [
            {"jsonrpc": "2.0", "id": i, "method": "eth_call",
             "params": [{"to": str(c.address), "data": encode_call(c)}, "latest"]}
            for i, c in enumerate(calls)
        ]
        data = await self._post(payload)
        if isinstance(data, dict) and "error" in data:
            err = data["error"]
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise ChainUnavailable(f"eth_call batch rejected: {msg}")
        if not isinstance(data, list):
            raise ChainUnavailable("eth_call batch: unexpected response shape")

        by_id = {item.get("id"): item for item in data if isinstance(item, dict)}
        out: list[tuple[Any, ...] | None] = []
        for i, c in enumerate(calls):
            item = by_id.get(i)
            if item is None or "error" in item or item.get("result") is None:
                reason = (item or {}).get("error", "missing response")
                logger.debug("call %s on %s failed: %s", c.function, c.address, reason)
                self.stats.failed_calls += 1
                out.append(None)
                continue
            try:
                out.append(decode_result(c, item["result"]))
            except EventDecodeError as e:
                logger.debug("%s", e)
                self.stats.failed_calls += 1
                out.append(None)
        return out

    async def resolve_name(self, address: Address) -> str | None:
        self.stats.ens += 1
        node = namehash(f"{str(address).lower()[2:]}.addr.reverse")
        [resolver] = await self.batch_read([
            ContractCall(ENS_REGISTRY, "resolver(bytes32)", (node,), ("address",))])
        if resolver is None or resolver[0] == ZERO_ADDRESS:
            return None
        [name] = await self.batch_read([ContractCall(Address(resolver[0]), "name(bytes32)", (node,), ("string",))])
        if name is None or not name[0]:
            return None

        # forward check: the name must resolve back to the address
        fwd = namehash(name[0])
        [fwd_resolver] = await self.batch_read([
            ContractCall(ENS_REGISTRY, "resolver(bytes32)", (fwd,), ("address",))])
        if fwd_resolver is None or fwd_resolver[0] == ZERO_ADDRESS:
            return None
        [addr] = await self.batch_read([ContractCall(Address(fwd_resolver[0]), "addr(bytes32)", (fwd,), ("address",))])
        if addr is None or str(addr[0]).lower() != str(address).lower():
            return None
        return name[0]

    async def aclose(self) -> None:
        await self.client.aclose()
