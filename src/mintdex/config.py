from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .domain.errors import ConfigError
from .domain.value_types import Address


@dataclass(frozen=True)
class Network:
    """Factory contracts of one chain."""

    name: str
    alchemy_host: str
    token_factory: Address
    token_factory_block: int
    bounty_factory: Address | None = None
    bounty_factory_block: int = 0


MAINNET = Network(
    name="mainnet",
    alchemy_host="eth-mainnet.g.alchemy.com",
    token_factory=Address("0xd717Fe677072807057B03705227EC3E3b467b670"),
    token_factory_block=21_167_599,
    bounty_factory=Address("0x1Bf79888027B7EeE2e5B30890DbfD9157EB4C06a"),
    bounty_factory_block=21_385_383,
)

SEPOLIA = Network(
    name="sepolia",
    alchemy_host="eth-sepolia.g.alchemy.com",
    token_factory=Address("0x750C5a6CFD40C9CaA48C31D87AC2a26101Acd517"),
    token_factory_block=7_057_962,
)


def _flag(raw: str | None) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "on")


def _addresses(raw: str | None) -> tuple[Address, ...]:
    return tuple(Address(a.strip()) for a in (raw or "").split(",") if a.strip())


def _int(env: dict[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    try:
        return int(raw) if raw else default
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    """Process configuration, resolved once at start-up."""

    rpc_url: str
    network: Network
    blob_dir: str = "./.mintdex-blobs"
    blob_namespace: str = "mainnet"
    extra_token_contracts: tuple[Address, ...] = field(default_factory=tuple)
    metadata_timeout_s: float = 5.0
    ipfs_gateway: str = "https://ipfs.io/ipfs/"
    rpc_timeout_s: int = 20
    batch_window: int = 50
    log_step: int = 1_000_000
    staleness_blocks: int = 50_000
    list_fresh_s: float = 300.0
    item_fresh_s: float = 120.0

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None, *, dotenv: bool = True) -> "Settings":
        if env is None:
            if dotenv:
                load_dotenv()
            env = dict(os.environ)

        base = SEPOLIA if _flag(env.get("IS_TESTNET")) else MAINNET
        bounty_override = env.get("BOUNTY_FACTORY_ADDRESS")
        if bounty_override:
            network = Network(
                name=base.name,
                alchemy_host=base.alchemy_host,
                token_factory=base.token_factory,
                token_factory_block=base.token_factory_block,
                bounty_factory=Address(bounty_override),
                bounty_factory_block=_int(env, "BOUNTY_FACTORY_BLOCK", base.token_factory_block),
            )
        else:
            network = base

        rpc_url = env.get("RPC_URL")
        if not rpc_url:
            key = env.get("ALCHEMY_API_KEY")
            if not key:
                raise ConfigError("ALCHEMY_API_KEY (or RPC_URL) environment variable is required")
            rpc_url = f"https://{network.alchemy_host}/v2/{key}"

        try:
            return cls(
                rpc_url=rpc_url,
                network=network,
                blob_dir=env.get("MINTDEX_BLOB_DIR") or "./.mintdex-blobs",
                blob_namespace=env.get("MINTDEX_BLOB_NAMESPACE") or network.name,
                extra_token_contracts=_addresses(env.get("EXTRA_TOKEN_CONTRACTS")),
                metadata_timeout_s=float(env.get("METADATA_TIMEOUT_S") or 5.0),
                ipfs_gateway=env.get("IPFS_GATEWAY") or "https://ipfs.io/ipfs/",
                log_step=int(env.get("LOG_CHUNK_BLOCKS") or 1_000_000),
            )
        except ValueError as e:
            raise ConfigError(f"invalid numeric setting: {e}") from e
