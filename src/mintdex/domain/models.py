from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar
from .value_types import Address, Topic0

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class EventLog:
    address: Address
    topics: tuple[str, ...]            # lowercased with 0x
    data_hex: str
    block_number: int
    tx_hash: str
    log_index: int

    @property
    def topic0(self) -> Topic0 | None:
        return Topic0(self.topics[0]) if self.topics else None


@dataclass(slots=True, frozen=True)
class ContractCall:
    """One logical eth_call: `signature` is the canonical ABI signature, e.g. "get(uint256)"."""
    address: Address
    signature: str
    args: tuple[Any, ...] = ()
    output_types: tuple[str, ...] = ()

    @property
    def function(self) -> str:
        return self.signature.split("(", 1)[0]

    @property
    def input_types(self) -> list[str]:
        inner = self.signature[self.signature.index("(") + 1:-1]
        return [t for t in inner.split(",") if t]


@dataclass(slots=True, frozen=True)
class ContractDeployment:
    owner_address: Address
    contract_address: Address
    discovered_at_block: int

    @property
    def key(self) -> str:
        return self.contract_address.lower()


@dataclass(slots=True, frozen=True)
class TokenRecord:
    contract_address: Address
    deployer_address: Address
    token_id: int
    minted_block: int
    name: str
    description: str
    close_at: int
    mint_open_until: int
    total_minted: int
    metadata_uri: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "contractAddress": self.contract_address,
            "deployerAddress": self.deployer_address,
            "tokenId": self.token_id,
            "mintedBlock": self.minted_block,
            "name": self.name,
            "description": self.description,
            "closeAt": self.close_at,
            "mintOpenUntil": self.mint_open_until,
            "totalMinted": self.total_minted,
            "uri": self.metadata_uri,
        }

    @classmethod
    def from_json(cls, d: dict[str, Any]) -> "TokenRecord":
        return cls(
            contract_address=Address(d["contractAddress"]),
            deployer_address=Address(d["deployerAddress"]),
            token_id=int(d["tokenId"]),
            minted_block=int(d["mintedBlock"]),
            name=d.get("name") or "",
            description=d.get("description") or "",
            close_at=int(d.get("closeAt") or 0),
            mint_open_until=int(d.get("mintOpenUntil") or 0),
            total_minted=int(d.get("totalMinted") or 0),
            metadata_uri=d.get("uri"),
        )


@dataclass(slots=True, frozen=True)
class IndexSnapshot:
    tokens: tuple[TokenRecord, ...]
    last_processed_block: int
    per_contract_token_counts: dict[str, int] = field(default_factory=dict)  # lowercase address -> latest id
    version: int = 0

    def to_json(self) -> dict[str, Any]:
        return {
            "tokens": [t.to_json() for t in self.tokens],
            "lastBlock": self.last_processed_block,
            "contractTokenCounts": dict(self.per_contract_token_counts),
            "version": self.version,
        }

    @classmethod
    def from_json(cls, d: dict[str, Any]) -> "IndexSnapshot":
        return cls(
            tokens=tuple(TokenRecord.from_json(t) for t in d["tokens"]),
            last_processed_block=int(d["lastBlock"]),
            per_contract_token_counts={k.lower(): int(v) for k, v in d["contractTokenCounts"].items()},
            version=int(d.get("version", 0)),
        )


@dataclass(slots=True, frozen=True)
class BountyRecord:
    bounty_contract: Address
    token_contract: Address
    last_minted_id: int
    total_artifacts: int
    minter_reward: int            # wei
    max_artifact_price: int       # wei
    balance: int                  # wei
    is_paused: bool
    is_claimable: bool | None     # None when the on-chain read failed
    owner: Address
    recipient: Address
    token_name: str | None = None
    token_owner: Address | None = None
    contract_uri: str | None = None
    latest_token_id: int | None = None
    owner_ens_name: str | None = None
    token_owner_ens_name: str | None = None

    @property
    def is_active(self) -> bool:
        # display hint only; is_claimable is the on-chain answer
        return not self.is_paused and self.balance > 0

    def to_json(self) -> dict[str, Any]:
        return {
            "bountyContract": self.bounty_contract,
            "tokenContract": self.token_contract,
            "lastMintedId": self.last_minted_id,
            "totalArtifacts": str(self.total_artifacts),
            "minterReward": str(self.minter_reward),
            "maxArtifactPrice": str(self.max_artifact_price),
            "balance": str(self.balance),
            "isPaused": self.is_paused,
            "isActive": self.is_active,
            "isClaimable": self.is_claimable,
            "owner": self.owner,
            "recipient": self.recipient,
            "tokenName": self.token_name,
            "tokenOwner": self.token_owner,
            "contractUri": self.contract_uri,
            "latestTokenId": self.latest_token_id,
            "ownerEnsName": self.owner_ens_name,
            "tokenOwnerEnsName": self.token_owner_ens_name,
        }

    @classmethod
    def from_json(cls, d: dict[str, Any]) -> "BountyRecord":
        latest = d.get("latestTokenId")
        return cls(
            bounty_contract=Address(d["bountyContract"]),
            token_contract=Address(d["tokenContract"]),
            last_minted_id=int(d["lastMintedId"]),
            total_artifacts=int(d["totalArtifacts"]),
            minter_reward=int(d["minterReward"]),
            max_artifact_price=int(d["maxArtifactPrice"]),
            balance=int(d["balance"]),
            is_paused=bool(d["isPaused"]),
            is_claimable=d.get("isClaimable"),
            owner=Address(d["owner"]),
            recipient=Address(d["recipient"]),
            token_name=d.get("tokenName"),
            token_owner=d.get("tokenOwner"),
            contract_uri=d.get("contractUri"),
            latest_token_id=int(latest) if latest is not None else None,
            owner_ens_name=d.get("ownerEnsName"),
            token_owner_ens_name=d.get("tokenOwnerEnsName"),
        )


@dataclass(slots=True, frozen=True)
class MintEvent:
    minter: Address
    amount: int
    block_number: int
    timestamp: int
    tx_hash: str
    minter_ens_name: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "minter": self.minter,
            "minterEnsName": self.minter_ens_name,
            "amount": self.amount,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp,
            "txHash": self.tx_hash,
        }

    @classmethod
    def from_json(cls, d: dict[str, Any]) -> "MintEvent":
        return cls(
            minter=Address(d["minter"]),
            amount=int(d["amount"]),
            block_number=int(d["blockNumber"]),
            timestamp=int(d["timestamp"]),
            tx_hash=d["txHash"],
            minter_ens_name=d.get("minterEnsName"),
        )


@dataclass(slots=True, frozen=True)
class TokenDetail:
    token: TokenRecord
    mint_history: tuple[MintEvent, ...]
    deployer_ens_name: str | None = None

    def to_json(self) -> dict[str, Any]:
        out = self.token.to_json()
        out["deployerEnsName"] = self.deployer_ens_name
        out["mintHistory"] = [m.to_json() for m in self.mint_history]
        return out

    @classmethod
    def from_json(cls, d: dict[str, Any]) -> "TokenDetail":
        return cls(
            token=TokenRecord.from_json(d),
            mint_history=tuple(MintEvent.from_json(m) for m in d.get("mintHistory", [])),
            deployer_ens_name=d.get("deployerEnsName"),
        )


@dataclass(slots=True, frozen=True)
class CacheEntry(Generic[T]):
    payload: T
    timestamp: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.timestamp)
