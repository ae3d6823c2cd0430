from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from eth_abi import decode as abi_decode, encode as abi_encode
from eth_utils import keccak, to_checksum_address

from .errors import EventDecodeError
from .models import ContractCall, EventLog
from .value_types import Address, Topic0


def topic_of(signature: str) -> Topic0:
    return Topic0("0x" + keccak(text=signature).hex())

def selector_of(signature: str) -> str:
    return "0x" + keccak(text=signature)[:4].hex()


# Event signatures (canonical form, no names / "indexed")
CREATED_SIG          = "Created(address,address)"
BOUNTY_DEPLOYED_SIG  = "BountyContractDeployed(address,address)"
NEW_MINT_SIG         = "NewMint(uint256,uint256,uint256,address)"

NEW_MINT_T0 = topic_of(NEW_MINT_SIG)


# --------- 32B word slicing (fast, no eth_abi for logs) ------------------------

def _word(b: bytes, i: int) -> bytes:
    return b[i*32:(i+1)*32]

def _u256(w: bytes) -> int:
    return int.from_bytes(w, "big")

def _addr_from_word(w: bytes) -> Address:
    return Address(to_checksum_address("0x" + w[-20:].hex()))

def _addr_from_topic(t: str) -> Address:
    h = t[2:] if t[:2].lower() == "0x" else t
    return Address(to_checksum_address("0x" + h[-40:]))

def _data_bytes(data_hex: str) -> bytes:
    h = data_hex[2:] if data_hex[:2].lower() == "0x" else data_hex
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""


# --------- factory deployment events -------------------------------------------

@dataclass(slots=True, frozen=True)
class DeploymentLayout:
    """
    Which of the two address fields of a `(owner, contract)` deployment event are indexed.
    Same signature, different layouts: `indexed` is not part of topic0.
    """
    signature: str
    owner_indexed: bool = True
    contract_indexed: bool = False

    @property
    def topic0(self) -> Topic0:
        return topic_of(self.signature)

    @property
    def topic_count(self) -> int:
        return 1 + int(self.owner_indexed) + int(self.contract_indexed)


# event Created(address indexed ownerAddress, address contractAddress)
CREATED_LAYOUT = DeploymentLayout(CREATED_SIG, owner_indexed=True, contract_indexed=False)
# event BountyContractDeployed(address indexed owner, address indexed bountyContract)
BOUNTY_DEPLOYED_LAYOUT = DeploymentLayout(BOUNTY_DEPLOYED_SIG, owner_indexed=True, contract_indexed=True)
# event BountyContractDeployed(address indexed owner, address bountyContract)  (older factory ABI)
BOUNTY_DEPLOYED_LEGACY_LAYOUT = DeploymentLayout(BOUNTY_DEPLOYED_SIG, owner_indexed=True, contract_indexed=False)


def decode_deployment(log: EventLog, layout: DeploymentLayout) -> tuple[Address, Address]:
    """Decode a deployment log into (owner, contract) under an explicit indexed-field layout."""
    topics = log.topics
    if len(topics) != layout.topic_count:
        raise EventDecodeError(
            f"{layout.signature}: expected {layout.topic_count} topics, got {len(topics)} (tx {log.tx_hash})")
    if (log.topic0 or "").lower() != layout.topic0:
        raise EventDecodeError(f"{layout.signature}: topic0 mismatch (tx {log.tx_hash})")

    data = _data_bytes(log.data_hex)
    next_topic, next_word = 1, 0
    values: list[Address] = []
    for indexed in (layout.owner_indexed, layout.contract_indexed):
        if indexed:
            values.append(_addr_from_topic(topics[next_topic])); next_topic += 1
        else:
            w = _word(data, next_word)
            if len(w) < 32:
                raise EventDecodeError(f"{layout.signature}: data too short (tx {log.tx_hash})")
            values.append(_addr_from_word(w)); next_word += 1
    return values[0], values[1]


def decode_deployment_any(log: EventLog, layouts: Sequence[DeploymentLayout]) -> tuple[Address, Address]:
    """Pick the layout whose topic count matches the log."""
    for layout in layouts:
        if len(log.topics) == layout.topic_count:
            return decode_deployment(log, layout)
    raise EventDecodeError(f"no layout matches {len(log.topics)} topics (tx {log.tx_hash})")


# --------- mint events ----------------------------------------------------------

@dataclass(slots=True, frozen=True)
class NewMint:
    token_id: int
    unit_price: int
    amount: int
    minter: Address


def decode_new_mint(log: EventLog) -> NewMint:
    # NewMint(uint256 indexed tokenId, uint256 unitPrice, uint256 amount, address minter)
    if len(log.topics) < 2 or (log.topic0 or "").lower() != NEW_MINT_T0:
        raise EventDecodeError(f"not a NewMint log (tx {log.tx_hash})")
    data = _data_bytes(log.data_hex)
    if len(data) < 32 * 3:
        raise EventDecodeError(f"NewMint: data too short (tx {log.tx_hash})")
    return NewMint(
        token_id=int(log.topics[1], 16),
        unit_price=_u256(_word(data, 0)),
        amount=_u256(_word(data, 1)),
        minter=_addr_from_word(_word(data, 2)),
    )


def token_id_topic(token_id: int) -> str:
    return "0x" + token_id.to_bytes(32, "big").hex()


# --------- eth_call payloads ----------------------------------------------------

def encode_call(call: ContractCall) -> str:
    args = abi_encode(call.input_types, list(call.args)) if call.input_types else b""
    return selector_of(call.signature) + args.hex()


def decode_result(call: ContractCall, result_hex: str) -> tuple[Any, ...]:
    raw = _data_bytes(result_hex)
    if not raw and call.output_types:
        # calls to an address without code return "0x"
        raise EventDecodeError(f"{call.function} on {call.address}: empty return data")
    try:
        return tuple(abi_decode(list(call.output_types), raw))
    except Exception as e:
        raise EventDecodeError(f"{call.function} on {call.address}: {e}") from e
