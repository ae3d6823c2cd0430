from __future__ import annotations

from .models import ContractCall
from .value_types import Address

# get(uint256) -> (name, description, artifact[], renderer, mintedBlock, closeAt, data)
TOKEN_GET_OUTPUTS = ("string", "string", "address[]", "uint32", "uint32", "uint64", "uint128")
# bounties(address) -> (recipient, paused, lastMintedId, artifactsToMint, minterReward, maxArtifactPrice, balance)
BOUNTY_OUTPUTS = ("address", "bool", "uint96", "uint256", "uint256", "uint256", "uint256")


def latest_token_id(token_contract: Address) -> ContractCall:
    return ContractCall(token_contract, "latestTokenId()", (), ("uint256",))

def token_get(token_contract: Address, token_id: int) -> ContractCall:
    return ContractCall(token_contract, "get(uint256)", (token_id,), TOKEN_GET_OUTPUTS)

def token_uri(token_contract: Address, token_id: int) -> ContractCall:
    return ContractCall(token_contract, "uri(uint256)", (token_id,), ("string",))

def mint_open_until(token_contract: Address, token_id: int) -> ContractCall:
    return ContractCall(token_contract, "mintOpenUntil(uint256)", (token_id,), ("uint256",))

def contract_uri(token_contract: Address) -> ContractCall:
    return ContractCall(token_contract, "contractURI()", (), ("string",))

def owner(contract: Address) -> ContractCall:
    return ContractCall(contract, "owner()", (), ("address",))

def bounty_of(bounty_contract: Address, token_contract: Address) -> ContractCall:
    return ContractCall(bounty_contract, "bounties(address)", (token_contract,), BOUNTY_OUTPUTS)

def is_bounty_claimable(bounty_contract: Address, token_contract: Address) -> ContractCall:
    return ContractCall(bounty_contract, "isBountyClaimable(address)", (token_contract,), ("bool",))


def token_detail_calls(token_contract: Address, token_id: int) -> list[ContractCall]:
    """The three reads that make up one token: get, uri, mintOpenUntil (in that order)."""
    return [
        token_get(token_contract, token_id),
        token_uri(token_contract, token_id),
        mint_open_until(token_contract, token_id),
    ]
