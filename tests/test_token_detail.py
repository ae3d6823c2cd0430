from __future__ import annotations
import asyncio

import pytest

from mintdex.application.scanner import EventScanner
from mintdex.application.token_detail import TokenDetailFetcher
from mintdex.domain.errors import NotFound

from _fakes import CONTRACT_A, CONTRACT_B, FACTORY, OWNER_1, FakeChain, addr, created_log, new_mint_log

M1 = addr(101)
M2 = addr(102)


def _setup():
    chain = FakeChain(head=1_000)
    chain.logs = [
        created_log(CONTRACT_A, OWNER_1, 110),
        new_mint_log(CONTRACT_A, 2, 2, M1, 300),
        new_mint_log(CONTRACT_A, 2, 3, M2, 500),
        new_mint_log(CONTRACT_A, 1, 9, M1, 400),
    ]
    chain.set_token(CONTRACT_A, 2, name="Two", description="second", minted_block=250,
                    close_at=1_800_000_000, open_until=1_700_000_000)
    chain.names[M1.lower()] = "m1.eth"
    chain.names[OWNER_1.lower()] = "deployer.eth"
    fetcher = TokenDetailFetcher(chain, factory_address=FACTORY, deployment_block=100,
                                 scanner=EventScanner(chain))
    return chain, fetcher


def test_detail_has_history_newest_first():
    chain, fetcher = _setup()
    chain.failing_blocks.add(500)

    detail = asyncio.run(fetcher.fetch(CONTRACT_A, 2))

    assert detail.token.name == "Two"
    assert detail.token.description == "second"
    assert detail.token.mint_open_until == 1_700_000_000
    assert detail.token.close_at == 1_800_000_000
    assert detail.token.total_minted == 5
    assert detail.deployer_ens_name == "deployer.eth"
    assert [m.block_number for m in detail.mint_history] == [500, 300]
    assert [m.timestamp for m in detail.mint_history] == [0, 300 * 12]
    assert [m.minter_ens_name for m in detail.mint_history] == [None, "m1.eth"]

    body = detail.to_json()
    assert body["tokenId"] == 2
    assert body["uri"] == "ipfs://Two"
    assert body["mintHistory"][1]["minterEnsName"] == "m1.eth"


def test_unknown_contract_is_not_found():
    _, fetcher = _setup()
    with pytest.raises(NotFound):
        asyncio.run(fetcher.fetch(CONTRACT_B, 1))


def test_missing_token_is_not_found():
    _, fetcher = _setup()
    with pytest.raises(NotFound):
        asyncio.run(fetcher.fetch(CONTRACT_A, 9))


def test_contract_lookup_ignores_address_case():
    _, fetcher = _setup()
    detail = asyncio.run(fetcher.fetch(CONTRACT_A.lower(), 2))
    assert detail.token.contract_address == CONTRACT_A
