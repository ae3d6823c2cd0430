from __future__ import annotations
import asyncio, base64, json

import httpx
import pyarrow.parquet as pq
import pytest

from mintdex.adapters.blob_local import FileBlobStore
from mintdex.adapters.metadata_httpx import HttpxMetadataFetcher, decode_data_uri, resolve_uri
from mintdex.adapters.parquet_export import TokenTableWriter
from mintdex.domain.models import IndexSnapshot, TokenRecord

from _fakes import CONTRACT_A, CONTRACT_B, OWNER_1


# ---- metadata

def test_resolve_uri_maps_ipfs_to_gateway():
    assert resolve_uri("ipfs://Qm123/meta.json", "https://gw.test/ipfs/") == "https://gw.test/ipfs/Qm123/meta.json"
    assert resolve_uri("ipfs://ipfs/Qm123", "https://gw.test/ipfs") == "https://gw.test/ipfs/Qm123"
    assert resolve_uri("https://x.test/a.json", "https://gw.test/ipfs/") == "https://x.test/a.json"


def test_decode_data_uri_plain_and_base64():
    doc = {"name": "Alpha"}
    b64 = base64.b64encode(json.dumps(doc).encode()).decode()
    assert decode_data_uri("data:application/json;base64," + b64) == doc
    assert decode_data_uri("data:application/json,%7B%22name%22%3A%22Alpha%22%7D") == doc


def _fetch(handler, uri: str):
    async def main():
        fetcher = HttpxMetadataFetcher(timeout_s=1.0, ipfs_gateway="https://gw.test/ipfs/",
                                       transport=httpx.MockTransport(handler))
        try:
            return await fetcher.fetch_json(uri)
        finally:
            await fetcher.aclose()
    return asyncio.run(main())


def test_fetch_json_through_gateway():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, json={"name": "Alpha"})

    assert _fetch(handler, "ipfs://QmAlpha") == {"name": "Alpha"}
    assert seen == ["https://gw.test/ipfs/QmAlpha"]


@pytest.mark.parametrize("response", [
    httpx.Response(404, text="missing"),
    httpx.Response(200, text="not json"),
    httpx.Response(200, json=["not", "an", "object"]),
])
def test_fetch_json_failures_are_none(response):
    assert _fetch(lambda request: response, "https://x.test/meta.json") is None


def test_fetch_json_unsupported_scheme_is_none():
    def handler(request):
        raise AssertionError("no request expected")

    assert _fetch(handler, "ar://abc") is None
    assert _fetch(handler, "") is None


def test_fetch_json_transport_error_is_none():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert _fetch(handler, "https://x.test/meta.json") is None


# ---- file blobs

def test_file_blob_round_trip(tmp_path):
    store = FileBlobStore(str(tmp_path), "mainnet")

    async def main():
        missing = await store.get("tokens/v1/all")
        await store.put("tokens/v1/all", {"payload": [1, 2], "timestamp": 5.0})
        return missing, await store.get("tokens/v1/all")

    missing, found = asyncio.run(main())
    assert missing == (None, False)
    assert found == ({"payload": [1, 2], "timestamp": 5.0}, True)
    assert (tmp_path / "mainnet" / "tokens__v1__all.json").exists()
    assert not list((tmp_path / "mainnet").glob("*.tmp"))


def test_file_blob_namespaces_are_isolated(tmp_path):
    main_store = FileBlobStore(str(tmp_path), "mainnet")
    test_store = FileBlobStore(str(tmp_path), "sepolia")
    asyncio.run(main_store.put("k", 1))
    assert asyncio.run(test_store.get("k")) == (None, False)


def test_file_blob_corrupt_file_reads_as_missing(tmp_path):
    store = FileBlobStore(str(tmp_path), "ns")
    (tmp_path / "ns" / "k.json").write_text("{not json")
    assert asyncio.run(store.get("k")) == (None, False)


@pytest.mark.parametrize("key", ["../escape", "a b", "x?y", ""])
def test_file_blob_rejects_bad_keys(tmp_path, key):
    store = FileBlobStore(str(tmp_path), "ns")
    with pytest.raises(ValueError):
        asyncio.run(store.get(key))


# ---- parquet export

def _token(contract, tid, block, uri=None):
    return TokenRecord(contract, OWNER_1, tid, block, f"T{tid}", "", 0, 0, tid * 2, uri)


def test_export_writes_tokens_newest_first(tmp_path):
    snap = IndexSnapshot(
        tokens=(_token(CONTRACT_A, 1, 100), _token(CONTRACT_B, 1, 300, "ipfs://b1"), _token(CONTRACT_A, 2, 200)),
        last_processed_block=1_000,
        per_contract_token_counts={CONTRACT_A.lower(): 2, CONTRACT_B.lower(): 1},
        version=4,
    )
    out = tmp_path / "out" / "tokens.parquet"

    TokenTableWriter().write(snap, str(out))

    table = pq.read_table(str(out))
    assert table.column("minted_block").to_pylist() == [300, 200, 100]
    assert table.column("metadata_uri").to_pylist() == ["ipfs://b1", None, None]
    assert table.column("total_minted").to_pylist() == [2, 4, 2]
    assert table.schema.metadata[b"last_block"] == b"1000"
    assert table.schema.metadata[b"version"] == b"4"
