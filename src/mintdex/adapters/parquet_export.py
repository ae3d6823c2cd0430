from __future__ import annotations
import os
import pyarrow as pa, pyarrow.parquet as pq

from ..domain.models import IndexSnapshot

TOKEN_SCHEMA = pa.schema([
    pa.field("contract_address", pa.large_string()),
    pa.field("deployer_address", pa.large_string()),
    pa.field("token_id",         pa.int64()),
    pa.field("minted_block",     pa.int64()),
    pa.field("name",             pa.large_string()),
    pa.field("description",      pa.large_string()),
    pa.field("close_at",         pa.int64()),
    pa.field("mint_open_until",  pa.int64()),
    pa.field("total_minted",     pa.int64()),
    pa.field("metadata_uri",     pa.large_string()),
])


def snapshot_to_table(snapshot: IndexSnapshot) -> pa.Table:
    toks = snapshot.tokens
    table = pa.Table.from_pydict({
        "contract_address": [t.contract_address for t in toks],
        "deployer_address": [t.deployer_address for t in toks],
        "token_id":         [t.token_id for t in toks],
        "minted_block":     [t.minted_block for t in toks],
        "name":             [t.name for t in toks],
        "description":      [t.description for t in toks],
        "close_at":         [t.close_at for t in toks],
        "mint_open_until":  [t.mint_open_until for t in toks],
        "total_minted":     [t.total_minted for t in toks],
        "metadata_uri":     [t.metadata_uri for t in toks],
    }, schema=TOKEN_SCHEMA)
    return table.replace_schema_metadata({
        b"last_block": str(snapshot.last_processed_block).encode(),
        b"version": str(snapshot.version).encode(),
    })


class TokenTableWriter:
    """Writes the token index to a single Parquet file, newest mint first."""
    def __init__(self, codec: str = "zstd") -> None:
        self.codec = codec

    def write(self, snapshot: IndexSnapshot, out_path: str) -> str:
        os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
        table = snapshot_to_table(snapshot)
        # keep last_block/version through the sort
        table = table.sort_by([("minted_block", "descending"),
                               ("contract_address", "ascending"),
                               ("token_id", "ascending")]).replace_schema_metadata(table.schema.metadata)
        tmp = out_path + ".tmp"
        pq.write_table(table, tmp, compression=self.codec)
        os.replace(tmp, out_path)
        return out_path
