from __future__ import annotations
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, 40 hex chars
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash
CacheStatus = Literal[
    "MEMORY_HIT", "BLOB_HIT", "STALE_REFRESH", "MISS",
    "WARMING_UP", "ERROR_MEMORY", "ERROR_BLOB",
]
ColdPolicy = Literal["sync", "warm_up"]

ZERO_ADDRESS = Address("0x0000000000000000000000000000000000000000")
