from __future__ import annotations

from typing import Any, Protocol


class BlobStore(Protocol):
    """
    Namespaced key/value store for JSON-able values. No transactions, eventually
    consistent across processes; last write wins.
    """

    async def get(self, key: str) -> tuple[Any, bool]:
        """Return (value, found)."""

    async def put(self, key: str, value: Any) -> None:
        """Replace the value stored under `key`."""
