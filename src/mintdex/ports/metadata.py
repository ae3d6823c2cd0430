from __future__ import annotations

from typing import Any, Protocol


class MetadataFetcher(Protocol):
    """Port for off-chain token/contract metadata (JSON behind a URI)."""

    async def fetch_json(self, uri: str) -> dict[str, Any] | None:
        """Return the decoded JSON object, or None on failure/timeout. Never raises."""
