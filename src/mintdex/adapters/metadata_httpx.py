from __future__ import annotations
import asyncio, base64, json, logging
from typing import Any
from urllib.parse import unquote

import httpx

from ..domain.errors import MetadataFetchFailure
from ..ports.metadata import MetadataFetcher

logger = logging.getLogger(__name__)


def resolve_uri(uri: str, ipfs_gateway: str) -> str:
    if uri.startswith("ipfs://"):
        path = uri[len("ipfs://"):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        return ipfs_gateway.rstrip("/") + "/" + path
    return uri


def decode_data_uri(uri: str) -> Any:
    header, _, body = uri.partition(",")
    if ";base64" in header:
        return json.loads(base64.b64decode(body))
    return json.loads(unquote(body))


class HttpxMetadataFetcher(MetadataFetcher):
    def __init__(
        self,
        timeout_s: float = 5.0,
        ipfs_gateway: str = "https://ipfs.io/ipfs/",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self.ipfs_gateway = ipfs_gateway
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            follow_redirects=True,
            transport=transport,
        )

    async def _fetch(self, uri: str) -> Any:
        if uri.startswith("data:"):
            return decode_data_uri(uri)
        url = resolve_uri(uri, self.ipfs_gateway)
        if not url.startswith(("http://", "https://")):
            raise MetadataFetchFailure(f"unsupported URI scheme: {uri[:32]}")
        r = await self.client.get(url)
        if r.status_code >= 400:
            raise MetadataFetchFailure(f"HTTP {r.status_code} for {url}")
        return r.json()

    async def fetch_json(self, uri: str) -> dict[str, Any] | None:
        if not uri:
            return None
        try:
            doc = await asyncio.wait_for(self._fetch(uri), timeout=self.timeout_s)
        except (asyncio.TimeoutError, httpx.HTTPError, ValueError, MetadataFetchFailure) as e:
            logger.debug("metadata fetch failed for %s: %s", uri[:80], e)
            return None
        return doc if isinstance(doc, dict) else None

    async def aclose(self) -> None:
        await self.client.aclose()
