from __future__ import annotations
import json, logging, math, re, time
from typing import Any

from aiohttp import web

from ..application.cache import CacheResult
from ..application.use_cases import Indexer
from ..domain.errors import NotFound, ValidationError
from ..domain.value_types import Address

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")
TOKEN_ID_RE = re.compile(r"[0-9]+")
MAX_UINT256 = 2**256 - 1

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

INDEXER_KEY = web.AppKey("indexer", Indexer)


def parse_token_path(contract: str | None, token_id: str | None) -> tuple[Address, int]:
    if not contract or not token_id:
        raise ValidationError("Missing contract or tokenId")
    if not ADDRESS_RE.fullmatch(contract):
        raise ValidationError("Invalid contract address")
    if not TOKEN_ID_RE.fullmatch(token_id) or not 1 <= int(token_id) <= MAX_UINT256:
        raise ValidationError("Invalid tokenId")
    return Address(contract), int(token_id)


def _json(body: Any, status: int = 200, headers: dict[str, str] | None = None) -> web.Response:
    return web.json_response(
        body, status=status, headers={**CORS_HEADERS, **(headers or {})},
        dumps=lambda o: json.dumps(o, separators=(",", ":")),
    )


def _error(message: str, status: int) -> web.Response:
    return _json({"error": message}, status=status)


def cache_headers(result: CacheResult[Any], fresh_s: float) -> dict[str, str]:
    headers = {
        "X-Cache-Status": result.status,
        "X-Cache-Age": str(int(math.floor(result.age_s))),
    }
    if result.status in ("ERROR_MEMORY", "ERROR_BLOB", "WARMING_UP"):
        headers["Cache-Control"] = "no-store"
    else:
        secs = int(fresh_s)
        headers["Cache-Control"] = f"public, max-age={secs}, s-maxage={secs}"
    return headers


class RequestHandler:
    """Maps requests onto the indexer's caches. Stateless apart from the injected indexer."""

    def __init__(self, indexer: Indexer) -> None:
        self.indexer = indexer

    async def options(self, request: web.Request) -> web.Response:
        return web.Response(status=204, headers=CORS_HEADERS)

    async def bounties(self, request: web.Request) -> web.Response:
        t0 = time.monotonic()
        try:
            result = await self.indexer.bounties()
        except Exception as e:
            logger.exception("[bounties] no data to serve: %s", e)
            return _error("Failed to fetch bounties", 500)
        logger.info("[bounties] %s, %d records in %.0fms", result.status, len(result.payload),
                    (time.monotonic() - t0) * 1000)
        return _json([b.to_json() for b in result.payload],
                     headers=cache_headers(result, self.indexer.bounties_cache.fresh_s))

    async def tokens(self, request: web.Request) -> web.Response:
        t0 = time.monotonic()
        try:
            result = await self.indexer.tokens()
        except Exception as e:
            logger.exception("[tokens] no data to serve: %s", e)
            return _error("Failed to fetch tokens", 500)
        logger.info("[tokens] %s, %d tokens in %.0fms", result.status, len(result.payload),
                    (time.monotonic() - t0) * 1000)
        headers = cache_headers(result, self.indexer.tokens_cache.fresh_s)
        headers["X-Token-Count"] = str(len(result.payload))
        return _json([t.to_json() for t in result.payload], headers=headers)

    async def token(self, request: web.Request) -> web.Response:
        try:
            contract, token_id = parse_token_path(request.match_info.get("contract"),
                                                  request.match_info.get("token_id"))
        except ValidationError as e:
            return _error(str(e), 400)
        try:
            result = await self.indexer.token(contract, token_id)
        except NotFound as e:
            logger.info("[token] %s", e)
            return _error("Token not found", 404)
        except Exception as e:
            logger.exception("[token] %s/%d: %s", contract, token_id, e)
            return _error("Failed to fetch token", 500)
        return _json(result.payload.to_json(),
                     headers=cache_headers(result, self.indexer.token_cache.fresh_s))


async def _close_indexer(app: web.Application) -> None:
    await app[INDEXER_KEY].aclose()


def create_app(indexer: Indexer) -> web.Application:
    handler = RequestHandler(indexer)
    app = web.Application()
    app[INDEXER_KEY] = indexer
    for prefix in ("", "/api"):
        app.add_routes([
            web.get(f"{prefix}/bounties", handler.bounties),
            web.get(f"{prefix}/tokens", handler.tokens),
            web.get(prefix + "/token/{contract}/{token_id}", handler.token),
        ])
    app.add_routes([web.options("/{tail:.*}", handler.options)])
    app.on_cleanup.append(_close_indexer)
    return app
