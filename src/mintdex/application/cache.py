from __future__ import annotations
import asyncio, logging, time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from ..domain.errors import NotFound
from ..domain.models import CacheEntry
from ..domain.value_types import CacheStatus, ColdPolicy
from ..ports.blobs import BlobStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetch = Callable[[], Awaitable[T]]


@dataclass(slots=True, frozen=True)
class CacheResult(Generic[T]):
    payload: T
    status: CacheStatus
    age_s: float


class MemoryTier(Generic[T]):
    """
    Process-local tier. Lifecycle: created empty with its cache, filled by put(),
    cleared by invalidate(). Not shared across processes; the blob tier is the
    cross-instance source of truth.
    """
    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> CacheEntry[T] | None:
        return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry[T]) -> None:
        self._entries[key] = entry

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class TieredCache(Generic[T]):
    """
    memory -> blob -> fetch, with stale-while-revalidate.

    * fresh memory copy             -> MEMORY_HIT
    * fresh blob copy               -> BLOB_HIT (memory is filled from it)
    * stale copy, any age           -> STALE_REFRESH, refresh runs in the background
                                       (max_stale_s, when set, caps the age served this way)
    * no copy, seed has a payload   -> STALE_REFRESH with the seed, refresh in background
    * no copy, cold_policy=warm_up  -> WARMING_UP with an empty payload, refresh in background
    * otherwise                     -> synchronous fetch (MISS); on failure fall back to
                                       memory (ERROR_MEMORY), then blob (ERROR_BLOB), then raise

    Every successful fetch replaces both tiers with a freshly stamped entry.
    """
    def __init__(
        self,
        name: str,
        blobs: BlobStore,
        *,
        fresh_s: float,
        encode: Callable[[T], Any],
        decode: Callable[[Any], T],
        memory: MemoryTier[T] | None = None,
        cold_policy: ColdPolicy = "sync",
        empty: Callable[[], T] | None = None,
        seed: Callable[[str], Awaitable[T | None]] | None = None,
        max_stale_s: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if cold_policy == "warm_up" and empty is None:
            raise ValueError("warm_up caches need an `empty` payload factory")
        self.name = name
        self.blobs = blobs
        self.fresh_s = fresh_s
        self.encode = encode
        self.decode = decode
        self.memory: MemoryTier[T] = memory if memory is not None else MemoryTier()
        self.cold_policy = cold_policy
        self.empty = empty
        self.seed = seed
        self.max_stale_s = max_stale_s
        self.clock = clock
        self._inflight: dict[str, asyncio.Task[None]] = {}

    def blob_key(self, key: str) -> str:
        return f"{self.name}/v1/{key}"

    async def read(self, key: str, fetch: Fetch[T]) -> CacheResult[T]:
        now = self.clock()
        mem = self.memory.get(key)
        if mem is not None and mem.age(now) < self.fresh_s:
            return CacheResult(mem.payload, "MEMORY_HIT", mem.age(now))

        blob = await self._load_blob(key)
        if blob is not None and blob.age(now) < self.fresh_s:
            self.memory.put(key, blob)
            return CacheResult(blob.payload, "BLOB_HIT", blob.age(now))

        known = [e for e in (mem, blob) if e is not None]
        newest = max(known, key=lambda e: e.timestamp) if known else None
        if newest is not None and (self.max_stale_s is None or newest.age(now) <= self.max_stale_s):
            if newest is blob:
                self.memory.put(key, blob)
            self.schedule_refresh(key, fetch)
            return CacheResult(newest.payload, "STALE_REFRESH", newest.age(now))

        if newest is None and self.seed is not None:
            seeded = await self._load_seed(key)
            if seeded is not None:
                # expired on arrival so the next read still refreshes
                self.memory.put(key, CacheEntry(seeded, now - self.fresh_s))
                self.schedule_refresh(key, fetch)
                return CacheResult(seeded, "STALE_REFRESH", self.fresh_s)

        if newest is None and self.cold_policy == "warm_up" and self.empty is not None:
            self.schedule_refresh(key, fetch)
            return CacheResult(self.empty(), "WARMING_UP", 0.0)

        try:
            entry = await self._fetch_and_store(key, fetch)
        except NotFound:
            raise
        except Exception as e:
            if mem is not None:
                logger.error("[%s] fetch for %s failed, serving memory copy: %s", self.name, key, e)
                return CacheResult(mem.payload, "ERROR_MEMORY", mem.age(self.clock()))
            if blob is not None:
                logger.error("[%s] fetch for %s failed, serving blob copy: %s", self.name, key, e)
                return CacheResult(blob.payload, "ERROR_BLOB", blob.age(self.clock()))
            raise
        return CacheResult(entry.payload, "MISS", 0.0)

    def schedule_refresh(self, key: str, fetch: Fetch[T]) -> bool:
        """Fire-and-forget refresh; at most one in flight per key. Returns False if one already runs."""
        running = self._inflight.get(key)
        if running is not None and not running.done():
            return False
        task = asyncio.create_task(self._background_refresh(key, fetch))
        self._inflight[key] = task

        def _done(t: asyncio.Task[None], k: str = key) -> None:
            if self._inflight.get(k) is t:
                del self._inflight[k]
        task.add_done_callback(_done)
        return True

    async def refresh(self, key: str, fetch: Fetch[T]) -> CacheEntry[T]:
        return await self._fetch_and_store(key, fetch)

    def invalidate(self, key: str | None = None) -> None:
        self.memory.invalidate(key)

    async def drain(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    async def _background_refresh(self, key: str, fetch: Fetch[T]) -> None:
        t0 = time.monotonic()
        try:
            await self._fetch_and_store(key, fetch)
        except Exception as e:
            # the stale copy stays authoritative; the next stale read schedules another try
            logger.warning("[%s] background refresh of %s failed: %s", self.name, key, e)
            return
        logger.info("[%s] background refresh of %s done in %.1fs", self.name, key, time.monotonic() - t0)

    async def _fetch_and_store(self, key: str, fetch: Fetch[T]) -> CacheEntry[T]:
        payload = await fetch()
        entry = CacheEntry(payload, self.clock())
        self.memory.put(key, entry)
        try:
            await self.blobs.put(self.blob_key(key), {"payload": self.encode(payload), "timestamp": entry.timestamp})
        except Exception as e:
            logger.warning("[%s] blob write for %s failed: %s", self.name, key, e)
        return entry

    async def _load_seed(self, key: str) -> T | None:
        try:
            return await self.seed(key)
        except Exception as e:
            logger.warning("[%s] seed for %s failed: %s", self.name, key, e)
            return None

    async def _load_blob(self, key: str) -> CacheEntry[T] | None:
        try:
            value, found = await self.blobs.get(self.blob_key(key))
        except Exception as e:
            logger.warning("[%s] blob read for %s failed: %s", self.name, key, e)
            return None
        if not found:
            return None
        try:
            return CacheEntry(self.decode(value["payload"]), float(value["timestamp"]))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("[%s] discarding unreadable blob for %s: %s", self.name, key, e)
            return None
