from __future__ import annotations
import asyncio, json, logging, os, re
from typing import Any

from ..ports.blobs import BlobStore

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9._\-/]+$")


class FileBlobStore(BlobStore):
    """
    One JSON file per key under <root>/<namespace>/. Writes go to a temp file and are
    swapped in with os.replace, so readers never see a torn blob.
    """
    def __init__(self, root_dir: str, namespace: str) -> None:
        self.dir = os.path.join(root_dir, namespace)
        os.makedirs(self.dir, exist_ok=True)

    def _path(self, key: str) -> str:
        if not _KEY_RE.match(key) or ".." in key:
            raise ValueError(f"invalid blob key: {key!r}")
        return os.path.join(self.dir, key.replace("/", "__") + ".json")

    async def get(self, key: str) -> tuple[Any, bool]:
        return await asyncio.to_thread(self._read, self._path(key))

    async def put(self, key: str, value: Any) -> None:
        line = json.dumps(value, separators=(",", ":"))
        await asyncio.to_thread(self._write, self._path(key), line)

    @staticmethod
    def _read(path: str) -> tuple[Any, bool]:
        try:
            with open(path, "r") as f:
                return json.load(f), True
        except FileNotFoundError:
            return None, False
        except ValueError as e:
            # corrupt blob is treated as missing; the next successful write replaces it
            logger.warning("unreadable blob %s: %s", path, e)
            return None, False

    @staticmethod
    def _write(path: str, text: str) -> None:
        tmp = f"{path}.{os.getpid()}.tmp"
        with open(tmp, "w") as f:
            f.write(text); f.flush(); os.fsync(f.fileno())
        os.replace(tmp, path)
