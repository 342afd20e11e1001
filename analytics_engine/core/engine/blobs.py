import asyncio
import logging
import os
import re
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional

from analytics_engine.core.errors import NotFoundError, StorageError

# -----------------------------------------------------------------------------
# BLOB STORE MODULE
# Purpose: durable, append-only storage for spilled results.
# Keys are relative paths; a key is written exactly once and never replaced.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

KEY_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+(/[A-Za-z0-9_\-.]+)*$")


def is_valid_key(key: str) -> bool:
    if not key or len(key) > 512 or not KEY_PATTERN.match(key):
        return False
    return all(part not in ("", ".", "..") for part in key.split("/"))


class LocalBlobStore:
    """
    Filesystem-backed blob store rooted at one directory.

    Writes go to a temp file first and are linked into place only once fully
    flushed, so a reader never sees a partial object.

    Example:
        store = LocalBlobStore(Path("var/results"), ttl=timedelta(days=30))
        await store.put("results/simple_demo/2026/01/01/abc.json", b"{...}")
        data = await store.get("results/simple_demo/2026/01/01/abc.json")
    """

    def __init__(self, root: Path, ttl: Optional[timedelta] = None):
        self.root = Path(root)
        self.ttl = ttl

    def _path_for(self, key: str) -> Path:
        if not is_valid_key(key):
            raise NotFoundError(f"Invalid result key: {key}")
        return self.root / key

    async def put(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(self._write_once, path, data)
        except FileExistsError:
            raise StorageError(f"Result key already exists: {key}") from None
        except OSError as error:
            logger.error(f"Failed to write result blob {key}: {error}")
            raise StorageError(f"Failed to write result {key}: {error}") from error

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(self._read_fresh, path)
        except FileNotFoundError:
            raise NotFoundError(f"Result not found: {key}") from None
        except OSError as error:
            logger.error(f"Failed to read result blob {key}: {error}")
            raise StorageError(f"Failed to read result {key}: {error}") from error

    def _write_once(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.{time.time_ns()}.tmp")
        try:
            with open(tmp_path, "xb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            # link() refuses to replace an existing key
            os.link(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)

    def _read_fresh(self, path: Path) -> bytes:
        if self.ttl is not None:
            age = time.time() - path.stat().st_mtime
            if age > self.ttl.total_seconds():
                raise FileNotFoundError(str(path))
        return path.read_bytes()
