"""
LRU cache of displayable blob handles.

A handle is a file path holding a copy of a stored blob, so media players
and image views can open it directly. Handles are keyed by blob kind and
key, written once with aiofiles, and unlinked when revoked or evicted.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import mimetypes
import re
import tempfile
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..models import Blob

logger = logging.getLogger(__name__)

VIDEO = "video"
LESSON_THUMBNAIL = "lesson_thumbnail"
FIGURE_THUMBNAIL = "figure_thumbnail"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")

BlobLoader = Callable[[], Awaitable[Blob | None]]


def _file_name(kind: str, key: str, extension: str) -> str:
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:8]
    return f"{kind}-{_UNSAFE.sub('_', key)}-{digest}{extension}"


class BlobCache:
    """
    LRU cache of blob handles with size control.

    Features:
    - Least Recently Used eviction, evicted files are unlinked
    - One handle per (kind, key) until revoked
    - Single-flight creation per handle
    """

    def __init__(self, cache_dir: Path | None = None, max_entries: int = 256):
        """
        Initialize blob cache.

        Args:
            cache_dir: Directory for handle files (a temp directory when None)
            max_entries: Maximum number of live handles
        """
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")

        self.cache_dir = cache_dir
        self.max_entries = max_entries
        self._cache: OrderedDict[tuple[str, str], Path] = OrderedDict()
        self._lock = asyncio.Lock()

    async def _directory(self) -> Path:
        if self.cache_dir is None:
            self.cache_dir = Path(tempfile.mkdtemp(prefix="bachata-moves-"))
        else:
            await aiofiles.os.makedirs(self.cache_dir, exist_ok=True)
        return self.cache_dir

    async def get_or_create(self, kind: str, key: str, loader: BlobLoader) -> str | None:
        """
        Return the handle for (kind, key), creating it from *loader* if needed.

        Args:
            kind: Blob kind (video, lesson_thumbnail, figure_thumbnail)
            key: Blob key within the kind
            loader: Reads the blob from the store

        Returns:
            Handle path, or None if the blob does not exist
        """
        cache_key = (kind, key)
        async with self._lock:
            if cache_key in self._cache:
                self._cache.move_to_end(cache_key)
                return str(self._cache[cache_key])

            blob = await loader()
            if blob is None:
                return None

            directory = await self._directory()
            extension = mimetypes.guess_extension(blob.content_type) or ".bin"
            path = directory / _file_name(kind, key, extension)
            async with aiofiles.open(path, "wb") as f:
                await f.write(blob.data)

            self._cache[cache_key] = path
            logger.debug(f"Created {kind} handle for {key} ({blob.size} bytes)")

            if len(self._cache) > self.max_entries:
                _, evicted = self._cache.popitem(last=False)
                await self._unlink(evicted)

            return str(path)

    def peek(self, kind: str, key: str) -> str | None:
        """Return an existing handle without creating one."""
        path = self._cache.get((kind, key))
        return str(path) if path else None

    async def revoke(self, kind: str, key: str) -> bool:
        """Free one handle. Returns True if a handle existed."""
        async with self._lock:
            path = self._cache.pop((kind, key), None)
        if path is None:
            return False
        await self._unlink(path)
        return True

    async def clear(self) -> None:
        """Free every handle."""
        async with self._lock:
            paths = list(self._cache.values())
            self._cache.clear()
        for path in paths:
            await self._unlink(path)
        if paths:
            logger.info(f"Revoked {len(paths)} blob handles")

    async def _unlink(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass

    def size(self) -> int:
        return len(self._cache)

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._cache),
            "max_entries": self.max_entries,
            "utilization": len(self._cache) / self.max_entries,
        }
