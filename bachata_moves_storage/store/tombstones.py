"""
Tombstone log.

Remote ids of locally deleted entities are kept in ``sync_tombstones`` so
a later sync pass does not download them again. The log is an append-only
set; re-adding an id keeps its first deletion time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

import aiosqlite

from ..exceptions import PersistenceError
from ..id_utils import utc_now_iso
from ..models import Tombstone

logger = logging.getLogger(__name__)


class TombstoneLog:
    """Set of deleted remote ids backed by the ``sync_tombstones`` table."""

    def __init__(self, conn: aiosqlite.Connection, lock: asyncio.Lock):
        self._conn = conn
        self._lock = lock

    async def add(self, drive_ids: Iterable[str | None], deleted_at: str | None = None) -> int:
        """Record deletions in their own committed write.

        Empty and None ids are skipped.

        Returns:
            Number of distinct ids submitted
        """
        ids = sorted({drive_id for drive_id in drive_ids if drive_id})
        if not ids:
            return 0

        stamp = deleted_at or utc_now_iso()
        async with self._lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                await self._conn.executemany(
                    "INSERT OR IGNORE INTO sync_tombstones (drive_id, deleted_at) VALUES (?, ?)",
                    [(drive_id, stamp) for drive_id in ids],
                )
                await self._conn.execute("COMMIT")
            except Exception as e:
                await self._conn.execute("ROLLBACK")
                raise PersistenceError("add_tombstones", e) from e

        logger.debug(f"Tombstoned {len(ids)} remote ids")
        return len(ids)

    async def get_all(self) -> list[Tombstone]:
        async with self._lock:
            async with self._conn.execute(
                "SELECT drive_id, deleted_at FROM sync_tombstones ORDER BY deleted_at, drive_id"
            ) as cursor:
                rows = await cursor.fetchall()
        return [Tombstone(drive_id=row[0], deleted_at=row[1]) for row in rows]

    async def contains(self, drive_id: str) -> bool:
        async with self._lock:
            async with self._conn.execute(
                "SELECT 1 FROM sync_tombstones WHERE drive_id = ?", (drive_id,)
            ) as cursor:
                return await cursor.fetchone() is not None

    async def remove(self, drive_ids: Iterable[str]) -> int:
        """Forget tombstones, typically once the remote deletion has been confirmed."""
        ids = [drive_id for drive_id in drive_ids if drive_id]
        if not ids:
            return 0

        async with self._lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                await self._conn.executemany(
                    "DELETE FROM sync_tombstones WHERE drive_id = ?",
                    [(drive_id,) for drive_id in ids],
                )
                await self._conn.execute("COMMIT")
            except Exception as e:
                await self._conn.execute("ROLLBACK")
                raise PersistenceError("remove_tombstones", e) from e

        logger.debug(f"Removed {len(ids)} tombstones")
        return len(ids)
