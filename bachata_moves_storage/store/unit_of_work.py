"""
Unit of work for multi-table writes.

A unit records planned statements and commits them in one SQLite
transaction. Nothing touches the database until :meth:`UnitOfWork.commit`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiosqlite

from ..exceptions import MovesStorageError, PersistenceError

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Planned upserts, updates, deletes and clears committed atomically.

    Usage:
        uow = store.unit_of_work("delete_lesson")
        uow.delete("figures", "lesson_id", lesson_id)
        uow.delete("lessons", "id", lesson_id)
        await uow.commit()
    """

    def __init__(self, conn: aiosqlite.Connection, lock: asyncio.Lock, operation: str):
        self._conn = conn
        self._lock = lock
        self.operation = operation
        # (sql, params, error): error is set for existence guards
        self._statements: list[tuple[str, tuple[Any, ...], MovesStorageError | None]] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._statements)

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> UnitOfWork:
        """Plan a raw statement, e.g. a conditional delete."""
        self._statements.append((sql, params, None))
        return self

    def require(
        self, sql: str, params: tuple[Any, ...], error: MovesStorageError
    ) -> UnitOfWork:
        """Abort the whole unit with *error* unless *sql* returns a row at this point."""
        self._statements.append((sql, params, error))
        return self

    def upsert(self, table: str, row: dict[str, Any], key: str = "id") -> UnitOfWork:
        """Insert *row*, or update it in place when *key* already exists.

        Updating in place keeps the rowid, which is the insertion order readers use.
        """
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        updates = ", ".join(f"{name} = excluded.{name}" for name in row if name != key)
        return self.execute(
            f"""
            INSERT INTO {table} ({columns}) VALUES ({placeholders})
            ON CONFLICT ({key}) DO UPDATE SET {updates}
            """,
            tuple(row.values()),
        )

    def update_where(
        self, table: str, values: dict[str, Any], column: str, match: Any
    ) -> UnitOfWork:
        assignments = ", ".join(f"{name} = ?" for name in values)
        return self.execute(
            f"UPDATE {table} SET {assignments} WHERE {column} = ?",
            (*values.values(), match),
        )

    def delete(self, table: str, column: str, match: Any) -> UnitOfWork:
        return self.execute(f"DELETE FROM {table} WHERE {column} = ?", (match,))

    def clear(self, table: str) -> UnitOfWork:
        return self.execute(f"DELETE FROM {table}")

    async def _run(
        self, sql: str, params: tuple[Any, ...], error: MovesStorageError | None
    ) -> None:
        if error is None:
            await self._conn.execute(sql, params)
            return
        async with self._conn.execute(sql, params) as cursor:
            if await cursor.fetchone() is None:
                raise error

    async def commit(self) -> None:
        """Run every planned statement in one transaction.

        Raises:
            MovesStorageError: The error of a failed :meth:`require` guard
            PersistenceError: If any statement fails; the transaction is rolled back.
        """
        if self._committed:
            raise PersistenceError(self.operation, RuntimeError("unit of work already committed"))
        if not self._statements:
            self._committed = True
            return

        async with self._lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                for sql, params, error in self._statements:
                    await self._run(sql, params, error)
                await self._conn.execute("COMMIT")
            except MovesStorageError as e:
                await self._conn.execute("ROLLBACK")
                logger.warning(f"Unit of work {self.operation} aborted: {e.message}")
                raise
            except Exception as e:
                await self._conn.execute("ROLLBACK")
                logger.error(f"Unit of work {self.operation} rolled back: {e}")
                raise PersistenceError(self.operation, e) from e

        self._committed = True
        logger.debug(f"Committed {len(self._statements)} statements for {self.operation}")
