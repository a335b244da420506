"""
SQLite schema and ordered migrations for the library store.

The schema version lives in ``PRAGMA user_version``. Each step runs when the
stored version is below its number and is check-before-create: tables,
columns and indexes are only created when missing, and legacy data is only
moved when its source table still exists. An interrupted upgrade can
therefore be re-run safely.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiosqlite

from ..exceptions import PersistenceError
from ..models import DEFAULT_CONTENT_TYPE
from ..settings.types import split_wire_settings

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 6

DEVICE_SETTINGS_KEY = "device-settings"
SYNC_SETTINGS_KEY = "sync-settings"
LEGACY_SETTINGS_KEY = "app-settings"

GROUPING_TABLES = ("lesson_categories", "figure_categories", "schools", "instructors")
BLOB_TABLES = ("video_files", "lesson_thumbnails", "figure_thumbnails")


# =============================================================================
# Introspection helpers
# =============================================================================


async def get_schema_version(conn: aiosqlite.Connection) -> int:
    async with conn.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
        return int(row[0]) if row else 0


async def table_exists(conn: aiosqlite.Connection, table: str) -> bool:
    async with conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    ) as cursor:
        return await cursor.fetchone() is not None


async def table_columns(conn: aiosqlite.Connection, table: str) -> set[str]:
    async with conn.execute(f"PRAGMA table_info({table})") as cursor:
        rows = await cursor.fetchall()
        return {row[1] for row in rows}


async def _add_column(conn: aiosqlite.Connection, table: str, column: str, ddl: str) -> None:
    if column not in await table_columns(conn, table):
        await conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
        logger.debug(f"Added column {table}.{column}")


async def _create_grouping_table(conn: aiosqlite.Connection, table: str) -> None:
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT NOT NULL PRIMARY KEY,
            name TEXT NOT NULL,
            drive_id TEXT,
            modified_time TEXT
        )
    """)


async def _create_blob_table(conn: aiosqlite.Connection, table: str) -> None:
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {table} (
            key TEXT NOT NULL PRIMARY KEY,
            data BLOB NOT NULL,
            content_type TEXT NOT NULL DEFAULT '{DEFAULT_CONTENT_TYPE}'
        )
    """)


# =============================================================================
# Migration steps
# =============================================================================


async def _create_base_tables(conn: aiosqlite.Connection) -> None:
    """Version 1: lessons, figures, figure categories, settings and blobs."""
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS lessons (
            id TEXT NOT NULL PRIMARY KEY,
            video_id TEXT NOT NULL,
            upload_date TEXT NOT NULL,
            description TEXT,
            start_time NUMERIC NOT NULL DEFAULT 0,
            end_time NUMERIC,
            thumb_time NUMERIC NOT NULL DEFAULT 0,
            category_id TEXT,
            drive_id TEXT,
            video_drive_id TEXT,
            modified_time TEXT
        )
    """)
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS figures (
            id TEXT NOT NULL PRIMARY KEY,
            lesson_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            start_time NUMERIC NOT NULL DEFAULT 0,
            end_time NUMERIC,
            thumb_time NUMERIC NOT NULL DEFAULT 0,
            category_id TEXT,
            drive_id TEXT,
            modified_time TEXT
        )
    """)
    await _create_grouping_table(conn, "figure_categories")
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT NOT NULL PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)
    for table in BLOB_TABLES:
        await _create_blob_table(conn, table)
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_figures_lesson ON figures(lesson_id)")


async def _merge_legacy_videos(conn: aiosqlite.Connection) -> None:
    """Version 2: move blobs keyed by lesson id into ``video_files`` keyed by video id."""
    if not await table_exists(conn, "videos"):
        return

    columns = await table_columns(conn, "videos")
    content_type = "v.content_type" if "content_type" in columns else f"'{DEFAULT_CONTENT_TYPE}'"
    cursor = await conn.execute(f"""
        INSERT OR IGNORE INTO video_files (key, data, content_type)
        SELECT l.video_id, v.data, COALESCE({content_type}, '{DEFAULT_CONTENT_TYPE}')
        FROM videos v JOIN lessons l ON l.id = v.key
    """)
    moved = cursor.rowcount
    await cursor.close()

    await conn.execute("DROP TABLE videos")
    logger.info(f"Merged {moved} legacy video blobs into video_files")


async def _create_lesson_categories(conn: aiosqlite.Connection) -> None:
    """Version 3: lesson categories and category indexes."""
    await _create_grouping_table(conn, "lesson_categories")
    await conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_lessons_category ON lessons(category_id)"
    )
    await conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_figures_category ON figures(category_id)"
    )
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_lessons_video ON lessons(video_id)")


async def _split_legacy_settings(conn: aiosqlite.Connection) -> None:
    """Version 4: split the single ``app-settings`` row into device and sync rows."""
    async with conn.execute(
        "SELECT value FROM settings WHERE key = ?", (LEGACY_SETTINGS_KEY,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return

    try:
        legacy: Any = json.loads(row[0])
    except json.JSONDecodeError:
        logger.warning("Legacy settings row is not valid JSON, dropping it")
        legacy = {}
    if not isinstance(legacy, dict):
        legacy = {}

    device, sync = split_wire_settings(legacy)
    for key, value in ((DEVICE_SETTINGS_KEY, device), (SYNC_SETTINGS_KEY, sync)):
        await conn.execute(
            "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )
    await conn.execute("DELETE FROM settings WHERE key = ?", (LEGACY_SETTINGS_KEY,))
    logger.info(
        f"Split legacy settings into {len(device)} device and {len(sync)} sync keys"
    )


async def _create_schools_and_instructors(conn: aiosqlite.Connection) -> None:
    """Version 5: schools, instructors, their foreign keys and drive id indexes."""
    await _create_grouping_table(conn, "schools")
    await _create_grouping_table(conn, "instructors")
    for table in ("lessons", "figures"):
        await _add_column(conn, table, "school_id", "TEXT")
        await _add_column(conn, table, "instructor_id", "TEXT")
        await conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_school ON {table}(school_id)"
        )
        await conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_instructor ON {table}(instructor_id)"
        )
        await conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_drive ON {table}(drive_id)"
        )


async def _create_tombstones(conn: aiosqlite.Connection) -> None:
    """Version 6: ``sync_tombstones`` replaces the legacy ``deleted_drive_ids`` table."""
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS sync_tombstones (
            drive_id TEXT NOT NULL PRIMARY KEY,
            deleted_at TEXT NOT NULL
        )
    """)
    if not await table_exists(conn, "deleted_drive_ids"):
        return

    columns = await table_columns(conn, "deleted_drive_ids")
    id_column = "drive_id" if "drive_id" in columns else "id"
    deleted_at = "deleted_at" if "deleted_at" in columns else "NULL"
    cursor = await conn.execute(f"""
        INSERT OR IGNORE INTO sync_tombstones (drive_id, deleted_at)
        SELECT {id_column}, COALESCE({deleted_at}, '1970-01-01T00:00:00.000Z')
        FROM deleted_drive_ids
        WHERE {id_column} IS NOT NULL
    """)
    moved = cursor.rowcount
    await cursor.close()

    await conn.execute("DROP TABLE deleted_drive_ids")
    logger.info(f"Migrated {moved} legacy deleted drive ids into sync_tombstones")


MIGRATIONS: list[tuple[int, Callable[[aiosqlite.Connection], Awaitable[None]]]] = [
    (1, _create_base_tables),
    (2, _merge_legacy_videos),
    (3, _create_lesson_categories),
    (4, _split_legacy_settings),
    (5, _create_schools_and_instructors),
    (6, _create_tombstones),
]


async def migrate(conn: aiosqlite.Connection) -> int:
    """Bring the database up to :data:`SCHEMA_VERSION`.

    Each step commits together with its version bump, so a failure leaves
    the database at the last completed step.

    Returns:
        The schema version after migration
    """
    current = await get_schema_version(conn)
    if current > SCHEMA_VERSION:
        logger.warning(
            f"Database schema version {current} is newer than supported {SCHEMA_VERSION}"
        )
        return current

    for version, step in MIGRATIONS:
        if current >= version:
            continue
        logger.info(f"Migrating schema from version {current} to {version}")
        await conn.execute("BEGIN IMMEDIATE")
        try:
            await step(conn)
            await conn.execute(f"PRAGMA user_version = {version}")
            await conn.execute("COMMIT")
        except Exception as e:
            await conn.execute("ROLLBACK")
            raise PersistenceError(f"migrate_to_v{version}", e) from e
        current = version

    return current
