"""
Tests for schema migrations.

Builds databases in the shape older releases left behind and checks that
opening them brings data forward.
"""

import json

import aiosqlite
import pytest

from bachata_moves_storage.config import StoreConfig
from bachata_moves_storage.models import DEFAULT_CONTENT_TYPE, GroupingCollection
from bachata_moves_storage.store import SCHEMA_VERSION, LocalStore, migrate
from bachata_moves_storage.store.schema import get_schema_version, table_columns, table_exists


async def build_legacy_database(path):
    async with aiosqlite.connect(str(path)) as conn:
        await conn.execute("""
            CREATE TABLE lessons (
                id TEXT PRIMARY KEY,
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
        await conn.execute("CREATE TABLE videos (key TEXT PRIMARY KEY, data BLOB NOT NULL)")
        await conn.execute("CREATE TABLE settings (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        await conn.execute("CREATE TABLE deleted_drive_ids (drive_id TEXT PRIMARY KEY)")

        await conn.execute(
            "INSERT INTO lessons (id, video_id, upload_date, category_id) VALUES (?, ?, ?, ?)",
            ("l1", "v1", "2023-01-01T00:00:00.000Z", "c1"),
        )
        await conn.execute("INSERT INTO videos (key, data) VALUES (?, ?)", ("l1", b"legacy-video"))
        # orphaned blob without a lesson is dropped
        await conn.execute("INSERT INTO videos (key, data) VALUES (?, ?)", ("gone", b"x"))
        await conn.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?)",
            (
                "app-settings",
                json.dumps(
                    {
                        "language": "polish",
                        "lessonCategoryOrder": ["c1"],
                        "lessonFilter_excludedYears": ["2022"],
                    }
                ),
            ),
        )
        await conn.execute("INSERT INTO deleted_drive_ids (drive_id) VALUES ('old-remote')")
        await conn.commit()


@pytest.fixture
async def legacy_store(tmp_path, thumbnails):
    db_path = tmp_path / "library.db"
    await build_legacy_database(db_path)
    store = await LocalStore.open(
        StoreConfig(db_path=db_path, cache_dir=tmp_path / "handles"), thumbnails
    )
    yield store
    await store.close()


class TestFreshDatabase:
    @pytest.mark.asyncio
    async def test_fresh_database_reaches_latest(self):
        async with aiosqlite.connect(":memory:", isolation_level=None) as conn:
            assert await migrate(conn) == SCHEMA_VERSION
            assert await get_schema_version(conn) == SCHEMA_VERSION
            for table in ("lessons", "figures", "schools", "instructors", "sync_tombstones"):
                assert await table_exists(conn, table)

    @pytest.mark.asyncio
    async def test_migrate_is_idempotent(self):
        async with aiosqlite.connect(":memory:", isolation_level=None) as conn:
            await migrate(conn)
            assert await migrate(conn) == SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_newer_database_left_alone(self):
        async with aiosqlite.connect(":memory:", isolation_level=None) as conn:
            await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
            assert await migrate(conn) == SCHEMA_VERSION + 1
            assert not await table_exists(conn, "lessons")


class TestLegacyUpgrade:
    @pytest.mark.asyncio
    async def test_lesson_gains_new_columns(self, legacy_store):
        columns = await table_columns(legacy_store.conn, "lessons")
        assert {"school_id", "instructor_id"} <= columns

        lesson = await legacy_store.get_lesson("l1")
        assert lesson.category_id == "c1"
        assert lesson.school_id is None

    @pytest.mark.asyncio
    async def test_videos_rekeyed_by_video_id(self, legacy_store):
        video = await legacy_store.get_video_blob("v1")
        assert video.data == b"legacy-video"
        assert video.content_type == DEFAULT_CONTENT_TYPE
        assert await legacy_store.get_video_blob("gone") is None
        assert not await table_exists(legacy_store.conn, "videos")

    @pytest.mark.asyncio
    async def test_settings_split(self, legacy_store):
        device, sync = await legacy_store.get_raw_settings()

        assert device == {"language": "polish", "lessonFilterExcludedYears": ["2022"]}
        assert sync == {"lessonCategoryOrder": ["c1"]}

    @pytest.mark.asyncio
    async def test_deleted_ids_become_tombstones(self, legacy_store):
        assert await legacy_store.has_tombstone("old-remote")
        assert not await table_exists(legacy_store.conn, "deleted_drive_ids")

    @pytest.mark.asyncio
    async def test_new_collections_usable(self, legacy_store):
        school = await legacy_store.add_grouping(GroupingCollection.SCHOOLS, "Academy")
        assert await legacy_store.get_groupings(GroupingCollection.SCHOOLS) == [school]
        assert await get_schema_version(legacy_store.conn) == SCHEMA_VERSION
