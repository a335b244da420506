"""
Local library store backed by SQLite.

Holds lessons, figures, grouping entities, media blobs, settings rows and
the tombstone log in one aiosqlite connection. Multi-table writes go
through :class:`UnitOfWork`; every mutation schedules a coalesced change
broadcast.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import asdict
from pathlib import Path
from typing import Any

import aiosqlite

from ..config import StoreConfig
from ..exceptions import MissingBlobError, NotFoundError, PersistenceError
from ..id_utils import generate_id, utc_now_iso
from ..models import (
    Blob,
    Figure,
    FigurePatch,
    GroupingCollection,
    GroupingEntity,
    GroupingPatch,
    Lesson,
    LessonPatch,
    NewFigure,
    NewLesson,
    StoreSnapshot,
    Tombstone,
)
from ..thumbnails import ThumbnailGenerator
from .blob_cache import FIGURE_THUMBNAIL, LESSON_THUMBNAIL, VIDEO, BlobCache
from .notifier import ChangeNotifier, Listener, Sleep
from .schema import (
    BLOB_TABLES,
    DEVICE_SETTINGS_KEY,
    GROUPING_TABLES,
    SYNC_SETTINGS_KEY,
    migrate,
)
from .tombstones import TombstoneLog
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

LESSON_COLUMNS = (
    "id",
    "video_id",
    "upload_date",
    "start_time",
    "end_time",
    "thumb_time",
    "description",
    "category_id",
    "school_id",
    "instructor_id",
    "drive_id",
    "video_drive_id",
    "modified_time",
)
FIGURE_COLUMNS = (
    "id",
    "lesson_id",
    "name",
    "start_time",
    "end_time",
    "thumb_time",
    "description",
    "category_id",
    "school_id",
    "instructor_id",
    "drive_id",
    "modified_time",
)
GROUPING_COLUMNS = ("id", "name", "drive_id", "modified_time")

# Columns on lessons/figures that reference each grouping collection
GROUPING_REFERENCES: dict[GroupingCollection, tuple[tuple[str, str], ...]] = {
    GroupingCollection.LESSON_CATEGORIES: (("lessons", "category_id"),),
    GroupingCollection.FIGURE_CATEGORIES: (("figures", "category_id"),),
    GroupingCollection.SCHOOLS: (("lessons", "school_id"), ("figures", "school_id")),
    GroupingCollection.INSTRUCTORS: (("lessons", "instructor_id"), ("figures", "instructor_id")),
}


def _blob_row(key: str, blob: Blob) -> dict[str, Any]:
    return {"key": key, "data": blob.data, "content_type": blob.content_type}


def _select(table: str, columns: tuple[str, ...]) -> str:
    return f"SELECT {', '.join(columns)} FROM {table}"


class LocalStore:
    """
    SQLite-backed store for the media library.

    Usage:
        store = await LocalStore.open(StoreConfig(db_path="library.db"), thumbnails)
        lesson = await store.add_lesson(NewLesson(upload_date="2024-05-01"), video)
        figure = await store.add_figure(lesson.id, NewFigure(name="Cross body lead"))
        await store.close()
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        thumbnails: ThumbnailGenerator,
        blob_cache: BlobCache | None = None,
        notifier: ChangeNotifier | None = None,
    ):
        self.conn: aiosqlite.Connection | None = conn
        self.thumbnails = thumbnails
        self.blob_cache = blob_cache or BlobCache()
        self.notifier = notifier or ChangeNotifier()
        self._lock = asyncio.Lock()
        self.tombstones = TombstoneLog(conn, self._lock)

    @classmethod
    async def open(
        cls,
        config: StoreConfig,
        thumbnails: ThumbnailGenerator,
        sleep: Sleep = asyncio.sleep,
    ) -> LocalStore:
        """Connect, migrate the schema and return a ready store."""
        db_path = config.db_path
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = await aiosqlite.connect(str(db_path), isolation_level=None)
        except Exception as e:
            raise PersistenceError("connect", e) from e

        try:
            version = await migrate(conn)
        except Exception:
            await conn.close()
            raise

        logger.info(f"Library store opened: {db_path} (schema v{version})")
        return cls(
            conn,
            thumbnails,
            blob_cache=BlobCache(config.cache_dir),
            notifier=ChangeNotifier(config.notify_delay, sleep),
        )

    async def close(self) -> None:
        if self.conn is None:
            return
        await self.notifier.close()
        await self.blob_cache.clear()
        await self.conn.close()
        self.conn = None
        logger.info("Library store closed")

    def _connection(self, operation: str) -> aiosqlite.Connection:
        if self.conn is None:
            raise PersistenceError(operation, RuntimeError("Store is closed"))
        return self.conn

    def unit_of_work(self, operation: str) -> UnitOfWork:
        return UnitOfWork(self._connection(operation), self._lock, operation)

    async def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[Any]:
        conn = self._connection("read")
        async with self._lock:
            async with conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())

    async def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> Any:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    # =========================================================================
    # Change notification
    # =========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.notifier.subscribe(listener)

    def notify_listeners(self) -> None:
        self.notifier.notify()

    # =========================================================================
    # Lessons
    # =========================================================================

    async def get_lessons(self) -> list[Lesson]:
        rows = await self._fetchall(f"{_select('lessons', LESSON_COLUMNS)} ORDER BY rowid")
        return [Lesson(*row) for row in rows]

    async def get_lesson(self, lesson_id: str) -> Lesson | None:
        row = await self._fetchone(
            f"{_select('lessons', LESSON_COLUMNS)} WHERE id = ?", (lesson_id,)
        )
        return Lesson(*row) if row else None

    async def _require_lesson(self, lesson_id: str) -> Lesson:
        lesson = await self.get_lesson(lesson_id)
        if lesson is None:
            raise NotFoundError("Lesson", lesson_id)
        return lesson

    @staticmethod
    def _require_lesson_in(uow: UnitOfWork, lesson_id: str) -> None:
        uow.require(
            "SELECT 1 FROM lessons WHERE id = ?", (lesson_id,), NotFoundError("Lesson", lesson_id)
        )

    async def _require_video(self, video_id: str, owner_id: str) -> Blob:
        video = await self.get_video_blob(video_id)
        if video is None:
            raise MissingBlobError("video", video_id, owner_id)
        return video

    async def add_lesson(self, data: NewLesson, video: Blob) -> Lesson:
        """Create a lesson with its video and a thumbnail of the first frame."""
        lesson = Lesson(
            id=generate_id(),
            video_id=generate_id(),
            upload_date=data.upload_date,
            start_time=data.start_time,
            end_time=data.end_time,
            thumb_time=0,
            description=data.description,
            category_id=data.category_id,
            school_id=data.school_id,
            instructor_id=data.instructor_id,
            modified_time=utc_now_iso(),
        )
        lesson.validate()
        thumbnail = await self.thumbnails.generate(video, lesson.thumb_time)

        uow = self.unit_of_work("add_lesson")
        uow.upsert("lessons", asdict(lesson))
        uow.upsert("video_files", _blob_row(lesson.video_id, video), key="key")
        uow.upsert("lesson_thumbnails", _blob_row(lesson.id, thumbnail), key="key")
        await uow.commit()

        logger.info(f"Added lesson {lesson.id} ({video.size} byte video)")
        self.notify_listeners()
        return lesson

    async def update_lesson(
        self, lesson_id: str, patch: LessonPatch, *, modified_time: str | None = None
    ) -> Lesson:
        current = await self._require_lesson(lesson_id)
        updated = patch.apply(current, modified_time or utc_now_iso())

        uow = self.unit_of_work("update_lesson")
        uow.upsert("lessons", asdict(updated))
        if updated.thumb_time != current.thumb_time:
            await self.blob_cache.revoke(LESSON_THUMBNAIL, lesson_id)
            video = await self._require_video(updated.video_id, lesson_id)
            thumbnail = await self.thumbnails.generate(video, updated.thumb_time)
            uow.upsert("lesson_thumbnails", _blob_row(lesson_id, thumbnail), key="key")
        await uow.commit()
        if updated.thumb_time != current.thumb_time:
            # drop handles cached from the old row while the new one was rendering
            await self.blob_cache.revoke(LESSON_THUMBNAIL, lesson_id)

        self.notify_listeners()
        return updated

    async def delete_lesson(self, lesson_id: str, *, skip_tombstone: bool = False) -> bool:
        """Delete a lesson and everything it owns.

        Remote ids (lesson, its video, its figures) are tombstoned in a
        separate committed write before the deletion itself. The video blob
        is kept while another lesson still references it; that check runs in
        the same transaction as the deletion.

        Returns:
            False if the lesson did not exist
        """
        lesson = await self.get_lesson(lesson_id)
        if lesson is None:
            return False
        figures = await self.get_figures_for_lesson(lesson_id)

        if not skip_tombstone:
            await self.tombstones.add(
                [lesson.drive_id, lesson.video_drive_id, *(f.drive_id for f in figures)]
            )

        await self.blob_cache.revoke(LESSON_THUMBNAIL, lesson_id)
        for figure in figures:
            await self.blob_cache.revoke(FIGURE_THUMBNAIL, figure.id)

        uow = self.unit_of_work("delete_lesson")
        uow.execute(
            "DELETE FROM figure_thumbnails "
            "WHERE key IN (SELECT id FROM figures WHERE lesson_id = ?)",
            (lesson_id,),
        )
        uow.delete("figures", "lesson_id", lesson_id)
        uow.delete("lesson_thumbnails", "key", lesson_id)
        uow.delete("lessons", "id", lesson_id)
        # runs after the lesson row is gone so the last sharer removes the video
        uow.execute(
            "DELETE FROM video_files WHERE key = ? "
            "AND NOT EXISTS (SELECT 1 FROM lessons WHERE video_id = ?)",
            (lesson.video_id, lesson.video_id),
        )
        await uow.commit()

        remaining = await self._fetchone(
            "SELECT 1 FROM video_files WHERE key = ?", (lesson.video_id,)
        )
        if remaining is None:
            await self.blob_cache.revoke(VIDEO, lesson.video_id)

        logger.info(f"Deleted lesson {lesson_id} with {len(figures)} figures")
        self.notify_listeners()
        return True

    async def save_downloaded_lesson(self, lesson: Lesson, video: Blob | None = None) -> Lesson:
        """Store a lesson received from the remote side as given.

        The thumbnail is rendered from *video*, or from the stored video when
        no new one is supplied.
        """
        lesson.validate()
        source = video or await self._require_video(lesson.video_id, lesson.id)
        thumbnail = await self.thumbnails.generate(source, lesson.thumb_time)

        await self.blob_cache.revoke(LESSON_THUMBNAIL, lesson.id)
        uow = self.unit_of_work("save_downloaded_lesson")
        uow.upsert("lessons", asdict(lesson))
        if video is not None:
            await self.blob_cache.revoke(VIDEO, lesson.video_id)
            uow.upsert("video_files", _blob_row(lesson.video_id, video), key="key")
        uow.upsert("lesson_thumbnails", _blob_row(lesson.id, thumbnail), key="key")
        await uow.commit()
        await self.blob_cache.revoke(LESSON_THUMBNAIL, lesson.id)
        if video is not None:
            await self.blob_cache.revoke(VIDEO, lesson.video_id)

        self.notify_listeners()
        return lesson

    # =========================================================================
    # Figures
    # =========================================================================

    async def get_figures(self) -> list[Figure]:
        rows = await self._fetchall(f"{_select('figures', FIGURE_COLUMNS)} ORDER BY rowid")
        return [Figure(*row) for row in rows]

    async def get_figure(self, figure_id: str) -> Figure | None:
        row = await self._fetchone(
            f"{_select('figures', FIGURE_COLUMNS)} WHERE id = ?", (figure_id,)
        )
        return Figure(*row) if row else None

    async def get_figures_for_lesson(self, lesson_id: str) -> list[Figure]:
        rows = await self._fetchall(
            f"{_select('figures', FIGURE_COLUMNS)} WHERE lesson_id = ? ORDER BY rowid",
            (lesson_id,),
        )
        return [Figure(*row) for row in rows]

    async def add_figure(self, lesson_id: str, data: NewFigure) -> Figure:
        """Cut a new figure from a lesson.

        Raises:
            NotFoundError: If the lesson does not exist
            MissingBlobError: If the lesson's video is missing
        """
        lesson = await self._require_lesson(lesson_id)
        video = await self._require_video(lesson.video_id, lesson_id)

        figure = Figure(
            id=generate_id(),
            lesson_id=lesson_id,
            name=data.name,
            start_time=data.start_time,
            end_time=data.end_time,
            thumb_time=data.thumb_time,
            description=data.description,
            category_id=data.category_id,
            school_id=data.school_id,
            instructor_id=data.instructor_id,
            modified_time=utc_now_iso(),
        )
        figure.validate()
        thumbnail = await self.thumbnails.generate(video, figure.thumb_time)

        uow = self.unit_of_work("add_figure")
        self._require_lesson_in(uow, lesson_id)
        uow.upsert("figures", asdict(figure))
        uow.upsert("figure_thumbnails", _blob_row(figure.id, thumbnail), key="key")
        await uow.commit()

        logger.info(f"Added figure {figure.id} to lesson {lesson_id}")
        self.notify_listeners()
        return figure

    async def update_figure(
        self, figure_id: str, patch: FigurePatch, *, modified_time: str | None = None
    ) -> Figure:
        current = await self.get_figure(figure_id)
        if current is None:
            raise NotFoundError("Figure", figure_id)
        updated = patch.apply(current, modified_time or utc_now_iso())

        uow = self.unit_of_work("update_figure")
        uow.upsert("figures", asdict(updated))
        if updated.thumb_time != current.thumb_time:
            await self.blob_cache.revoke(FIGURE_THUMBNAIL, figure_id)
            video = await self._video_for_figure(updated)
            thumbnail = await self.thumbnails.generate(video, updated.thumb_time)
            uow.upsert("figure_thumbnails", _blob_row(figure_id, thumbnail), key="key")
        await uow.commit()
        if updated.thumb_time != current.thumb_time:
            await self.blob_cache.revoke(FIGURE_THUMBNAIL, figure_id)

        self.notify_listeners()
        return updated

    async def _video_for_figure(self, figure: Figure) -> Blob:
        lesson = await self.get_lesson(figure.lesson_id)
        if lesson is None:
            raise MissingBlobError("video", figure.lesson_id, figure.id)
        return await self._require_video(lesson.video_id, figure.id)

    async def delete_figure(self, figure_id: str, *, skip_tombstone: bool = False) -> bool:
        figure = await self.get_figure(figure_id)
        if figure is None:
            return False

        if not skip_tombstone:
            await self.tombstones.add([figure.drive_id])

        await self.blob_cache.revoke(FIGURE_THUMBNAIL, figure_id)
        uow = self.unit_of_work("delete_figure")
        uow.delete("figure_thumbnails", "key", figure_id)
        uow.delete("figures", "id", figure_id)
        await uow.commit()

        logger.info(f"Deleted figure {figure_id}")
        self.notify_listeners()
        return True

    async def save_downloaded_figure(self, figure: Figure) -> Figure:
        """Store a figure received from the remote side as given.

        Raises:
            NotFoundError: If its lesson is not stored locally
            MissingBlobError: If the lesson's video is missing
        """
        figure.validate()
        lesson = await self._require_lesson(figure.lesson_id)
        video = await self._require_video(lesson.video_id, figure.id)
        thumbnail = await self.thumbnails.generate(video, figure.thumb_time)

        await self.blob_cache.revoke(FIGURE_THUMBNAIL, figure.id)
        uow = self.unit_of_work("save_downloaded_figure")
        self._require_lesson_in(uow, figure.lesson_id)
        uow.upsert("figures", asdict(figure))
        uow.upsert("figure_thumbnails", _blob_row(figure.id, thumbnail), key="key")
        await uow.commit()
        await self.blob_cache.revoke(FIGURE_THUMBNAIL, figure.id)

        self.notify_listeners()
        return figure

    # =========================================================================
    # Grouping entities (categories, schools, instructors)
    # =========================================================================

    async def get_groupings(self, collection: GroupingCollection) -> list[GroupingEntity]:
        rows = await self._fetchall(
            f"{_select(collection.value, GROUPING_COLUMNS)} ORDER BY rowid"
        )
        return [GroupingEntity(*row) for row in rows]

    async def get_grouping(
        self, collection: GroupingCollection, entity_id: str
    ) -> GroupingEntity | None:
        row = await self._fetchone(
            f"{_select(collection.value, GROUPING_COLUMNS)} WHERE id = ?", (entity_id,)
        )
        return GroupingEntity(*row) if row else None

    async def add_grouping(
        self,
        collection: GroupingCollection,
        name: str,
        *,
        entity_id: str | None = None,
        drive_id: str | None = None,
        modified_time: str | None = None,
    ) -> GroupingEntity:
        entity = GroupingEntity(
            id=entity_id or generate_id(),
            name=name,
            drive_id=drive_id,
            modified_time=modified_time or utc_now_iso(),
        )
        entity.validate()

        uow = self.unit_of_work(f"add_{collection.value}")
        uow.upsert(collection.value, asdict(entity))
        await uow.commit()

        logger.debug(f"Added {collection.label} {entity.id}")
        self.notify_listeners()
        return entity

    async def update_grouping(
        self,
        collection: GroupingCollection,
        entity_id: str,
        patch: GroupingPatch,
        *,
        modified_time: str | None = None,
    ) -> GroupingEntity:
        current = await self.get_grouping(collection, entity_id)
        if current is None:
            raise NotFoundError(collection.label, entity_id)
        updated = patch.apply(current, modified_time or utc_now_iso())

        uow = self.unit_of_work(f"update_{collection.value}")
        uow.upsert(collection.value, asdict(updated))
        await uow.commit()

        self.notify_listeners()
        return updated

    async def delete_grouping(
        self,
        collection: GroupingCollection,
        entity_id: str,
        *,
        skip_tombstone: bool = False,
    ) -> bool:
        """Delete a grouping entity, detaching every lesson/figure that references it.

        Referencing items are kept; their foreign key is set to None and their
        ``modified_time`` is stamped so the change syncs.
        """
        entity = await self.get_grouping(collection, entity_id)
        if entity is None:
            return False

        if not skip_tombstone:
            await self.tombstones.add([entity.drive_id])

        now = utc_now_iso()
        uow = self.unit_of_work(f"delete_{collection.value}")
        for table, column in GROUPING_REFERENCES[collection]:
            uow.update_where(table, {column: None, "modified_time": now}, column, entity_id)
        uow.delete(collection.value, "id", entity_id)
        await uow.commit()

        logger.info(f"Deleted {collection.label} {entity_id}")
        self.notify_listeners()
        return True

    # =========================================================================
    # Lookup by remote id
    # =========================================================================

    async def find_by_drive_id(
        self, drive_id: str
    ) -> tuple[str, Lesson | Figure | GroupingEntity] | None:
        """Find the local entity carrying *drive_id*.

        Returns:
            (kind, entity) where kind is "lesson", "figure" or a grouping
            collection name, or None
        """
        row = await self._fetchone(
            f"{_select('lessons', LESSON_COLUMNS)} WHERE drive_id = ? OR video_drive_id = ?",
            (drive_id, drive_id),
        )
        if row:
            return "lesson", Lesson(*row)

        row = await self._fetchone(
            f"{_select('figures', FIGURE_COLUMNS)} WHERE drive_id = ?", (drive_id,)
        )
        if row:
            return "figure", Figure(*row)

        for collection in GroupingCollection:
            row = await self._fetchone(
                f"{_select(collection.value, GROUPING_COLUMNS)} WHERE drive_id = ?", (drive_id,)
            )
            if row:
                return collection.value, GroupingEntity(*row)
        return None

    # =========================================================================
    # Blobs and handles
    # =========================================================================

    async def _get_blob(self, table: str, key: str) -> Blob | None:
        row = await self._fetchone(
            f"SELECT data, content_type FROM {table} WHERE key = ?", (key,)
        )
        return Blob(bytes(row[0]), row[1]) if row else None

    async def get_video_blob(self, video_id: str) -> Blob | None:
        return await self._get_blob("video_files", video_id)

    async def get_lesson_thumbnail_blob(self, lesson_id: str) -> Blob | None:
        return await self._get_blob("lesson_thumbnails", lesson_id)

    async def get_figure_thumbnail_blob(self, figure_id: str) -> Blob | None:
        return await self._get_blob("figure_thumbnails", figure_id)

    async def get_video_url(self, video_id: str) -> str | None:
        return await self.blob_cache.get_or_create(
            VIDEO, video_id, lambda: self.get_video_blob(video_id)
        )

    async def get_lesson_thumbnail_url(self, lesson_id: str) -> str | None:
        return await self.blob_cache.get_or_create(
            LESSON_THUMBNAIL, lesson_id, lambda: self.get_lesson_thumbnail_blob(lesson_id)
        )

    async def get_figure_thumbnail_url(self, figure_id: str) -> str | None:
        return await self.blob_cache.get_or_create(
            FIGURE_THUMBNAIL, figure_id, lambda: self.get_figure_thumbnail_blob(figure_id)
        )

    async def revoke_video_url(self, video_id: str) -> bool:
        return await self.blob_cache.revoke(VIDEO, video_id)

    async def revoke_lesson_thumbnail_url(self, lesson_id: str) -> bool:
        return await self.blob_cache.revoke(LESSON_THUMBNAIL, lesson_id)

    async def revoke_figure_thumbnail_url(self, figure_id: str) -> bool:
        return await self.blob_cache.revoke(FIGURE_THUMBNAIL, figure_id)

    # =========================================================================
    # Settings rows
    # =========================================================================

    async def get_raw_settings(self) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        """Read the persisted (device, sync) settings dicts; None where absent."""
        rows = await self._fetchall(
            "SELECT key, value FROM settings WHERE key IN (?, ?)",
            (DEVICE_SETTINGS_KEY, SYNC_SETTINGS_KEY),
        )
        values: dict[str, Any] = {}
        for key, value in rows:
            try:
                values[key] = json.loads(value)
            except json.JSONDecodeError as e:
                raise PersistenceError("read_settings", e) from e
        return values.get(DEVICE_SETTINGS_KEY), values.get(SYNC_SETTINGS_KEY)

    async def save_settings(self, device: dict[str, Any], sync: dict[str, Any]) -> None:
        uow = self.unit_of_work("save_settings")
        uow.upsert("settings", {"key": DEVICE_SETTINGS_KEY, "value": json.dumps(device)}, key="key")
        uow.upsert("settings", {"key": SYNC_SETTINGS_KEY, "value": json.dumps(sync)}, key="key")
        await uow.commit()

    # =========================================================================
    # Tombstones
    # =========================================================================

    async def add_tombstones(self, drive_ids: list[str]) -> int:
        return await self.tombstones.add(drive_ids)

    async def get_tombstones(self) -> list[Tombstone]:
        return await self.tombstones.get_all()

    async def has_tombstone(self, drive_id: str) -> bool:
        return await self.tombstones.contains(drive_id)

    async def remove_tombstones(self, drive_ids: list[str]) -> int:
        return await self.tombstones.remove(drive_ids)

    # =========================================================================
    # Bulk operations
    # =========================================================================

    async def read_snapshot(self) -> StoreSnapshot:
        """Read every entity, blob and the sync settings in one read transaction."""
        conn = self._connection("read_snapshot")
        snapshot = StoreSnapshot()

        async def fetch(sql: str) -> list[Any]:
            async with conn.execute(sql) as cursor:
                return list(await cursor.fetchall())

        async with self._lock:
            await conn.execute("BEGIN")
            try:
                snapshot.lessons = [
                    Lesson(*row)
                    for row in await fetch(f"{_select('lessons', LESSON_COLUMNS)} ORDER BY rowid")
                ]
                snapshot.figures = [
                    Figure(*row)
                    for row in await fetch(f"{_select('figures', FIGURE_COLUMNS)} ORDER BY rowid")
                ]
                for collection in GroupingCollection:
                    snapshot.groupings(collection).extend(
                        GroupingEntity(*row)
                        for row in await fetch(
                            f"{_select(collection.value, GROUPING_COLUMNS)} ORDER BY rowid"
                        )
                    )
                for table, target in (
                    ("video_files", snapshot.videos),
                    ("lesson_thumbnails", snapshot.lesson_thumbnails),
                    ("figure_thumbnails", snapshot.figure_thumbnails),
                ):
                    target.extend(
                        (row[0], Blob(bytes(row[1]), row[2]))
                        for row in await fetch(
                            f"SELECT key, data, content_type FROM {table} ORDER BY rowid"
                        )
                    )
                rows = await fetch(
                    f"SELECT value FROM settings WHERE key = '{SYNC_SETTINGS_KEY}'"
                )
                await conn.execute("COMMIT")
            except Exception as e:
                await conn.execute("ROLLBACK")
                raise PersistenceError("read_snapshot", e) from e

        if rows:
            try:
                snapshot.sync_settings = json.loads(rows[0][0])
            except json.JSONDecodeError:
                logger.warning("Stored sync settings are not valid JSON, leaving them out")
        return snapshot

    async def replace_all(self, snapshot: StoreSnapshot) -> None:
        """Replace every entity and blob with *snapshot* in one unit of work.

        Sync settings are overwritten with the snapshot's; device settings
        and tombstones are left alone.
        """
        await self.blob_cache.clear()

        uow = self.unit_of_work("replace_all")
        for table in ("lessons", "figures", *GROUPING_TABLES, *BLOB_TABLES):
            uow.clear(table)
        for lesson in snapshot.lessons:
            uow.upsert("lessons", asdict(lesson))
        for figure in snapshot.figures:
            uow.upsert("figures", asdict(figure))
        for collection in GroupingCollection:
            for entity in snapshot.groupings(collection):
                uow.upsert(collection.value, asdict(entity))
        for key, blob in snapshot.videos:
            uow.upsert("video_files", _blob_row(key, blob), key="key")
        for key, blob in snapshot.lesson_thumbnails:
            uow.upsert("lesson_thumbnails", _blob_row(key, blob), key="key")
        for key, blob in snapshot.figure_thumbnails:
            uow.upsert("figure_thumbnails", _blob_row(key, blob), key="key")
        uow.upsert(
            "settings",
            {"key": SYNC_SETTINGS_KEY, "value": json.dumps(snapshot.sync_settings)},
            key="key",
        )
        await uow.commit()

        logger.info(
            f"Replaced store contents: {len(snapshot.lessons)} lessons, "
            f"{len(snapshot.figures)} figures, {len(snapshot.videos)} videos"
        )
        self.notify_listeners()

    async def clear_all_data(self) -> None:
        """Delete every row of every table, settings and tombstones included."""
        await self.blob_cache.clear()

        uow = self.unit_of_work("clear_all_data")
        for table in (
            "lessons",
            "figures",
            *GROUPING_TABLES,
            *BLOB_TABLES,
            "settings",
            "sync_tombstones",
        ):
            uow.clear(table)
        await uow.commit()

        logger.info("Cleared all library data")
        self.notify_listeners()

    async def count_rows(self) -> dict[str, int]:
        """Row count per table."""
        counts: dict[str, int] = {}
        for table in (
            "lessons",
            "figures",
            *GROUPING_TABLES,
            *BLOB_TABLES,
            "settings",
            "sync_tombstones",
        ):
            row = await self._fetchone(f"SELECT COUNT(*) FROM {table}")
            counts[table] = row[0] if row else 0
        return counts
