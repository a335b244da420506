"""
Bachata Moves Storage

Local-first storage for a dance video library: lessons (recorded videos)
and the figures (clips) cut from them.

Provides:
- SQLite store with versioned schema migrations and cascading deletes
- Tombstone log so deletions of synced entities propagate to the remote side
- Settings split into device and sync partitions
- Grouping configuration reconciliation against a remote document
- Versioned JSON backup export and import

Usage:

    from bachata_moves_storage import AppContext, StoreConfig, NewLesson, Blob
    async with AppContext.create(StoreConfig(db_path="library.db")) as ctx:
        lesson = await ctx.store.add_lesson(
            NewLesson(upload_date="2024-05-01"), Blob(video_bytes, "video/mp4")
        )
        await ctx.settings.update({"lesson_sort_order": "oldest"})
        payload = await ctx.backup.export_all_data()

Remote sync:

    # Build the document to upload
    upload = await ctx.grouping.get_grouping_config_for_upload(ItemType.LESSON)

    # Apply a downloaded document
    await ctx.grouping.apply_remote_grouping_config(
        ItemType.LESSON, content, modified_time, authenticated=True
    )
"""

from .backup import BackupCodec, BackupOrchestrator, BackupState, BackupStatus
from .config import StoreConfig
from .context import AppContext
from .exceptions import (
    CorruptEntryError,
    InvalidFormatError,
    MissingBlobError,
    MovesStorageError,
    NotFoundError,
    PersistenceError,
    SyncError,
    ThumbnailGenerationError,
    UnsupportedFormatError,
    ValidationError,
)
from .models import (
    UNSET,
    Blob,
    Figure,
    FigurePatch,
    GroupingCollection,
    GroupingEntity,
    GroupingPatch,
    ItemType,
    Lesson,
    LessonPatch,
    NewFigure,
    NewLesson,
    Tombstone,
)
from .settings import (
    DeviceSettings,
    GroupingConfiguration,
    Settings,
    SettingsEngine,
    SyncSettings,
)
from .store import LocalStore
from .sync import GroupingReconciler, GroupingUpload
from .thumbnails import FfmpegThumbnailGenerator, ThumbnailGenerator

__version__ = "0.3.0"

__all__ = [
    # Composition
    "AppContext",
    "StoreConfig",
    # Services
    "BackupCodec",
    "BackupOrchestrator",
    "BackupState",
    "BackupStatus",
    "GroupingReconciler",
    "GroupingUpload",
    "LocalStore",
    "SettingsEngine",
    "FfmpegThumbnailGenerator",
    "ThumbnailGenerator",
    # Entities
    "Blob",
    "Figure",
    "FigurePatch",
    "GroupingCollection",
    "GroupingEntity",
    "GroupingPatch",
    "ItemType",
    "Lesson",
    "LessonPatch",
    "NewFigure",
    "NewLesson",
    "Tombstone",
    "UNSET",
    # Settings
    "DeviceSettings",
    "GroupingConfiguration",
    "Settings",
    "SyncSettings",
    # Exceptions
    "CorruptEntryError",
    "InvalidFormatError",
    "MissingBlobError",
    "MovesStorageError",
    "NotFoundError",
    "PersistenceError",
    "SyncError",
    "ThumbnailGenerationError",
    "UnsupportedFormatError",
    "ValidationError",
]
