"""
Backup document codec.

Exports the whole store (entities, sync settings and every blob) to one
self-describing JSON document and imports it back. Blobs travel as data
URLs (``data:<content type>;base64,<payload>``).

Document shape:

    {
        "__BACHATA_MOVES_EXPORT__": true,
        "version": 3,
        "exportDate": "2024-05-01T10:00:00.000Z",
        "data": {
            "lessons": [...], "figures": [...],
            "figureCategories": [...], "lessonCategories": [...],
            "schools": [...], "instructors": [...],
            "settings": {...},
            "videos": [[videoId, dataUrl], ...],
            "thumbnails": [[lessonId, dataUrl], ...],
            "figureThumbnails": [[figureId, dataUrl], ...]
        }
    }
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..exceptions import (
    CorruptEntryError,
    InvalidFormatError,
    UnsupportedFormatError,
    ValidationError,
)
from ..id_utils import utc_now_iso
from ..models import (
    DEFAULT_CONTENT_TYPE,
    Blob,
    Figure,
    GroupingCollection,
    GroupingEntity,
    Lesson,
    StoreSnapshot,
)

if TYPE_CHECKING:
    from ..settings.engine import SettingsEngine
    from ..store.local import LocalStore

logger = logging.getLogger(__name__)

EXPORT_MARKER = "__BACHATA_MOVES_EXPORT__"
EXPORT_VERSION = 3

# Fields written by older releases that are no longer part of any entity
LEGACY_FIELDS = ("isExpanded",)

GROUPING_KEYS = {
    GroupingCollection.FIGURE_CATEGORIES: "figureCategories",
    GroupingCollection.LESSON_CATEGORIES: "lessonCategories",
    GroupingCollection.SCHOOLS: "schools",
    GroupingCollection.INSTRUCTORS: "instructors",
}

ProgressCallback = Callable[[float], Any]


class _Progress:
    """Reports progress in [0, 1], never moving backwards until reset."""

    def __init__(self, callback: ProgressCallback | None):
        self._callback = callback
        self.value = 0.0

    def __call__(self, value: float) -> None:
        value = min(max(value, self.value), 1.0)
        self.value = value
        if self._callback is not None:
            self._callback(value)

    def reset(self) -> None:
        self.value = 0.0
        if self._callback is not None:
            self._callback(0.0)


def encode_data_url(blob: Blob) -> str:
    payload = base64.b64encode(blob.data).decode("ascii")
    return f"data:{blob.content_type or DEFAULT_CONTENT_TYPE};base64,{payload}"


def decode_data_url(value: Any) -> Blob:
    """Decode a ``data:<type>;base64,<payload>`` string.

    Raises:
        ValueError: If *value* is not a base64 data URL
    """
    if not isinstance(value, str) or not value.startswith("data:"):
        raise ValueError("not a data URL")
    header, sep, payload = value[5:].partition(",")
    if not sep or not header.endswith(";base64"):
        raise ValueError("not a base64 data URL")
    content_type = header[: -len(";base64")] or DEFAULT_CONTENT_TYPE
    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 payload: {e}") from e
    return Blob(data, content_type)


@dataclass
class ImportSummary:
    """What an import wrote and what it skipped."""

    lessons: int = 0
    figures: int = 0
    groupings: int = 0
    blobs: int = 0
    skipped: list[str] = field(default_factory=list)
    legacy_video_keys: bool = False


class BackupCodec:
    """Exports and imports the whole store as one JSON document."""

    def __init__(self, store: LocalStore, settings: SettingsEngine | None = None):
        self.store = store
        self.settings = settings

    # =========================================================================
    # Export
    # =========================================================================

    async def export_all_data(self, on_progress: ProgressCallback | None = None) -> bytes:
        """Serialize the store to a backup document.

        The store is read in one transaction; blob encoding runs in worker
        threads after that transaction has closed.
        """
        progress = _Progress(on_progress)
        progress(0.0)

        snapshot = await self.store.read_snapshot()
        progress(0.2)

        total = len(snapshot.videos) + len(snapshot.lesson_thumbnails) + len(
            snapshot.figure_thumbnails
        )
        converted = 0

        async def encode(entries: list[tuple[str, Blob]]) -> list[list[str]]:
            nonlocal converted
            encoded: list[list[str]] = []
            for key, blob in entries:
                encoded.append([key, await asyncio.to_thread(encode_data_url, blob)])
                converted += 1
                progress(0.2 + 0.7 * converted / total)
            return encoded

        videos = await encode(snapshot.videos)
        thumbnails = await encode(snapshot.lesson_thumbnails)
        figure_thumbnails = await encode(snapshot.figure_thumbnails)
        progress(0.9)

        data: dict[str, Any] = {
            "lessons": [lesson.to_dict() for lesson in snapshot.lessons],
            "figures": [figure.to_dict() for figure in snapshot.figures],
        }
        for collection, key in GROUPING_KEYS.items():
            data[key] = [entity.to_dict() for entity in snapshot.groupings(collection)]
        data["settings"] = snapshot.sync_settings
        data["videos"] = videos
        data["thumbnails"] = thumbnails
        data["figureThumbnails"] = figure_thumbnails

        document = {
            EXPORT_MARKER: True,
            "version": EXPORT_VERSION,
            "exportDate": utc_now_iso(),
            "data": data,
        }
        progress(0.95)
        payload = await asyncio.to_thread(lambda: json.dumps(document).encode("utf-8"))
        progress(1.0)

        logger.info(
            f"Exported {len(snapshot.lessons)} lessons, {len(snapshot.figures)} figures "
            f"and {total} blobs ({len(payload)} bytes)"
        )
        return payload

    # =========================================================================
    # Import
    # =========================================================================

    def parse_document(self, payload: bytes | str) -> dict[str, Any]:
        """Validate the envelope and return its ``data`` section.

        Raises:
            InvalidFormatError: If the payload is not a JSON object with a data section
            UnsupportedFormatError: If the marker or version does not match
        """
        try:
            document = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidFormatError(f"not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise InvalidFormatError("top level is not an object")

        version = document.get("version")
        if (
            document.get(EXPORT_MARKER) is not True
            or isinstance(version, bool)
            or version != EXPORT_VERSION
        ):
            raise UnsupportedFormatError(version)

        data = document.get("data")
        if not isinstance(data, dict):
            raise InvalidFormatError("missing data section")
        return data

    async def import_data(
        self, payload: bytes | str, on_progress: ProgressCallback | None = None
    ) -> ImportSummary:
        """Replace the store contents with a backup document.

        Raises:
            InvalidFormatError: Before any write, if the document is malformed
            UnsupportedFormatError: Before any write, on a marker or version mismatch
            PersistenceError: If the write fails; progress is reset to 0
        """
        progress = _Progress(on_progress)
        progress(0.0)
        try:
            return await self._import(payload, progress)
        except Exception:
            progress.reset()
            raise

    async def _import(self, payload: bytes | str, progress: _Progress) -> ImportSummary:
        data = self.parse_document(payload)
        progress(0.05)

        summary = ImportSummary()
        snapshot = StoreSnapshot()
        snapshot.lessons = self._entities(data.get("lessons"), Lesson, "lessons", summary)
        snapshot.figures = self._entities(data.get("figures"), Figure, "figures", summary)
        for collection, key in GROUPING_KEYS.items():
            raw = data.get(key)
            if raw is None and collection is GroupingCollection.FIGURE_CATEGORIES:
                raw = data.get("categories")
            snapshot.groupings(collection).extend(
                self._entities(raw, GroupingEntity, key, summary)
            )

        settings = data.get("settings")
        snapshot.sync_settings = settings if isinstance(settings, dict) else {}

        video_entries = self._pairs(data.get("videos"), "videos", summary)
        video_entries = self._remap_legacy_videos(video_entries, snapshot.lessons, summary)
        thumbnail_entries = self._pairs(data.get("thumbnails"), "thumbnails", summary)
        figure_thumbnail_entries = self._pairs(
            data.get("figureThumbnails"), "figureThumbnails", summary
        )

        total = len(video_entries) + len(thumbnail_entries) + len(figure_thumbnail_entries)
        converted = 0

        async def decode(collection: str, entries: list[tuple[str, Any]]) -> list[tuple[str, Blob]]:
            nonlocal converted
            blobs: list[tuple[str, Blob]] = []
            for key, value in entries:
                try:
                    blobs.append((key, await self._decode_entry(collection, key, value)))
                except CorruptEntryError as e:
                    logger.warning(f"Skipping {e.message}: {e.details.get('cause')}")
                    summary.skipped.append(f"{collection}:{key}")
                converted += 1
                progress(0.05 + 0.45 * converted / total)
            return blobs

        snapshot.videos = await decode("videos", video_entries)
        snapshot.lesson_thumbnails = await decode("thumbnails", thumbnail_entries)
        snapshot.figure_thumbnails = await decode("figureThumbnails", figure_thumbnail_entries)
        progress(0.5)

        summary.lessons = len(snapshot.lessons)
        summary.figures = len(snapshot.figures)
        summary.groupings = sum(len(snapshot.groupings(c)) for c in GroupingCollection)
        summary.blobs = (
            len(snapshot.videos) + len(snapshot.lesson_thumbnails) + len(snapshot.figure_thumbnails)
        )

        progress(0.55)
        await self.store.replace_all(snapshot)
        progress(0.95)

        if self.settings is not None:
            await self.settings.reload()
        progress(1.0)

        logger.info(
            f"Imported {summary.lessons} lessons, {summary.figures} figures, "
            f"{summary.groupings} grouping entities and {summary.blobs} blobs "
            f"({len(summary.skipped)} entries skipped)"
        )
        return summary

    async def _decode_entry(self, collection: str, key: str, value: Any) -> Blob:
        try:
            return await asyncio.to_thread(decode_data_url, value)
        except ValueError as e:
            raise CorruptEntryError(collection, key, e) from e

    def _entities(
        self, raw: Any, entity_type: Any, collection: str, summary: ImportSummary
    ) -> list[Any]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise InvalidFormatError(f"{collection} is not a list")
        entities = []
        for item in raw:
            if isinstance(item, dict):
                item = {k: v for k, v in item.items() if k not in LEGACY_FIELDS}
            try:
                entities.append(entity_type.from_dict(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid {collection} entry: {e.message}")
                entity_id = item.get("id") if isinstance(item, dict) else None
                summary.skipped.append(f"{collection}:{entity_id}")
        return entities

    def _pairs(self, raw: Any, collection: str, summary: ImportSummary) -> list[tuple[str, Any]]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise InvalidFormatError(f"{collection} is not a list")
        pairs: list[tuple[str, Any]] = []
        for entry in raw:
            if isinstance(entry, list) and len(entry) == 2 and isinstance(entry[0], str):
                pairs.append((entry[0], entry[1]))
            else:
                logger.warning(f"Skipping malformed {collection} entry")
                summary.skipped.append(f"{collection}:?")
        return pairs

    def _remap_legacy_videos(
        self,
        entries: list[tuple[str, Any]],
        lessons: list[Lesson],
        summary: ImportSummary,
    ) -> list[tuple[str, Any]]:
        """Re-key videos from old documents, where every video key is a lesson id."""
        by_lesson = {lesson.id: lesson for lesson in lessons}
        if not entries or not all(key in by_lesson for key, _ in entries):
            return entries

        logger.info("Legacy video keys detected, remapping lesson ids to video ids")
        summary.legacy_video_keys = True
        remapped = []
        for lesson_id, value in entries:
            lesson = by_lesson.get(lesson_id)
            if lesson is not None:
                remapped.append((lesson.video_id, value))
        return remapped
