"""
Entity types for the library store.

Entities are plain dataclasses with snake_case attributes. The backup
document and the remote grouping document use camelCase keys, so every
entity converts with ``to_dict()`` / ``from_dict()``.

Partial updates use explicit patch types whose fields default to
:data:`UNSET`, which keeps "leave unchanged" distinct from "set to None".
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, TypeVar

from .exceptions import ValidationError

DEFAULT_CONTENT_TYPE = "application/octet-stream"
THUMBNAIL_CONTENT_TYPE = "image/jpeg"


class _Unset:
    """Sentinel type for patch fields that were not provided."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


class ItemType(Enum):
    """Kind of gallery item that grouping configuration applies to."""

    LESSON = "lesson"
    FIGURE = "figure"


class GroupingCollection(Enum):
    """Collections holding grouping entities."""

    LESSON_CATEGORIES = "lesson_categories"
    FIGURE_CATEGORIES = "figure_categories"
    SCHOOLS = "schools"
    INSTRUCTORS = "instructors"

    @property
    def label(self) -> str:
        """Human readable entity name used in errors and logs."""
        return {
            GroupingCollection.LESSON_CATEGORIES: "LessonCategory",
            GroupingCollection.FIGURE_CATEGORIES: "FigureCategory",
            GroupingCollection.SCHOOLS: "School",
            GroupingCollection.INSTRUCTORS: "Instructor",
        }[self]

    @classmethod
    def categories_for(cls, item_type: ItemType) -> GroupingCollection:
        """Category collection used by one item type."""
        if item_type is ItemType.LESSON:
            return cls.LESSON_CATEGORIES
        return cls.FIGURE_CATEGORIES


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _require_str(data: dict[str, Any], key: str, entity: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{entity}.{key}", "required string missing", repr(value))
    return value


def _check_time(entity: str, name: str, value: Any, optional: bool = False) -> None:
    if value is None and optional:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{entity}.{name}", "must be a number of milliseconds", repr(value))
    if value < 0:
        raise ValidationError(f"{entity}.{name}", "must not be negative", repr(value))


def _check_range(entity: str, start: float, end: float | None) -> None:
    if end is not None and end <= start:
        raise ValidationError(
            f"{entity}.end_time", "must be greater than start_time", f"{start}..{end}"
        )


class _Serializable:
    """camelCase dict conversion shared by all entities."""

    _REQUIRED: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {_to_camel(f.name): getattr(self, f.name) for f in fields(self)}  # type: ignore[arg-type]

    @classmethod
    def from_dict(cls, data: dict[str, Any]):  # type: ignore[no-untyped-def]
        if not isinstance(data, dict):
            raise ValidationError(cls.__name__, "expected an object", repr(type(data)))
        for name in cls._REQUIRED:
            _require_str(data, _to_camel(name), cls.__name__)
        kwargs = {}
        for f in fields(cls):  # type: ignore[arg-type]
            key = _to_camel(f.name)
            if key in data:
                kwargs[f.name] = data[key]
        try:
            instance = cls(**kwargs)
        except TypeError as e:
            raise ValidationError(cls.__name__, f"missing required field: {e}") from e
        instance.validate()
        return instance

    def validate(self) -> None:
        pass


@dataclass
class Blob:
    """Binary payload with its content type."""

    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class Lesson(_Serializable):
    """A recorded lesson video and its metadata."""

    id: str
    video_id: str
    upload_date: str
    start_time: float = 0
    end_time: float | None = None
    thumb_time: float = 0
    description: str | None = None
    category_id: str | None = None
    school_id: str | None = None
    instructor_id: str | None = None
    drive_id: str | None = None
    video_drive_id: str | None = None
    modified_time: str | None = None

    _REQUIRED = ("id", "video_id", "upload_date")

    def validate(self) -> None:
        _check_time("Lesson", "start_time", self.start_time)
        _check_time("Lesson", "end_time", self.end_time, optional=True)
        _check_time("Lesson", "thumb_time", self.thumb_time)
        _check_range("Lesson", self.start_time, self.end_time)


@dataclass
class Figure(_Serializable):
    """A named clip cut from a lesson."""

    id: str
    lesson_id: str
    name: str
    start_time: float = 0
    end_time: float | None = None
    thumb_time: float = 0
    description: str | None = None
    category_id: str | None = None
    school_id: str | None = None
    instructor_id: str | None = None
    drive_id: str | None = None
    modified_time: str | None = None

    _REQUIRED = ("id", "lesson_id")

    def validate(self) -> None:
        if not isinstance(self.name, str):
            raise ValidationError("Figure.name", "must be a string", repr(self.name))
        _check_time("Figure", "start_time", self.start_time)
        _check_time("Figure", "end_time", self.end_time, optional=True)
        _check_time("Figure", "thumb_time", self.thumb_time)
        _check_range("Figure", self.start_time, self.end_time)


@dataclass
class GroupingEntity(_Serializable):
    """A lesson/figure category, school or instructor."""

    id: str
    name: str
    drive_id: str | None = None
    modified_time: str | None = None

    _REQUIRED = ("id",)

    def validate(self) -> None:
        if not isinstance(self.name, str):
            raise ValidationError("GroupingEntity.name", "must be a string", repr(self.name))


@dataclass
class Tombstone:
    """Record that an entity with a remote id was deleted locally."""

    drive_id: str
    deleted_at: str


# =============================================================================
# Creation inputs
# =============================================================================


@dataclass
class NewLesson:
    """Caller-supplied fields for a new lesson; ids and thumb time are generated."""

    upload_date: str
    start_time: float = 0
    end_time: float | None = None
    description: str | None = None
    category_id: str | None = None
    school_id: str | None = None
    instructor_id: str | None = None


@dataclass
class NewFigure:
    """Caller-supplied fields for a new figure."""

    name: str
    start_time: float = 0
    end_time: float | None = None
    thumb_time: float = 0
    description: str | None = None
    category_id: str | None = None
    school_id: str | None = None
    instructor_id: str | None = None


# =============================================================================
# Patches
# =============================================================================

E = TypeVar("E", Lesson, Figure, GroupingEntity)


class _Patch:
    """Shared behaviour of explicit patch types."""

    def changes(self) -> dict[str, Any]:
        """Fields that were explicitly provided."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)  # type: ignore[arg-type]
            if getattr(self, f.name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.changes()

    def validate(self) -> None:
        changes = self.changes()
        entity = type(self).__name__
        for name in ("start_time", "thumb_time"):
            if name in changes:
                _check_time(entity, name, changes[name])
        if "end_time" in changes:
            _check_time(entity, "end_time", changes["end_time"], optional=True)
        if "name" in changes and not isinstance(changes["name"], str):
            raise ValidationError(f"{entity}.name", "must be a string", repr(changes["name"]))

    def apply(self, entity: E, modified_time: str) -> E:
        """Return a copy of *entity* with the patch merged and validated."""
        self.validate()
        merged = replace(entity, **self.changes(), modified_time=modified_time)
        merged.validate()
        return merged


@dataclass
class LessonPatch(_Patch):
    upload_date: Any = UNSET
    start_time: Any = UNSET
    end_time: Any = UNSET
    thumb_time: Any = UNSET
    description: Any = UNSET
    category_id: Any = UNSET
    school_id: Any = UNSET
    instructor_id: Any = UNSET
    drive_id: Any = UNSET
    video_drive_id: Any = UNSET


@dataclass
class FigurePatch(_Patch):
    name: Any = UNSET
    start_time: Any = UNSET
    end_time: Any = UNSET
    thumb_time: Any = UNSET
    description: Any = UNSET
    category_id: Any = UNSET
    school_id: Any = UNSET
    instructor_id: Any = UNSET
    drive_id: Any = UNSET


@dataclass
class GroupingPatch(_Patch):
    name: Any = UNSET
    drive_id: Any = UNSET


@dataclass
class StoreSnapshot:
    """Every row and blob of the store, read in one transaction."""

    lessons: list[Lesson] = field(default_factory=list)
    figures: list[Figure] = field(default_factory=list)
    lesson_categories: list[GroupingEntity] = field(default_factory=list)
    figure_categories: list[GroupingEntity] = field(default_factory=list)
    schools: list[GroupingEntity] = field(default_factory=list)
    instructors: list[GroupingEntity] = field(default_factory=list)
    sync_settings: dict[str, Any] = field(default_factory=dict)
    videos: list[tuple[str, Blob]] = field(default_factory=list)
    lesson_thumbnails: list[tuple[str, Blob]] = field(default_factory=list)
    figure_thumbnails: list[tuple[str, Blob]] = field(default_factory=list)

    def groupings(self, collection: GroupingCollection) -> list[GroupingEntity]:
        return {
            GroupingCollection.LESSON_CATEGORIES: self.lesson_categories,
            GroupingCollection.FIGURE_CATEGORIES: self.figure_categories,
            GroupingCollection.SCHOOLS: self.schools,
            GroupingCollection.INSTRUCTORS: self.instructors,
        }[collection]
