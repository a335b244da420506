"""
Settings partitions.

Settings are split into two explicit dataclasses:

- ``DeviceSettings``: scoped to one installation, never synchronized
  (language, playback, sort/grouping selections, collapsed groups, filters).
- ``SyncSettings``: shared across devices through the remote store
  (grouping order arrays, display toggles, sync timestamps).

Field ownership decides which partition a change belongs to. Both
partitions persist as camelCase dicts ("wire" form); a handful of legacy
key spellings are still accepted on read.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any

from ..exceptions import ValidationError
from ..models import ItemType


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


# Legacy wire keys written by older releases
_LEGACY_KEYS = {
    "lessonFilter_excludedYears": "lesson_filter_excluded_years",
    "lessonFilter_excludedCategoryIds": "lesson_filter_excluded_category_ids",
    "lessonFilter_excludedSchoolIds": "lesson_filter_excluded_school_ids",
    "lessonFilter_excludedInstructorIds": "lesson_filter_excluded_instructor_ids",
    "figureFilter_excludedYears": "figure_filter_excluded_years",
    "figureFilter_excludedCategoryIds": "figure_filter_excluded_category_ids",
    "figureFilter_excludedSchoolIds": "figure_filter_excluded_school_ids",
    "figureFilter_excludedInstructorIds": "figure_filter_excluded_instructor_ids",
}


class _Partition:
    """Wire conversion and value checks shared by both partitions."""

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))  # type: ignore[arg-type]

    @classmethod
    def nullable_names(cls) -> frozenset[str]:
        """Fields declared with an optional type."""
        return frozenset(
            f.name for f in fields(cls) if "None" in str(f.type)  # type: ignore[arg-type]
        )

    @classmethod
    def wire_keys(cls) -> dict[str, str]:
        """Map of accepted wire key -> field name, legacy spellings included."""
        names = cls.field_names()
        keys = {_to_camel(name): name for name in names}
        keys.update({k: v for k, v in _LEGACY_KEYS.items() if v in names})
        return keys

    def to_wire(self) -> dict[str, Any]:
        return {
            _to_camel(f.name): _copy(getattr(self, f.name))
            for f in fields(self)  # type: ignore[arg-type]
        }

    def merged_with_wire(self, data: dict[str, Any] | None) -> tuple[Any, list[str]]:
        """Overlay persisted wire values; returns the new partition and ignored keys."""
        if not data:
            return self, []
        keys = self.wire_keys()
        changes: dict[str, Any] = {}
        ignored: list[str] = []
        for key, value in data.items():
            name = keys.get(key)
            if name is None:
                ignored.append(key)
                continue
            try:
                self.check_value(name, value)
            except ValidationError:
                ignored.append(key)
                continue
            changes[name] = _copy(value)
        return replace(self, **changes), ignored  # type: ignore[type-var]

    def check_value(self, name: str, value: Any) -> None:
        current = getattr(self, name)
        if isinstance(current, bool):
            ok = isinstance(value, bool)
        elif isinstance(current, list):
            ok = isinstance(value, list)
        elif isinstance(current, (int, float)):
            ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        else:
            ok = isinstance(value, str) or (value is None and name in self.nullable_names())
        if not ok:
            raise ValidationError(name, f"unexpected value type {type(value).__name__}", repr(value))


def _copy(value: Any) -> Any:
    return list(value) if isinstance(value, list) else value


@dataclass
class DeviceSettings(_Partition):
    """Settings scoped to this installation."""

    language: str = "english"
    autoplay_gallery_videos: bool = False
    is_muted: bool = False
    volume: float = 1.0
    lesson_sort_order: str = "newest"
    figure_sort_order: str = "newest"
    lesson_grouping: str = "none"
    figure_grouping: str = "none"
    collapsed_lesson_date_groups: list[str] = field(default_factory=list)
    collapsed_figure_date_groups: list[str] = field(default_factory=list)
    uncategorized_lesson_category_is_expanded: bool = True
    uncategorized_figure_category_is_expanded: bool = True
    collapsed_lesson_categories: list[str] = field(default_factory=list)
    collapsed_figure_categories: list[str] = field(default_factory=list)
    collapsed_lesson_schools: list[str] = field(default_factory=list)
    collapsed_figure_schools: list[str] = field(default_factory=list)
    uncategorized_lesson_school_is_expanded: bool = True
    uncategorized_figure_school_is_expanded: bool = True
    collapsed_lesson_instructors: list[str] = field(default_factory=list)
    collapsed_figure_instructors: list[str] = field(default_factory=list)
    uncategorized_lesson_instructor_is_expanded: bool = True
    uncategorized_figure_instructor_is_expanded: bool = True
    lesson_filter_excluded_years: list[str] = field(default_factory=list)
    lesson_filter_excluded_category_ids: list[str] = field(default_factory=list)
    lesson_filter_excluded_school_ids: list[str] = field(default_factory=list)
    lesson_filter_excluded_instructor_ids: list[str] = field(default_factory=list)
    figure_filter_excluded_years: list[str] = field(default_factory=list)
    figure_filter_excluded_category_ids: list[str] = field(default_factory=list)
    figure_filter_excluded_school_ids: list[str] = field(default_factory=list)
    figure_filter_excluded_instructor_ids: list[str] = field(default_factory=list)


@dataclass
class SyncSettings(_Partition):
    """Settings shared across devices; last writer wins by ``modified_time``."""

    figure_category_order: list[str] = field(default_factory=list)
    show_empty_figure_categories_in_grouped_view: bool = False
    show_figure_count_in_group_headers: bool = False
    lesson_category_order: list[str] = field(default_factory=list)
    show_empty_lesson_categories_in_grouped_view: bool = False
    show_lesson_count_in_group_headers: bool = False
    lesson_school_order: list[str] = field(default_factory=list)
    figure_school_order: list[str] = field(default_factory=list)
    lesson_instructor_order: list[str] = field(default_factory=list)
    figure_instructor_order: list[str] = field(default_factory=list)
    last_sync_timestamp: str | None = None
    modified_time: str | None = None


def split_wire_settings(data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a legacy single settings dict into (device, sync) wire dicts.

    Keys owned by neither partition are dropped.
    """
    device_keys = DeviceSettings.wire_keys()
    sync_keys = SyncSettings.wire_keys()
    device: dict[str, Any] = {}
    sync: dict[str, Any] = {}
    for key, value in data.items():
        if key in device_keys:
            device[_to_camel(device_keys[key])] = value
        elif key in sync_keys:
            sync[_to_camel(sync_keys[key])] = value
    return device, sync


@dataclass(frozen=True)
class Settings:
    """One logical settings object composed of both partitions.

    Attribute access is delegated to whichever partition owns the field,
    so ``settings.volume`` and ``settings.lesson_category_order`` both work.
    """

    device: DeviceSettings
    sync: SyncSettings

    def __getattr__(self, name: str) -> Any:
        if name in DeviceSettings.field_names():
            return getattr(self.device, name)
        if name in SyncSettings.field_names():
            return getattr(self.sync, name)
        raise AttributeError(name)

    def split_patch(self, patch: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        """Validate *patch* and split it into (device changes, sync changes)."""
        device_fields = DeviceSettings.field_names()
        sync_fields = SyncSettings.field_names()
        device_changes: dict[str, Any] = {}
        sync_changes: dict[str, Any] = {}
        for name, value in patch.items():
            if name in device_fields:
                self.device.check_value(name, value)
                device_changes[name] = _copy(value)
            elif name in sync_fields:
                self.sync.check_value(name, value)
                sync_changes[name] = _copy(value)
            else:
                raise ValidationError(name, "unknown settings field")
        return device_changes, sync_changes

    def with_changes(self, patch: dict[str, Any]) -> Settings:
        device_changes, sync_changes = self.split_patch(patch)
        return Settings(
            device=replace(self.device, **device_changes),
            sync=replace(self.sync, **sync_changes),
        )

    def to_dict(self) -> dict[str, Any]:
        return {**self.device.to_wire(), **self.sync.to_wire()}


@dataclass
class GroupingConfiguration:
    """Order arrays and display toggles for one item type."""

    category_order: list[str] = field(default_factory=list)
    school_order: list[str] = field(default_factory=list)
    instructor_order: list[str] = field(default_factory=list)
    show_empty: bool = False
    show_count: bool = False


@dataclass(frozen=True)
class GroupingFieldNames:
    """SyncSettings field names holding one item type's grouping configuration."""

    category_order: str
    school_order: str
    instructor_order: str
    show_empty: str
    show_count: str

    def to_patch(self, config: GroupingConfiguration) -> dict[str, Any]:
        return {
            self.category_order: list(config.category_order),
            self.school_order: list(config.school_order),
            self.instructor_order: list(config.instructor_order),
            self.show_empty: config.show_empty,
            self.show_count: config.show_count,
        }

    def from_settings(self, settings: Settings) -> GroupingConfiguration:
        return GroupingConfiguration(
            category_order=list(getattr(settings, self.category_order)),
            school_order=list(getattr(settings, self.school_order)),
            instructor_order=list(getattr(settings, self.instructor_order)),
            show_empty=getattr(settings, self.show_empty),
            show_count=getattr(settings, self.show_count),
        )


GROUPING_FIELDS = {
    ItemType.LESSON: GroupingFieldNames(
        category_order="lesson_category_order",
        school_order="lesson_school_order",
        instructor_order="lesson_instructor_order",
        show_empty="show_empty_lesson_categories_in_grouped_view",
        show_count="show_lesson_count_in_group_headers",
    ),
    ItemType.FIGURE: GroupingFieldNames(
        category_order="figure_category_order",
        school_order="figure_school_order",
        instructor_order="figure_instructor_order",
        show_empty="show_empty_figure_categories_in_grouped_view",
        show_count="show_figure_count_in_group_headers",
    ),
}
