"""Tests for entity types, camelCase conversion and patches."""

import pytest

from bachata_moves_storage.exceptions import ValidationError
from bachata_moves_storage.models import (
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
)


def make_lesson(**overrides):
    values = {
        "id": "l1",
        "video_id": "v1",
        "upload_date": "2024-05-01T10:00:00.000Z",
        "start_time": 0,
        "end_time": 60000,
        "thumb_time": 1000,
        "modified_time": "2024-05-01T10:00:00.000Z",
    }
    values.update(overrides)
    return Lesson(**values)


class TestSerialization:
    def test_lesson_to_dict_uses_camel_case(self):
        data = make_lesson(drive_id="d1", video_drive_id="dv1").to_dict()

        assert data["videoId"] == "v1"
        assert data["uploadDate"] == "2024-05-01T10:00:00.000Z"
        assert data["videoDriveId"] == "dv1"
        assert data["thumbTime"] == 1000
        assert "video_id" not in data

    def test_round_trip(self):
        lesson = make_lesson(description="Sunday class", category_id="c1")
        assert Lesson.from_dict(lesson.to_dict()) == lesson

    def test_unknown_keys_ignored(self):
        data = make_lesson().to_dict()
        data["isExpanded"] = True
        assert Lesson.from_dict(data) == make_lesson()

    def test_missing_required_field(self):
        data = make_lesson().to_dict()
        del data["videoId"]
        with pytest.raises(ValidationError) as exc_info:
            Lesson.from_dict(data)
        assert exc_info.value.field == "Lesson.videoId"

    def test_missing_figure_name(self):
        with pytest.raises(ValidationError):
            Figure.from_dict({"id": "f1", "lessonId": "l1"})

    def test_not_an_object(self):
        with pytest.raises(ValidationError):
            GroupingEntity.from_dict(["c1", "Basics"])

    def test_grouping_entity(self):
        entity = GroupingEntity.from_dict({"id": "c1", "name": "Basics", "driveId": "d1"})
        assert entity == GroupingEntity(id="c1", name="Basics", drive_id="d1")


class TestValidation:
    def test_negative_time_rejected(self):
        with pytest.raises(ValidationError):
            make_lesson(start_time=-1).validate()

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            make_lesson(start_time=5000, end_time=4000).validate()

    def test_open_end_allowed(self):
        make_lesson(end_time=None).validate()

    def test_boolean_is_not_a_time(self):
        with pytest.raises(ValidationError):
            make_lesson(thumb_time=True).validate()


class TestPatches:
    def test_unset_fields_are_not_changes(self):
        patch = LessonPatch(description="New")
        assert patch.changes() == {"description": "New"}

    def test_none_is_a_change(self):
        patch = FigurePatch(category_id=None)
        assert patch.changes() == {"category_id": None}
        assert not patch.is_empty()

    def test_empty_patch(self):
        assert GroupingPatch().is_empty()
        assert not UNSET

    def test_apply_stamps_modified_time(self):
        lesson = make_lesson()
        updated = LessonPatch(description="Notes").apply(lesson, "2024-06-01T00:00:00.000Z")

        assert updated.description == "Notes"
        assert updated.modified_time == "2024-06-01T00:00:00.000Z"
        assert lesson.description is None

    def test_apply_validates_merged_entity(self):
        with pytest.raises(ValidationError):
            LessonPatch(end_time=0).apply(make_lesson(), "2024-06-01T00:00:00.000Z")

    def test_patch_validates_before_merge(self):
        with pytest.raises(ValidationError):
            FigurePatch(name=42).validate()


class TestEnums:
    def test_categories_for_item_type(self):
        assert GroupingCollection.categories_for(ItemType.LESSON) is GroupingCollection.LESSON_CATEGORIES
        assert GroupingCollection.categories_for(ItemType.FIGURE) is GroupingCollection.FIGURE_CATEGORIES

    def test_blob_size(self):
        assert Blob(b"abc").size == 3
