"""Tests for grouping configuration reconciliation."""

import pytest

from bachata_moves_storage.exceptions import SyncError
from bachata_moves_storage.id_utils import EPOCH_ISO
from bachata_moves_storage.models import GroupingCollection, ItemType, NewLesson
from bachata_moves_storage.sync import GroupingReconciler, RemoteGroupingConfig

REMOTE_TIME = "2024-04-01T08:00:00.000Z"
CATEGORIES = GroupingCollection.LESSON_CATEGORIES


@pytest.fixture
def reconciler(store, settings_engine):
    return GroupingReconciler(store, settings_engine)


class TestParse:
    def test_malformed_document_is_empty(self):
        config = RemoteGroupingConfig.parse("not a document")
        assert config == RemoteGroupingConfig()

    def test_bad_entries_skipped(self):
        config = RemoteGroupingConfig.parse(
            {
                "categories": [
                    {"id": "c1", "name": "Basics", "driveId": "d1"},
                    {"name": "No id"},
                    "junk",
                    {"id": "c1", "name": "Duplicate"},
                ],
                "schools": "not a list",
                "showEmpty": "yes",
                "showCount": True,
            }
        )

        assert [(c.id, c.name, c.drive_id) for c in config.categories] == [("c1", "Basics", "d1")]
        assert config.schools == []
        assert config.show_empty is False
        assert config.show_count is True


class TestApplyRemote:
    @pytest.mark.asyncio
    async def test_rename_delete_and_detach(self, store, reconciler, video):
        await store.add_grouping(CATEGORIES, "Basic", entity_id="c1")
        await store.add_grouping(CATEGORIES, "Old", entity_id="c2")
        lesson = await store.add_lesson(
            NewLesson(upload_date="2024-01-01T00:00:00.000Z", category_id="c2"), video
        )

        result = await reconciler.apply_remote_grouping_config(
            ItemType.LESSON,
            {
                "categories": [{"id": "c1", "name": "Basics"}],
                "schools": [],
                "instructors": [],
                "showEmpty": False,
                "showCount": True,
            },
            REMOTE_TIME,
        )

        assert (result.created, result.updated, result.deleted) == (0, 1, 1)
        assert (await store.get_grouping(CATEGORIES, "c1")).name == "Basics"
        assert await store.get_grouping(CATEGORIES, "c2") is None
        assert (await store.get_lesson(lesson.id)).category_id is None

    @pytest.mark.asyncio
    async def test_remote_ids_kept_and_order_stored(self, store, reconciler, settings_engine):
        await reconciler.apply_remote_grouping_config(
            ItemType.FIGURE,
            {
                "categories": [{"id": "c2", "name": "Turns"}, {"id": "c1", "name": "Basics"}],
                "schools": [{"id": "s1", "name": "Academy", "driveId": "drive-s1"}],
                "instructors": [],
                "showEmpty": True,
            },
            REMOTE_TIME,
        )

        categories = await store.get_groupings(GroupingCollection.FIGURE_CATEGORIES)
        assert {c.id for c in categories} == {"c1", "c2"}
        assert all(c.modified_time == REMOTE_TIME for c in categories)
        assert (await store.get_grouping(GroupingCollection.SCHOOLS, "s1")).drive_id == "drive-s1"

        settings = settings_engine.snapshot()
        assert settings.figure_category_order == ["c2", "c1"]
        assert settings.figure_school_order == ["s1"]
        assert settings.show_empty_figure_categories_in_grouped_view is True
        assert settings.modified_time == REMOTE_TIME
        assert settings.lesson_category_order == []

    @pytest.mark.asyncio
    async def test_second_application_changes_nothing(self, reconciler):
        document = {
            "categories": [{"id": "c1", "name": "Basics"}],
            "schools": [{"id": "s1", "name": "Academy"}],
            "instructors": [{"id": "i1", "name": "Ana"}],
        }

        first = await reconciler.apply_remote_grouping_config(ItemType.LESSON, document, REMOTE_TIME)
        second = await reconciler.apply_remote_grouping_config(ItemType.LESSON, document, REMOTE_TIME)

        assert first.created == 3
        assert not second.changed

    @pytest.mark.asyncio
    async def test_remote_deletions_not_tombstoned(self, store, reconciler):
        await store.add_grouping(GroupingCollection.SCHOOLS, "Gone", entity_id="s9", drive_id="drive-s9")

        result = await reconciler.apply_remote_grouping_config(ItemType.LESSON, {}, REMOTE_TIME)

        assert result.deleted == 1
        assert await store.get_tombstones() == []

    @pytest.mark.asyncio
    async def test_signed_out_rejected(self, store, reconciler):
        with pytest.raises(SyncError):
            await reconciler.apply_remote_grouping_config(
                ItemType.LESSON,
                {"categories": [{"id": "c1", "name": "Basics"}]},
                REMOTE_TIME,
                authenticated=False,
            )
        assert await store.get_groupings(CATEGORIES) == []


class TestUpload:
    @pytest.mark.asyncio
    async def test_document_follows_stored_order(self, store, reconciler, settings_engine):
        for entity_id, name in (("c1", "Basics"), ("c2", "Turns"), ("c3", "Dips")):
            await store.add_grouping(CATEGORIES, name, entity_id=entity_id)
        await store.add_grouping(GroupingCollection.SCHOOLS, "Academy", entity_id="s1", drive_id="d-s1")
        await settings_engine.update({"lesson_category_order": ["c3", "c1"], "show_lesson_count_in_group_headers": True})

        upload = await reconciler.get_grouping_config_for_upload(ItemType.LESSON)

        assert [c["id"] for c in upload.content["categories"]] == ["c3", "c1", "c2"]
        assert upload.content["schools"] == [{"id": "s1", "name": "Academy", "driveId": "d-s1"}]
        assert upload.content["showCount"] is True
        assert upload.content["showEmpty"] is False
        assert upload.modified_time == settings_engine.snapshot().modified_time

    @pytest.mark.asyncio
    async def test_epoch_time_before_any_change(self, reconciler):
        upload = await reconciler.get_grouping_config_for_upload(ItemType.FIGURE)

        assert upload.modified_time == EPOCH_ISO
        assert upload.content["categories"] == []

    @pytest.mark.asyncio
    async def test_round_trip_through_remote(self, store, reconciler):
        await store.add_grouping(CATEGORIES, "Basics", entity_id="c1")
        upload = await reconciler.get_grouping_config_for_upload(ItemType.LESSON)

        result = await reconciler.apply_remote_grouping_config(
            ItemType.LESSON, upload.content, REMOTE_TIME
        )

        assert not result.changed
