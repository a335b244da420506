"""Tests for loading, updating and broadcasting settings."""

import asyncio
import json

import pytest

from bachata_moves_storage.exceptions import PersistenceError, ValidationError
from bachata_moves_storage.models import ItemType
from bachata_moves_storage.settings import GroupingConfiguration, SettingsEngine


class TestLoad:
    @pytest.mark.asyncio
    async def test_defaults_on_empty_store(self, settings_engine):
        settings = await settings_engine.load()

        assert settings.language == "english"
        assert settings.volume == 1.0
        assert settings.modified_time is None

    @pytest.mark.asyncio
    async def test_default_language_configurable(self, store):
        engine = SettingsEngine(store, default_language="polish")
        assert (await engine.load()).language == "polish"

    @pytest.mark.asyncio
    async def test_persisted_values_merged_over_defaults(self, store, settings_engine):
        await store.save_settings(
            {"isMuted": True, "unknownKey": 1},
            {"figureSchoolOrder": ["s2", "s1"]},
        )

        settings = await settings_engine.load()

        assert settings.is_muted is True
        assert settings.volume == 1.0
        assert settings.figure_school_order == ["s2", "s1"]

    @pytest.mark.asyncio
    async def test_read_failure_falls_back_to_defaults(self, store, settings_engine, monkeypatch):
        async def broken():
            raise PersistenceError("read_settings", json.JSONDecodeError("bad", "", 0))

        monkeypatch.setattr(store, "get_raw_settings", broken)

        settings = await settings_engine.load()
        assert settings == settings_engine.defaults()

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_read(self, store, settings_engine, monkeypatch):
        reads = []
        original = store.get_raw_settings

        async def counting():
            reads.append(1)
            return await original()

        monkeypatch.setattr(store, "get_raw_settings", counting)

        first, second = await asyncio.gather(settings_engine.load(), settings_engine.load())

        assert first is second
        assert len(reads) == 1


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_persists_both_partitions(self, store, settings_engine):
        assert await settings_engine.update({"is_muted": True, "lesson_school_order": ["s1"]})

        device, sync = await store.get_raw_settings()
        assert device["isMuted"] is True
        assert sync["lessonSchoolOrder"] == ["s1"]
        assert sync["modifiedTime"] is not None

    @pytest.mark.asyncio
    async def test_update_notifies_unless_silent(self, settings_engine):
        seen = []
        settings_engine.subscribe(seen.append)

        await settings_engine.update({"volume": 0.5})
        await settings_engine.update({"volume": 0.25}, silent=True)

        assert [s.volume for s in seen] == [0.5]
        assert settings_engine.snapshot().volume == 0.25

    @pytest.mark.asyncio
    async def test_unknown_key_rejected(self, settings_engine):
        with pytest.raises(ValidationError):
            await settings_engine.update({"theme": "dark"})

    @pytest.mark.asyncio
    async def test_persist_failure_rolls_back(self, store, settings_engine, monkeypatch):
        await settings_engine.load()
        before = settings_engine.snapshot()
        seen = []
        settings_engine.subscribe(seen.append)
        seen.clear()

        async def failing_save(device, sync):
            raise PersistenceError("save_settings", RuntimeError("read-only"))

        monkeypatch.setattr(store, "save_settings", failing_save)

        assert await settings_engine.update({"is_muted": True}) is False
        assert settings_engine.snapshot() is before
        assert seen == []

    @pytest.mark.asyncio
    async def test_failed_write_keeps_concurrent_write(self, store, settings_engine, monkeypatch):
        await settings_engine.load()
        original = store.save_settings
        attempts = []

        async def first_save_fails(device, sync):
            attempts.append(device)
            if len(attempts) == 1:
                await asyncio.sleep(0.01)
                raise PersistenceError("save_settings", RuntimeError("disk full"))
            await original(device, sync)

        monkeypatch.setattr(store, "save_settings", first_save_fails)

        results = await asyncio.gather(
            settings_engine.update({"is_muted": True}),
            settings_engine.update({"volume": 0.25}),
        )

        assert results == [False, True]
        snapshot = settings_engine.snapshot()
        assert snapshot.is_muted is False
        assert snapshot.volume == 0.25
        device, _ = await store.get_raw_settings()
        assert device["isMuted"] is False
        assert device["volume"] == 0.25

    @pytest.mark.asyncio
    async def test_null_only_for_optional_fields(self, store, settings_engine):
        with pytest.raises(ValidationError):
            await settings_engine.update({"language": None})
        assert (await settings_engine.load()).language == "english"

        assert await settings_engine.update({"last_sync_timestamp": None})
        _, sync = await store.get_raw_settings()
        assert sync["lastSyncTimestamp"] is None

    @pytest.mark.asyncio
    async def test_reload_reads_store_again(self, store, settings_engine):
        await settings_engine.load()
        await store.save_settings({"language": "polish"}, {})

        assert (await settings_engine.reload()).language == "polish"


class TestToggles:
    @pytest.mark.asyncio
    async def test_toggle_in_list(self, settings_engine):
        await settings_engine.toggle_in_list("collapsed_lesson_categories", "c1")
        await settings_engine.toggle_in_list("collapsed_lesson_categories", "c2")
        await settings_engine.toggle_in_list("collapsed_lesson_categories", "c1")

        assert settings_engine.snapshot().collapsed_lesson_categories == ["c2"]

    @pytest.mark.asyncio
    async def test_toggle_flag(self, settings_engine):
        await settings_engine.toggle_flag("is_muted")
        assert settings_engine.snapshot().is_muted is True

    @pytest.mark.asyncio
    async def test_toggle_wrong_kind(self, settings_engine):
        with pytest.raises(ValidationError):
            await settings_engine.toggle_flag("collapsed_lesson_categories")
        with pytest.raises(ValidationError):
            await settings_engine.toggle_in_list("is_muted", "x")


class TestRemote:
    @pytest.mark.asyncio
    async def test_apply_remote_keeps_remote_time(self, settings_engine):
        seen = []
        settings_engine.subscribe(seen.append)

        remote_time = "2024-03-01T12:00:00.000Z"
        assert await settings_engine.apply_remote({"lesson_category_order": ["c2"]}, remote_time)

        assert settings_engine.snapshot().modified_time == remote_time
        assert seen[-1].lesson_category_order == ["c2"]

    @pytest.mark.asyncio
    async def test_accepts_remote_last_writer_wins(self, settings_engine):
        assert await settings_engine.accepts_remote("2024-03-01T12:00:00.000Z")

        await settings_engine.apply_remote({}, "2024-03-01T12:00:00.000Z")

        assert await settings_engine.accepts_remote("2024-03-02T00:00:00.000Z")
        assert not await settings_engine.accepts_remote("2024-03-01T12:00:00.000Z")
        assert not await settings_engine.accepts_remote("2024-02-01T00:00:00.000Z")

    @pytest.mark.asyncio
    async def test_accepts_remote_rejects_bad_times(self, settings_engine):
        assert not await settings_engine.accepts_remote(None)
        assert not await settings_engine.accepts_remote("")
        assert not await settings_engine.accepts_remote("yesterday")


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_immediate_callback_when_loaded(self, settings_engine):
        await settings_engine.load()
        seen = []

        settings_engine.subscribe(seen.append)

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_update(self, settings_engine):
        def broken(settings):
            raise RuntimeError("listener bug")

        settings_engine.subscribe(broken)
        assert await settings_engine.update({"is_muted": True})

    @pytest.mark.asyncio
    async def test_unsubscribe(self, settings_engine):
        seen = []
        unsubscribe = settings_engine.subscribe(seen.append)
        unsubscribe()

        await settings_engine.update({"is_muted": True})
        assert seen == []


class TestGroupingConfiguration:
    @pytest.mark.asyncio
    async def test_save_and_get(self, settings_engine):
        config = GroupingConfiguration(
            category_order=["c1", "c2"],
            school_order=["s1"],
            instructor_order=["i1"],
            show_empty=True,
            show_count=True,
        )

        assert await settings_engine.save_grouping_configuration(ItemType.LESSON, config)

        assert await settings_engine.get_grouping_configuration(ItemType.LESSON) == config
        figure_config = await settings_engine.get_grouping_configuration(ItemType.FIGURE)
        assert figure_config.category_order == []
