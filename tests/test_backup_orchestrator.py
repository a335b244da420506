"""Tests for backup run status tracking."""

import asyncio
import json

import pytest

from bachata_moves_storage.backup import BackupCodec, BackupOrchestrator, BackupState
from bachata_moves_storage.exceptions import MovesStorageError, UnsupportedFormatError
from bachata_moves_storage.models import GroupingCollection


@pytest.fixture
def orchestrator(store, settings_engine):
    return BackupOrchestrator(BackupCodec(store, settings_engine))


class TestStatus:
    @pytest.mark.asyncio
    async def test_export_transitions(self, orchestrator):
        states = []
        orchestrator.subscribe(lambda status: states.append(status.state))

        await orchestrator.export_data()

        assert states[0] is BackupState.EXPORTING
        assert states[-1] is BackupState.SUCCESS
        assert orchestrator.status.progress == 1.0
        assert orchestrator.status.message == "Export complete"

    @pytest.mark.asyncio
    async def test_failed_import_reports_error(self, orchestrator):
        payload = json.dumps({"__BACHATA_MOVES_EXPORT__": True, "version": 2, "data": {}})

        with pytest.raises(UnsupportedFormatError):
            await orchestrator.import_data(payload)

        status = orchestrator.status
        assert status.state is BackupState.ERROR
        assert status.progress == 0.0
        assert "Unsupported" in status.message

    @pytest.mark.asyncio
    async def test_reset(self, orchestrator):
        await orchestrator.export_data()
        orchestrator.reset()
        assert orchestrator.status.state is BackupState.IDLE
        assert orchestrator.status.progress is None

    @pytest.mark.asyncio
    async def test_concurrent_runs_refused(self, orchestrator, store, monkeypatch):
        release = asyncio.Event()
        original = store.read_snapshot

        async def slow_snapshot():
            await release.wait()
            return await original()

        monkeypatch.setattr(store, "read_snapshot", slow_snapshot)

        first = asyncio.create_task(orchestrator.export_data())
        await asyncio.sleep(0)
        assert orchestrator.status.running

        with pytest.raises(MovesStorageError):
            await orchestrator.import_data(b"{}")

        release.set()
        await first
        assert orchestrator.status.state is BackupState.SUCCESS

    @pytest.mark.asyncio
    async def test_failing_listener_ignored(self, orchestrator):
        def broken(status):
            raise RuntimeError("ui gone")

        orchestrator.subscribe(broken)
        await orchestrator.export_data()
        assert orchestrator.status.state is BackupState.SUCCESS


class TestFiles:
    @pytest.mark.asyncio
    async def test_export_and_import_file(self, orchestrator, store, tmp_path):
        await store.add_grouping(GroupingCollection.INSTRUCTORS, "Ana", entity_id="i1")
        path = tmp_path / "backup.json"

        size = await orchestrator.export_to_file(path)

        assert path.stat().st_size == size
        assert not (tmp_path / "backup.json.tmp").exists()

        await store.clear_all_data()
        summary = await orchestrator.import_from_file(path)

        assert summary.groupings == 1
        assert await store.get_grouping(GroupingCollection.INSTRUCTORS, "i1") is not None

    @pytest.mark.asyncio
    async def test_missing_import_file(self, orchestrator, tmp_path):
        with pytest.raises(OSError):
            await orchestrator.import_from_file(tmp_path / "missing.json")
        assert orchestrator.status.state is BackupState.ERROR

    @pytest.mark.asyncio
    async def test_skipped_entries_in_message(self, orchestrator):
        payload = json.dumps(
            {
                "__BACHATA_MOVES_EXPORT__": True,
                "version": 3,
                "data": {"schools": [{"id": "s1"}]},
            }
        )

        await orchestrator.import_data(payload)

        assert orchestrator.status.message == "Import complete (1 entries skipped)"
