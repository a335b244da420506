"""
Backup run status.

Wraps :class:`BackupCodec` with a small status machine that a UI or the
command line can observe: idle -> exporting/importing -> success/error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import MovesStorageError
from .codec import BackupCodec, ImportSummary

logger = logging.getLogger(__name__)


class BackupState(Enum):
    IDLE = "idle"
    EXPORTING = "exporting"
    IMPORTING = "importing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class BackupStatus:
    state: BackupState = BackupState.IDLE
    progress: float | None = None
    message: str | None = None

    @property
    def running(self) -> bool:
        return self.state in (BackupState.EXPORTING, BackupState.IMPORTING)


StatusListener = Callable[[BackupStatus], Any]


class BackupOrchestrator:
    """Runs exports and imports one at a time and broadcasts their status."""

    def __init__(self, codec: BackupCodec):
        self.codec = codec
        self._status = BackupStatus()
        self._listeners: list[StatusListener] = []

    @property
    def status(self) -> BackupStatus:
        return self._status

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes: Any) -> None:
        self._status = replace(self._status, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._status)
            except Exception as e:
                logger.error(f"Backup status listener {listener!r} failed: {e}")

    def _on_progress(self, value: float) -> None:
        self._set(progress=value)

    def _begin(self, state: BackupState) -> None:
        if self._status.running:
            raise MovesStorageError(
                f"A backup run is already {self._status.state.value}",
                {"state": self._status.state.value},
            )
        self._set(state=state, progress=0.0, message=None)

    def _fail(self, operation: str, error: Exception) -> None:
        logger.error(f"Backup {operation} failed: {error}")
        self._set(state=BackupState.ERROR, progress=0.0, message=str(error))

    def reset(self) -> None:
        """Return to idle after a finished run."""
        if self._status.running:
            return
        self._set(state=BackupState.IDLE, progress=None, message=None)

    async def export_data(self) -> bytes:
        self._begin(BackupState.EXPORTING)
        try:
            payload = await self.codec.export_all_data(self._on_progress)
        except Exception as e:
            self._fail("export", e)
            raise
        self._set(state=BackupState.SUCCESS, progress=1.0, message="Export complete")
        return payload

    async def import_data(self, payload: bytes | str) -> ImportSummary:
        self._begin(BackupState.IMPORTING)
        try:
            summary = await self.codec.import_data(payload, self._on_progress)
        except Exception as e:
            self._fail("import", e)
            raise
        message = "Import complete"
        if summary.skipped:
            message += f" ({len(summary.skipped)} entries skipped)"
        self._set(state=BackupState.SUCCESS, progress=1.0, message=message)
        return summary

    async def export_to_file(self, path: Path) -> int:
        """Export to *path* atomically; returns the number of bytes written."""
        payload = await self.export_data()
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            self._fail("export", e)
            raise
        logger.info(f"Backup written to {path}")
        return len(payload)

    async def import_from_file(self, path: Path) -> ImportSummary:
        try:
            async with aiofiles.open(path, "rb") as f:
                payload = await f.read()
        except OSError as e:
            self._fail("import", e)
            raise
        return await self.import_data(payload)
