"""
Settings engine.

Caches the composed :class:`Settings`, applies patches optimistically and
persists both partitions through the store. Local writes stamp the sync
partition with a fresh ``modified_time``; remote writes keep the remote one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..exceptions import ValidationError
from ..id_utils import utc_now_iso
from ..models import ItemType
from .types import (
    GROUPING_FIELDS,
    DeviceSettings,
    GroupingConfiguration,
    Settings,
    SyncSettings,
)

if TYPE_CHECKING:
    from ..store.local import LocalStore

logger = logging.getLogger(__name__)

SettingsListener = Callable[[Settings], Any]


def _parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class SettingsEngine:
    """Loads, updates and broadcasts application settings."""

    def __init__(self, store: LocalStore, default_language: str = "english"):
        self._store = store
        self.default_language = default_language
        self._settings: Settings | None = None
        self._loading: asyncio.Task[Settings] | None = None
        self._listeners: list[SettingsListener] = []
        self._write_lock = asyncio.Lock()

    def defaults(self) -> Settings:
        return Settings(
            device=DeviceSettings(language=self.default_language),
            sync=SyncSettings(),
        )

    def snapshot(self) -> Settings | None:
        """Cached settings, or None before the first load."""
        return self._settings

    async def load(self) -> Settings:
        """Return the cached settings, reading them once if needed.

        Concurrent callers share one read. A failed read falls back to the
        defaults.
        """
        if self._settings is not None:
            return self._settings

        if self._loading is None:
            self._loading = asyncio.get_running_loop().create_task(self._read())
        task = self._loading
        try:
            return await task
        finally:
            if self._loading is task:
                self._loading = None

    async def reload(self) -> Settings:
        self._settings = None
        settings = await self.load()
        self._notify(settings)
        return settings

    async def _read(self) -> Settings:
        defaults = self.defaults()
        try:
            device_data, sync_data = await self._store.get_raw_settings()
        except Exception as e:
            logger.error(f"Failed to read settings, using defaults: {e}")
            self._settings = defaults
            return defaults

        device, ignored_device = defaults.device.merged_with_wire(device_data)
        sync, ignored_sync = defaults.sync.merged_with_wire(sync_data)
        if ignored_device or ignored_sync:
            logger.debug(f"Ignored unknown settings keys: {ignored_device + ignored_sync}")

        self._settings = Settings(device=device, sync=sync)
        return self._settings

    async def _persist(self, settings: Settings) -> None:
        await self._store.save_settings(settings.device.to_wire(), settings.sync.to_wire())

    async def _apply(self, patch: dict[str, Any], modified_time: str) -> bool:
        # serialized: a rollback restores the state this write started from
        async with self._write_lock:
            current = await self.load()
            changed = current.with_changes(patch)
            updated = Settings(
                device=changed.device,
                sync=replace(changed.sync, modified_time=modified_time),
            )

            self._settings = updated
            try:
                await self._persist(updated)
            except Exception as e:
                logger.error(f"Failed to persist settings, rolling back: {e}")
                self._settings = current
                return False
            return True

    async def update(self, patch: dict[str, Any], *, silent: bool = False) -> bool:
        """Apply a local change.

        Args:
            patch: snake_case field names mapped to new values
            silent: Skip subscriber notification

        Returns:
            False if persisting failed and the change was rolled back

        Raises:
            ValidationError: On unknown fields or wrongly typed values
        """
        ok = await self._apply(patch, utc_now_iso())
        if ok and not silent:
            self._notify(self._settings)
        return ok

    async def apply_remote(self, patch: dict[str, Any], modified_time: str) -> bool:
        """Apply a change received from another device, keeping its timestamp."""
        ok = await self._apply(patch, modified_time)
        self._notify(self._settings)
        return ok

    async def accepts_remote(self, modified_time: str | None) -> bool:
        """Whether a remote sync partition stamped *modified_time* is newer than ours."""
        if not modified_time:
            return False
        current = await self.load()
        local = current.sync.modified_time
        try:
            remote_time = _parse_time(modified_time)
        except ValueError:
            logger.warning(f"Ignoring remote settings with malformed time {modified_time!r}")
            return False
        if not local:
            return True
        try:
            return remote_time > _parse_time(local)
        except ValueError:
            return True

    async def toggle_in_list(self, field: str, value: str) -> bool:
        """Add *value* to a list setting, or remove it when already present."""
        current = await self.load()
        items = getattr(current, field, None)
        if not isinstance(items, list):
            raise ValidationError(field, "not a list setting")
        if value in items:
            updated = [item for item in items if item != value]
        else:
            updated = [*items, value]
        return await self.update({field: updated})

    async def toggle_flag(self, field: str) -> bool:
        current = await self.load()
        flag = getattr(current, field, None)
        if not isinstance(flag, bool):
            raise ValidationError(field, "not a boolean setting")
        return await self.update({field: not flag})

    async def get_grouping_configuration(self, item_type: ItemType) -> GroupingConfiguration:
        return GROUPING_FIELDS[item_type].from_settings(await self.load())

    async def save_grouping_configuration(
        self, item_type: ItemType, config: GroupingConfiguration
    ) -> bool:
        """Persist order arrays and display toggles for one item type."""
        return await self.update(GROUPING_FIELDS[item_type].to_patch(config))

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register *listener*; it is called at once when settings are loaded."""
        self._listeners.append(listener)
        if self._settings is not None:
            self._call(listener, self._settings)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, settings: Settings | None) -> None:
        if settings is None:
            return
        for listener in list(self._listeners):
            self._call(listener, settings)

    def _call(self, listener: SettingsListener, settings: Settings) -> None:
        try:
            listener(settings)
        except Exception as e:
            logger.error(f"Settings listener {listener!r} failed: {e}")
