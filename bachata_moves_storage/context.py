"""
Application context.

Constructs the store and every service on top of it, wires them together
and owns their lifetime. Nothing in the package is a module-level
singleton; callers hold an :class:`AppContext` and pass its services on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from .backup import BackupCodec, BackupOrchestrator
from .config import StoreConfig
from .settings import SettingsEngine
from .store import LocalStore
from .store.notifier import Sleep
from .sync import GroupingReconciler
from .thumbnails import FfmpegThumbnailGenerator, ThumbnailGenerator

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Every service of one open library."""

    config: StoreConfig
    store: LocalStore
    settings: SettingsEngine
    grouping: GroupingReconciler
    backup: BackupCodec
    backups: BackupOrchestrator

    @classmethod
    async def open(
        cls,
        config: StoreConfig | None = None,
        thumbnails: ThumbnailGenerator | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> AppContext:
        """Open the store and build the services.

        Args:
            config: Store configuration (from the environment when None)
            thumbnails: Thumbnail renderer (ffmpeg when None)
            sleep: Clock used by the change notifier
        """
        if config is None:
            config = StoreConfig.from_env()

        store = await LocalStore.open(config, thumbnails or FfmpegThumbnailGenerator(), sleep)
        settings = SettingsEngine(store, default_language=config.default_language)
        backup = BackupCodec(store, settings)

        logger.debug("Application context ready")
        return cls(
            config=config,
            store=store,
            settings=settings,
            grouping=GroupingReconciler(store, settings),
            backup=backup,
            backups=BackupOrchestrator(backup),
        )

    @classmethod
    @asynccontextmanager
    async def create(
        cls,
        config: StoreConfig | None = None,
        thumbnails: ThumbnailGenerator | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> AsyncIterator[AppContext]:
        """Open a context for the duration of an ``async with`` block.

        Usage:
            async with AppContext.create(StoreConfig(db_path="library.db")) as ctx:
                lessons = await ctx.store.get_lessons()
        """
        context = await cls.open(config, thumbnails, sleep)
        try:
            yield context
        finally:
            await context.close()

    async def close(self) -> None:
        await self.store.close()
