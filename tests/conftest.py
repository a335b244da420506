"""
Shared test configuration and fixtures.

Provides a deterministic thumbnail generator, a manual ticker that drives
the change notifier's coalescing window, and stores backed by real
in-memory SQLite.
"""

import asyncio
import logging

import pytest

from bachata_moves_storage.config import StoreConfig
from bachata_moves_storage.exceptions import ThumbnailGenerationError
from bachata_moves_storage.models import THUMBNAIL_CONTENT_TYPE, Blob
from bachata_moves_storage.settings import SettingsEngine
from bachata_moves_storage.store import LocalStore
from bachata_moves_storage.thumbnails import ThumbnailGenerator

logger = logging.getLogger(__name__)


class FakeThumbnailGenerator(ThumbnailGenerator):
    """
    Thumbnail generator for testing without ffmpeg.

    The rendered bytes encode the thumb time and the first bytes of the
    video, so tests can tell which frame of which video a thumbnail shows.
    """

    def __init__(self):
        self.calls: list[tuple[bytes, float]] = []
        self.fail = False
        # when set, rendering waits until the event is released
        self.gate: asyncio.Event | None = None

    async def generate(self, video: Blob, thumb_time_ms: float) -> Blob:
        self.calls.append((video.data, thumb_time_ms))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ThumbnailGenerationError("forced failure", int(thumb_time_ms))
        return Blob(f"thumb@{thumb_time_ms}:".encode() + video.data[:8], THUMBNAIL_CONTENT_TYPE)


class ManualTicker:
    """Replacement for ``asyncio.sleep`` that only wakes up on :meth:`tick`."""

    def __init__(self):
        self._waiters: list[asyncio.Future] = []
        self.delays: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        await future

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def tick(self) -> None:
        """Release every pending sleep and let woken tasks run."""
        waiters, self._waiters = self._waiters, []
        for future in waiters:
            if not future.done():
                future.set_result(None)
        for _ in range(5):
            await asyncio.sleep(0)


def make_video(tag: bytes = b"v1") -> Blob:
    return Blob(tag + b"-\x00\x00\x00\x18ftypmp42" + bytes(range(32)), "video/mp4")


@pytest.fixture
def thumbnails():
    return FakeThumbnailGenerator()


@pytest.fixture
def ticker():
    return ManualTicker()


@pytest.fixture
def store_config(tmp_path):
    return StoreConfig(db_path=":memory:", cache_dir=tmp_path / "handles")


@pytest.fixture
async def store(store_config, thumbnails, ticker):
    """Fixture providing an open in-memory store."""
    store = await LocalStore.open(store_config, thumbnails, sleep=ticker.sleep)
    yield store
    await store.close()


@pytest.fixture
async def settings_engine(store):
    return SettingsEngine(store)


@pytest.fixture
def video():
    return make_video()


@pytest.fixture
def make_video_blob():
    """Factory for distinct video blobs."""
    return make_video
