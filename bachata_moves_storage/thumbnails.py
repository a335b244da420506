"""
Thumbnail generation.

The store asks a :class:`ThumbnailGenerator` for a still frame whenever a
lesson or figure is created or its ``thumb_time`` changes. The default
implementation runs ``ffmpeg`` as a subprocess.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles
import aiofiles.os

from .exceptions import ThumbnailGenerationError
from .models import THUMBNAIL_CONTENT_TYPE, Blob

logger = logging.getLogger(__name__)


class ThumbnailGenerator(ABC):
    """Renders a JPEG still frame from a video blob."""

    @abstractmethod
    async def generate(self, video: Blob, thumb_time_ms: float) -> Blob:
        """Return the frame at *thumb_time_ms* milliseconds.

        Raises:
            ThumbnailGenerationError: If the frame cannot be rendered
        """


class FfmpegThumbnailGenerator(ThumbnailGenerator):
    """Extracts frames with the ``ffmpeg`` command line tool."""

    def __init__(
        self,
        executable: str = "ffmpeg",
        max_size: tuple[int, int] | None = (640, 640),
        timeout: float = 30.0,
    ):
        self.executable = executable
        self.max_size = max_size
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def build_command(self, source: Path, thumb_time_ms: float) -> list[str]:
        command = [
            self.executable,
            "-hide_banner",
            "-loglevel",
            "error",
            "-nostdin",
            "-y",
            "-ss",
            f"{max(thumb_time_ms, 0) / 1000:.3f}",
            "-i",
            str(source),
            "-an",
            "-frames:v",
            "1",
        ]
        filters: list[str] = []
        if self.max_size is not None:
            width, height = self.max_size
            filters.append(
                f"scale=min({width},iw):min({height},ih):force_original_aspect_ratio=decrease"
            )
        filters.append("scale=max(2,trunc(iw/2)*2):max(2,trunc(ih/2)*2)")
        filters.append("format=yuv420p")
        command += ["-vf", ",".join(filters)]
        command += ["-f", "image2pipe", "-vcodec", "mjpeg", "-q:v", "2", "pipe:1"]
        return command

    async def generate(self, video: Blob, thumb_time_ms: float) -> Blob:
        if not self.is_available():
            raise ThumbnailGenerationError(f"{self.executable} not found on PATH", thumb_time_ms)

        suffix = mimetypes.guess_extension(video.content_type) or ".bin"
        fd, tmp_name = tempfile.mkstemp(suffix=suffix)
        os.close(fd)
        source = Path(tmp_name)
        try:
            async with aiofiles.open(source, "wb") as f:
                await f.write(video.data)

            process = await asyncio.create_subprocess_exec(
                *self.build_command(source, thumb_time_ms),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await asyncio.wait_for(process.communicate(), self.timeout)
            except TimeoutError:
                process.kill()
                await process.wait()
                raise ThumbnailGenerationError("ffmpeg timed out", thumb_time_ms) from None

            if process.returncode != 0 or not stdout:
                message = stderr.decode("utf-8", "ignore").strip() or "unknown error"
                raise ThumbnailGenerationError(message, thumb_time_ms)

            logger.debug(f"Rendered {len(stdout)} byte thumbnail at {thumb_time_ms}ms")
            return Blob(stdout, THUMBNAIL_CONTENT_TYPE)
        finally:
            try:
                await aiofiles.os.remove(source)
            except FileNotFoundError:
                pass
