"""Frame sources for the render loop.

Every source follows the same lifecycle: ``open()`` loads metadata (the one
place a source can fail with SourceLoadError), ``start()`` begins playback,
``frame_at(pts)`` returns the frame presented at ``pts`` seconds or None once
the source has ended, and ``close()`` releases everything. Reads are
sequential: presentation times only move forward, except for an explicit
loop back to the start.
"""

import asyncio
import logging
import mimetypes
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from mockify.config import get_settings
from mockify.exceptions import SourceLoadError
from mockify.utils.media_info import get_media_info

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp"}
VIDEO_SUFFIXES = {".mp4", ".webm", ".mov", ".mkv", ".m4v", ".avi"}


class MediaSource(ABC):
    """A timed source of RGBA frames."""

    def __init__(self, label: str):
        self.label = label
        self.width = 0
        self.height = 0
        # None = no natural end (still images)
        self.duration_s: float | None = None
        self.opened = False

    @abstractmethod
    async def open(self) -> None:
        """Load metadata. Raises SourceLoadError."""

    async def start(self) -> None:
        """Begin playback. Sources without a decoder have nothing to start."""

    @abstractmethod
    async def frame_at(self, pts: float) -> Image.Image | None:
        """Frame presented at ``pts`` seconds, or None once the source has ended."""

    async def close(self) -> None:
        """Release decoder resources. Safe to call more than once."""


class StillImageSource(MediaSource):
    """A single image shown for the whole render."""

    def __init__(self, image: Image.Image | str | Path, label: str | None = None):
        if isinstance(image, Image.Image):
            super().__init__(label or "image")
            self._path: Path | None = None
            self.image: Image.Image | None = image
        else:
            super().__init__(label or str(image))
            self._path = Path(image)
            self.image = None

    async def open(self) -> None:
        if self.image is None:
            try:
                self.image = await asyncio.to_thread(self._load, self._path)
            except (OSError, UnidentifiedImageError) as e:
                raise SourceLoadError(self.label, str(e)) from e
        else:
            self.image = self.image.convert("RGBA")
        self.width, self.height = self.image.size
        self.opened = True

    @staticmethod
    def _load(path: Path) -> Image.Image:
        with Image.open(path) as img:
            return img.convert("RGBA")

    async def frame_at(self, pts: float) -> Image.Image | None:
        return self.image


class ImageSequenceSource(MediaSource):
    """Pre-decoded frames played at a fixed rate."""

    def __init__(self, frames: Sequence[Image.Image], fps: float, label: str = "sequence"):
        super().__init__(label)
        self.frames = list(frames)
        self.fps = fps

    async def open(self) -> None:
        if not self.frames:
            raise SourceLoadError(self.label, "no frames")
        if self.fps <= 0:
            raise SourceLoadError(self.label, f"invalid frame rate {self.fps}")
        self.frames = [frame.convert("RGBA") for frame in self.frames]
        self.width, self.height = self.frames[0].size
        self.duration_s = len(self.frames) / self.fps
        self.opened = True

    async def frame_at(self, pts: float) -> Image.Image | None:
        index = int(pts * self.fps + 1e-9)
        if index >= len(self.frames):
            return None
        return self.frames[index]


class VideoFileSource(MediaSource):
    """Video file decoded to RGBA frames by an ffmpeg subprocess.

    ffmpeg resamples the video to ``fps`` so decoded frame ``n`` is the frame
    presented at ``n / fps``.
    """

    def __init__(self, path: str | Path, fps: int | None = None):
        super().__init__(str(path))
        self.path = Path(path)
        self.fps = fps or get_settings().render_fps
        self.native_fps: float | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._index = -1
        self._frame: Image.Image | None = None
        self._ended = False

    async def open(self) -> None:
        if not self.path.exists():
            raise SourceLoadError(self.label, "file not found")
        try:
            info = await asyncio.to_thread(get_media_info, str(self.path))
        except RuntimeError as e:
            raise SourceLoadError(self.label, str(e)) from e
        if not info.has_video or not info.width or not info.height:
            raise SourceLoadError(self.label, "no video stream")

        self.width = info.width
        self.height = info.height
        self.duration_s = info.duration_s
        self.native_fps = info.fps
        self.opened = True
        logger.info(
            f"[SOURCE] {self.path.name}: {self.width}x{self.height}, "
            f"{self.duration_s}s @ {self.native_fps}fps ({info.video_codec})"
        )

    async def start(self) -> None:
        await self._spawn()

    async def _spawn(self) -> None:
        await self._stop_decoder()
        settings = get_settings()
        cmd = [
            settings.ffmpeg_path,
            "-v", "error",
            "-i", str(self.path),
            "-an",
            "-f", "rawvideo",
            "-pix_fmt", "rgba",
            "-r", str(self.fps),
            "pipe:1",
        ]
        self._proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        self._index = -1
        self._frame = None
        self._ended = False

    async def _read_next(self) -> bool:
        frame_size = self.width * self.height * 4
        try:
            data = await self._proc.stdout.readexactly(frame_size)
        except asyncio.IncompleteReadError:
            self._ended = True
            return False
        array = np.frombuffer(data, dtype=np.uint8).reshape((self.height, self.width, 4))
        self._frame = Image.fromarray(array)
        self._index += 1
        return True

    async def frame_at(self, pts: float) -> Image.Image | None:
        if self._proc is None:
            await self._spawn()

        target = int(pts * self.fps + 1e-9)
        if target < self._index:
            # Looping back to the start
            await self._spawn()

        while self._index < target:
            if self._ended or not await self._read_next():
                return None
        return self._frame

    async def _stop_decoder(self) -> None:
        proc = self._proc
        self._proc = None
        if proc is not None and proc.returncode is None:
            proc.kill()
            await proc.wait()

    async def close(self) -> None:
        await self._stop_decoder()


def open_source(path: str | Path, fps: int | None = None) -> MediaSource:
    """Pick a source implementation for a media file by its type."""
    path = Path(path)
    mime_type, _ = mimetypes.guess_type(path.name)
    suffix = path.suffix.lower()
    if (mime_type and mime_type.startswith("image/")) or suffix in IMAGE_SUFFIXES:
        return StillImageSource(path)
    if (mime_type and mime_type.startswith("video/")) or suffix in VIDEO_SUFFIXES:
        return VideoFileSource(path, fps=fps)
    raise SourceLoadError(str(path), f"unsupported media type {mime_type or suffix or 'unknown'}")


@dataclass
class RenderSources:
    """The media one render consumes."""

    background: MediaSource
    overlay_image: StillImageSource | None = None
    overlay_video: MediaSource | None = None

    def __iter__(self) -> Iterator[MediaSource]:
        for source in (self.background, self.overlay_image, self.overlay_video):
            if source is not None:
                yield source

    async def open_all(self) -> None:
        for source in self:
            if not source.opened:
                await source.open()

    async def close_all(self) -> None:
        for source in self:
            try:
                await source.close()
            except OSError as e:
                logger.warning(f"[SOURCE] Failed to close {source.label}: {e}")
