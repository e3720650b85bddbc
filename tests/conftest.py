"""
Pytest fixtures for mockify tests.

Rendering tests run against an in-memory encoder host, so they need neither
ffmpeg nor real media files. Tests that do need ffmpeg/ffprobe are marked
with @pytest.mark.requires_ffmpeg and skipped when the binaries are missing.
Run `pytest -m "not requires_ffmpeg"` to skip them explicitly.
"""

import shutil
import tempfile
from pathlib import Path

import pytest
from PIL import Image

from mockify.config import Settings
from mockify.render.driver import RenderLoopDriver
from mockify.render.encoder import EncoderHost, EncoderSession, NegotiatedCodec
from mockify.services.job_store import JobStore
from mockify.services.render_service import RenderService


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg/ffprobe on PATH (skipped otherwise)"
    )


def pytest_collection_modifyitems(config, items):
    if _ffmpeg_available():
        return
    skip = pytest.mark.skip(reason="ffmpeg/ffprobe not available on PATH")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip)


class FakeEncoderSession(EncoderSession):
    """Keeps the raw RGB frames instead of encoding them."""

    def __init__(self, codec: NegotiatedCodec, width: int, height: int, fail_after: int | None = None):
        self.codec = codec
        self.width = width
        self.height = height
        self.fail_after = fail_after
        self.frames: list[bytes] = []
        self.finish_calls = 0
        self.aborted = False

    async def write(self, data: bytes) -> None:
        if self.fail_after is not None and len(self.frames) >= self.fail_after:
            raise RuntimeError("encoder crashed")
        self.frames.append(data)

    async def finish(self) -> bytes:
        self.finish_calls += 1
        return f"FAKE-{self.codec.container}-{len(self.frames)}".encode()

    async def abort(self) -> None:
        self.aborted = True

    def frame_image(self, index: int) -> Image.Image:
        return Image.frombytes("RGB", (self.width, self.height), self.frames[index])


class FakeEncoderHost(EncoderHost):
    """Encoder host with a fixed capability set. ``None`` = no usable encoder."""

    def __init__(self, encoders=("libx264", "libvpx-vp9"), fail_after: int | None = None):
        self.encoders = None if encoders is None else frozenset(encoders)
        self.fail_after = fail_after
        self.sessions: list[FakeEncoderSession] = []

    def available_encoders(self) -> frozenset[str] | None:
        return self.encoders

    async def start_session(self, codec, width, height, fps, bitrate) -> FakeEncoderSession:
        session = FakeEncoderSession(codec, width, height, fail_after=self.fail_after)
        self.sessions.append(session)
        return session


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="mockify_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_output_dir: Path) -> Settings:
    """Settings writing into the temp dir, at 10fps to keep renders short."""
    return Settings(
        render_output_dir=str(temp_output_dir / "renders"),
        upload_dir=str(temp_output_dir / "uploads"),
        render_fps=10,
        render_default_duration_s=5.0,
        render_preview_duration_s=3.0,
        render_safety_timeout_s=20.0,
        remote_render_url="",
    )


@pytest.fixture
def store() -> JobStore:
    return JobStore(ttl_seconds=3600)


@pytest.fixture
def make_encoder_host():
    """Factory for FakeEncoderHost."""
    return FakeEncoderHost


@pytest.fixture
def encoder_host() -> FakeEncoderHost:
    return FakeEncoderHost()


@pytest.fixture
def solid_image():
    """Factory for solid-color RGBA images."""

    def _make(size: tuple[int, int], color: tuple[int, ...]) -> Image.Image:
        if len(color) == 3:
            color = (*color, 255)
        return Image.new("RGBA", size, color)

    return _make


@pytest.fixture
def transform_data() -> dict:
    """Editor transform: 100x80 image at (100, 50), scaled 2x."""
    return {
        "left": 100,
        "top": 50,
        "scaleX": 2,
        "scaleY": 2,
        "angle": 0,
        "originalWidth": 100,
        "originalHeight": 80,
    }


@pytest.fixture
def media_files(temp_output_dir: Path, solid_image) -> dict[str, Path]:
    """Small background and overlay PNGs on disk."""
    background = temp_output_dir / "background.png"
    overlay = temp_output_dir / "overlay.png"
    solid_image((64, 36), (0, 0, 255)).save(background)
    solid_image((8, 8), (255, 0, 0)).save(overlay)
    return {"background": background, "overlay_image": overlay}


@pytest.fixture
def sample_video(temp_output_dir: Path) -> Path:
    """A 1 second 64x48 test pattern video at 10fps."""
    import subprocess

    path = temp_output_dir / "sample.mp4"
    subprocess.run(
        [
            "ffmpeg", "-v", "error", "-y",
            "-f", "lavfi", "-i", "testsrc=size=64x48:rate=10:duration=1",
            "-pix_fmt", "yuv420p",
            str(path),
        ],
        check=True,
    )
    return path


@pytest.fixture
def render_service(store: JobStore, encoder_host: FakeEncoderHost, settings: Settings) -> RenderService:
    """Local render service on the fake encoder."""
    driver = RenderLoopDriver(store, encoder_host=encoder_host, settings=settings)
    return RenderService(store, driver=driver, settings=settings)


@pytest.fixture
def render_request(media_files: dict[str, Path], transform_data: dict) -> dict:
    """A 3 second preview render of the on-disk PNGs, not paced in real time."""
    return {
        "background": str(media_files["background"]),
        "overlay_image": str(media_files["overlay_image"]),
        "transform": transform_data,
        "quality": "low",
        "preserve_original_speed": False,
        "preview": True,
    }
