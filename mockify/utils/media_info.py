"""Media file information utilities using FFprobe."""

import json
import subprocess
from dataclasses import dataclass

from mockify.config import get_settings


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


@dataclass
class MediaInfo:
    """Media file information."""

    duration_s: float | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    has_video: bool = False


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise RuntimeError(f"ffprobe could not be started: {e}") from e
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}") from e


def _parse_frame_rate(rate: str | None) -> float | None:
    """Parse an ffprobe rational like ``30000/1001``."""
    if not rate:
        return None
    if "/" in rate:
        num, den = rate.split("/", 1)
        if float(den) == 0:
            return None
        value = float(num) / float(den)
    else:
        value = float(rate)
    return value if value > 0 else None


def get_media_info(file_path: str) -> MediaInfo:
    """
    Get the video metadata the render loop needs.

    Duration comes from the video stream when present, otherwise from the
    container.

    Args:
        file_path: Path to media file

    Returns:
        MediaInfo

    Raises:
        RuntimeError: If ffprobe fails
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams")
    info = MediaInfo()

    format_info = data.get("format", {})
    if "duration" in format_info:
        info.duration_s = float(format_info["duration"])

    for stream in data.get("streams", []):
        if stream.get("codec_type") != "video" or info.has_video:
            continue
        info.has_video = True
        info.width = stream.get("width")
        info.height = stream.get("height")
        info.video_codec = stream.get("codec_name")
        info.fps = _parse_frame_rate(stream.get("avg_frame_rate")) or _parse_frame_rate(
            stream.get("r_frame_rate")
        )
        if stream.get("duration"):
            info.duration_s = float(stream["duration"])

    return info
