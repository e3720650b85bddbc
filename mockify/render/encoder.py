"""Encoder negotiation and frame encoding.

Codec selection is an explicit capability query over a static, ordered list
of candidates: the first candidate the host can encode wins. Hosts only
answer "which encoders do you have"; nothing is probed by trial and error.

The production host drives an ffmpeg subprocess: raw RGB frames go in on
stdin, the muxed container stream comes out on stdout and is accumulated in
chunks until the encoder is closed.
"""

import asyncio
import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass

from PIL import Image

from mockify.config import get_settings
from mockify.exceptions import EncoderUnsupportedError

logger = logging.getLogger(__name__)

# Fixed quality-over-size policy; intentionally not a setting.
ENCODER_BITRATE = 5_000_000

READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class CodecCandidate:
    """One container/codec combination the adapter may negotiate."""

    name: str
    container: str  # "webm" | "mp4"
    mime_type: str
    # Acceptable encoders, most preferred first. Empty = let the muxer decide.
    encoders: tuple[str, ...] = ()


VP9_WEBM = CodecCandidate("vp9-webm", "webm", "video/webm;codecs=vp9", ("libvpx-vp9",))
VP8_WEBM = CodecCandidate("vp8-webm", "webm", "video/webm;codecs=vp8", ("libvpx",))
WEBM = CodecCandidate("webm", "webm", "video/webm", ("libvpx-vp9", "libvpx", "libaom-av1", "libsvtav1"))
H264_MP4 = CodecCandidate("h264-mp4", "mp4", "video/mp4;codecs=avc1", ("libx264", "libopenh264"))
MP4 = CodecCandidate("mp4", "mp4", "video/mp4", ("libx264", "libopenh264", "mpeg4"))
PLATFORM_DEFAULT = CodecCandidate("platform-default", "mp4", "video/mp4")

WEBM_FIRST: tuple[CodecCandidate, ...] = (VP9_WEBM, VP8_WEBM, WEBM, MP4, PLATFORM_DEFAULT)
MP4_FIRST: tuple[CodecCandidate, ...] = (H264_MP4, MP4, VP9_WEBM, VP8_WEBM, WEBM, PLATFORM_DEFAULT)


def candidate_order(preferred_container: str | None) -> tuple[CodecCandidate, ...]:
    """Ordered candidate list for a container preference."""
    if preferred_container == "mp4":
        return MP4_FIRST
    return WEBM_FIRST


@dataclass(frozen=True)
class NegotiatedCodec:
    candidate: CodecCandidate
    encoder: str | None  # None = muxer default

    @property
    def container(self) -> str:
        return self.candidate.container

    @property
    def mime_type(self) -> str:
        return self.candidate.mime_type


# ============================================================================
# Hosts
# ============================================================================


class EncoderSession(ABC):
    """A running encoder accepting raw RGB24 frames."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Push one frame of raw RGB24 bytes."""

    @abstractmethod
    async def finish(self) -> bytes:
        """Flush and return the complete encoded stream."""

    @abstractmethod
    async def abort(self) -> None:
        """Release resources without producing output."""


class EncoderHost(ABC):
    """Something that can encode video: answers capability queries and starts sessions."""

    @abstractmethod
    def available_encoders(self) -> frozenset[str] | None:
        """Encoder names this host provides, or None if the host is unusable."""

    @abstractmethod
    async def start_session(
        self,
        codec: NegotiatedCodec,
        width: int,
        height: int,
        fps: int,
        bitrate: int,
    ) -> EncoderSession:
        """Start encoding with a negotiated codec."""

    def pick_encoder(self, candidate: CodecCandidate) -> str | None:
        """Return the encoder to use for ``candidate``, "" for muxer default, None if unsupported."""
        available = self.available_encoders()
        if available is None:
            return None
        if not candidate.encoders:
            return ""
        for encoder in candidate.encoders:
            if encoder in available:
                return encoder
        return None

    def supports(self, candidate: CodecCandidate) -> bool:
        return self.pick_encoder(candidate) is not None


def negotiate_codec(host: EncoderHost, preferred_container: str | None = None) -> NegotiatedCodec:
    """Select the first candidate the host supports.

    Raises:
        EncoderUnsupportedError: if no candidate, including the platform
            default, is available
    """
    candidates = candidate_order(preferred_container)
    for candidate in candidates:
        encoder = host.pick_encoder(candidate)
        if encoder is not None:
            return NegotiatedCodec(candidate=candidate, encoder=encoder or None)
    raise EncoderUnsupportedError(tried=[c.name for c in candidates])


def _parse_encoder_list(output: str) -> frozenset[str]:
    """Parse ``ffmpeg -encoders`` output into the set of video encoder names."""
    names: set[str] = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if stripped.startswith("------"):
            in_table = True
            continue
        if not in_table or not stripped:
            continue
        parts = stripped.split()
        if len(parts) >= 2 and parts[0].startswith("V"):
            names.add(parts[1])
    return frozenset(names)


class FFmpegEncoderHost(EncoderHost):
    """Encodes through an ffmpeg subprocess."""

    def __init__(self, ffmpeg_path: str | None = None):
        self.ffmpeg_path = ffmpeg_path or get_settings().ffmpeg_path
        self._encoders: frozenset[str] | None = None
        self._probed = False

    def available_encoders(self) -> frozenset[str] | None:
        if not self._probed:
            self._encoders = self._probe()
            self._probed = True
        return self._encoders

    def _probe(self) -> frozenset[str] | None:
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-hide_banner", "-encoders"],
                capture_output=True,
                text=True,
            )
        except OSError as e:
            logger.warning(f"[ENCODER] ffmpeg not available at {self.ffmpeg_path}: {e}")
            return None
        if result.returncode != 0:
            logger.warning(f"[ENCODER] ffmpeg -encoders failed: {result.stderr[-500:]}")
            return None
        encoders = _parse_encoder_list(result.stdout)
        logger.info(f"[ENCODER] ffmpeg provides {len(encoders)} video encoders")
        return encoders

    def build_command(
        self,
        codec: NegotiatedCodec,
        width: int,
        height: int,
        fps: int,
        bitrate: int,
    ) -> list[str]:
        """Build the ffmpeg command for a session without executing it."""
        cmd = [
            self.ffmpeg_path,
            "-hide_banner", "-loglevel", "error", "-y",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{width}x{height}",
            "-r", str(fps),
            "-i", "pipe:0",
            # 4:2:0 needs even dimensions; pad instead of scaling to keep geometry
            "-vf", "pad=ceil(iw/2)*2:ceil(ih/2)*2",
            "-pix_fmt", "yuv420p",
        ]
        if codec.encoder:
            cmd.extend(["-c:v", codec.encoder])
        cmd.extend(["-b:v", str(bitrate)])

        if codec.container == "mp4":
            # Plain MP4 needs a seekable output; fragmented MP4 streams to a pipe
            cmd.extend(["-movflags", "frag_keyframe+empty_moov+default_base_moof", "-f", "mp4"])
        else:
            cmd.extend(["-f", "webm"])
        cmd.append("pipe:1")
        return cmd

    async def start_session(
        self,
        codec: NegotiatedCodec,
        width: int,
        height: int,
        fps: int,
        bitrate: int,
    ) -> EncoderSession:
        cmd = self.build_command(codec, width, height, fps, bitrate)
        logger.info(f"[ENCODER] Starting: {' '.join(cmd)}")
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        return FFmpegEncoderSession(proc)


class FFmpegEncoderSession(EncoderSession):
    def __init__(self, proc: asyncio.subprocess.Process):
        self.proc = proc
        self.chunks: list[bytes] = []
        self._stderr = b""
        self._stdout_task = asyncio.create_task(self._collect_stdout())
        self._stderr_task = asyncio.create_task(self._collect_stderr())

    async def _collect_stdout(self) -> None:
        while True:
            chunk = await self.proc.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self.chunks.append(chunk)

    async def _collect_stderr(self) -> None:
        self._stderr = await self.proc.stderr.read()

    def _stderr_tail(self) -> str:
        return self._stderr.decode("utf-8", errors="replace")[-2000:]

    async def write(self, data: bytes) -> None:
        try:
            self.proc.stdin.write(data)
            await self.proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            await self._stderr_task
            raise RuntimeError(f"ffmpeg encoder exited early: {self._stderr_tail()}") from e

    async def finish(self) -> bytes:
        self.proc.stdin.close()
        await self._stdout_task
        await self._stderr_task
        returncode = await self.proc.wait()
        if returncode != 0:
            raise RuntimeError(f"ffmpeg failed (code {returncode}):\n{self._stderr_tail()}")
        return b"".join(self.chunks)

    async def abort(self) -> None:
        if self.proc.returncode is None:
            self.proc.kill()
            await self.proc.wait()
        for task in (self._stdout_task, self._stderr_task):
            if not task.done():
                task.cancel()


# ============================================================================
# Handle
# ============================================================================


class EncoderHandle:
    """Open encoder for one job. Frames are encoded in the order written."""

    def __init__(self, session: EncoderSession, codec: NegotiatedCodec, width: int, height: int):
        self.session = session
        self.codec = codec
        self.width = width
        self.height = height
        self.frame_count = 0
        self._result: bytes | None = None
        self._aborted = False

    @property
    def closed(self) -> bool:
        return self._result is not None or self._aborted

    async def write(self, frame: Image.Image) -> None:
        if self.closed:
            raise RuntimeError("Encoder is closed")
        if frame.size != (self.width, self.height):
            raise ValueError(
                f"Frame size {frame.size[0]}x{frame.size[1]} does not match "
                f"encoder size {self.width}x{self.height}"
            )
        await self.session.write(frame.convert("RGB").tobytes())
        self.frame_count += 1

    async def close(self) -> bytes:
        """Finalize and return the encoded stream. Repeated calls return the same bytes."""
        if self._result is not None:
            return self._result
        if self._aborted:
            raise RuntimeError("Encoder was aborted")
        self._result = await self.session.finish()
        logger.info(
            f"[ENCODER] Finalized {self.frame_count} frames, "
            f"{len(self._result)} bytes ({self.codec.candidate.name})"
        )
        return self._result

    async def abort(self) -> None:
        if self.closed:
            return
        self._aborted = True
        await self.session.abort()


async def open_encoder(
    host: EncoderHost,
    width: int,
    height: int,
    fps: int,
    preferred_container: str | None = "mp4",
) -> EncoderHandle:
    """Negotiate a codec and start an encoder sized to the output buffer.

    Raises:
        EncoderUnsupportedError: if the host supports no candidate
    """
    # Capability probes may shell out; keep them off the event loop.
    await asyncio.to_thread(host.available_encoders)
    codec = negotiate_codec(host, preferred_container)
    logger.info(
        f"[ENCODER] Negotiated {codec.candidate.name} "
        f"(encoder={codec.encoder or 'default'}, {width}x{height}@{fps})"
    )
    session = await host.start_session(codec, width, height, fps, ENCODER_BITRATE)
    return EncoderHandle(session, codec, width, height)
