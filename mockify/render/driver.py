"""
Render loop for one job.

The driver runs a small state machine:

    LOADING -> ENCODING -> FINALIZING -> DONE
        \          \           \
         +----------+-----------+--> FAILED

LOADING opens every source and the encoder, ENCODING composites and encodes
one frame per clock tick, FINALIZING closes the encoder and writes the output.
Any exception moves the job to FAILED with its error code recorded on the
job; nothing is raised back to the caller of ``run``.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from mockify.config import Settings, get_settings
from mockify.exceptions import JobStateError, MockifyError, SourceLoadError
from mockify.media.sources import MediaSource, RenderSources
from mockify.render.compositor import QUALITY_RESAMPLE, draw_frame, new_frame_buffer
from mockify.render.encoder import EncoderHandle, EncoderHost, FFmpegEncoderHost, open_encoder
from mockify.render.scale import IDENTITY, ScaleFactor, resolve_scale_factor
from mockify.schemas.job import Job, RenderResult
from mockify.schemas.transform import Frame, Transform, clone_transform
from mockify.services.job_store import JobStore

logger = logging.getLogger(__name__)

# Overlay-driven renders follow the overlay's length within these bounds
MIN_OVERLAY_DURATION_S = 3.0
MAX_OVERLAY_DURATION_S = 30.0

# Progress stays below 100 until the job is actually completed
MAX_RUNNING_PROGRESS = 99

ProgressCallback = Callable[[int], None]


class DriverState(Enum):
    LOADING = "loading"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RenderOptions:
    """Per-job render options."""

    quality: str = "standard"
    preserve_original_speed: bool = True
    exact_positioning: bool = True
    preview: bool = False
    preferred_container: str = "mp4"
    # Frame the transform was captured in when the transform has none
    capture_frame: Frame | None = None


# ============================================================================
# Frame clocks
# ============================================================================


class FrameClock(ABC):
    """Decides when frame ``n`` may be produced."""

    def __init__(self, fps: int):
        self.fps = fps

    def start(self) -> None:
        pass

    @abstractmethod
    async def wait_for(self, frame_index: int) -> None:
        ...


class RealtimeClock(FrameClock):
    """Paces frames at their presentation time, keeping the source's speed."""

    def __init__(self, fps: int):
        super().__init__(fps)
        self._origin: float | None = None

    def start(self) -> None:
        self._origin = time.monotonic()

    async def wait_for(self, frame_index: int) -> None:
        if self._origin is None:
            self.start()
        delay = self._origin + frame_index / self.fps - time.monotonic()
        await asyncio.sleep(max(0.0, delay))


class FreeRunningClock(FrameClock):
    """Produces frames as fast as compositing allows, yielding between frames."""

    async def wait_for(self, frame_index: int) -> None:
        await asyncio.sleep(0)


def resolve_duration(
    overlay_duration_s: float | None,
    preview: bool = False,
    settings: Settings | None = None,
) -> float:
    """Target output duration in seconds."""
    settings = settings or get_settings()
    if overlay_duration_s:
        return min(max(overlay_duration_s, MIN_OVERLAY_DURATION_S), MAX_OVERLAY_DURATION_S)
    if preview:
        return settings.render_preview_duration_s
    return settings.render_default_duration_s


# ============================================================================
# Driver
# ============================================================================


class RenderLoopDriver:
    """Runs render jobs against a JobStore. One ``run`` call per job."""

    def __init__(
        self,
        store: JobStore,
        encoder_host: EncoderHost | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.encoder_host = encoder_host or FFmpegEncoderHost(self.settings.ffmpeg_path)
        self.output_dir = Path(self.settings.render_output_dir)

    async def run(
        self,
        job_id: str,
        sources: RenderSources,
        transform: Transform | None,
        options: RenderOptions | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> Job:
        """Render one job to completion or failure.

        Returns:
            The job's final record
        """
        options = options or RenderOptions()
        transform = clone_transform(transform) if transform is not None else None
        fps = self.settings.render_fps
        encoder: EncoderHandle | None = None
        state = DriverState.LOADING
        started = time.monotonic()

        try:
            self._log_state(job_id, state)
            await sources.open_all()
            background = sources.background
            width, height = background.width, background.height

            overlay_duration = sources.overlay_video.duration_s if sources.overlay_video else None
            duration = resolve_duration(overlay_duration, options.preview, self.settings)
            total_frames = max(1, round(duration * fps))
            scale_factor = self._resolve_scale(transform, options, width, height)
            resample = QUALITY_RESAMPLE.get(options.quality, QUALITY_RESAMPLE["standard"])
            buffer = new_frame_buffer(width, height)
            overlay_image = sources.overlay_image.image if sources.overlay_image else None

            logger.info(
                f"[RENDER] Job {job_id}: {width}x{height}@{fps}, {duration:.2f}s "
                f"({total_frames} frames), scale=({scale_factor.x:.3f}, {scale_factor.y:.3f})"
            )

            encoder = await open_encoder(
                self.encoder_host, width, height, fps, options.preferred_container
            )
            await background.start()
            if sources.overlay_video is not None:
                await sources.overlay_video.start()

            state = DriverState.ENCODING
            self._log_state(job_id, state)
            clock = RealtimeClock(fps) if options.preserve_original_speed else FreeRunningClock(fps)
            clock.start()
            loop_started = time.monotonic()
            frame_index = 0
            stop_reason = "target duration reached"

            while frame_index < total_frames:
                if time.monotonic() - loop_started >= self.settings.render_safety_timeout_s:
                    stop_reason = "safety timeout"
                    break

                await clock.wait_for(frame_index)
                pts = frame_index / fps
                background_frame = await background.frame_at(pts)
                if background_frame is None:
                    stop_reason = "background ended"
                    break
                overlay_frame = None
                if sources.overlay_video is not None:
                    overlay_frame = await self._overlay_frame(sources.overlay_video, pts)

                await asyncio.to_thread(
                    draw_frame,
                    buffer,
                    background_frame,
                    transform,
                    overlay_image,
                    overlay_frame,
                    scale_factor,
                    resample=resample,
                )
                await encoder.write(buffer)
                frame_index += 1
                self._report_progress(job_id, frame_index * 100 / total_frames, progress_callback)

            logger.info(f"[RENDER] Job {job_id}: stopped after {frame_index} frames ({stop_reason})")
            if frame_index == 0:
                raise SourceLoadError(background.label, "background produced no frames")

            state = DriverState.FINALIZING
            self._log_state(job_id, state)
            data = await encoder.close()
            await sources.close_all()
            path = await asyncio.to_thread(
                self._write_output, job_id, encoder.codec.container, data
            )
            result = RenderResult(
                path=str(path),
                download_url=path.resolve().as_uri(),
                container=encoder.codec.container,
                mime_type=encoder.codec.mime_type,
                codec=encoder.codec.encoder or encoder.codec.candidate.name,
                size_bytes=len(data),
                frame_count=frame_index,
                duration_s=frame_index / fps,
            )
            job = self.store.complete(job_id, result)
            state = DriverState.DONE
            self._log_state(job_id, state)
            if progress_callback:
                progress_callback(100)
            logger.info(f"[RENDER] Job {job_id} done in {time.monotonic() - started:.2f}s")
            return job

        except Exception as e:
            failed_in = state
            state = DriverState.FAILED
            code = e.code if isinstance(e, MockifyError) else "INTERNAL_ERROR"
            message = e.message if isinstance(e, MockifyError) else str(e) or type(e).__name__
            if isinstance(e, MockifyError):
                logger.error(f"[RENDER] Job {job_id} failed during {failed_in.value}: [{code}] {message}")
            else:
                logger.exception(f"[RENDER] Job {job_id} failed during {failed_in.value}")
            try:
                job = self.store.fail(job_id, message, code)
            except JobStateError:
                logger.warning(f"[RENDER] Job {job_id} already terminal, keeping its state")
                job = self.store.get(job_id)
            if encoder is not None:
                await self._abort_encoder(job_id, encoder)
            return job

        finally:
            await sources.close_all()

    @staticmethod
    async def _abort_encoder(job_id: str, encoder: EncoderHandle) -> None:
        try:
            await encoder.abort()
        except Exception as e:
            logger.warning(f"[RENDER] Job {job_id}: encoder abort failed: {e!r}")

    def _resolve_scale(
        self,
        transform: Transform | None,
        options: RenderOptions,
        width: int,
        height: int,
    ) -> ScaleFactor:
        if not options.exact_positioning:
            logger.info("[RENDER] Exact positioning disabled, placing at 1:1")
            return IDENTITY
        source = (transform.frame if transform is not None else None) or options.capture_frame
        return resolve_scale_factor(source, Frame(width=width, height=height))

    @staticmethod
    async def _overlay_frame(source: MediaSource, pts: float):
        """Overlay frame at ``pts``, looping back to the start when the overlay ends."""
        if source.duration_s:
            pts = pts % source.duration_s
        frame = await source.frame_at(pts)
        if frame is None and pts > 0:
            frame = await source.frame_at(0.0)
        return frame

    def _report_progress(
        self,
        job_id: str,
        percent: float,
        progress_callback: ProgressCallback | None,
    ) -> None:
        progress = self.store.update_progress(job_id, min(MAX_RUNNING_PROGRESS, int(percent)))
        if progress_callback:
            progress_callback(progress)

    def _write_output(self, job_id: str, container: str, data: bytes) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{job_id}.{container}"
        path.write_bytes(data)
        return path

    @staticmethod
    def _log_state(job_id: str, state: DriverState) -> None:
        logger.info(f"[RENDER] Job {job_id} -> {state.value}")
