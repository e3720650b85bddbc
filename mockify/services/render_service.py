"""Local render execution.

Starts each job's render loop as its own asyncio task and returns
immediately; progress and results are observed through the JobStore.
"""

import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from mockify.config import Settings, get_settings
from mockify.exceptions import JobNotReadyError, MockifyError
from mockify.media.sources import RenderSources, StillImageSource, open_source
from mockify.render.driver import RenderLoopDriver, RenderOptions
from mockify.schemas.job import Job, JobStatus
from mockify.schemas.render import RenderRequest, parse_render_request
from mockify.services.job_store import JobStore

logger = logging.getLogger(__name__)


class RenderService:
    """Runs render jobs in-process."""

    def __init__(
        self,
        store: JobStore,
        driver: RenderLoopDriver | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.driver = driver or RenderLoopDriver(store, settings=self.settings)
        # Strong references so running renders are not garbage-collected
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def start(
        self,
        request: RenderRequest | Mapping[str, Any],
        sources: RenderSources | None = None,
    ) -> Job:
        """Validate the request, create the job and start rendering it.

        Args:
            request: Render submission
            sources: Pre-built sources; built from the request's paths when omitted

        Returns:
            The newly created job (``processing``, progress 0)

        Raises:
            InvalidTransformError: if the transform is rejected (no job is created)
            InvalidRenderRequestError: if another field is invalid (no job is created)
        """
        request = parse_render_request(request)
        job = self.store.create(request.params)

        if sources is None:
            try:
                sources = self.build_sources(request)
            except MockifyError as e:
                return self.store.fail(job.id, e.message, e.code)

        options = RenderOptions(
            quality=request.quality,
            preserve_original_speed=request.preserve_original_speed,
            exact_positioning=request.exact_positioning,
            preview=request.preview,
            preferred_container=request.preferred_container,
            capture_frame=request.capture_frame,
        )
        task = asyncio.create_task(
            self.driver.run(job.id, sources, request.transform, options),
            name=f"render-{job.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"[RENDER] Started job {job.id} locally ({len(self._tasks)} active)")
        return job

    def build_sources(self, request: RenderRequest) -> RenderSources:
        fps = self.settings.render_fps
        return RenderSources(
            background=open_source(request.background, fps=fps),
            overlay_image=StillImageSource(request.overlay_image),
            overlay_video=open_source(request.overlay_video, fps=fps) if request.overlay_video else None,
        )

    async def wait_all(self) -> None:
        """Wait for every running render to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    def result_bytes(self, job_id: str) -> bytes:
        """Read the encoded output of a completed job.

        Raises:
            JobNotFoundError: if the id is unknown
            JobNotReadyError: if the job has not completed
        """
        job = self.store.get(job_id)
        if job.status is not JobStatus.COMPLETED or job.result is None:
            raise JobNotReadyError(job_id, job.status.value)
        return Path(job.result.path).read_bytes()
