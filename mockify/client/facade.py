"""Render client facade.

One entry point for submitting and polling render jobs regardless of where
they run. A configured remote backend is tried first; when it cannot be
reached the job is rendered locally instead. The facade owns no timers;
polling cadence belongs to the caller (see ``mockify.client.polling``).
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from mockify.client.remote import RemoteRenderBackend
from mockify.exceptions import JobNotFoundError, NetworkError
from mockify.media.sources import RenderSources
from mockify.schemas.job import JobStatusResponse
from mockify.schemas.render import RenderRequest, parse_render_request
from mockify.services.job_store import JobStore
from mockify.services.render_service import RenderService

logger = logging.getLogger(__name__)


class RenderClient:
    def __init__(self, service: RenderService, remote: RemoteRenderBackend | None = None):
        self.service = service
        self.remote = remote
        self._fallback_logged = False

    @property
    def store(self) -> JobStore:
        return self.service.store

    async def submit(
        self,
        request: RenderRequest | Mapping[str, Any],
        sources: RenderSources | None = None,
    ) -> str:
        """Submit a render job and return its id.

        Raises:
            InvalidTransformError: if the transform is rejected
            InvalidRenderRequestError: if another field is invalid
            RemoteRenderError: if the remote backend rejects the job
        """
        request = parse_render_request(request)

        if self.remote is not None:
            try:
                return await self.remote.submit(request)
            except NetworkError as e:
                if not self._fallback_logged:
                    logger.warning(f"[CLIENT] {e.message}; rendering locally from now on")
                    self._fallback_logged = True
                else:
                    logger.debug(f"[CLIENT] Remote unreachable, rendering locally: {e.message}")

        job = await self.service.start(request, sources=sources)
        return job.id

    async def poll(self, job_id: str) -> JobStatusResponse:
        """Current status of a job, local jobs first.

        Raises:
            JobNotFoundError: if neither the local store nor the remote knows the id
            NetworkError: if the remote cannot be reached (not retried here)
        """
        try:
            return JobStatusResponse.from_job(self.store.get(job_id))
        except JobNotFoundError:
            if self.remote is None:
                raise
        return await self.remote.status(job_id)

    async def download(self, job_id: str) -> bytes:
        """Encoded video of a completed job."""
        try:
            return await asyncio.to_thread(self.service.result_bytes, job_id)
        except JobNotFoundError:
            if self.remote is None:
                raise
        return await self.remote.download(job_id)

    async def health(self) -> bool:
        """True if the remote backend is reachable. Always False without one."""
        if self.remote is None:
            return False
        return await self.remote.health()
