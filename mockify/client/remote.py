"""HTTP client for a remote mockify render backend."""

import json
import logging
import mimetypes
from pathlib import Path

import httpx

from mockify.config import Settings, get_settings
from mockify.exceptions import JobNotFoundError, NetworkError, RemoteRenderError, SourceLoadError
from mockify.schemas.job import JobStatusResponse
from mockify.schemas.render import RenderRequest

logger = logging.getLogger(__name__)


def _form_bool(value: bool) -> str:
    return "true" if value else "false"


class RemoteRenderBackend:
    """Talks to ``/api/render`` on another mockify service.

    Transport faults (connect errors, timeouts, dropped connections) surface
    as NetworkError; answers from the backend surface as JobNotFoundError or
    RemoteRenderError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        submit_timeout: float = 10.0,
        status_timeout: float = 5.0,
        health_timeout: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.submit_timeout = submit_timeout
        self.status_timeout = status_timeout
        self.health_timeout = health_timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RemoteRenderBackend | None":
        """Backend for ``remote_render_url``, or None when no remote is configured."""
        settings = settings or get_settings()
        if not settings.remote_render_url:
            return None
        return cls(
            settings.remote_render_url,
            submit_timeout=settings.remote_submit_timeout_s,
            status_timeout=settings.remote_status_timeout_s,
            health_timeout=settings.remote_health_timeout_s,
        )

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create an async HTTP client for the backend."""
        return httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self._transport)

    async def _request(self, method: str, url: str, timeout: float, **kwargs) -> httpx.Response:
        try:
            async with self._client(timeout) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise NetworkError(f"Render backend unreachable: {type(e).__name__}: {e}") from e

    @staticmethod
    def _raise_for_status(resp: httpx.Response, job_id: str | None = None) -> None:
        if resp.is_success:
            return
        if resp.status_code == 404 and job_id is not None:
            raise JobNotFoundError(job_id)
        try:
            message = resp.json().get("message")
        except (ValueError, AttributeError):
            message = None
        raise RemoteRenderError(
            message or f"Server error: {resp.status_code}",
            remote_status=resp.status_code,
        )

    async def submit(self, request: RenderRequest) -> str:
        """Upload the media and options. Returns the remote job id."""
        data = {
            "overlayPosition": json.dumps(request.transform.to_wire()),
            "aspectRatio": str(request.aspect_ratio),
            "quality": request.quality,
            "preserveOriginalSpeed": _form_bool(request.preserve_original_speed),
            "exactPositioning": _form_bool(request.exact_positioning),
        }
        uploads = [("backgroundVideo", request.background), ("overlayImage", request.overlay_image)]
        if request.overlay_video:
            uploads.append(("overlayVideo", request.overlay_video))

        files = []
        try:
            for field_name, path_str in uploads:
                p = Path(path_str)
                mime_type = mimetypes.guess_type(str(p))[0] or "application/octet-stream"
                try:
                    handle = open(str(p), "rb")
                except OSError as e:
                    raise SourceLoadError(str(p), str(e)) from e
                files.append((field_name, (p.name, handle, mime_type)))

            resp = await self._request(
                "POST", "/api/render", self.submit_timeout, data=data, files=files
            )
        finally:
            for _, (_, f, _) in files:
                f.close()

        self._raise_for_status(resp)
        job_id = resp.json().get("id")
        if not job_id:
            raise RemoteRenderError("Render backend returned no job id", remote_status=resp.status_code)
        logger.info(f"[CLIENT] Remote job started: {job_id}")
        return job_id

    async def status(self, job_id: str) -> JobStatusResponse:
        resp = await self._request("GET", f"/api/render/{job_id}", self.status_timeout)
        self._raise_for_status(resp, job_id)
        return JobStatusResponse.model_validate(resp.json())

    async def download(self, job_id: str) -> bytes:
        resp = await self._request("GET", f"/api/render/{job_id}/download", self.submit_timeout)
        self._raise_for_status(resp, job_id)
        return resp.content

    async def health(self) -> bool:
        """True if the backend answers its health check."""
        try:
            resp = await self._request("GET", "/api/health", self.health_timeout)
        except NetworkError as e:
            logger.info(f"[CLIENT] Render backend not available: {e.message}")
            return False
        return resp.is_success
