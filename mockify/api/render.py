"""Render API endpoints.

Same routes and form fields the editor front-end posts to: the media
uploads plus ``overlayPosition`` (the transform as JSON) and the render
options. Rendering runs in the background; callers poll the status route.
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Annotated, BinaryIO

from fastapi import APIRouter, File, Form, Request, UploadFile, status
from fastapi.responses import FileResponse

from mockify.api.deps import JobStoreDep, RenderServiceDep, SettingsDep
from mockify.config import Settings
from mockify.exceptions import InvalidRenderRequestError, InvalidTransformError, JobNotReadyError, MockifyError
from mockify.schemas.job import JobStatus, JobStatusResponse
from mockify.schemas.transform import validate_transform

router = APIRouter()
logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024


def _copy_upload(src: BinaryIO, dest: Path, field: str, max_mb: int) -> None:
    max_bytes = max_mb * 1024 * 1024
    written = 0
    with open(dest, "wb") as out:
        while chunk := src.read(UPLOAD_CHUNK_SIZE):
            written += len(chunk)
            if written > max_bytes:
                break
            out.write(chunk)
    if written > max_bytes:
        dest.unlink(missing_ok=True)
        raise InvalidRenderRequestError(f"{field} exceeds {max_mb}MB", field=field)


async def _save_upload(
    upload: UploadFile,
    field: str,
    allowed_types: list[str],
    settings: Settings,
    saved: list[Path],
) -> str:
    """Copy an upload into the upload directory and return its path.

    The copy runs in a worker thread so large uploads do not stall running renders.
    """
    content_type = upload.content_type or ""
    if content_type and content_type != "application/octet-stream" and content_type not in allowed_types:
        raise InvalidRenderRequestError(f"Unsupported {field} type: {content_type}", field=field)

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    name = Path(upload.filename or field).name
    dest = upload_dir / f"{uuid.uuid4().hex}_{name}"

    await asyncio.to_thread(_copy_upload, upload.file, dest, field, settings.max_upload_size_mb)
    saved.append(dest)
    return str(dest)


def _discard_uploads(saved: list[Path]) -> None:
    for path in saved:
        path.unlink(missing_ok=True)


@router.post("/render", status_code=status.HTTP_202_ACCEPTED)
async def start_render(
    service: RenderServiceDep,
    settings: SettingsDep,
    background_video: Annotated[UploadFile, File(alias="backgroundVideo")],
    overlay_image: Annotated[UploadFile, File(alias="overlayImage")],
    overlay_position: Annotated[str, Form(alias="overlayPosition")],
    aspect_ratio: Annotated[float, Form(alias="aspectRatio")] = 16 / 9,
    quality: Annotated[str, Form()] = "standard",
    preserve_original_speed: Annotated[bool, Form(alias="preserveOriginalSpeed")] = True,
    exact_positioning: Annotated[bool, Form(alias="exactPositioning")] = True,
    preview: Annotated[bool, Form()] = False,
    preferred_container: Annotated[str, Form(alias="preferredContainer")] = "mp4",
    overlay_video: Annotated[UploadFile | None, File(alias="overlayVideo")] = None,
) -> dict:
    """Start a render job. Returns immediately with the job id."""
    try:
        transform = json.loads(overlay_position)
    except json.JSONDecodeError as e:
        raise InvalidTransformError(f"overlayPosition is not valid JSON: {e.msg}") from e
    # Reject bad placements before writing any upload to disk
    transform = validate_transform(transform)

    background_types = settings.allowed_video_types + settings.allowed_image_types
    saved: list[Path] = []
    try:
        request_data = {
            "background": await _save_upload(
                background_video, "backgroundVideo", background_types, settings, saved
            ),
            "overlay_image": await _save_upload(
                overlay_image, "overlayImage", settings.allowed_image_types, settings, saved
            ),
            "overlay_video": (
                await _save_upload(
                    overlay_video, "overlayVideo", settings.allowed_video_types, settings, saved
                )
                if overlay_video is not None and overlay_video.filename
                else None
            ),
            "transform": transform,
            "aspect_ratio": aspect_ratio,
            "quality": quality,
            "preserve_original_speed": preserve_original_speed,
            "exact_positioning": exact_positioning,
            "preview": preview,
            "preferred_container": preferred_container,
        }
        job = await service.start(request_data)
    except MockifyError:
        # Rejected requests leave nothing behind in the upload directory
        _discard_uploads(saved)
        raise

    logger.info(f"[API] Render job {job.id} accepted")
    return {"id": job.id, "status": job.status.value}


@router.get(
    "/render/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
)
async def get_render_status(job_id: str, request: Request, store: JobStoreDep) -> JobStatusResponse:
    """Status of a render job."""
    job = store.get(job_id)
    download_url = None
    if job.status is JobStatus.COMPLETED:
        download_url = str(request.url_for("download_render", job_id=job_id))
    return JobStatusResponse.from_job(job, download_url=download_url)


@router.get("/render/{job_id}/download", name="download_render")
async def download_render(job_id: str, store: JobStoreDep) -> FileResponse:
    """Encoded video of a completed job."""
    job = store.get(job_id)
    if job.status is not JobStatus.COMPLETED or job.result is None:
        raise JobNotReadyError(job_id, job.status.value)
    return FileResponse(
        job.result.path,
        media_type=job.result.mime_type.split(";")[0],
        filename=f"mockify-{job_id}.{job.result.container}",
    )


@router.get("/health")
async def health_check(settings: SettingsDep, service: RenderServiceDep) -> dict:
    return {
        "status": "healthy",
        "version": settings.app_version,
        "activeJobs": service.active_jobs,
    }

