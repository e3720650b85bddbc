"""Render job records and the status payload polled by callers."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(Enum):
    """Render job status. COMPLETED and FAILED are terminal."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not JobStatus.PROCESSING


@dataclass(frozen=True)
class JobParams:
    """Inputs captured at submission. Never modified afterwards."""

    aspect_ratio: float
    quality: str = "standard"
    preserve_original_speed: bool = True
    exact_positioning: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "aspect_ratio": self.aspect_ratio,
            "quality": self.quality,
            "preserve_original_speed": self.preserve_original_speed,
            "exact_positioning": self.exact_positioning,
        }


@dataclass(frozen=True)
class RenderResult:
    """Reference to an encoded output video."""

    path: str
    download_url: str
    container: str
    mime_type: str
    codec: str | None = None
    size_bytes: int = 0
    frame_count: int = 0
    duration_s: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "download_url": self.download_url,
            "container": self.container,
            "mime_type": self.mime_type,
            "codec": self.codec,
            "size_bytes": self.size_bytes,
            "frame_count": self.frame_count,
            "duration_s": self.duration_s,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """Render job information."""

    id: str
    params: JobParams
    status: JobStatus = JobStatus.PROCESSING
    progress: int = 0
    result: RenderResult | None = None
    error: str | None = None
    error_code: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "params": self.params.to_dict(),
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "error_code": self.error_code,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class JobStatusResponse(BaseModel):
    """Status payload: ``{id, status, progress, downloadUrl?, error?}``."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: str
    progress: int = Field(ge=0, le=100)
    download_url: str | None = Field(default=None, alias="downloadUrl")
    error: str | None = None

    @classmethod
    def from_job(cls, job: Job, download_url: str | None = None) -> "JobStatusResponse":
        """Build the payload; ``download_url`` overrides the result's own URL."""
        url = None
        if job.status is JobStatus.COMPLETED and job.result is not None:
            url = download_url or job.result.download_url
        return cls(
            id=job.id,
            status=job.status.value,
            progress=job.progress,
            download_url=url,
            error=job.error if job.status is JobStatus.FAILED else None,
        )

    @property
    def terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value)
