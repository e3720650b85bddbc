"""Custom exceptions for the mockify render engine.

Every error carries a machine-readable code (see constants/error_codes.py),
an HTTP status code for the API surface, and a human-readable message that
is safe to record on a failed job.
"""

from typing import Any

from mockify.constants.error_codes import get_error_spec
from mockify.schemas.envelope import ErrorInfo


class MockifyError(Exception):
    """Base exception for all mockify errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        field: str | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.field = field
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return get_error_spec(self.code).get("retryable", False)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            field=self.field,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            suggested_action=spec.get("suggested_action"),
            parameters=spec.get("parameters", {}),
        )


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(MockifyError):
    """Base class for validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidTransformError(ValidationError):
    """Transform failed validation; no job is created."""

    code = "INVALID_TRANSFORM"
    message = "Invalid transform"

    def __init__(self, message: str | None = None, *, field: str | None = None, value: Any = None):
        msg = message or self.message
        if field and not message:
            msg = f"Invalid transform field: {field}"
            if value is not None:
                msg += f" (got {value!r})"
        super().__init__(msg, field=field)


class InvalidRenderRequestError(ValidationError):
    """Render request parameters are invalid."""

    code = "INVALID_REQUEST"
    message = "Invalid render request"

    def __init__(self, message: str | None = None, *, field: str | None = None):
        super().__init__(message or self.message, field=field)


# =============================================================================
# Job Errors
# =============================================================================


class JobNotFoundError(MockifyError):
    """Job id is not known to the store or the remote backend."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        self.job_id = job_id
        message = f"Job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class JobStateError(MockifyError):
    """Illegal lifecycle transition (terminal jobs never change state)."""

    code = "JOB_STATE_CONFLICT"
    status_code = 409
    message = "Job is already in a terminal state"

    def __init__(self, job_id: str | None = None, status: str | None = None, target: str | None = None):
        message = self.message
        if job_id and status and target:
            message = f"Job {job_id} is {status}; cannot transition to {target}"
        super().__init__(message)


class JobNotReadyError(JobStateError):
    """Result requested for a job that has not completed."""

    message = "Job has no result yet"

    def __init__(self, job_id: str | None = None, status: str | None = None):
        self.job_id = job_id
        message = self.message
        if job_id and status:
            message = f"Job {job_id} is {status}; no result available"
        MockifyError.__init__(self, message)


class RenderTimeoutError(MockifyError):
    """Caller poll budget exhausted. The job itself may still complete."""

    code = "RENDER_TIMEOUT"
    status_code = 504
    message = "Rendering is taking too long"

    def __init__(self, job_id: str | None = None, attempts: int | None = None):
        self.job_id = job_id
        message = self.message
        if job_id and attempts is not None:
            message = f"Job {job_id} not finished after {attempts} polls"
        super().__init__(message)


# =============================================================================
# Render Errors (recorded on the job)
# =============================================================================


class EncoderUnsupportedError(MockifyError):
    """No codec/container candidate is available on this host."""

    code = "ENCODER_UNSUPPORTED"
    status_code = 500
    message = "No supported video encoder is available"

    def __init__(self, tried: list[str] | None = None):
        message = self.message
        if tried:
            message = f"{self.message} (tried: {', '.join(tried)})"
        super().__init__(message)


class SourceLoadError(MockifyError):
    """Background or overlay media failed to load or decode metadata."""

    code = "SOURCE_LOAD_FAILURE"
    status_code = 422
    message = "Failed to load source media"

    def __init__(self, source: str | None = None, reason: str | None = None):
        message = self.message
        if source:
            message = f"Failed to load source media: {source}"
            if reason:
                message += f" ({reason})"
        super().__init__(message)


# =============================================================================
# Remote Errors
# =============================================================================


class NetworkError(MockifyError):
    """Remote backend unreachable (connect failure, timeout, dropped connection)."""

    code = "NETWORK_FAILURE"
    status_code = 503
    message = "Render backend is unreachable"


class RemoteRenderError(MockifyError):
    """Remote backend answered but rejected the request."""

    code = "REMOTE_REJECTED"
    status_code = 502
    message = "Render backend rejected the request"

    def __init__(self, message: str | None = None, *, remote_status: int | None = None):
        self.remote_status = remote_status
        super().__init__(message or self.message)
