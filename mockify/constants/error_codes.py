"""Error codes dictionary for the render API.

This is the single source of truth for all error codes, their retryability,
and suggested recovery actions. Used by exception handlers to generate
machine-readable error responses.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_fix: str
    parameters: dict[str, Any]


# Error codes dictionary - single source of truth
ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Input errors (not retryable without changing the request)
    # ==========================================================================
    "INVALID_TRANSFORM": {
        "retryable": False,
        "suggested_fix": "Provide left, top, scaleX, scaleY, originalWidth and originalHeight as numbers",
    },
    "INVALID_REQUEST": {
        "retryable": False,
    },
    "SOURCE_LOAD_FAILURE": {
        "retryable": False,
        "suggested_fix": "Check that the background and overlay media are readable image/video files",
    },
    # ==========================================================================
    # Job errors
    # ==========================================================================
    "JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_action": "resubmit",
    },
    "JOB_STATE_CONFLICT": {
        "retryable": False,
    },
    "RENDER_TIMEOUT": {
        "retryable": True,
        "suggested_action": "poll_later",
        "parameters": {"delay_ms": 2000},
    },
    # ==========================================================================
    # Host / transport errors
    # ==========================================================================
    "ENCODER_UNSUPPORTED": {
        "retryable": False,
        "suggested_fix": "Install an ffmpeg build with libvpx, libx264 or the native mpeg4 encoder",
    },
    "NETWORK_FAILURE": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 3},
    },
    "REMOTE_REJECTED": {
        "retryable": False,
    },
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    # ==========================================================================
    # Request errors
    # ==========================================================================
    "BAD_REQUEST": {
        "retryable": False,
    },
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "NOT_FOUND": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
