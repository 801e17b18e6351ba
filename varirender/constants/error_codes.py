"""Error codes dictionary for the render API.

This is the single source of truth for all error codes, their retryability,
and suggested recovery actions. Used by exception handlers and by the job
records, which store the code of the failure that ended them.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str
    parameters: dict[str, Any]


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Validation (rejected synchronously at submission)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "INVALID_PROGRESS_TIMING": {
        "retryable": False,
        "suggested_fix": "Set fast_start_progress lower than fast_end_progress, or disable one of the windows",
    },
    # ==========================================================================
    # Job lookup / state
    # ==========================================================================
    "JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "The job was never submitted or was already downloaded",
    },
    "JOB_NOT_READY": {
        "retryable": True,
        "suggested_action": "poll_status",
        "suggested_endpoint": "GET /api/render/{job_id}",
    },
    "JOB_STATE_CONFLICT": {
        "retryable": False,
    },
    # ==========================================================================
    # Render execution (recorded on the job record)
    # ==========================================================================
    "SUBMISSION_FAILED": {
        "retryable": True,
        "suggested_action": "retry_job",
        "suggested_endpoint": "POST /api/render/{job_id}/retry",
    },
    "RENDER_FAILED": {
        "retryable": True,
        "suggested_action": "retry_job",
        "suggested_endpoint": "POST /api/render/{job_id}/retry",
    },
    "RENDER_TIMEOUT": {
        "retryable": True,
        "suggested_action": "retry_job",
        "suggested_endpoint": "POST /api/render/{job_id}/retry",
        "suggested_fix": "Shorten the composition or lower its resolution",
    },
    "OUTPUT_NOT_CREATED": {
        "retryable": True,
        "suggested_action": "retry_job",
    },
    "RESULT_URL_MISSING": {
        "retryable": True,
        "suggested_action": "retry_job",
    },
    "RATE_LIMITED": {
        "retryable": True,
        "suggested_action": "wait_and_retry",
        "suggested_fix": "The render service is at its concurrency limit. Wait for running renders to finish, then retry",
    },
    # ==========================================================================
    # Artifact fetch (download step)
    # ==========================================================================
    "ARTIFACT_NOT_AVAILABLE": {
        "retryable": True,
        "suggested_action": "retry_download",
        "suggested_endpoint": "PUT /api/render/{job_id}/download",
    },
    "ARTIFACT_FETCH_FAILED": {
        "retryable": True,
        "suggested_action": "retry_download",
        "suggested_endpoint": "PUT /api/render/{job_id}/download",
        "suggested_fix": "The job was kept; retry the download without re-rendering",
    },
    # ==========================================================================
    # System
    # ==========================================================================
    "STORAGE_ERROR": {
        "retryable": True,
    },
    "INTERNAL_ERROR": {
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
