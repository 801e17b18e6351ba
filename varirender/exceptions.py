"""Custom exceptions for the varirender backend.

These exceptions map onto the error codes table, providing machine-readable
codes and suggested recovery actions. Errors raised before a job exists are
returned to the caller directly; errors that happen while a job runs are
recorded on the job record (``error`` / ``error_code``) instead of being
raised across the job boundary.
"""

from varirender.constants.error_codes import get_error_spec
from varirender.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class VarirenderError(Exception):
    """Base exception for all varirender application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        retryable = spec.get("retryable", False)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            suggested_actions.append(
                SuggestedAction(
                    action=spec["suggested_action"],
                    endpoint=spec.get("suggested_endpoint"),
                    parameters=spec.get("parameters", {}),
                )
            )

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=retryable,
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(VarirenderError):
    """Base class for validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid render request"

    def __init__(self, message: str | None = None, *, field: str | None = None):
        location = ErrorLocation(field=field) if field else None
        super().__init__(message, location=location)


class InvalidProgressTimingError(ValidationError):
    """Fast-start progress target is not below the fast-end target."""

    code = "INVALID_PROGRESS_TIMING"

    def __init__(self, fast_start_progress: float, fast_end_progress: float):
        super().__init__(
            f"fast_start_progress ({fast_start_progress}) must be lower than "
            f"fast_end_progress ({fast_end_progress})",
            field="progress_bar_settings",
        )


# =============================================================================
# Job lookup / state errors (404 / 409)
# =============================================================================


class JobNotFoundError(VarirenderError):
    """Render job not found."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        location = ErrorLocation(job_id=job_id) if job_id else None
        super().__init__(message, location=location)


class JobNotReadyError(VarirenderError):
    """Job has not finished rendering yet."""

    code = "JOB_NOT_READY"
    status_code = 202
    message = "Render is still in progress"

    def __init__(self, job_id: str, status: str):
        super().__init__(
            f"Job {job_id} is still {status}",
            location=ErrorLocation(job_id=job_id),
        )


class JobStateError(VarirenderError):
    """Job is not in a state that allows the requested transition."""

    code = "JOB_STATE_CONFLICT"
    status_code = 409
    message = "Job state does not allow this operation"

    def __init__(self, job_id: str, status: str, operation: str):
        super().__init__(
            f"Cannot {operation} job {job_id} while it is {status}",
            location=ErrorLocation(job_id=job_id),
        )


# =============================================================================
# Render execution errors (recorded on the job)
# =============================================================================


class SubmissionError(VarirenderError):
    """The render command could not be started or exited with an error."""

    code = "SUBMISSION_FAILED"
    status_code = 502
    message = "Render invocation failed to start"


class RenderFailedError(VarirenderError):
    """The render command exited with an error."""

    code = "RENDER_FAILED"
    status_code = 500
    message = "Render failed"


class OutputNotCreatedError(VarirenderError):
    code = "OUTPUT_NOT_CREATED"
    status_code = 500
    message = "Video file was not created"


class ResultUrlMissingError(VarirenderError):
    code = "RESULT_URL_MISSING"
    status_code = 500
    message = "Render finished but no result URL was found in its output"


class RenderTimeoutError(VarirenderError):
    """A subprocess or the polling ceiling ran out of time."""

    code = "RENDER_TIMEOUT"
    status_code = 504
    message = "Render timed out"


class RateLimitError(VarirenderError):
    """The external render service rejected the job for concurrency reasons."""

    code = "RATE_LIMITED"
    status_code = 429
    message = (
        "The render service is busy (concurrency limit reached). "
        "Wait for running renders to finish, then retry."
    )


# =============================================================================
# Artifact fetch errors
# =============================================================================


class TransientFetchError(VarirenderError):
    """Artifact not available yet; the caller may retry."""

    code = "ARTIFACT_NOT_AVAILABLE"
    status_code = 503
    message = "Rendered artifact is not available yet"


class PermanentFetchError(VarirenderError):
    """Artifact is empty or unfetchable after all retries."""

    code = "ARTIFACT_FETCH_FAILED"
    status_code = 500
    message = "Rendered artifact could not be fetched"


class StorageError(VarirenderError):
    """Storage error."""

    code = "STORAGE_ERROR"
    status_code = 500
    message = "Storage error"
