"""Error body returned by every route: `{"error": ErrorInfo}`."""

from typing import Any

from pydantic import BaseModel, Field


class ErrorLocation(BaseModel):
    field: str | None = None
    job_id: str | None = None
    element_id: str | None = None


class SuggestedAction(BaseModel):
    action: str
    endpoint: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class ErrorInfo(BaseModel):
    code: str
    message: str
    location: ErrorLocation | None = None
    retryable: bool = False
    suggested_fix: str | None = None  # Human-readable fix suggestion
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: ErrorInfo
