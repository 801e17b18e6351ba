from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import Field

from varirender.schemas.base import WireModel

DownloadType = Literal["video", "variation"]
DownloadStatus = Literal["pending", "downloading", "completed", "failed", "paused"]


class DownloadItem(WireModel):
    """One queued export on the client side."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    type: DownloadType = "variation"
    status: DownloadStatus = "pending"
    progress: int = Field(default=0, ge=0, le=100)
    job_id: str | None = None
    # Render request body submitted for this item
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    output_path: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None


class DownloadState(WireModel):
    """Persisted client queue."""

    downloads: list[DownloadItem] = Field(default_factory=list)
    max_concurrent: int = Field(default=1, ge=1)
