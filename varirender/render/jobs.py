from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from varirender.exceptions import VarirenderError
from varirender.schemas.render import RenderSpec


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RenderStatus(Enum):
    """Render job status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RenderStatus.COMPLETED, RenderStatus.FAILED)


@dataclass
class RenderJob:
    """Render job information.

    Mutated only by the worker that holds the queue's lock; readers get
    snapshots through ``to_dict``.
    """

    spec: RenderSpec
    id: str = field(default_factory=lambda: uuid4().hex)
    name: Optional[str] = None
    status: RenderStatus = RenderStatus.PENDING
    progress: int = 0
    # Cloud URL (remote queue) or in-memory artifact (local worker)
    result_url: Optional[str] = None
    result_bytes: Optional[bytes] = field(default=None, repr=False)
    error: Optional[str] = None
    error_code: Optional[str] = None
    attempts: int = 0
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def mark_processing(self) -> None:
        self.status = RenderStatus.PROCESSING
        self.progress = 10
        self.attempts += 1
        self.started_at = utcnow()
        self.completed_at = None
        self.error = None
        self.error_code = None

    def mark_completed(self, *, result_url: str | None = None, result_bytes: bytes | None = None) -> None:
        self.status = RenderStatus.COMPLETED
        self.progress = 100
        self.result_url = result_url
        self.result_bytes = result_bytes
        self.completed_at = utcnow()

    def mark_failed(self, error: VarirenderError) -> None:
        self.status = RenderStatus.FAILED
        self.error = error.message
        self.error_code = error.code
        self.completed_at = utcnow()

    def reset(self) -> None:
        """Back to pending for a manual retry."""
        self.status = RenderStatus.PENDING
        self.progress = 0
        self.result_url = None
        self.result_bytes = None
        self.error = None
        self.error_code = None
        self.started_at = None
        self.completed_at = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        result = self.result_url
        if result is None and self.result_bytes is not None:
            result = f"{len(self.result_bytes)} bytes in memory"
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "progress": self.progress,
            "result": result,
            "error": self.error,
            "error_code": self.error_code,
            "attempts": self.attempts,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }
