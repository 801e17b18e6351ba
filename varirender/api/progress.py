from fastapi import APIRouter

from varirender.api.deps import AppSettings
from varirender.exceptions import ValidationError
from varirender.render.progress import sample_progress
from varirender.schemas.render import ProgressSampleRequest, ProgressSampleResponse

router = APIRouter()


@router.post("/sample", response_model=ProgressSampleResponse)
async def sample_progress_curves(request: ProgressSampleRequest, settings: AppSettings) -> ProgressSampleResponse:
    """Per-frame progress values of both strategies, for previewing a config."""
    if request.total_ms > settings.max_render_duration_ms:
        raise ValidationError(
            f"totalMs {request.total_ms} exceeds the {settings.max_render_duration_ms}ms render limit",
            field="totalMs",
        )
    baked = sample_progress(request.total_ms, request.fps, request.config, "baked", request.speed)
    preview = sample_progress(request.total_ms, request.fps, request.config, "preview", request.speed)
    return ProgressSampleResponse(
        fps=request.fps,
        total_ms=request.total_ms,
        frames=len(baked),
        baked=baked,
        preview=preview,
    )
