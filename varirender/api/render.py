"""Remote render queue endpoints.

Submission returns immediately; clients poll the status route and then
fetch the artifact through the download route.
"""

import logging

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from varirender.api.deps import JobEvents, RenderQueue
from varirender.exceptions import JobNotReadyError
from varirender.render.jobs import RenderJob
from varirender.schemas.render import RenderSpec, RenderStatusResponse, RenderSubmitResponse
from varirender.services.event_manager import JobEventManager

router = APIRouter()
logger = logging.getLogger(__name__)

BASE_PATH = "/api/render"


def submit_response(job: RenderJob, base_path: str) -> RenderSubmitResponse:
    return RenderSubmitResponse(
        job_id=job.id,
        status=job.status.value,
        polling_url=f"{base_path}/{job.id}",
        download_url=f"{base_path}/{job.id}/download",
    )


def video_response(job: RenderJob, data: bytes) -> Response:
    filename = job.name or f"variation-{job.id}"
    if not filename.endswith(".mp4"):
        filename += ".mp4"
    return Response(
        content=data,
        media_type="video/mp4",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def not_ready_response(exc: JobNotReadyError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"error": exc.to_error_info().model_dump(mode="json", exclude_none=True)},
    )


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=RenderSubmitResponse)
async def submit_render(spec: RenderSpec, queue: RenderQueue) -> RenderSubmitResponse:
    job = queue.submit(spec)
    return submit_response(job, BASE_PATH)


@router.get("/{job_id}", response_model=RenderStatusResponse)
async def get_render_status(job_id: str, queue: RenderQueue) -> RenderStatusResponse:
    return RenderStatusResponse(**queue.get_job(job_id).to_dict())


@router.put("/{job_id}/download")
async def download_render(job_id: str, queue: RenderQueue) -> Response:
    """Fetch the artifact from object storage; the job is deleted on success only."""
    try:
        job, data = await queue.download(job_id)
    except JobNotReadyError as e:
        return not_ready_response(e)
    return video_response(job, data)


@router.post("/{job_id}/retry", status_code=status.HTTP_202_ACCEPTED, response_model=RenderSubmitResponse)
async def retry_render(job_id: str, queue: RenderQueue) -> RenderSubmitResponse:
    job = queue.retry(job_id)
    return submit_response(job, BASE_PATH)


def job_event_stream(job: RenderJob, events: JobEventManager) -> StreamingResponse:
    """Server-Sent Events for one job, starting with its current state.

    The stream ends at a terminal status.
    """
    status_value = job.status.value
    snapshot = RenderStatusResponse(**job.to_dict()).model_dump_json(by_alias=True)
    queue = None if job.status.is_terminal else events.subscribe(job.id)

    async def event_stream():
        try:
            yield f"event: {status_value}\ndata: {snapshot}\n\n"
            if queue is None:
                return
            async for event in events.listen(queue):
                yield event.to_sse()
        finally:
            if queue is not None:
                events.unsubscribe(job.id, queue)

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@router.get("/{job_id}/events")
async def stream_render_events(job_id: str, queue: RenderQueue, events: JobEvents) -> StreamingResponse:
    return job_event_stream(queue.get_job(job_id), events)
