"""In-process render endpoints (same contract as /api/render, artifact kept in memory)."""

from fastapi import APIRouter, Response, status
from fastapi.responses import StreamingResponse

from varirender.api.deps import JobEvents, LocalWorker
from varirender.api.render import job_event_stream, not_ready_response, submit_response, video_response
from varirender.exceptions import JobNotReadyError
from varirender.schemas.render import RenderSpec, RenderStatusResponse, RenderSubmitResponse

router = APIRouter()

BASE_PATH = "/api/render-local"


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=RenderSubmitResponse)
async def submit_local_render(spec: RenderSpec, worker: LocalWorker) -> RenderSubmitResponse:
    job = worker.submit(spec)
    return submit_response(job, BASE_PATH)


@router.get("/{job_id}", response_model=RenderStatusResponse)
async def get_local_render_status(job_id: str, worker: LocalWorker) -> RenderStatusResponse:
    return RenderStatusResponse(**worker.get_job(job_id).to_dict())


@router.put("/{job_id}/download")
async def download_local_render(job_id: str, worker: LocalWorker) -> Response:
    try:
        job, data = worker.download(job_id)
    except JobNotReadyError as e:
        return not_ready_response(e)
    return video_response(job, data)


@router.get("/{job_id}/events")
async def stream_local_render_events(job_id: str, worker: LocalWorker, events: JobEvents) -> StreamingResponse:
    return job_event_stream(worker.get_job(job_id), events)
