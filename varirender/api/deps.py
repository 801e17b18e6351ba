from typing import Annotated

from fastapi import Depends, Request

from varirender.config import Settings, get_settings
from varirender.render.local_worker import LocalRenderWorker
from varirender.render.remote_queue import RemoteRenderQueue
from varirender.services.event_manager import JobEventManager


def get_render_queue(request: Request) -> RemoteRenderQueue:
    return request.app.state.render_queue


def get_local_worker(request: Request) -> LocalRenderWorker:
    return request.app.state.local_worker


def get_job_events(request: Request) -> JobEventManager:
    return request.app.state.job_events


RenderQueue = Annotated[RemoteRenderQueue, Depends(get_render_queue)]
LocalWorker = Annotated[LocalRenderWorker, Depends(get_local_worker)]
JobEvents = Annotated[JobEventManager, Depends(get_job_events)]
AppSettings = Annotated[Settings, Depends(get_settings)]
