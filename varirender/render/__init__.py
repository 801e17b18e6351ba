from varirender.render.jobs import RenderJob, RenderStatus
from varirender.render.local_worker import LocalRenderWorker
from varirender.render.progress import apply_speed_multiplier, progress, sample_progress
from varirender.render.remote_queue import RemoteRenderQueue
from varirender.render.request_builder import build_render_spec, clamp_duration

__all__ = [
    "RenderJob",
    "RenderStatus",
    "RemoteRenderQueue",
    "LocalRenderWorker",
    "build_render_spec",
    "clamp_duration",
    "progress",
    "sample_progress",
    "apply_speed_multiplier",
]
