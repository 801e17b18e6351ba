"""In-process render worker.

Runs the local render CLI for each submitted job, one at a time. The rendered
file is loaded into memory and handed out once through ``download``.
"""

import asyncio
import json
import logging
import shutil
import tempfile
from pathlib import Path

from varirender.config import Settings, get_settings
from varirender.exceptions import (
    JobNotFoundError,
    JobNotReadyError,
    OutputNotCreatedError,
    RenderFailedError,
    RenderTimeoutError,
    SubmissionError,
    VarirenderError,
)
from varirender.render.engine import format_command, run_render_command
from varirender.render.jobs import RenderJob, RenderStatus
from varirender.render.request_builder import clamp_duration
from varirender.schemas.render import RenderSpec
from varirender.services.event_manager import JobEventManager

logger = logging.getLogger(__name__)


class LocalRenderWorker:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        events: JobEventManager | None = None,
        command: list[str] | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.events = events
        self.command = command or self.settings.local_render_command
        self.timeout_s = timeout_s or self.settings.local_render_timeout_s

        self._jobs: dict[str, RenderJob] = {}
        # asyncio.Lock wakes waiters in FIFO order
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    def get_job(self, job_id: str) -> RenderJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self) -> list[RenderJob]:
        return list(self._jobs.values())

    def submit(self, spec: RenderSpec, name: str | None = None) -> RenderJob:
        duration, clamp_message = clamp_duration(spec.duration, self.settings.max_render_duration_ms)
        if clamp_message:
            spec = spec.model_copy(
                update={"duration": duration, "diagnostics": [*spec.diagnostics, clamp_message]}
            )

        job = RenderJob(spec=spec, name=name or spec.name)
        self._jobs[job.id] = job
        self._publish(job)
        task = asyncio.get_running_loop().create_task(self._run(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"[LOCAL] Job {job.id} submitted ({job.name})")
        return job

    async def _run(self, job: RenderJob) -> None:
        async with self._lock:
            if job.id not in self._jobs:
                return
            job.mark_processing()
            self._publish(job)
            try:
                data = await self._render(job.spec)
                job.mark_completed(result_bytes=data)
                logger.info(f"[LOCAL] Job {job.id} completed ({len(data) / 1024 / 1024:.2f} MB)")
            except VarirenderError as e:
                job.mark_failed(e)
                logger.error(f"[LOCAL] Job {job.id} failed [{e.code}]: {e.message}")
            except Exception as e:
                logger.exception(f"[LOCAL] Unexpected error while rendering job {job.id}")
                job.mark_failed(VarirenderError(f"Unexpected render error: {e}"))
            finally:
                self._publish(job)

    async def _render(self, spec: RenderSpec) -> bytes:
        workdir = Path(tempfile.mkdtemp(prefix="varirender-local-"))
        try:
            props_path = workdir / "props.json"
            output_path = workdir / "output.mp4"
            props_path.write_text(json.dumps(spec.to_wire()))

            argv = format_command(
                self.command,
                entry=self.settings.render_entry,
                composition=self.settings.render_composition_id,
                output=output_path,
                props=props_path,
                fps=self.settings.render_fps,
                width=spec.platform_config.width,
                height=spec.platform_config.height,
            )
            result = await run_render_command(argv, self.timeout_s)

            if result.spawn_error:
                raise SubmissionError(f"Render command could not be started: {result.spawn_error}")
            if result.timed_out:
                raise RenderTimeoutError(f"Render timed out after {self.timeout_s:g}s")
            if not result.ok:
                raise RenderFailedError(
                    f"Render failed (exit code {result.returncode}): {result.error_tail()}"
                )
            if not output_path.exists():
                raise OutputNotCreatedError()
            return output_path.read_bytes()
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def download(self, job_id: str) -> tuple[RenderJob, bytes]:
        """Hand out the rendered bytes and forget the job."""
        job = self.get_job(job_id)
        if job.status in (RenderStatus.PENDING, RenderStatus.PROCESSING):
            raise JobNotReadyError(job_id, job.status.value)
        if job.status is RenderStatus.FAILED:
            raise VarirenderError(
                job.error or "Render failed",
                code=job.error_code or RenderFailedError.code,
                status_code=500,
            )
        data = job.result_bytes or b""
        del self._jobs[job_id]
        self._publish(job, "removed")
        return job, data

    async def join(self) -> None:
        """Wait for every submitted job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("[LOCAL] Shut down")

    def _publish(self, job: RenderJob, event_type: str | None = None) -> None:
        if self.events is not None:
            self.events.publish(job.id, event_type or job.status.value, job.to_dict())
