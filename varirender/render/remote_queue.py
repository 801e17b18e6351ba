"""Remote render queue.

A server-held FIFO of render jobs executed one at a time against the
serverless render CLI. Admission is a single boolean lock plus a pending
list; after each job the lock is released and the next job starts after a
fixed cooldown. The artifact is fetched from object storage only when the
client asks for it, with a bounded number of retries.
"""

import asyncio
import json
import logging
import shutil
import tempfile
from collections import deque
from pathlib import Path

from varirender.config import Settings, get_settings
from varirender.exceptions import (
    JobNotFoundError,
    JobNotReadyError,
    JobStateError,
    PermanentFetchError,
    RateLimitError,
    RenderFailedError,
    RenderTimeoutError,
    ResultUrlMissingError,
    SubmissionError,
    TransientFetchError,
    VarirenderError,
)
from varirender.render.engine import (
    EngineResult,
    detect_rate_limit,
    format_command,
    parse_result_url,
    run_render_command,
)
from varirender.render.jobs import RenderJob, RenderStatus
from varirender.render.request_builder import clamp_duration
from varirender.schemas.render import RenderSpec
from varirender.services.event_manager import JobEventManager
from varirender.services.storage_service import StorageService

logger = logging.getLogger(__name__)


class RemoteRenderQueue:
    def __init__(
        self,
        storage: StorageService,
        settings: Settings | None = None,
        *,
        events: JobEventManager | None = None,
        command: list[str] | None = None,
        cooldown_s: float | None = None,
        download_max_attempts: int | None = None,
        download_retry_delay_s: float | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.storage = storage
        self.events = events
        self.command = command or self.settings.remote_render_command
        self.cooldown_s = self.settings.queue_cooldown_s if cooldown_s is None else cooldown_s
        self.download_max_attempts = download_max_attempts or self.settings.download_max_attempts
        self.download_retry_delay_s = (
            self.settings.download_retry_delay_s
            if download_retry_delay_s is None
            else download_retry_delay_s
        )
        self.timeout_s = timeout_s or self.settings.remote_render_timeout_s

        self._jobs: dict[str, RenderJob] = {}
        self._pending: deque[str] = deque()
        self._is_processing = False
        self._cooldown: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Job table
    # ------------------------------------------------------------------

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    def get_job(self, job_id: str) -> RenderJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self) -> list[RenderJob]:
        return list(self._jobs.values())

    def pending_ids(self) -> list[str]:
        return list(self._pending)

    def submit(self, spec: RenderSpec, name: str | None = None) -> RenderJob:
        """Enqueue a render and return its job immediately (status pending)."""
        duration, clamp_message = clamp_duration(spec.duration, self.settings.max_render_duration_ms)
        if clamp_message:
            spec = spec.model_copy(
                update={"duration": duration, "diagnostics": [*spec.diagnostics, clamp_message]}
            )

        job = RenderJob(spec=spec, name=name or spec.name)
        self._jobs[job.id] = job
        self._pending.append(job.id)
        self._idle.clear()
        logger.info(
            f"[QUEUE] Job {job.id} queued ({job.name}); "
            f"pending={len(self._pending)} processing={self._is_processing}"
        )
        self._publish(job)
        self._schedule_next()
        return job

    def retry(self, job_id: str) -> RenderJob:
        """Re-enqueue a failed job at the back of the queue."""
        job = self.get_job(job_id)
        if job.status is not RenderStatus.FAILED:
            raise JobStateError(job_id, job.status.value, "retry")
        job.reset()
        self._pending.append(job.id)
        self._idle.clear()
        logger.info(f"[QUEUE] Job {job.id} re-queued for retry (attempts so far: {job.attempts})")
        self._publish(job)
        self._schedule_next()
        return job

    def remove(self, job_id: str) -> RenderJob:
        job = self._jobs.pop(job_id, None)
        if job is None:
            raise JobNotFoundError(job_id)
        if job_id in self._pending:
            self._pending.remove(job_id)
        self._publish(job, "removed")
        self._update_idle()
        return job

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _schedule_next(self) -> None:
        if self._is_processing or self._cooldown is not None or not self._pending:
            return
        task = asyncio.get_running_loop().create_task(self._process_next())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _after_cooldown(self) -> None:
        self._cooldown = None
        self._schedule_next()
        self._update_idle()

    def _update_idle(self) -> None:
        if not self._is_processing and not self._pending and self._cooldown is None:
            self._idle.set()

    async def _process_next(self) -> None:
        if self._is_processing:
            return
        job = None
        while self._pending and job is None:
            job = self._jobs.get(self._pending.popleft())
        if job is None:
            self._update_idle()
            return

        self._is_processing = True
        try:
            job.mark_processing()
            self._publish(job)
            logger.info(f"[QUEUE] Processing job {job.id} (attempt {job.attempts})")
            await self._render(job)
        except VarirenderError as e:
            job.mark_failed(e)
        except Exception as e:
            logger.exception(f"[QUEUE] Unexpected error while rendering job {job.id}")
            job.mark_failed(VarirenderError(f"Unexpected render error: {e}"))
        finally:
            self._is_processing = False
            if job.status is RenderStatus.FAILED:
                logger.error(f"[QUEUE] Job {job.id} failed [{job.error_code}]: {job.error}")
            self._publish(job)
            # Every job exit is followed by the cooldown, even with nothing pending yet
            loop = asyncio.get_running_loop()
            self._cooldown = loop.call_later(self.cooldown_s, self._after_cooldown)

    async def _render(self, job: RenderJob) -> None:
        workdir = Path(tempfile.mkdtemp(prefix="varirender-remote-"))
        try:
            props_path = workdir / "props.json"
            props_path.write_text(json.dumps(job.spec.to_wire()))
            argv = format_command(
                self.command,
                serve_url=self.settings.render_serve_url,
                composition=self.settings.render_composition_id,
                props=props_path,
                region=self.settings.render_region,
                function_name=self.settings.render_function_name,
                concurrency=self.settings.render_remote_concurrency,
                timeout_ms=int(self.timeout_s * 1000),
            )
            result = await run_render_command(argv, self.timeout_s)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        job.mark_completed(result_url=self._result_url(result))
        logger.info(f"[QUEUE] Job {job.id} completed: {job.result_url}")

    def _result_url(self, result: EngineResult) -> str:
        """Result URL of a finished invocation; raises the error to record otherwise."""
        if result.spawn_error:
            raise SubmissionError(f"Render command could not be started: {result.spawn_error}")
        if result.timed_out:
            raise RenderTimeoutError(f"Render timed out after {self.timeout_s:g}s")
        if not result.ok:
            if detect_rate_limit(result.output):
                raise RateLimitError()
            raise RenderFailedError(f"Render failed (exit code {result.returncode}): {result.error_tail()}")
        url = parse_result_url(result.output)
        if url is None:
            raise ResultUrlMissingError()
        return url

    # ------------------------------------------------------------------
    # Download step
    # ------------------------------------------------------------------

    async def fetch_artifact(self, job_id: str) -> bytes:
        """Fetch the rendered artifact of a completed job.

        The job is left in place whatever happens here.

        Raises:
            JobNotFoundError: unknown job
            JobNotReadyError: still pending or processing
            VarirenderError: the render itself failed (its recorded error)
            PermanentFetchError: empty or unfetchable after all attempts
        """
        job = self.get_job(job_id)
        if job.status in (RenderStatus.PENDING, RenderStatus.PROCESSING):
            raise JobNotReadyError(job_id, job.status.value)
        if job.status is RenderStatus.FAILED:
            raise VarirenderError(
                job.error or "Render failed",
                code=job.error_code or RenderFailedError.code,
                status_code=500,
            )
        if not job.result_url:
            raise PermanentFetchError(f"Job {job_id} has no result URL")

        key = self.storage.parse_object_key(job.result_url)
        last_error: TransientFetchError | None = None
        for attempt in range(1, self.download_max_attempts + 1):
            try:
                data = await asyncio.to_thread(self.storage.read_bytes, key)
                if not data:
                    raise TransientFetchError(f"Artifact {key} is empty")
                logger.info(f"[QUEUE] Fetched {len(data)} bytes for job {job_id} (attempt {attempt})")
                return data
            except TransientFetchError as e:
                last_error = e
                logger.warning(
                    f"[QUEUE] Fetch attempt {attempt}/{self.download_max_attempts} "
                    f"for job {job_id} failed: {e.message}"
                )
                if attempt < self.download_max_attempts:
                    await asyncio.sleep(self.download_retry_delay_s)

        raise PermanentFetchError(
            f"Artifact for job {job_id} could not be fetched after "
            f"{self.download_max_attempts} attempts: {last_error.message if last_error else 'unknown'}"
        )

    async def download(self, job_id: str) -> tuple[RenderJob, bytes]:
        """Fetch the artifact, then forget the job.

        Concurrent downloads of the same job all get the bytes; only the
        first one to finish removes it.
        """
        job = self.get_job(job_id)
        data = await self.fetch_artifact(job_id)
        if job_id in self._jobs:
            self.remove(job_id)
            logger.info(f"[QUEUE] Job {job_id} downloaded and removed")
        return job, data

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def join(self) -> None:
        """Wait until nothing is pending or processing and the cooldown has elapsed."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._cooldown is not None:
            self._cooldown.cancel()
            self._cooldown = None
        logger.info(f"[QUEUE] Shut down with {len(self._pending)} pending jobs")

    def _publish(self, job: RenderJob, event_type: str | None = None) -> None:
        if self.events is not None:
            self.events.publish(job.id, event_type or job.status.value, job.to_dict())
