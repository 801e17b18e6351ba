"""Tests for the remote render queue.

The render CLI is a small Python script (see conftest) that writes the
artifact into local storage and prints its URL, so the whole
submit -> process -> fetch -> remove cycle runs for real.
"""

import asyncio
import time
from datetime import timedelta

import pytest

from conftest import CRASHING_SCRIPT, FAKE_VIDEO, NO_OUTPUT_SCRIPT, RATE_LIMITED_SCRIPT, SLEEPING_SCRIPT
from varirender.exceptions import (
    JobNotFoundError,
    JobNotReadyError,
    JobStateError,
    PermanentFetchError,
    TransientFetchError,
    VarirenderError,
)
from varirender.render.jobs import RenderStatus
from varirender.render.remote_queue import RemoteRenderQueue
from varirender.services.event_manager import JobEventManager
from varirender.services.storage_service import LocalStorageService


class FlakyStorage(LocalStorageService):
    """Local storage whose first ``failures`` reads report the object as missing."""

    def __init__(self, settings, failures: int):
        super().__init__(settings)
        self.failures = failures
        self.reads = 0

    def read_bytes(self, storage_key: str) -> bytes:
        self.reads += 1
        if self.reads <= self.failures:
            raise TransientFetchError(f"Object not found: {storage_key}")
        return super().read_bytes(storage_key)


class DeniedStorage(LocalStorageService):
    """Local storage that refuses every read, like a bucket without read access."""

    def __init__(self, settings):
        super().__init__(settings)
        self.reads = 0

    def read_bytes(self, storage_key: str) -> bytes:
        self.reads += 1
        raise PermanentFetchError(f"Could not read {storage_key}: 403 Forbidden")


async def wait_for_status(queue: RemoteRenderQueue, job_id: str, status: RenderStatus, timeout: float = 10.0):
    deadline = time.monotonic() + timeout
    while queue.get_job(job_id).status is not status:
        if time.monotonic() > deadline:
            raise AssertionError(f"job {job_id} never reached {status.value}")
        await asyncio.sleep(0.01)


class TestProcessing:
    """Admission, FIFO order and outcome classification."""

    @pytest.mark.asyncio
    async def test_single_job_completes(self, settings, storage, remote_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=remote_command())
        job = queue.submit(render_spec)

        assert job.status is RenderStatus.PENDING
        assert job.name == "Summer_Sale_M-video.mp4"

        await queue.join()
        assert job.status is RenderStatus.COMPLETED
        assert job.progress == 100
        assert job.attempts == 1
        assert job.result_url.startswith("file://")
        assert job.result_url.endswith(".mp4")

    @pytest.mark.asyncio
    async def test_fifo_one_at_a_time(self, settings, storage, remote_command, render_spec):
        """Never more than one job processing; jobs start in submission order."""
        queue = RemoteRenderQueue(storage, settings, command=remote_command(delay=0.2))
        jobs = [queue.submit(render_spec) for _ in range(3)]

        max_processing = 0
        while not all(job.status.is_terminal for job in jobs):
            processing = sum(job.status is RenderStatus.PROCESSING for job in jobs)
            max_processing = max(max_processing, processing)
            await asyncio.sleep(0.01)
        await queue.join()

        assert max_processing == 1
        assert all(job.status is RenderStatus.COMPLETED for job in jobs)
        started = [job.started_at for job in jobs]
        assert started == sorted(started)
        assert jobs[0].completed_at <= jobs[1].started_at <= jobs[1].completed_at <= jobs[2].started_at

    @pytest.mark.asyncio
    async def test_later_jobs_wait_while_processing(self, settings, storage, remote_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=remote_command(delay=0.3))
        first = queue.submit(render_spec)
        await wait_for_status(queue, first.id, RenderStatus.PROCESSING)

        second = queue.submit(render_spec)
        assert queue.is_processing
        assert queue.pending_ids() == [second.id]
        assert second.status is RenderStatus.PENDING

        await queue.join()
        assert second.status is RenderStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cooldown_between_queued_jobs(self, settings, storage, remote_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=remote_command(), cooldown_s=0.3)
        first = queue.submit(render_spec)
        second = queue.submit(render_spec)
        await queue.join()

        assert second.started_at - first.completed_at >= timedelta(seconds=0.25)

    @pytest.mark.asyncio
    async def test_cooldown_applies_when_queue_was_empty(self, settings, storage, remote_command, render_spec):
        """A job submitted right after the previous one finished still waits out the cooldown."""
        queue = RemoteRenderQueue(storage, settings, command=remote_command(), cooldown_s=0.3)
        first = queue.submit(render_spec)
        await wait_for_status(queue, first.id, RenderStatus.COMPLETED)
        assert queue.pending_ids() == []

        second = queue.submit(render_spec)
        await asyncio.sleep(0.1)
        assert second.status is RenderStatus.PENDING
        assert not queue.is_processing

        await queue.join()
        assert second.status is RenderStatus.COMPLETED
        assert second.started_at - first.completed_at >= timedelta(seconds=0.25)

    @pytest.mark.asyncio
    async def test_rate_limited(self, settings, storage, script_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=script_command("busy.py", RATE_LIMITED_SCRIPT))
        job = queue.submit(render_spec)
        await queue.join()

        assert job.status is RenderStatus.FAILED
        assert job.error_code == "RATE_LIMITED"
        assert "concurrency limit" in job.error

    @pytest.mark.asyncio
    async def test_crash_is_render_failed(self, settings, storage, script_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=script_command("crash.py", CRASHING_SCRIPT))
        job = queue.submit(render_spec)
        await queue.join()

        assert job.status is RenderStatus.FAILED
        assert job.error_code == "RENDER_FAILED"
        assert "exit code 3" in job.error
        assert "Composition VideoComposition not found" in job.error

    @pytest.mark.asyncio
    async def test_missing_result_url(self, settings, storage, script_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=script_command("quiet.py", NO_OUTPUT_SCRIPT))
        job = queue.submit(render_spec)
        await queue.join()

        assert job.status is RenderStatus.FAILED
        assert job.error_code == "RESULT_URL_MISSING"

    @pytest.mark.asyncio
    async def test_timeout(self, settings, storage, script_command, render_spec):
        queue = RemoteRenderQueue(
            storage, settings, command=script_command("slow.py", SLEEPING_SCRIPT), timeout_s=0.5
        )
        job = queue.submit(render_spec)
        await queue.join()

        assert job.status is RenderStatus.FAILED
        assert job.error_code == "RENDER_TIMEOUT"

    @pytest.mark.asyncio
    async def test_missing_binary(self, settings, storage, render_spec, tmp_path):
        queue = RemoteRenderQueue(storage, settings, command=[str(tmp_path / "no-such-cli"), "{props}"])
        job = queue.submit(render_spec)
        await queue.join()

        assert job.error_code == "SUBMISSION_FAILED"

    @pytest.mark.asyncio
    async def test_failure_does_not_block_queue(self, settings, storage, script_command, remote_command, render_spec):
        """A failed job releases the lock; the next one still runs."""
        queue = RemoteRenderQueue(storage, settings, command=script_command("crash.py", CRASHING_SCRIPT))
        failed = queue.submit(render_spec)
        await queue.join()

        queue.command = remote_command()
        ok = queue.submit(render_spec)
        await queue.join()

        assert failed.status is RenderStatus.FAILED
        assert ok.status is RenderStatus.COMPLETED
        assert not queue.is_processing

    @pytest.mark.asyncio
    async def test_duration_is_clamped(self, settings, storage, remote_command, render_spec):
        settings.max_render_duration_ms = 1000
        queue = RemoteRenderQueue(storage, settings, command=remote_command())
        job = queue.submit(render_spec)

        assert job.spec.duration == 1000
        assert job.spec.diagnostics == ["duration 2000ms clamped to 1000ms"]
        await queue.join()


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_failed_job(self, settings, storage, script_command, remote_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=script_command("crash.py", CRASHING_SCRIPT))
        job = queue.submit(render_spec)
        await queue.join()
        assert job.status is RenderStatus.FAILED

        queue.command = remote_command()
        retried = queue.retry(job.id)
        assert retried is job
        assert job.status is RenderStatus.PENDING
        assert job.error is None

        await queue.join()
        assert job.status is RenderStatus.COMPLETED
        assert job.attempts == 2

    @pytest.mark.asyncio
    async def test_retry_requires_failed(self, settings, storage, remote_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=remote_command())
        job = queue.submit(render_spec)
        await queue.join()

        with pytest.raises(JobStateError):
            queue.retry(job.id)

    def test_unknown_job(self, settings, storage):
        queue = RemoteRenderQueue(storage, settings)
        with pytest.raises(JobNotFoundError):
            queue.get_job("missing")
        with pytest.raises(JobNotFoundError):
            queue.retry("missing")


class TestDownload:
    """Artifact fetch with bounded retries, then removal."""

    @pytest.mark.asyncio
    async def test_download_returns_bytes_and_removes_job(self, settings, storage, remote_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=remote_command())
        job = queue.submit(render_spec)
        await queue.join()

        removed, data = await queue.download(job.id)
        assert data == FAKE_VIDEO
        assert removed is job
        with pytest.raises(JobNotFoundError):
            queue.get_job(job.id)

    @pytest.mark.asyncio
    async def test_not_ready(self, settings, storage, remote_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=remote_command(delay=0.3))
        job = queue.submit(render_spec)

        with pytest.raises(JobNotReadyError) as exc_info:
            await queue.fetch_artifact(job.id)
        assert exc_info.value.status_code == 202
        await queue.join()

    @pytest.mark.asyncio
    async def test_failed_job_returns_recorded_error(self, settings, storage, script_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=script_command("busy.py", RATE_LIMITED_SCRIPT))
        job = queue.submit(render_spec)
        await queue.join()

        with pytest.raises(VarirenderError) as exc_info:
            await queue.fetch_artifact(job.id)
        assert exc_info.value.code == "RATE_LIMITED"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_fetch_retries_transient_failures(self, settings, remote_command, render_spec):
        """Two misses then a hit: succeeds after roughly two retry delays."""
        storage = FlakyStorage(settings, failures=2)
        queue = RemoteRenderQueue(storage, settings, command=remote_command())
        job = queue.submit(render_spec)
        await queue.join()

        start = time.monotonic()
        data = await queue.fetch_artifact(job.id)
        elapsed = time.monotonic() - start

        assert data == FAKE_VIDEO
        assert storage.reads == 3
        assert elapsed >= 2 * settings.download_retry_delay_s

    @pytest.mark.asyncio
    async def test_fetch_gives_up_and_keeps_job(self, settings, storage, remote_command, render_spec):
        """Artifact never appears: permanent failure, job stays for a later attempt."""
        queue = RemoteRenderQueue(storage, settings, command=remote_command(write=False))
        job = queue.submit(render_spec)
        await queue.join()
        assert job.status is RenderStatus.COMPLETED

        with pytest.raises(PermanentFetchError) as exc_info:
            await queue.download(job.id)
        assert "after 3 attempts" in exc_info.value.message
        assert queue.get_job(job.id) is job

    @pytest.mark.asyncio
    async def test_empty_artifact_is_retried(self, settings, storage, remote_command, render_spec):
        queue = RemoteRenderQueue(storage, settings, command=remote_command())
        job = queue.submit(render_spec)
        await queue.join()
        key = storage.parse_object_key(job.result_url)
        storage.upload_file_from_bytes(key, b"")

        with pytest.raises(PermanentFetchError):
            await queue.fetch_artifact(job.id)

    @pytest.mark.asyncio
    async def test_concurrent_downloads_both_succeed(self, settings, remote_command, render_spec):
        storage = FlakyStorage(settings, failures=1)
        queue = RemoteRenderQueue(storage, settings, command=remote_command())
        job = queue.submit(render_spec)
        await queue.join()

        results = await asyncio.gather(queue.download(job.id), queue.download(job.id))

        assert [data for _, data in results] == [FAKE_VIDEO, FAKE_VIDEO]
        assert all(removed is job for removed, _ in results)
        with pytest.raises(JobNotFoundError):
            queue.get_job(job.id)

    @pytest.mark.asyncio
    async def test_permanent_storage_error_is_not_retried(self, settings, remote_command, render_spec):
        storage = DeniedStorage(settings)
        queue = RemoteRenderQueue(storage, settings, command=remote_command())
        job = queue.submit(render_spec)
        await queue.join()

        with pytest.raises(PermanentFetchError):
            await queue.fetch_artifact(job.id)
        assert storage.reads == 1
        assert queue.get_job(job.id) is job


class TestEvents:
    @pytest.mark.asyncio
    async def test_transitions_are_published(self, settings, storage, remote_command, render_spec):
        events = JobEventManager()
        queue = RemoteRenderQueue(storage, settings, events=events, command=remote_command())

        job = queue.submit(render_spec)
        subscriber = events.subscribe(job.id)
        received = [event async for event in events.listen(subscriber)]
        events.unsubscribe(job.id, subscriber)

        assert [event.event_type for event in received] == ["processing", "completed"]
        assert received[-1].data["result"] == job.result_url
        assert events.get_subscriber_count(job.id) == 0
        await queue.join()
