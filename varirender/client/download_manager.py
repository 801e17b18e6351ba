"""Client-side download/render manager.

Keeps a persisted queue of exports, submits them to the render API one at a
time, polls each job to completion and writes the finished video to the
download directory. Removing an item while it is in flight cancels its
polling; the render itself keeps running on the server.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from varirender.client.api_client import LOCAL_RENDER_PATH, REMOTE_RENDER_PATH, RenderApiClient
from varirender.client.store import DownloadStore
from varirender.config import Settings, get_settings
from varirender.exceptions import (
    PermanentFetchError,
    RenderFailedError,
    RenderTimeoutError,
    ValidationError,
    VarirenderError,
)
from varirender.schemas.download import DownloadItem, DownloadState, DownloadType
from varirender.services.naming_service import FILE_EXTENSION

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


class DownloadManager:
    def __init__(
        self,
        api_client: RenderApiClient,
        store: DownloadStore | None = None,
        *,
        download_dir: str | Path,
        local_api_client: RenderApiClient | None = None,
        max_concurrent: int | None = None,
        poll_interval_s: float = 3.0,
        max_poll_attempts: int = 600,
        requeue_delay_s: float = 1.0,
        add_delay_s: float = 0.5,
    ) -> None:
        self.api_client = api_client
        # "video" items render in-process on the server, "variation" items on the remote queue
        self.local_api_client = local_api_client or api_client
        self.store = store
        self.download_dir = Path(download_dir).expanduser()
        self.poll_interval_s = poll_interval_s
        self.max_poll_attempts = max_poll_attempts
        self.requeue_delay_s = requeue_delay_s
        self.add_delay_s = add_delay_s

        state = store.load() if store is not None else DownloadState()
        self.max_concurrent = max_concurrent or state.max_concurrent
        self._items: dict[str, DownloadItem] = {}
        for item in state.downloads:
            if item.status == "downloading":
                # Interrupted mid-render; resume polling the same job
                item.status = "pending"
            self._items[item.id] = item

        self._is_processing = False
        self._tasks: set[asyncio.Task] = set()
        self._timers: set[asyncio.TimerHandle] = set()

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    @property
    def downloads(self) -> list[DownloadItem]:
        return list(self._items.values())

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    def get(self, download_id: str) -> DownloadItem | None:
        return self._items.get(download_id)

    def add_download(self, name: str, type: DownloadType, data: dict[str, Any]) -> str:
        if not data:
            raise ValidationError("No render data provided", field="data")
        item = DownloadItem(name=name, type=type, data=data)
        self._items[item.id] = item
        self._save()
        logger.info(f"[DOWNLOAD] Queued {item.name} ({item.type}) as {item.id}")
        self._schedule_process(self.add_delay_s)
        return item.id

    def remove_download(self, download_id: str) -> None:
        item = self._items.pop(download_id, None)
        if item is None:
            return
        if item.status == "downloading":
            self._mark_cancelled(item)
        self._save()

    def cancel_download(self, download_id: str) -> None:
        """Stop polling an item but keep it in the list (as failed)."""
        item = self._items.get(download_id)
        if item is None or item.status in ("completed", "failed"):
            return
        self._mark_cancelled(item)
        self._save()

    def pause_download(self, download_id: str) -> None:
        item = self._items.get(download_id)
        if item is None or item.status not in ("pending", "downloading"):
            return
        item.status = "paused"
        self._save()

    def resume_download(self, download_id: str) -> None:
        item = self._items.get(download_id)
        if item is None or item.status != "paused":
            return
        item.status = "pending"
        self._save()
        self._schedule_process(0.1)

    def clear_completed(self) -> None:
        self._items = {k: v for k, v in self._items.items() if v.status != "completed"}
        self._save()

    def clear_all(self) -> None:
        for item in self._items.values():
            if item.status == "downloading":
                self._mark_cancelled(item)
        self._items.clear()
        self._save()

    def set_max_concurrent(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValidationError("max_concurrent must be at least 1", field="max_concurrent")
        self.max_concurrent = max_concurrent
        self._save()
        self._schedule_process(0)

    def process_queue(self) -> bool:
        """Start the next pending item if allowed. Safe to call any number of times.

        Returns:
            True if a download was started
        """
        pending = [item for item in self._items.values() if item.status == "pending"]
        downloading = sum(1 for item in self._items.values() if item.status == "downloading")

        if self._is_processing:
            logger.debug("[DOWNLOAD] Already processing, skipping")
            return False
        if downloading >= self.max_concurrent:
            logger.debug(f"[DOWNLOAD] Max concurrent reached ({downloading}/{self.max_concurrent})")
            return False
        if not pending:
            return False

        self._is_processing = True
        task = asyncio.get_running_loop().create_task(self.start_download(pending[0]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def start_download(self, item: DownloadItem) -> None:
        try:
            if item.status != "pending":
                return
            item.status = "downloading"
            item.error = None
            self._save()
            logger.info(f"[DOWNLOAD] Starting {item.name} ({item.type})")

            client = self.local_api_client if item.type == "video" else self.api_client
            try:
                await self._render_and_fetch(item, client)
            except (VarirenderError, httpx.HTTPError, OSError) as e:
                self._record_failure(item, str(e))
            except Exception as e:
                logger.exception(f"[DOWNLOAD] Unexpected error for {item.name}")
                self._record_failure(item, str(e))
        finally:
            # Always release the processing lock
            self._is_processing = False
            self._save()
            self._schedule_process(self.requeue_delay_s)

    # ------------------------------------------------------------------
    # Render + poll
    # ------------------------------------------------------------------

    async def _render_and_fetch(self, item: DownloadItem, client: RenderApiClient) -> None:
        if item.job_id is None:
            response = await client.submit(item.data)
            item.job_id = response["jobId"]
            self._save()
            logger.info(f"[DOWNLOAD] {item.name} submitted as job {item.job_id}")
        else:
            logger.info(f"[DOWNLOAD] {item.name} resuming job {item.job_id}")

        attempts = 0
        while attempts < self.max_poll_attempts:
            await asyncio.sleep(self.poll_interval_s)
            attempts += 1
            if self._stopped(item):
                logger.info(f"[DOWNLOAD] {item.name} stopped ({item.status}), no longer polling")
                return

            item.progress = int(min(90, attempts / self.max_poll_attempts * 90))

            try:
                status = await client.get_status(item.job_id)
            except (httpx.HTTPError, VarirenderError) as e:
                logger.warning(f"[DOWNLOAD] Status check for {item.name} failed: {e}")
                continue
            if self._stopped(item):
                return

            if status.get("status") == "completed":
                data = await client.download(item.job_id)
                if data is None:
                    continue
                if not data:
                    raise PermanentFetchError("Received empty video file")
                if self._stopped(item):
                    return
                item.output_path = str(await asyncio.to_thread(self._write_output, item.name, data))
                item.status = "completed"
                item.progress = 100
                item.completed_at = datetime.now(timezone.utc)
                self._save()
                logger.info(f"[DOWNLOAD] {item.name} saved to {item.output_path}")
                return
            if status.get("status") == "failed":
                raise RenderFailedError(f"Video rendering failed: {status.get('error') or 'Unknown error'}")

        minutes = self.poll_interval_s * self.max_poll_attempts / 60
        raise RenderTimeoutError(f"Video rendering timed out after {minutes:g} minutes")

    def _write_output(self, name: str, data: bytes) -> Path:
        self.download_dir.mkdir(parents=True, exist_ok=True)
        filename = Path(name).name
        if not filename.endswith(FILE_EXTENSION):
            filename += FILE_EXTENSION
        stem = filename[: -len(FILE_EXTENSION)]
        path = self.download_dir / filename
        copy = 1
        # Never overwrite an earlier export with the same name
        while path.exists():
            path = self.download_dir / f"{stem} ({copy}){FILE_EXTENSION}"
            copy += 1
        path.write_bytes(data)
        return path

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stopped(self, item: DownloadItem) -> bool:
        return item.id not in self._items or item.status != "downloading"

    def _mark_cancelled(self, item: DownloadItem) -> None:
        item.status = "failed"
        item.error = CANCELLED
        item.completed_at = datetime.now(timezone.utc)
        logger.info(f"[DOWNLOAD] {item.name} cancelled")

    def _record_failure(self, item: DownloadItem, message: str) -> None:
        if self._stopped(item):
            return
        item.status = "failed"
        item.error = message
        item.completed_at = datetime.now(timezone.utc)
        logger.error(f"[DOWNLOAD] {item.name} failed: {message}")

    def _schedule_process(self, delay_s: float) -> None:
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._timers.discard(handle)
            self.process_queue()

        handle = loop.call_later(delay_s, fire)
        self._timers.add(handle)

    def _save(self) -> None:
        if self.store is None:
            return
        self.store.save(DownloadState(downloads=list(self._items.values()), max_concurrent=self.max_concurrent))

    async def join(self) -> None:
        """Wait until no download is running or scheduled."""
        while self._tasks or self._timers:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(0.01)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        # Cancelled downloads schedule a requeue on their way out
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()


def build_download_manager(settings: Settings | None = None) -> DownloadManager:
    """Download manager wired from settings (API base URL, state file, download dir)."""
    settings = settings or get_settings()
    return DownloadManager(
        RenderApiClient(
            settings.api_base_url,
            render_path=REMOTE_RENDER_PATH,
            timeout=settings.client_request_timeout_s,
        ),
        DownloadStore(settings.client_state_path),
        download_dir=settings.client_download_dir,
        local_api_client=RenderApiClient(
            settings.api_base_url,
            render_path=LOCAL_RENDER_PATH,
            timeout=settings.client_request_timeout_s,
        ),
        max_concurrent=settings.client_max_concurrent,
        poll_interval_s=settings.client_poll_interval_s,
        max_poll_attempts=settings.client_max_poll_attempts,
        requeue_delay_s=settings.client_requeue_delay_s,
    )
