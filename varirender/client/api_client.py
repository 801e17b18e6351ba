"""HTTP client for the varirender render API."""

import logging
from typing import Any

import httpx

from varirender.exceptions import VarirenderError

logger = logging.getLogger(__name__)

REMOTE_RENDER_PATH = "/api/render"
LOCAL_RENDER_PATH = "/api/render-local"


def _raise_for_error(resp: httpx.Response) -> None:
    """Raise the API's structured error when the body carries one."""
    if resp.is_success:
        return
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]
        raise VarirenderError(
            error.get("message") or f"HTTP {resp.status_code}",
            code=error.get("code"),
            status_code=resp.status_code,
        )
    resp.raise_for_status()


class RenderApiClient:
    """Submit / status / download against the remote or local render routes."""

    def __init__(
        self,
        base_url: str,
        *,
        render_path: str = REMOTE_RENDER_PATH,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.render_path = render_path.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        """Create an async HTTP client for one call."""
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def submit(self, render_spec: dict[str, Any]) -> dict:
        """Submit a render spec. Returns ``{jobId, status, pollingUrl, downloadUrl}``."""
        async with self._client() as client:
            resp = await client.post(self.render_path, json=render_spec)
            _raise_for_error(resp)
            return resp.json()

    async def get_status(self, job_id: str) -> dict:
        async with self._client() as client:
            resp = await client.get(f"{self.render_path}/{job_id}")
            _raise_for_error(resp)
            return resp.json()

    async def download(self, job_id: str) -> bytes | None:
        """Fetch the rendered video.

        Returns None while the job is still rendering (HTTP 202).
        """
        async with self._client() as client:
            resp = await client.put(f"{self.render_path}/{job_id}/download")
            if resp.status_code == 202:
                return None
            _raise_for_error(resp)
            return resp.content

    async def retry(self, job_id: str) -> dict:
        async with self._client() as client:
            resp = await client.post(f"{self.render_path}/{job_id}/retry")
            _raise_for_error(resp)
            return resp.json()
