"""Object storage access for rendered artifacts.

The render engine uploads its output itself; this layer only reads it back
(and, for local development and tests, writes it).
"""

import logging
import re
from pathlib import Path
from urllib.parse import unquote, urlparse

from varirender.config import Settings, get_settings
from varirender.exceptions import PermanentFetchError, TransientFetchError

logger = logging.getLogger(__name__)

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    """Remove terminal color sequences (CLI output is often colored)."""
    return ANSI_ESCAPE.sub("", text)


class LocalStorageService:
    """Local file storage for development without GCS."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.base_path = Path(self.settings.local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = (self.base_path / storage_key).resolve()
        if not full_path.is_relative_to(self.base_path.resolve()):
            raise PermanentFetchError(f"Object key escapes storage root: {storage_key}")
        return full_path

    def get_public_url(self, storage_key: str) -> str:
        """Get URL for accessing the file."""
        return f"file://{self._get_full_path(storage_key)}"

    def parse_object_key(self, url: str) -> str:
        """Object key for a URL produced by ``get_public_url``."""
        cleaned = strip_ansi(url).strip()
        parsed = urlparse(cleaned)
        if parsed.scheme == "file":
            path = Path(unquote(parsed.path))
            base = self.base_path.resolve()
            if path.is_relative_to(base):
                return str(path.relative_to(base))
        key = cleaned.rsplit("/", 1)[-1]
        if not key:
            raise PermanentFetchError(f"Could not extract object key from result URL: {cleaned!r}")
        return key

    def upload_file_from_bytes(self, storage_key: str, data: bytes) -> str:
        """Upload file from bytes."""
        full_path = self._get_full_path(storage_key)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(data)
        return self.get_public_url(storage_key)

    def read_bytes(self, storage_key: str) -> bytes:
        full_path = self._get_full_path(storage_key)
        if not full_path.exists():
            raise TransientFetchError(f"Object not found: {storage_key}")
        return full_path.read_bytes()

    def delete_file(self, storage_key: str) -> bool:
        """Delete file."""
        full_path = self._get_full_path(storage_key)
        if full_path.exists():
            full_path.unlink()
            return True
        return False

    def file_exists(self, storage_key: str) -> bool:
        """Check if file exists."""
        return self._get_full_path(storage_key).exists()


class GCSStorageService:
    """Google Cloud Storage service for production."""

    def __init__(self, settings: Settings | None = None) -> None:
        from google.cloud import storage

        self.settings = settings or get_settings()
        self._storage = storage
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None

    @property
    def client(self):
        if self._client is None:
            if self.settings.gcs_project_id:
                self._client = self._storage.Client(project=self.settings.gcs_project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self.settings.gcs_bucket_name)
        return self._bucket

    def get_public_url(self, storage_key: str) -> str:
        """Get the public URL for a stored file."""
        return f"https://storage.googleapis.com/{self.settings.gcs_bucket_name}/{storage_key}"

    def parse_object_key(self, url: str) -> str:
        """Object key for a bucket URL (path-style or virtual-hosted-style)."""
        cleaned = strip_ansi(url).strip()
        parsed = urlparse(cleaned)
        path = unquote(parsed.path).lstrip("/")
        bucket = self.settings.gcs_bucket_name
        if parsed.netloc in ("storage.googleapis.com", "storage.cloud.google.com") and path.startswith(
            f"{bucket}/"
        ):
            path = path[len(bucket) + 1 :]
        if not path:
            raise PermanentFetchError(f"Could not extract object key from result URL: {cleaned!r}")
        return path

    def upload_file_from_bytes(self, storage_key: str, data: bytes) -> str:
        blob = self.bucket.blob(storage_key)
        blob.upload_from_string(data, content_type="video/mp4")
        return self.get_public_url(storage_key)

    def read_bytes(self, storage_key: str) -> bytes:
        """Read an object, classifying failures for the caller's retry loop.

        Missing objects (the upload may still be settling), 429/5xx responses
        and connection failures are transient. Any other API error, such as
        a 403 on the bucket, is permanent.
        """
        from google.api_core import exceptions as api_exceptions

        blob = self.bucket.blob(storage_key)
        try:
            return blob.download_as_bytes()
        except api_exceptions.NotFound as e:
            raise TransientFetchError(f"Object not found: {storage_key}") from e
        except (
            api_exceptions.TooManyRequests,
            api_exceptions.InternalServerError,
            api_exceptions.BadGateway,
            api_exceptions.ServiceUnavailable,
            api_exceptions.GatewayTimeout,
        ) as e:
            raise TransientFetchError(f"Storage unavailable for {storage_key}: {e}") from e
        except api_exceptions.GoogleAPIError as e:
            raise PermanentFetchError(f"Could not read {storage_key}: {e}") from e
        except OSError as e:
            raise TransientFetchError(f"Connection to storage failed for {storage_key}: {e}") from e

    def delete_file(self, storage_key: str) -> bool:
        """Delete a file from GCS."""
        blob = self.bucket.blob(storage_key)
        if blob.exists():
            blob.delete()
            return True
        return False

    def file_exists(self, storage_key: str) -> bool:
        """Check if a file exists in GCS."""
        blob = self.bucket.blob(storage_key)
        return blob.exists()


StorageService = LocalStorageService | GCSStorageService


def get_storage_service(settings: Settings | None = None) -> StorageService:
    """Use LocalStorageService or GCSStorageService based on config."""
    settings = settings or get_settings()
    if settings.use_local_storage:
        return LocalStorageService(settings)
    return GCSStorageService(settings)
