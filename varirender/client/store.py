"""JSON-file persistence for the client download queue."""

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from varirender.exceptions import StorageError
from varirender.schemas.download import DownloadState

logger = logging.getLogger(__name__)


class DownloadStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> DownloadState:
        """Read the saved queue; a missing file is an empty queue."""
        if not self.path.exists():
            return DownloadState()
        try:
            return DownloadState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except PydanticValidationError as e:
            raise StorageError(f"Download state file {self.path} is corrupt: {e}") from e

    def save(self, state: DownloadState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".downloads-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(by_alias=True, indent=2))
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"[DOWNLOAD] Saved {len(state.downloads)} items to {self.path}")
