"""
Pytest fixtures for varirender tests.

The external render CLI is replaced by small Python scripts run with the
current interpreter, so the subprocess, timeout and output-parsing paths run
for real without the render engine installed.
"""

import sys
import textwrap
from pathlib import Path

import pytest

from varirender.config import Settings
from varirender.schemas.composition import CompositionSpec
from varirender.schemas.progress_bar import ProgressBarConfig
from varirender.schemas.render import RenderSpec, VariationSummary
from varirender.schemas.variation import VariationSet
from varirender.services.storage_service import LocalStorageService

FAKE_VIDEO = b"\x00\x00\x00\x18ftypmp42fake-video-bytes"

# Writes an artifact into the storage dir and prints its URL (colored, like the real CLI)
REMOTE_RENDER_SCRIPT = """
import json, sys, time, uuid
from pathlib import Path

props_path, storage_dir, write, delay = sys.argv[1], sys.argv[2], sys.argv[3], float(sys.argv[4])
props = json.loads(Path(props_path).read_text())
time.sleep(delay)
key = "renders/" + uuid.uuid4().hex + ".mp4"
path = Path(storage_dir) / key
if write == "1":
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\\x00\\x00\\x00\\x18ftypmp42fake-video-bytes")
print("Rendering " + props["variation"]["id"])
print("\\x1b[32m+ Done\\x1b[0m " + path.resolve().as_uri())
"""

LOCAL_RENDER_SCRIPT = """
import json, sys, time
from pathlib import Path

props_path, output_path, delay = sys.argv[1], sys.argv[2], float(sys.argv[3])
json.loads(Path(props_path).read_text())
time.sleep(delay)
Path(output_path).write_bytes(b"\\x00\\x00\\x00\\x18ftypmp42fake-video-bytes")
print("Rendered " + output_path)
"""

NO_OUTPUT_SCRIPT = """
print("Render finished without output")
"""

RATE_LIMITED_SCRIPT = """
import sys
sys.stderr.write("Error: TooManyRequestsException: Rate Exceeded.\\n")
sys.exit(1)
"""

CRASHING_SCRIPT = """
import sys
sys.stderr.write("Composition VideoComposition not found\\n")
sys.exit(3)
"""

SLEEPING_SCRIPT = """
import time
time.sleep(30)
"""


def write_script(directory: Path, name: str, source: str) -> str:
    path = directory / name
    path.write_text(textwrap.dedent(source))
    return str(path)


@pytest.fixture
def scripts_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "scripts"
    directory.mkdir()
    return directory


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with fast timings and a temporary storage root."""
    return Settings(
        use_local_storage=True,
        local_storage_path=str(tmp_path / "storage"),
        queue_cooldown_s=0.01,
        download_max_attempts=3,
        download_retry_delay_s=0.05,
        local_render_timeout_s=10,
        remote_render_timeout_s=10,
        client_state_path=str(tmp_path / "client" / "downloads.json"),
        client_download_dir=str(tmp_path / "downloads"),
    )


@pytest.fixture
def storage(settings: Settings) -> LocalStorageService:
    return LocalStorageService(settings)


@pytest.fixture
def remote_command(scripts_dir: Path, storage: LocalStorageService):
    """Build a remote render argv: ``remote_command(write=True, delay=0.0)``."""
    script = write_script(scripts_dir, "remote_render.py", REMOTE_RENDER_SCRIPT)

    def build(write: bool = True, delay: float = 0.0) -> list[str]:
        return [sys.executable, script, "{props}", str(storage.base_path), "1" if write else "0", str(delay)]

    return build


@pytest.fixture
def local_command(scripts_dir: Path):
    script = write_script(scripts_dir, "local_render.py", LOCAL_RENDER_SCRIPT)

    def build(delay: float = 0.0) -> list[str]:
        return [sys.executable, script, "{props}", "{output}", str(delay)]

    return build


@pytest.fixture
def script_command(scripts_dir: Path):
    """argv running one of the canned scripts above."""

    def build(name: str, source: str) -> list[str]:
        return [sys.executable, write_script(scripts_dir, name, source)]

    return build


@pytest.fixture
def composition() -> CompositionSpec:
    """A 9:16 composition with one of each track type."""
    return CompositionSpec.model_validate(
        {
            "projectName": "Summer Sale",
            "duration": 5000,
            "platform": {"width": 1080, "height": 1920, "aspectRatio": "9:16"},
            "trackItems": [
                {
                    "id": "clip-1",
                    "type": "video",
                    "display": {"from": 0, "to": 2000},
                    "src": "https://cdn.example.com/clip-1.mp4",
                },
                {
                    "id": "clip-2",
                    "type": "video",
                    "display": {"from": 2000, "to": 5000},
                    "src": "https://cdn.example.com/clip-2.mp4",
                    "playbackRate": 1.0,
                },
                {
                    "id": "music",
                    "type": "audio",
                    "display": {"from": 0, "to": 5000},
                    "src": "https://cdn.example.com/music.mp3",
                },
                {
                    "id": "headline",
                    "type": "text",
                    "display": {"from": 0, "to": 3000},
                    "text": "50% off",
                    "transform": {"left": 120, "top": 300, "width": 800},
                    "style": {"fontFamily": "Inter", "color": "#ffffff"},
                },
            ],
            "progressBar": {"useDeceptiveProgress": True, "fastStartDuration": 1.0},
        }
    )


@pytest.fixture
def variations() -> VariationSet:
    """Three text alternatives, two clip alternatives, two speeds."""
    return VariationSet.model_validate(
        {
            "elements": [
                {
                    "type": "text",
                    "elementId": "headline",
                    "alternatives": [{"text": "50% off"}, {"text": "Half price"}, {"text": "Today only"}],
                },
                {
                    "type": "video",
                    "elementId": "clip-1",
                    "alternatives": [
                        {"src": "https://cdn.example.com/clip-1.mp4"},
                        {"src": "https://cdn.example.com/clip-1b.mp4"},
                    ],
                },
                {
                    "type": "speed",
                    "alternatives": [{"speed": 1.0}, {"speed": 0.5, "label": "slow"}],
                },
            ]
        }
    )


@pytest.fixture
def render_spec() -> RenderSpec:
    return RenderSpec(
        variation=VariationSummary(id="original"),
        duration=2000,
        progress_bar_settings=ProgressBarConfig(),
        name="Summer_Sale_M-video.mp4",
    )
