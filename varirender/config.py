import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Varirender API"
    app_version: str = "0.1.0"
    git_hash: str = "unknown"  # Set via GIT_HASH env var at build time
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:3000,http://localhost:5173"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # Render engine (external headless CLI)
    # argv templates; placeholders are filled with str.format
    local_render_command: list[str] = [
        "npx", "remotion", "render", "{entry}", "{composition}", "{output}",
        "--props={props}", "--fps={fps}", "--width={width}", "--height={height}",
        "--concurrency=2", "--jpeg-quality=80",
    ]
    remote_render_command: list[str] = [
        "npx", "remotion", "lambda", "render", "{serve_url}", "{composition}",
        "--props={props}", "--region={region}", "--function-name={function_name}",
        "--concurrency={concurrency}", "--timeout={timeout_ms}",
    ]
    render_entry: str = "src/remotion/entry.tsx"
    render_composition_id: str = "VideoComposition"
    render_fps: int = 30
    render_serve_url: str = ""
    render_region: str = "us-east-1"
    render_function_name: str = ""
    # Fan-out inside the serverless renderer, set per job
    render_remote_concurrency: int = 5

    # Timeouts (seconds)
    local_render_timeout_s: float = 300.0
    remote_render_timeout_s: float = 900.0

    # Hard ceiling on a single render's duration (ms); longer specs are clamped
    max_render_duration_ms: int = 300_000

    # Remote queue
    queue_cooldown_s: float = 2.0
    download_max_attempts: int = 3
    download_retry_delay_s: float = 3.0

    # Object storage
    use_local_storage: bool = True  # Set to False in production
    local_storage_path: str = "/tmp/varirender-storage"
    gcs_bucket_name: str = "varirender-renders"
    gcs_project_id: str = ""

    # Client download manager
    api_base_url: str = "http://localhost:8000"
    client_request_timeout_s: float = 120.0
    client_poll_interval_s: float = 3.0
    client_max_poll_attempts: int = 600
    client_max_concurrent: int = 1
    client_requeue_delay_s: float = 1.0
    client_state_path: str = "~/.varirender/downloads.json"
    client_download_dir: str = "~/Downloads/varirender"


@lru_cache
def get_settings() -> Settings:
    return Settings()
