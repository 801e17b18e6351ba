"""Render engine CLI invocation.

The engine is an external headless command. Each invocation is reduced to an
``EngineResult`` that the caller records on the job; nothing here raises for a
failed render.
"""

import asyncio
import logging
import re
from dataclasses import dataclass

from varirender.services.storage_service import strip_ansi

logger = logging.getLogger(__name__)

# Primary: object-store URL of the uploaded artifact
RESULT_URL_PATTERN = re.compile(
    r"https://(?:[\w.-]+\.)?(?:storage\.googleapis\.com|s3[\w.-]*\.amazonaws\.com)/\S+"
)
# Fallback: any URL ending in .mp4
FALLBACK_URL_PATTERN = re.compile(r"(?:https?|file)://\S+?\.mp4")

RATE_LIMIT_MARKERS = (
    "Rate Exceeded",
    "TooManyRequestsException",
    "ConcurrentInvocationLimitExceeded",
    "concurrency limit",
)

STDERR_TAIL_CHARS = 2000


@dataclass
class EngineResult:
    """Outcome of one CLI invocation."""

    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    spawn_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.spawn_error is None

    @property
    def output(self) -> str:
        return strip_ansi(f"{self.stdout}\n{self.stderr}")

    def error_tail(self) -> str:
        """Last part of the combined output, for error messages."""
        text = strip_ansi(self.stderr or self.stdout).strip()
        return text[-STDERR_TAIL_CHARS:]


def format_command(template: list[str], **values) -> list[str]:
    """Fill an argv template; each element is formatted on its own (no shell)."""
    return [part.format(**values) for part in template]


async def run_render_command(argv: list[str], timeout_s: float) -> EngineResult:
    logger.info(f"[ENGINE] Executing: {' '.join(argv)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error(f"[ENGINE] Could not start render command: {e}")
        return EngineResult(returncode=None, spawn_error=str(e))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.error(f"[ENGINE] Render command timed out after {timeout_s}s")
        return EngineResult(returncode=proc.returncode, timed_out=True)

    result = EngineResult(
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if result.ok:
        logger.info("[ENGINE] Render command finished")
    else:
        logger.error(f"[ENGINE] Render command exited with {proc.returncode}: {result.error_tail()}")
    return result


def parse_result_url(output: str) -> str | None:
    """Artifact URL printed by the CLI, if any."""
    text = strip_ansi(output)
    match = RESULT_URL_PATTERN.search(text)
    if match is None:
        match = FALLBACK_URL_PATTERN.search(text)
    if match is None:
        return None
    return match.group(0).rstrip(".,;)\"'")


def detect_rate_limit(output: str) -> bool:
    lowered = output.lower()
    return any(marker.lower() in lowered for marker in RATE_LIMIT_MARKERS)
