"""Progress overlay calculator.

The progress bar drawn over exported videos is deliberately non-linear: it
jumps ahead early and crawls at the end. Two strategies exist and are kept
apart on purpose:

- ``baked``: piecewise-linear fast-start / fast-end curve, used for the
  exported media.
- ``preview``: fast start followed by seven equal-time phases with
  decreasing speed, used for the live editor preview.

Both return a fraction in [0, 1]. A speed recalibration can be applied on top
of either for speed variations.
"""

from collections.abc import Callable

from varirender.schemas.progress_bar import ProgressBarConfig

ProgressStrategy = Callable[[float, float, ProgressBarConfig], float]

# Anything past this share of the duration shows a full bar
COMPLETE_THRESHOLD = 0.99

PREVIEW_PHASE_WEIGHTS = (2.0, 1.75, 1.5, 1.0, 0.75, 0.5, 0.25)

# Slow-motion variations never stretch the bar by more than 1/0.3
MIN_SPEED_FACTOR = 0.3
FAST_SPEED_DAMPING = 0.7


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


def _segment(elapsed: float, start: float, end: float, from_p: float, to_p: float) -> float:
    """Linear interpolation of progress over [start, end)."""
    if end <= start:
        return to_p
    return from_p + (elapsed - start) / (end - start) * (to_p - from_p)


def baked_progress(elapsed_ms: float, total_ms: float, config: ProgressBarConfig) -> float:
    if total_ms <= 0:
        return 1.0
    if elapsed_ms >= COMPLETE_THRESHOLD * total_ms:
        return 1.0
    elapsed = max(elapsed_ms, 0.0)

    if not config.use_deceptive_progress:
        return _clamp(elapsed / total_ms)

    fsp = config.fast_start_progress
    fep = config.fast_end_progress
    fast_start_ms = min(config.fast_start_duration * 1000, total_ms)
    fast_end_start = max(0.0, total_ms - config.fast_end_duration * 1000)

    if config.fast_start_enabled and config.fast_end_enabled:
        if fsp >= fep:
            return _clamp(elapsed / total_ms)
        fast_end_start = max(fast_end_start, fast_start_ms)
        if elapsed < fast_start_ms:
            progress = _segment(elapsed, 0.0, fast_start_ms, 0.0, fsp)
        elif elapsed < fast_end_start:
            progress = _segment(elapsed, fast_start_ms, fast_end_start, fsp, fep)
        else:
            progress = _segment(elapsed, fast_end_start, total_ms, fep, 1.0)
        return _clamp(progress)

    if config.fast_start_enabled:
        if elapsed < fast_start_ms:
            return _clamp(_segment(elapsed, 0.0, fast_start_ms, 0.0, fsp))
        return _clamp(_segment(elapsed, fast_start_ms, total_ms, fsp, 1.0))

    if config.fast_end_enabled:
        if elapsed < fast_end_start:
            return _clamp(_segment(elapsed, 0.0, fast_end_start, 0.0, fep))
        return _clamp(_segment(elapsed, fast_end_start, total_ms, fep, 1.0))

    return _clamp(elapsed / total_ms)


def preview_progress(elapsed_ms: float, total_ms: float, config: ProgressBarConfig) -> float:
    """Live preview curve.

    The fast-start window is a share of the *time ratio*; the remainder of the
    ratio (not renormalized) is walked through seven phases of 1/7 each, with
    the remaining bar split by ``PREVIEW_PHASE_WEIGHTS``. Past the last phase
    the bar sits at the fast-start target, as the editor preview does. With a
    zero-length fast-start window the bar jumps to that target at frame 0.
    """
    if total_ms <= 0:
        return 1.0
    ratio = max(elapsed_ms, 0.0) / total_ms

    if not config.use_deceptive_progress:
        return min(ratio, 1.0)

    fast_start_ratio = config.fast_start_duration / (total_ms / 1000)
    fsp = config.fast_start_progress

    if fast_start_ratio > 0 and ratio <= fast_start_ratio:
        return (ratio / fast_start_ratio) * fsp

    remaining_ratio = ratio - fast_start_ratio
    remaining_bar = 1 - fsp
    total_weight = sum(PREVIEW_PHASE_WEIGHTS)
    phase_progress = [weight / total_weight * remaining_bar for weight in PREVIEW_PHASE_WEIGHTS]
    time_per_phase = 1 / len(PREVIEW_PHASE_WEIGHTS)

    progress = fsp
    accumulated = 0.0
    for i, share in enumerate(phase_progress):
        phase_start = i * time_per_phase
        phase_end = (i + 1) * time_per_phase
        if phase_start <= remaining_ratio <= phase_end:
            progress += accumulated + share * (remaining_ratio - phase_start) / time_per_phase
            break
        if remaining_ratio > phase_end:
            accumulated += share

    return min(progress, 1.0)


def apply_speed_multiplier(progress: float, speed: float) -> float:
    """Recalibrate a progress fraction for a speed variation."""
    if speed > 1:
        progress = min(progress * speed * FAST_SPEED_DAMPING, 1.0)
    elif speed < 1:
        progress = progress / max(speed, MIN_SPEED_FACTOR)
    return min(progress, 1.0)


STRATEGIES: dict[str, ProgressStrategy] = {
    "baked": baked_progress,
    "preview": preview_progress,
}


def get_strategy(name: str) -> ProgressStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown progress strategy: {name!r} (expected one of {sorted(STRATEGIES)})")


def progress(
    elapsed_ms: float,
    total_ms: float,
    config: ProgressBarConfig,
    strategy: str = "baked",
    speed: float = 1.0,
) -> float:
    value = get_strategy(strategy)(elapsed_ms, total_ms, config)
    if speed != 1.0:
        value = apply_speed_multiplier(value, speed)
    return value


def sample_progress(
    total_ms: int,
    fps: int,
    config: ProgressBarConfig,
    strategy: str = "baked",
    speed: float = 1.0,
) -> list[float]:
    """Progress value for every frame of a ``total_ms`` long video."""
    frames = max(1, round(total_ms / 1000 * fps))
    return [
        round(progress(frame / fps * 1000, total_ms, config, strategy, speed), 6)
        for frame in range(frames)
    ]
