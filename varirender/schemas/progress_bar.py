from pydantic import Field

from varirender.schemas.base import WireModel


class ProgressBarConfig(WireModel):
    """Progress bar overlay settings, as persisted by the editor.

    Durations are seconds; progress targets are fractions of the bar (0-1).
    A timing window is active when its duration is greater than zero.
    """

    is_visible: bool = True
    background_color: str = "rgba(0, 0, 0, 0.3)"
    progress_color: str = "#ff0000"
    scrubber_color: str = "#ffffff"
    height: int = Field(default=8, ge=0)
    scrubber_size: int = Field(default=16, ge=0)
    border_radius: int = Field(default=0, ge=0)
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)
    shadow_blur: int = Field(default=0, ge=0)
    shadow_color: str = "rgba(0, 0, 0, 0.5)"

    use_deceptive_progress: bool = False
    fast_start_duration: float = Field(default=2.0, ge=0.0)
    fast_start_progress: float = Field(default=0.3, ge=0.0, le=1.0)
    fast_end_duration: float = Field(default=0.0, ge=0.0)
    fast_end_progress: float = Field(default=0.9, ge=0.0, le=1.0)

    @property
    def fast_start_enabled(self) -> bool:
        return self.fast_start_duration > 0

    @property
    def fast_end_enabled(self) -> bool:
        return self.fast_end_duration > 0

    @property
    def timing_is_consistent(self) -> bool:
        """False when both windows are active and the fast-start target is not
        below the fast-end target.

        The calculator tolerates such configs (it falls back to linear
        progress); submission rejects them so the operator sees the mistake.
        """
        if not (self.use_deceptive_progress and self.fast_start_enabled and self.fast_end_enabled):
            return True
        return self.fast_start_progress < self.fast_end_progress
