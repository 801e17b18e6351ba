from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from varirender.schemas.base import WireModel
from varirender.schemas.composition import (
    CompositionSpec,
    DisplayWindow,
    PlatformConfig,
    TrackItem,
)
from varirender.schemas.progress_bar import ProgressBarConfig
from varirender.schemas.variation import (
    AxisType,
    NamingConfig,
    VariationCombination,
    VariationSet,
)

ProgressStrategyName = Literal["baked", "preview"]

MAX_SAMPLE_DURATION_MS = 600_000


class VariationSummary(WireModel):
    id: str
    is_original: bool = True
    choices: dict[AxisType, int] = Field(default_factory=dict)
    name: str | None = None
    speed: float = 1.0


class TextPosition(WireModel):
    left: float = 50.0
    top: float = 50.0


class TextOverlay(WireModel):
    """A text item as the render engine draws it."""

    id: str
    text: str
    timing: DisplayWindow
    position: TextPosition = Field(default_factory=TextPosition)
    width: float | None = None
    height: float | None = None
    style: dict[str, Any] = Field(default_factory=dict)


class RenderSpec(WireModel):
    """Props file handed to the render CLI.

    Dumped with ``to_wire()``; the engine reads camelCase keys.
    """

    variation: VariationSummary
    text_overlays: list[TextOverlay] = Field(default_factory=list)
    platform_config: PlatformConfig = Field(default_factory=PlatformConfig)
    duration: int = Field(default=5000, ge=0)  # ms
    video_track_items: list[TrackItem] = Field(default_factory=list)
    audio_track_items: list[TrackItem] = Field(default_factory=list)
    image_track_items: list[TrackItem] = Field(default_factory=list)
    progress_bar_settings: ProgressBarConfig | None = None
    progress_strategy: ProgressStrategyName = "baked"
    speed_multiplier: float = 1.0
    diagnostics: list[str] = Field(default_factory=list)
    name: str | None = None


# =============================================================================
# Request / response bodies
# =============================================================================


class VariationRenderRequest(WireModel):
    """Render one combination of a composition."""

    composition: CompositionSpec
    variations: VariationSet = Field(default_factory=VariationSet)
    combination: VariationCombination | None = None
    naming: NamingConfig = Field(default_factory=NamingConfig)
    progress_strategy: ProgressStrategyName = "baked"


class RenderSubmitResponse(WireModel):
    job_id: str
    status: str
    polling_url: str
    download_url: str


class RenderStatusResponse(WireModel):
    id: str
    name: str | None = None
    status: str
    progress: int = 0
    result: str | None = None
    error: str | None = None
    error_code: str | None = None
    attempts: int = 0
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ProgressSampleRequest(WireModel):
    # Frame arrays are materialized in the response
    total_ms: int = Field(gt=0, le=MAX_SAMPLE_DURATION_MS)
    fps: int = Field(default=30, gt=0, le=120)
    config: ProgressBarConfig = Field(default_factory=ProgressBarConfig)
    speed: float = Field(default=1.0, gt=0)


class ProgressSampleResponse(WireModel):
    fps: int
    total_ms: int
    frames: int
    baked: list[float]
    preview: list[float]
