from typing import Any, Literal

from pydantic import Field, model_validator

from varirender.schemas.base import WireModel
from varirender.schemas.progress_bar import ProgressBarConfig

TrackItemType = Literal["video", "image", "audio", "text"]


class DisplayWindow(WireModel):
    """Half-open display window [from, to) in milliseconds."""

    from_: int = Field(alias="from", ge=0)
    to: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "DisplayWindow":
        if self.to < self.from_:
            raise ValueError(f"display window ends before it starts ({self.from_} > {self.to})")
        return self

    @property
    def duration_ms(self) -> int:
        return self.to - self.from_


class Transform(WireModel):
    left: float = 0.0
    top: float = 0.0
    width: float | None = None
    height: float | None = None
    rotation: float = 0.0
    opacity: float = 100.0


class PlatformConfig(WireModel):
    width: int = 1080
    height: int = 1920
    aspect_ratio: str = "9:16"


class TrackItem(WireModel):
    id: str
    type: TrackItemType
    display: DisplayWindow
    src: str | None = None
    text: str | None = None
    transform: Transform = Field(default_factory=Transform)
    playback_rate: float = Field(default=1.0, gt=0)
    volume: float | None = None
    trim: dict[str, Any] | None = None
    crop: dict[str, Any] | None = None
    # Free-form engine styling (fontFamily, color, ...)
    style: dict[str, Any] = Field(default_factory=dict)


class CompositionSpec(WireModel):
    """A composition as handed over by the project store."""

    project_name: str = "Untitled Project"
    duration: int = Field(default=5000, ge=0)  # ms
    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    track_items: list[TrackItem] = Field(default_factory=list)
    progress_bar: ProgressBarConfig | None = None

    def items_of(self, item_type: TrackItemType) -> list[TrackItem]:
        return [item for item in self.track_items if item.type == item_type]

    def present_types(self) -> set[str]:
        return {item.type for item in self.track_items}

    def get_item(self, item_id: str) -> TrackItem | None:
        for item in self.track_items:
            if item.id == item_id:
                return item
        return None
