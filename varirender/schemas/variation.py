"""Variation axis model.

Each element that can vary is one member of a tagged union keyed on ``type``.
Alternatives are ordered; position 0 is always the original content. Every
alternative after the original carries a stable 1-based ``index`` that names
it in filenames even if earlier alternatives are later removed.
"""

from typing import Annotated, Literal, Union

from pydantic import Field, model_validator

from varirender.schemas.base import WireModel

AxisType = Literal["video", "image", "audio", "text", "font", "speed"]

# Naming order of the axes, also the order combinations are generated in
AXIS_ORDER: tuple[AxisType, ...] = ("video", "text", "audio", "font", "speed", "image")

MEDIA_AXES: tuple[AxisType, ...] = ("video", "image", "audio")


class Alternative(WireModel):
    index: int | None = Field(default=None, ge=0)
    label: str | None = None


class MediaAlternative(Alternative):
    src: str


class TextAlternative(Alternative):
    text: str


class FontAlternative(Alternative):
    font_family: str


class SpeedAlternative(Alternative):
    speed: float = Field(gt=0)


class _VariationElementBase(WireModel):
    element_id: str
    element_name: str | None = None

    @model_validator(mode="after")
    def _assign_indices(self):
        alternatives = self.alternatives  # type: ignore[attr-defined]
        if not alternatives:
            raise ValueError(f"element {self.element_id} needs at least its original alternative")
        alternatives[0].index = 0
        seen: set[int] = set()
        for position, alternative in enumerate(alternatives[1:], start=1):
            if alternative.index is None or alternative.index == 0:
                alternative.index = position
            if alternative.index in seen:
                raise ValueError(
                    f"element {self.element_id} has duplicate alternative index {alternative.index}"
                )
            seen.add(alternative.index)
        return self

    @property
    def size(self) -> int:
        return len(self.alternatives)  # type: ignore[attr-defined]

    def alternative(self, position: int):
        """Alternative at ``position``, or the original when out of range."""
        alternatives = self.alternatives  # type: ignore[attr-defined]
        if 0 <= position < len(alternatives):
            return alternatives[position]
        return alternatives[0]


class VideoVariationElement(_VariationElementBase):
    type: Literal["video"] = "video"
    alternatives: list[MediaAlternative]


class ImageVariationElement(_VariationElementBase):
    type: Literal["image"] = "image"
    alternatives: list[MediaAlternative]


class AudioVariationElement(_VariationElementBase):
    type: Literal["audio"] = "audio"
    alternatives: list[MediaAlternative]


class TextVariationElement(_VariationElementBase):
    type: Literal["text"] = "text"
    alternatives: list[TextAlternative]


class FontVariationElement(_VariationElementBase):
    type: Literal["font"] = "font"
    alternatives: list[FontAlternative]


class SpeedVariationElement(_VariationElementBase):
    type: Literal["speed"] = "speed"
    element_id: str = "speed"
    alternatives: list[SpeedAlternative]


VariationElement = Annotated[
    Union[
        VideoVariationElement,
        ImageVariationElement,
        AudioVariationElement,
        TextVariationElement,
        FontVariationElement,
        SpeedVariationElement,
    ],
    Field(discriminator="type"),
]


class VariationSet(WireModel):
    """Arena of variation elements for one composition."""

    elements: list[VariationElement] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_elements(self) -> "VariationSet":
        keys = [(element.type, element.element_id) for element in self.elements]
        if len(keys) != len(set(keys)):
            raise ValueError("variation elements must be unique per (type, element_id)")
        return self

    def elements_of(self, axis: AxisType) -> list[VariationElement]:
        return [element for element in self.elements if element.type == axis]

    def axis_size(self, axis: AxisType) -> int:
        """Number of alternatives on an axis (1 when the axis does not vary)."""
        sizes = [element.size for element in self.elements_of(axis)]
        return max(sizes, default=1)

    def axes(self) -> list[AxisType]:
        """Axes that have at least one element, in naming order."""
        present = {element.type for element in self.elements}
        return [axis for axis in AXIS_ORDER if axis in present]

    def variation_index(self, axis: AxisType, position: int) -> int:
        """Stable label index for ``position`` on an axis (0 for the original)."""
        if position == 0:
            return 0
        for element in self.elements_of(axis):
            if position < element.size:
                return element.alternatives[position].index
        return position


class VariationCombination(WireModel):
    """One concrete choice of alternative per axis."""

    id: str
    # axis -> alternative position (0 = original)
    choices: dict[AxisType, int] = Field(default_factory=dict)
    # axis -> stable 1-based label index (0 = original)
    variation_indices: dict[AxisType, int] = Field(default_factory=dict)
    # axes present in the composition, in naming order
    axes: list[AxisType] = Field(default_factory=list)
    name: str | None = None
    smart_name: str | None = None

    @property
    def is_original(self) -> bool:
        return all(position == 0 for position in self.choices.values())

    def choice(self, axis: AxisType) -> int:
        return self.choices.get(axis, 0)


PatternType = Literal["numbers", "letters_upper", "letters_lower", "roman", "custom"]


class NamingPattern(WireModel):
    type: PatternType = "letters_upper"
    custom_sequence: list[str] = Field(default_factory=list)


class PlatformNaming(WireModel):
    enabled: bool = True
    custom_name: str | None = None


class NamingConfig(WireModel):
    """Filename convention for rendered variations."""

    # axis -> display name used in the filename (defaults to the axis name)
    element_names: dict[AxisType, str] = Field(default_factory=dict)
    pattern: NamingPattern = Field(default_factory=NamingPattern)
    platform: PlatformNaming = Field(default_factory=PlatformNaming)

    def element_name(self, axis: AxisType) -> str:
        return self.element_names.get(axis) or axis
