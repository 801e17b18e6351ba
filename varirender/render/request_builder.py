"""Render request builder.

Applies one variation combination to a composition and produces the props
payload (``RenderSpec``) the render engine consumes.
"""

import logging

from varirender.exceptions import InvalidProgressTimingError, ValidationError
from varirender.schemas.composition import CompositionSpec, DisplayWindow, TrackItem
from varirender.schemas.render import (
    ProgressStrategyName,
    RenderSpec,
    TextOverlay,
    TextPosition,
    VariationSummary,
)
from varirender.schemas.variation import (
    MEDIA_AXES,
    NamingConfig,
    VariationCombination,
    VariationSet,
)
from varirender.services.combination_service import present_axes
from varirender.services.naming_service import variation_filename

logger = logging.getLogger(__name__)

DEFAULT_MAX_DURATION_MS = 300_000


def clamp_duration(duration_ms: int, max_duration_ms: int = DEFAULT_MAX_DURATION_MS) -> tuple[int, str | None]:
    """Clamp a render duration to the hard ceiling.

    Returns the duration to use and a diagnostic message when it was clamped.
    """
    if duration_ms <= max_duration_ms:
        return duration_ms, None
    message = f"duration {duration_ms}ms clamped to {max_duration_ms}ms"
    logger.warning(f"[BUILDER] Render {message}")
    return max_duration_ms, message


def _check_combination(combination: VariationCombination, variations: VariationSet) -> None:
    for axis, position in combination.choices.items():
        size = variations.axis_size(axis)
        if position < 0 or position >= size:
            raise ValidationError(
                f"Alternative {position} is out of range for axis '{axis}' ({size} alternatives)",
                field=f"combination.choices.{axis}",
            )


def _speed_factor(combination: VariationCombination, variations: VariationSet) -> float:
    elements = variations.elements_of("speed")
    if not elements:
        return 1.0
    return elements[0].alternative(combination.choice("speed")).speed


def _apply_media(
    item: TrackItem,
    combination: VariationCombination,
    variations: VariationSet,
) -> TrackItem:
    if item.type not in MEDIA_AXES:
        return item
    position = combination.choice(item.type)
    for element in variations.elements_of(item.type):
        if element.element_id == item.id:
            return item.model_copy(update={"src": element.alternative(position).src})
    return item


def _apply_speed(item: TrackItem, speed: float) -> TrackItem:
    update: dict = {"playback_rate": speed}
    if speed < 1:
        # Slow motion plays longer; stretch the display window to fit
        start = item.display.from_
        end = start + round(item.display.duration_ms / speed)
        update["display"] = DisplayWindow(**{"from": start, "to": end})
    return item.model_copy(update=update)


def _text_overlay(
    item: TrackItem,
    combination: VariationCombination,
    variations: VariationSet,
) -> TextOverlay:
    text = item.text or ""
    style = dict(item.style)

    text_position = combination.choice("text")
    for element in variations.elements_of("text"):
        if element.element_id == item.id:
            text = element.alternative(text_position).text
            break

    font_position = combination.choice("font")
    for element in variations.elements_of("font"):
        if element.element_id == item.id:
            style["fontFamily"] = element.alternative(font_position).font_family
            break

    return TextOverlay(
        id=item.id,
        text=text,
        timing=item.display,
        position=TextPosition(left=item.transform.left, top=item.transform.top),
        width=item.transform.width,
        height=item.transform.height,
        style=style,
    )


def build_render_spec(
    composition: CompositionSpec,
    variations: VariationSet | None = None,
    combination: VariationCombination | None = None,
    *,
    naming: NamingConfig | None = None,
    progress_strategy: ProgressStrategyName = "baked",
    max_duration_ms: int = DEFAULT_MAX_DURATION_MS,
) -> RenderSpec:
    """Build the render props for one combination.

    Without a combination the composition is rendered as-is (the original).

    Raises:
        ValidationError: combination refers to alternatives that do not exist
        InvalidProgressTimingError: progress bar fast-start target is not
            below the fast-end target
    """
    variations = variations or VariationSet()
    if combination is None:
        combination = VariationCombination(
            id="original",
            choices={axis: 0 for axis in variations.axes()},
            axes=present_axes(composition, variations),
        )
    elif not combination.axes:
        combination = combination.model_copy(update={"axes": present_axes(composition, variations)})
    _check_combination(combination, variations)

    progress_bar = composition.progress_bar
    if progress_bar is not None and not progress_bar.timing_is_consistent:
        raise InvalidProgressTimingError(
            progress_bar.fast_start_progress, progress_bar.fast_end_progress
        )

    speed = _speed_factor(combination, variations)

    video_items = []
    audio_items = []
    image_items = []
    text_overlays = []
    for item in composition.track_items:
        if item.type == "text":
            text_overlays.append(_text_overlay(item, combination, variations))
            continue
        item = _apply_media(item, combination, variations)
        if item.type == "video":
            video_items.append(_apply_speed(item, speed))
        elif item.type == "audio":
            audio_items.append(item)
        else:
            image_items.append(item)

    ends = [item.display.to for item in (*video_items, *audio_items, *image_items)]
    ends += [overlay.timing.to for overlay in text_overlays]
    duration = max([composition.duration, *ends])

    diagnostics: list[str] = []
    duration, clamp_message = clamp_duration(duration, max_duration_ms)
    if clamp_message:
        diagnostics.append(clamp_message)

    name = combination.name or variation_filename(combination, naming, composition.project_name)

    spec = RenderSpec(
        variation=VariationSummary(
            id=combination.id,
            is_original=combination.is_original,
            choices=combination.choices,
            name=name,
            speed=speed,
        ),
        text_overlays=text_overlays,
        platform_config=composition.platform,
        duration=duration,
        video_track_items=video_items,
        audio_track_items=audio_items,
        image_track_items=image_items,
        progress_bar_settings=progress_bar,
        progress_strategy=progress_strategy,
        speed_multiplier=speed,
        diagnostics=diagnostics,
        name=name,
    )
    logger.info(
        f"[BUILDER] Built render spec {combination.id} ({name}): "
        f"{len(video_items)} video, {len(audio_items)} audio, {len(image_items)} image, "
        f"{len(text_overlays)} text, duration={duration}ms, speed={speed}"
    )
    return spec
