"""Filename generation for rendered variations.

Format: ``[{prefix}_]{label}-{axis}_{label}-{axis}....mp4`` with one part per
axis present in the composition, in the fixed order video, text, audio, font,
speed, image. ``M`` marks the original alternative of an axis.
"""

import logging
import re

from varirender.schemas.variation import (
    AXIS_ORDER,
    NamingConfig,
    NamingPattern,
    VariationCombination,
)

logger = logging.getLogger(__name__)

ORIGINAL_LABEL = "M"
DEFAULT_PROJECT_NAME = "Untitled Project"
FILE_EXTENSION = ".mp4"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")

_ROMAN = ["", "I", "II", "III", "IV", "V", "VI", "VII", "VIII", "IX", "X"]


def sanitize(name: str) -> str:
    """Replace every character outside [A-Za-z0-9_-] with an underscore."""
    return _UNSAFE_CHARS.sub("_", name)


def _letters(index: int, first: str) -> str:
    # 1 -> A ... 26 -> Z, 27 -> AA, 28 -> AB (spreadsheet columns)
    label = ""
    n = index
    while n > 0:
        n, rem = divmod(n - 1, 26)
        label = chr(ord(first) + rem) + label
    return label


def pattern_label(index: int, pattern: NamingPattern) -> str:
    """Render a 1-based alternative index with the configured pattern."""
    if index <= 0:
        return ORIGINAL_LABEL

    if pattern.type == "letters_upper":
        return _letters(index, "A")
    if pattern.type == "letters_lower":
        return _letters(index, "a")
    if pattern.type == "roman":
        return _ROMAN[index] if index < len(_ROMAN) else str(index)
    if pattern.type == "custom":
        if index <= len(pattern.custom_sequence) and pattern.custom_sequence[index - 1]:
            return pattern.custom_sequence[index - 1]
        return str(index)
    return str(index)


def platform_prefix(config: NamingConfig, project_name: str | None) -> str:
    if not config.platform.enabled:
        return ""
    if config.platform.custom_name:
        return sanitize(config.platform.custom_name)
    if project_name and project_name != DEFAULT_PROJECT_NAME:
        return sanitize(project_name)
    return ""


def smart_name(combination: VariationCombination, config: NamingConfig | None = None) -> str:
    """Variation part of the filename, without platform prefix or extension."""
    config = config or NamingConfig()
    parts = []
    for axis in AXIS_ORDER:
        if axis not in combination.axes:
            continue
        index = combination.variation_indices.get(axis, combination.choice(axis))
        label = pattern_label(index, config.pattern)
        parts.append(f"{label}-{config.element_name(axis)}")
    return "_".join(parts)


def variation_filename(
    combination: VariationCombination,
    config: NamingConfig | None = None,
    project_name: str | None = None,
) -> str:
    config = config or NamingConfig()
    filename = smart_name(combination, config)

    prefix = platform_prefix(config, project_name)
    if prefix:
        filename = f"{prefix}_{filename}" if filename else prefix

    if not filename.endswith(FILE_EXTENSION):
        filename += FILE_EXTENSION
    return filename


def rename_all(
    combinations: list[VariationCombination],
    config: NamingConfig | None = None,
    project_name: str | None = None,
) -> list[VariationCombination]:
    """Apply one naming convention to every combination (returns copies)."""
    config = config or NamingConfig()
    renamed = [
        combination.model_copy(
            update={
                "name": variation_filename(combination, config, project_name),
                "smart_name": smart_name(combination, config),
            }
        )
        for combination in combinations
    ]
    logger.info(f"[NAMING] Renamed {len(renamed)} variations (pattern={config.pattern.type})")
    return renamed
