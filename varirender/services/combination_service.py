"""Combination generator.

Turns the variation elements of a composition into the list of combinations
to render, and names each one.
"""

import itertools
import logging
from enum import Enum

from varirender.schemas.composition import CompositionSpec
from varirender.schemas.variation import (
    AXIS_ORDER,
    AxisType,
    NamingConfig,
    VariationCombination,
    VariationSet,
)
from varirender.services.naming_service import rename_all

logger = logging.getLogger(__name__)


class CombinationPolicy(Enum):
    """How alternatives on different axes are combined."""

    # One axis varies at a time, every other axis stays original
    SINGLE_AXIS = "single_axis"
    # Every alternative of every axis against every other
    CROSS_PRODUCT = "cross_product"


def present_axes(composition: CompositionSpec | None, variations: VariationSet) -> list[AxisType]:
    """Axes that appear in the filename: track types in the composition plus varied axes."""
    present: set[str] = set(variations.axes())
    if composition is not None:
        present |= composition.present_types()
    return [axis for axis in AXIS_ORDER if axis in present]


def _combination_id(choices: dict[AxisType, int]) -> str:
    varied = [f"{axis}{position}" for axis, position in choices.items() if position]
    return "-".join(varied) if varied else "original"


def _make_combination(
    choices: dict[AxisType, int],
    variations: VariationSet,
    axes: list[AxisType],
) -> VariationCombination:
    return VariationCombination(
        id=_combination_id(choices),
        choices=choices,
        variation_indices={
            axis: variations.variation_index(axis, position) for axis, position in choices.items()
        },
        axes=axes,
    )


def generate_combinations(
    variations: VariationSet,
    composition: CompositionSpec | None = None,
    policy: CombinationPolicy = CombinationPolicy.SINGLE_AXIS,
) -> list[VariationCombination]:
    """Enumerate combinations under ``policy``.

    Single-axis yields ``1 + sum(n - 1)`` combinations, the all-original one
    first and then each axis in naming order with positions ascending.
    Cross-product yields ``prod(n)`` in itertools order.
    """
    varied_axes = variations.axes()
    axes = present_axes(composition, variations)
    sizes = {axis: variations.axis_size(axis) for axis in varied_axes}
    original = {axis: 0 for axis in varied_axes}

    combinations: list[VariationCombination] = []
    if policy is CombinationPolicy.CROSS_PRODUCT:
        for positions in itertools.product(*(range(sizes[axis]) for axis in varied_axes)):
            choices = dict(zip(varied_axes, positions))
            combinations.append(_make_combination(choices, variations, axes))
    else:
        combinations.append(_make_combination(original, variations, axes))
        for axis in varied_axes:
            for position in range(1, sizes[axis]):
                choices = {**original, axis: position}
                combinations.append(_make_combination(choices, variations, axes))

    logger.info(
        f"[COMBINATIONS] {len(combinations)} combinations from axes "
        f"{sizes} (policy={policy.value})"
    )
    return combinations


def expected_count(variations: VariationSet, policy: CombinationPolicy) -> int:
    sizes = [variations.axis_size(axis) for axis in variations.axes()]
    if policy is CombinationPolicy.CROSS_PRODUCT:
        count = 1
        for size in sizes:
            count *= size
        return count
    return 1 + sum(size - 1 for size in sizes)


def generate_named_combinations(
    variations: VariationSet,
    composition: CompositionSpec,
    naming: NamingConfig | None = None,
    policy: CombinationPolicy = CombinationPolicy.SINGLE_AXIS,
) -> list[VariationCombination]:
    combinations = generate_combinations(variations, composition, policy)
    return rename_all(combinations, naming, composition.project_name)
