"""Variation planning endpoints: enumerate combinations and build render specs."""

from fastapi import APIRouter, Query

from varirender.api.deps import AppSettings
from varirender.render.request_builder import build_render_spec
from varirender.schemas.render import RenderSpec, VariationRenderRequest
from varirender.schemas.variation import VariationCombination
from varirender.services.combination_service import CombinationPolicy, generate_named_combinations

router = APIRouter()


@router.post("/combinations", response_model=list[VariationCombination])
async def list_combinations(
    request: VariationRenderRequest,
    policy: CombinationPolicy = Query(default=CombinationPolicy.SINGLE_AXIS),
) -> list[VariationCombination]:
    """Every combination to render, named with the request's naming config."""
    return generate_named_combinations(request.variations, request.composition, request.naming, policy)


@router.post("/render-spec", response_model=RenderSpec)
async def build_variation_render_spec(request: VariationRenderRequest, settings: AppSettings) -> RenderSpec:
    """Render props for one combination (the original when none is given)."""
    return build_render_spec(
        request.composition,
        request.variations,
        request.combination,
        naming=request.naming,
        progress_strategy=request.progress_strategy,
        max_duration_ms=settings.max_render_duration_ms,
    )
