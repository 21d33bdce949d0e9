from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from ..dependencies import get_canary_controller, get_health_tracker, get_model_resolver
from ..llm.health import ModelHealthTracker
from ..llm.resolver import ModelResolver, infer_requirements, route_chain
from ..orchestration.canary import CanaryController
from ..schemas.canary import CanarySnapshot
from ..schemas.models import ModelRequirements, ModelResolutionDetails

logger = get_logger(name=__name__)

router = APIRouter()


class ResolveModelRequest(BaseModel):
    route: str = "chat"
    text: str = ""
    image_count: int = Field(0, ge=0)
    has_audio: bool = False
    audio_out: bool = False
    search_mode: str | None = None
    requirements: ModelRequirements | None = None
    allowed_models: list[str] | None = None


@router.get("/health", tags=["health"])
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/diagnostics/canary", response_model=CanarySnapshot, tags=["diagnostics"])
async def canary_diagnostics(canary: CanaryController = Depends(get_canary_controller)) -> CanarySnapshot:
    return await canary.snapshot()


@router.post("/diagnostics/canary/reset", response_model=CanarySnapshot, tags=["diagnostics"])
async def reset_canary(canary: CanaryController = Depends(get_canary_controller)) -> CanarySnapshot:
    await canary.reset()
    logger.info("canary_reset_requested")
    return await canary.snapshot()


@router.get("/diagnostics/models/health", tags=["diagnostics"])
async def model_health_diagnostics(
    route: str | None = Query(default=None),
    health: ModelHealthTracker = Depends(get_health_tracker),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    models = route_chain(route) + [settings.models.default_model] if route else None
    return {"route": route, "models": health.snapshot(models)}


@router.post("/diagnostics/models/resolve", response_model=ModelResolutionDetails, tags=["diagnostics"])
async def resolve_model(
    payload: ResolveModelRequest,
    resolver: ModelResolver = Depends(get_model_resolver),
) -> ModelResolutionDetails:
    requirements = infer_requirements(
        route=payload.route,
        text=payload.text,
        image_count=payload.image_count,
        has_audio=payload.has_audio,
        audio_out=payload.audio_out,
        search_mode=payload.search_mode,
        explicit=payload.requirements,
    )
    return await resolver.resolve(
        route=payload.route,
        requirements=requirements,
        prompt_chars=len(payload.text),
        allowed_models=payload.allowed_models,
    )
