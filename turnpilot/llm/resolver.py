"""Weighted, capability-aware model resolution with a full decision trail."""

from __future__ import annotations

import re
from typing import Iterable, Protocol, Sequence

from ..core.config import ModelSettings
from ..core.logging import get_logger
from ..core.metrics import record_model_resolution
from ..orchestration.enums import RouteKind
from ..schemas.models import ModelRequirements, ModelResolutionDetails, ResolutionDecision
from .catalog import ModelCatalog, ModelInfo, model_supports

logger = get_logger(name=__name__)

HEALTH_WEIGHT = 0.85
PRIORITY_WEIGHT = 0.15

LONG_FORM_MODEL = "openai-large"
AUDIO_MODEL = "openai-audio"
LINK_AWARE_MODEL = "gemini-search"

ROUTE_CHAINS: dict[str, tuple[str, ...]] = {
    RouteKind.CHAT.value: ("openai-fast", "gemini-fast", "kimi"),
    RouteKind.CODING.value: ("qwen-coder", "deepseek", "openai-large"),
    RouteKind.SEARCH.value: ("perplexity-fast", "gemini-search", "perplexity-reasoning"),
    RouteKind.CREATIVE.value: ("openai-large", "kimi", "openai-fast"),
}

_URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)


class HealthSource(Protocol):
    def get_health_scores(self, models: Iterable[str]) -> dict[str, float]:  # pragma: no cover - protocol
        ...


def normalize(model_id: str | None) -> str:
    return (model_id or "").strip().lower()


def dedupe_models(models: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for model in models:
        key = normalize(model)
        if not key or key in seen:
            continue
        seen.add(key)
        ordered.append(key)
    return ordered


def route_chain(route: str) -> list[str]:
    return list(ROUTE_CHAINS.get(route, ROUTE_CHAINS[RouteKind.CHAT.value]))


def infer_requirements(
    *,
    route: str,
    text: str = "",
    image_count: int = 0,
    has_audio: bool = False,
    audio_out: bool = False,
    search_mode: str | None = None,
    explicit: ModelRequirements | None = None,
) -> ModelRequirements:
    """Merge explicit requirements with signals inferred from the turn."""
    base = explicit.model_copy() if explicit is not None else ModelRequirements()
    updates = {
        "vision": base.vision or image_count > 0,
        "audio_in": base.audio_in or has_audio,
        "audio_out": base.audio_out or audio_out,
        "search": base.search or route == RouteKind.SEARCH.value,
        "scrape": base.scrape
        or (route == RouteKind.SEARCH.value and (search_mode == "scrape" or bool(_URL_PATTERN.search(text or "")))),
    }
    return base.model_copy(update=updates)


def rank_candidates(candidates: Sequence[str], health: dict[str, float]) -> list[tuple[str, float]]:
    """Order by 0.85 x health + 0.15 x positional priority; ties keep chain order."""
    total = len(candidates)
    scored: list[tuple[float, int, str, float]] = []
    for index, model in enumerate(candidates):
        priority = 1.0 if total <= 1 else 1.0 - index / (total - 1)
        score = health.get(model, 0.5)
        weighted = HEALTH_WEIGHT * score + PRIORITY_WEIGHT * priority
        scored.append((-weighted, index, model, score))
    scored.sort(key=lambda item: (item[0], item[1]))
    return [(model, score) for _, _, model, score in scored]


class ModelResolver:
    def __init__(self, *, catalog: ModelCatalog, health: HealthSource, settings: ModelSettings) -> None:
        self._catalog = catalog
        self._health = health
        self._settings = settings

    @property
    def default_model(self) -> str:
        return normalize(self._settings.default_model)

    def build_chain(self, route: str, requirements: ModelRequirements, *, prompt_chars: int = 0) -> list[str]:
        chain = route_chain(route)
        if prompt_chars >= self._settings.long_prompt_chars:
            chain.insert(0, LONG_FORM_MODEL)
        if requirements.search and requirements.scrape:
            chain.insert(0, LINK_AWARE_MODEL)
        if requirements.audio_in or requirements.audio_out:
            chain.insert(0, AUDIO_MODEL)
        chain.append(self.default_model)
        return dedupe_models(chain)

    @staticmethod
    def apply_allowlist(chain: list[str], allowed_models: Sequence[str] | None) -> tuple[list[str], bool]:
        allowed = dedupe_models(allowed_models or [])
        if not allowed:
            return chain, False
        allowed_set = set(allowed)
        filtered = [model for model in chain if model in allowed_set]
        filtered.extend(model for model in allowed if model not in filtered)
        return (filtered or allowed), True

    async def _lookup(self, model: str) -> ModelInfo | None:
        try:
            return await self._catalog.find_model(model)
        except Exception as exc:
            logger.warning("model_catalog_lookup_failed", model=model, error=str(exc))
            return None

    async def resolve(
        self,
        *,
        route: str,
        requirements: ModelRequirements | None = None,
        prompt_chars: int = 0,
        allowed_models: Sequence[str] | None = None,
    ) -> ModelResolutionDetails:
        reqs = requirements or ModelRequirements()
        base_chain = self.build_chain(route, reqs, prompt_chars=prompt_chars)
        candidates, allowlist_applied = self.apply_allowlist(base_chain, allowed_models)

        try:
            health = self._health.get_health_scores(candidates)
        except Exception as exc:
            logger.warning("model_health_unavailable", route=route, error=str(exc))
            health = {}
        ranked = rank_candidates(candidates, health)

        decisions: list[ResolutionDecision] = []
        selected: str | None = None
        for model, score in ranked:
            info = await self._lookup(model)
            if info is None:
                if reqs.strict:
                    decisions.append(ResolutionDecision(model=model, accepted=False, reason="capability_mismatch", health_score=score))
                    continue
                if self._settings.accept_unknown_aliases:
                    decisions.append(ResolutionDecision(model=model, accepted=True, reason="unknown_alias_accepted", health_score=score))
                    selected = model
                    break
                decisions.append(ResolutionDecision(model=model, accepted=False, reason="unknown_model", health_score=score))
                continue
            if model_supports(info, reqs):
                decisions.append(ResolutionDecision(model=model, accepted=True, reason="selected", health_score=score))
                selected = model
                break
            decisions.append(ResolutionDecision(model=model, accepted=False, reason="capability_mismatch", health_score=score))

        fallback = selected is None
        if selected is None:
            preferred = set(route_chain(route))
            selected = next((model for model in candidates if model in preferred), None)
            reason = "fallback_route_preferred"
            if selected is None and candidates:
                selected, reason = candidates[0], "fallback_first_candidate"
            if selected is None:
                selected, reason = self.default_model, "fallback_default"
            decisions.append(
                ResolutionDecision(model=selected, accepted=True, reason=reason, health_score=health.get(selected))
            )
            logger.info("model_resolution_fallback", route=route, model=selected, reason=reason)

        record_model_resolution(route=route, model=selected, fallback=fallback)
        return ModelResolutionDetails(
            model=selected,
            route=route,
            requirements=reqs,
            allowlist_applied=allowlist_applied,
            candidates=candidates,
            decisions=decisions,
            fallback=fallback,
        )

    async def resolve_model(
        self,
        *,
        route: str,
        requirements: ModelRequirements | None = None,
        prompt_chars: int = 0,
        allowed_models: Sequence[str] | None = None,
    ) -> str:
        details = await self.resolve(
            route=route,
            requirements=requirements,
            prompt_chars=prompt_chars,
            allowed_models=allowed_models,
        )
        return details.model


__all__ = [
    "ModelResolver",
    "ROUTE_CHAINS",
    "dedupe_models",
    "infer_requirements",
    "rank_candidates",
    "route_chain",
]
