"""Per-model prompt budget descriptors."""

from __future__ import annotations

import json
from typing import Any, Mapping

from pydantic import BaseModel, ValidationError

from ..core.config import ModelSettings
from ..core.logging import get_logger
from ..orchestration.tokens import estimate_tokens

logger = get_logger(name=__name__)

DEFAULT_SAFETY_MARGIN = 200
DEFAULT_IMAGE_TOKENS = 1_200
DEFAULT_MESSAGE_OVERHEAD = 4
OPENAI_LARGE_CONTEXT_FLOOR = 120_000
OPENAI_LARGE_OUTPUT_FLOOR = 12_000


class ModelBudget(BaseModel):
    model: str = "default"
    max_context_tokens: int
    max_output_tokens: int
    safety_margin_tokens: int = DEFAULT_SAFETY_MARGIN
    vision_enabled: bool = True
    chars_per_token: int = 4
    image_tokens: int = DEFAULT_IMAGE_TOKENS
    message_overhead_tokens: int = DEFAULT_MESSAGE_OVERHEAD

    @property
    def input_budget(self) -> int:
        return max(0, self.max_context_tokens - self.max_output_tokens - self.safety_margin_tokens)

    def estimate_message_tokens(self, text: str, *, images: int = 0) -> int:
        base = estimate_tokens(text, chars_per_token=self.chars_per_token) + self.message_overhead_tokens
        if self.vision_enabled:
            base += images * self.image_tokens
        return base


def _builtin_overrides(settings: ModelSettings) -> dict[str, dict[str, Any]]:
    return {
        "kimi": {"vision_enabled": True},
        "deepseek": {"vision_enabled": False},
        "qwen-coder": {"vision_enabled": False},
        "openai-large": {
            "vision_enabled": False,
            "max_context_tokens": max(settings.max_input_tokens, OPENAI_LARGE_CONTEXT_FLOOR),
            "max_output_tokens": max(settings.reserved_output_tokens, OPENAI_LARGE_OUTPUT_FLOOR),
            "safety_margin_tokens": 400,
        },
    }


def parse_budget_overrides(raw: str | None) -> dict[str, dict[str, Any]]:
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("model_budget_overrides_invalid", error=str(exc))
        return {}
    if not isinstance(parsed, Mapping):
        logger.warning("model_budget_overrides_invalid", error="expected a JSON object")
        return {}
    return {
        str(key).strip().lower(): dict(value)
        for key, value in parsed.items()
        if isinstance(value, Mapping)
    }


def get_model_budget(model: str | None, settings: ModelSettings, *, chars_per_token: int = 4) -> ModelBudget:
    normalized = (model or "default").strip().lower() or "default"
    override: dict[str, Any] = {}
    override.update(_builtin_overrides(settings).get(normalized, {}))
    override.update(parse_budget_overrides(settings.budget_overrides_json).get(normalized, {}))
    base = {
        "model": normalized,
        "max_context_tokens": settings.max_input_tokens,
        "max_output_tokens": settings.reserved_output_tokens,
        "chars_per_token": chars_per_token,
    }
    try:
        return ModelBudget(**{**base, **override})
    except ValidationError as exc:
        logger.warning("model_budget_override_rejected", model=normalized, error=str(exc))
        return ModelBudget(**base)


def fit_context(context: str, budget: ModelBudget, *, reserved_tokens: int = 0) -> str:
    """Trim provider context so the prompt stays within the model's input budget."""
    available = budget.input_budget - reserved_tokens
    if available <= 0:
        return ""
    if estimate_tokens(context, chars_per_token=budget.chars_per_token) <= available:
        return context
    limit = available * budget.chars_per_token
    return context[:limit].rstrip()


__all__ = ["ModelBudget", "fit_context", "get_model_budget", "parse_budget_overrides"]
