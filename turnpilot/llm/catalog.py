from __future__ import annotations

from typing import Iterable, Protocol

from pydantic import BaseModel, Field

from ..schemas.models import ModelRequirements


class ModelCapabilities(BaseModel):
    vision: bool = False
    audio_in: bool = False
    audio_out: bool = False
    tools: bool = False
    search: bool = False
    reasoning: bool = False
    code_exec: bool = False


class ModelInfo(BaseModel):
    id: str = Field(..., min_length=1)
    description: str = ""
    caps: ModelCapabilities = Field(default_factory=ModelCapabilities)
    input_modalities: list[str] = Field(default_factory=lambda: ["text"])
    output_modalities: list[str] = Field(default_factory=lambda: ["text"])
    context_window: int | None = None
    max_output_tokens: int | None = None


def model_supports(info: ModelInfo, requirements: ModelRequirements) -> bool:
    """True when ``info`` satisfies every strict requirement."""
    caps = info.caps
    inputs = {modality.lower() for modality in info.input_modalities}
    outputs = {modality.lower() for modality in info.output_modalities}
    if requirements.vision and not (caps.vision or "image" in inputs):
        return False
    if requirements.audio_in and not (caps.audio_in or "audio" in inputs):
        return False
    if requirements.audio_out and not (caps.audio_out or "audio" in outputs):
        return False
    if requirements.tools and not caps.tools:
        return False
    if requirements.search and not caps.search:
        return False
    if requirements.reasoning and not caps.reasoning:
        return False
    if requirements.code_exec and not caps.code_exec:
        return False
    return True


class ModelCatalog(Protocol):
    async def find_model(self, model_id: str) -> ModelInfo | None:  # pragma: no cover - protocol
        ...


class StaticModelCatalog:
    """In-process catalog keyed by normalized model id."""

    def __init__(self, models: Iterable[ModelInfo] = ()) -> None:
        self._models: dict[str, ModelInfo] = {}
        for model in models:
            self.add(model)

    def add(self, model: ModelInfo) -> None:
        self._models[model.id.strip().lower()] = model

    async def find_model(self, model_id: str) -> ModelInfo | None:
        return self._models.get(model_id.strip().lower())

    def ids(self) -> list[str]:
        return list(self._models)


def _caps(**flags: bool) -> ModelCapabilities:
    return ModelCapabilities(**flags)


def default_catalog() -> StaticModelCatalog:
    return StaticModelCatalog(
        [
            ModelInfo(
                id="openai-fast",
                description="Low latency general chat model",
                caps=_caps(vision=True, tools=True),
                input_modalities=["text", "image"],
                context_window=128_000,
                max_output_tokens=4_096,
            ),
            ModelInfo(
                id="openai-large",
                description="Long-form model for large prompts",
                caps=_caps(tools=True, reasoning=True),
                context_window=120_000,
                max_output_tokens=12_000,
            ),
            ModelInfo(
                id="openai-audio",
                description="Audio capable conversational model",
                caps=_caps(audio_in=True, audio_out=True, tools=True),
                input_modalities=["text", "audio"],
                output_modalities=["text", "audio"],
            ),
            ModelInfo(
                id="gemini-fast",
                description="Fast multimodal model",
                caps=_caps(vision=True, tools=True),
                input_modalities=["text", "image"],
            ),
            ModelInfo(
                id="gemini-search",
                description="Link-aware model with grounded search",
                caps=_caps(vision=True, search=True, tools=True),
                input_modalities=["text", "image"],
            ),
            ModelInfo(
                id="kimi",
                description="Reasoning model with vision",
                caps=_caps(vision=True, reasoning=True, tools=True),
                input_modalities=["text", "image"],
            ),
            ModelInfo(
                id="qwen-coder",
                description="Code specialised model",
                caps=_caps(tools=True, code_exec=True),
            ),
            ModelInfo(
                id="deepseek",
                description="Reasoning model",
                caps=_caps(reasoning=True, tools=True),
            ),
            ModelInfo(
                id="perplexity-fast",
                description="Search grounded answer model",
                caps=_caps(search=True),
            ),
            ModelInfo(
                id="perplexity-reasoning",
                description="Search grounded reasoning model",
                caps=_caps(search=True, reasoning=True),
            ),
        ]
    )


__all__ = ["ModelCapabilities", "ModelCatalog", "ModelInfo", "StaticModelCatalog", "default_catalog", "model_supports"]
