from __future__ import annotations

import pytest

from turnpilot.core.config import ModelSettings
from turnpilot.llm import resolver as resolver_module
from turnpilot.llm.catalog import ModelCapabilities, ModelInfo, StaticModelCatalog, default_catalog
from turnpilot.llm.resolver import ModelResolver, infer_requirements, rank_candidates
from turnpilot.schemas.models import ModelRequirements
from tests.helpers.stubs import StubHealthSource


def _lab_resolver(monkeypatch: pytest.MonkeyPatch, *, a_vision: bool, b_vision: bool) -> ModelResolver:
    monkeypatch.setitem(resolver_module.ROUTE_CHAINS, "lab", ("model-a", "model-b"))
    catalog = StaticModelCatalog(
        [
            ModelInfo(id="model-a", caps=ModelCapabilities(vision=a_vision, tools=True)),
            ModelInfo(id="model-b", caps=ModelCapabilities(vision=b_vision, tools=True)),
        ]
    )
    health = StubHealthSource({"model-a": 0.9, "model-b": 0.1})
    return ModelResolver(catalog=catalog, health=health, settings=ModelSettings(default_model="model-b"))


def _resolver(scores: dict[str, float] | None = None, **settings: object) -> ModelResolver:
    return ModelResolver(
        catalog=default_catalog(),
        health=StubHealthSource(scores),
        settings=ModelSettings(**settings),
    )


@pytest.mark.asyncio
async def test_healthier_model_wins_when_capabilities_match(monkeypatch: pytest.MonkeyPatch) -> None:
    resolver = _lab_resolver(monkeypatch, a_vision=True, b_vision=True)

    details = await resolver.resolve(route="lab", requirements=ModelRequirements(vision=True))

    assert details.model == "model-a"
    assert details.candidates == ["model-a", "model-b"]
    assert [(d.model, d.reason) for d in details.decisions] == [("model-a", "selected")]
    assert details.fallback is False


@pytest.mark.asyncio
async def test_capability_mismatch_skips_to_next_candidate(monkeypatch: pytest.MonkeyPatch) -> None:
    resolver = _lab_resolver(monkeypatch, a_vision=False, b_vision=True)

    details = await resolver.resolve(route="lab", requirements=ModelRequirements(vision=True))

    assert details.model == "model-b"
    assert [(d.model, d.reason) for d in details.decisions] == [
        ("model-a", "capability_mismatch"),
        ("model-b", "selected"),
    ]


@pytest.mark.asyncio
async def test_allow_list_appends_models_missing_from_chain() -> None:
    details = await _resolver().resolve(route="chat", allowed_models=["deepseek"])

    assert details.allowlist_applied is True
    assert details.candidates == ["deepseek"]
    assert details.model == "deepseek"


@pytest.mark.asyncio
async def test_audio_input_prefers_audio_model() -> None:
    requirements = infer_requirements(route="chat", text="listen to this", has_audio=True)

    details = await _resolver().resolve(route="chat", requirements=requirements)

    assert details.candidates[0] == "openai-audio"
    assert details.model == "openai-audio"


@pytest.mark.asyncio
async def test_vision_on_coding_route_falls_through_to_capable_model() -> None:
    requirements = infer_requirements(route="coding", text="what is wrong here?", image_count=1)

    details = await _resolver().resolve(route="coding", requirements=requirements)

    assert details.model == "openai-fast"
    rejected = [d.model for d in details.decisions if d.reason == "capability_mismatch"]
    assert rejected == ["qwen-coder", "deepseek", "openai-large"]


@pytest.mark.asyncio
async def test_degraded_health_reorders_chain() -> None:
    requirements = ModelRequirements(vision=True)

    details = await _resolver({"openai-fast": 0.0, "gemini-fast": 0.95}).resolve(route="chat", requirements=requirements)

    assert details.model == "gemini-fast"


@pytest.mark.asyncio
async def test_no_capable_candidate_falls_back_to_route_preference() -> None:
    requirements = ModelRequirements(audio_out=True)

    details = await _resolver().resolve(
        route="coding", requirements=requirements, allowed_models=["deepseek", "qwen-coder"]
    )

    assert details.fallback is True
    assert details.model == "qwen-coder"
    assert details.decisions[-1].reason == "fallback_route_preferred"


@pytest.mark.asyncio
async def test_unknown_alias_accepted_without_strict_requirements() -> None:
    details = await _resolver().resolve(route="chat", allowed_models=["my-custom-model"])

    assert details.model == "my-custom-model"
    assert details.decisions[0].reason == "unknown_alias_accepted"


@pytest.mark.asyncio
async def test_unknown_alias_rejected_when_disabled() -> None:
    details = await _resolver(accept_unknown_aliases=False).resolve(route="chat", allowed_models=["my-custom-model"])

    assert details.model == "my-custom-model"
    assert [d.reason for d in details.decisions] == ["unknown_model", "fallback_first_candidate"]


@pytest.mark.asyncio
async def test_long_prompt_and_links_reorder_chain() -> None:
    resolver = _resolver()

    long_chat = await resolver.resolve(route="chat", prompt_chars=5_000)
    requirements = infer_requirements(route="search", text="summarize https://example.com/post")
    search = await resolver.resolve(route="search", requirements=requirements)

    assert long_chat.candidates[0] == "openai-large"
    assert requirements.scrape is True
    assert search.candidates[0] == "gemini-search"
    assert search.model == "gemini-search"


@pytest.mark.asyncio
async def test_unknown_route_uses_chat_chain() -> None:
    details = await _resolver().resolve(route="manage")

    assert details.candidates[:3] == ["openai-fast", "gemini-fast", "kimi"]


@pytest.mark.asyncio
async def test_health_failure_does_not_block_resolution() -> None:
    class BrokenHealth:
        def get_health_scores(self, models):
            raise RuntimeError("health backend down")

    resolver = ModelResolver(catalog=default_catalog(), health=BrokenHealth(), settings=ModelSettings())

    assert await resolver.resolve_model(route="chat") == "openai-fast"


def test_rank_candidates_keeps_chain_order_on_ties() -> None:
    ranked = rank_candidates(["x", "y", "z"], {"x": 0.5, "y": 0.5, "z": 0.5})

    assert [model for model, _ in ranked] == ["x", "y", "z"]


def test_infer_requirements_merges_explicit_flags() -> None:
    explicit = ModelRequirements(reasoning=True)

    merged = infer_requirements(route="search", text="latest news", image_count=2, explicit=explicit)

    assert merged.reasoning and merged.vision and merged.search
    assert merged.scrape is False
    assert explicit.vision is False


@pytest.mark.asyncio
async def test_resolve_model_forwards_requirements_and_allow_list() -> None:
    resolver = ModelResolver(catalog=default_catalog(), health=StubHealthSource(), settings=ModelSettings())

    assert await resolver.resolve_model(route="chat", allowed_models=["gemini-fast"]) == "gemini-fast"
    assert await resolver.resolve_model(route="chat", requirements=ModelRequirements(audio_in=True)) == "openai-audio"
