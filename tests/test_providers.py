from __future__ import annotations

import pytest

from turnpilot.core.errors import InvalidProviderResultError, ProviderNotRegisteredError
from turnpilot.orchestration.enums import ProviderName
from turnpilot.providers import (
    ProviderPacket,
    ProviderRegistry,
    ProviderRequest,
    from_callables,
    normalize_packets,
    run_providers_legacy,
)
from tests.helpers.stubs import StubProvider


def _request() -> ProviderRequest:
    return ProviderRequest(trace_id="trace-legacy", user_id="u1", channel_id="c1", user_text="hi")


def test_registry_lookup_and_missing() -> None:
    registry = ProviderRegistry({ProviderName.MEMORY: StubProvider(ProviderName.MEMORY)})

    assert ProviderName.MEMORY in registry
    assert "Memory" in registry
    assert "Weather" not in registry
    assert registry.get("Weather") is None
    assert registry.missing([ProviderName.MEMORY, ProviderName.SUMMARIZER]) == [ProviderName.SUMMARIZER]
    with pytest.raises(ProviderNotRegisteredError):
        registry.require(ProviderName.SUMMARIZER)
    with pytest.raises(ProviderNotRegisteredError):
        registry.ensure_complete()


def test_from_callables_validates_names() -> None:
    async def handler(request: ProviderRequest) -> None:
        return None

    registry = from_callables({"Summarizer": handler})
    assert registry.names == [ProviderName.SUMMARIZER]

    with pytest.raises(ValueError):
        from_callables({"Weather": handler})


@pytest.mark.asyncio
async def test_legacy_runner_isolates_failures() -> None:
    registry = ProviderRegistry(
        {
            ProviderName.MEMORY: StubProvider(ProviderName.MEMORY, always_fail=True),
            ProviderName.SOCIAL_GRAPH: StubProvider(ProviderName.SOCIAL_GRAPH),
        }
    )

    packets = await run_providers_legacy(
        [ProviderName.MEMORY, ProviderName.SOCIAL_GRAPH, ProviderName.VOICE_ANALYTICS],
        _request(),
        registry=registry,
    )

    assert [packet.name for packet in packets] == [ProviderName.MEMORY, ProviderName.SOCIAL_GRAPH]
    assert packets[0].has_error
    assert packets[0].content == "Memory: Error loading data."
    assert not packets[1].has_error


@pytest.mark.asyncio
async def test_legacy_runner_applies_timeout() -> None:
    registry = ProviderRegistry({ProviderName.MEMORY: StubProvider(ProviderName.MEMORY, delay=0.5)})

    packets = await run_providers_legacy([ProviderName.MEMORY], _request(), registry=registry, timeout_seconds=0.01)

    assert len(packets) == 1 and packets[0].has_error


@pytest.mark.asyncio
async def test_legacy_runner_flattens_multi_packet_results() -> None:
    async def summarizer(request: ProviderRequest) -> list[ProviderPacket]:
        return [
            ProviderPacket(name=ProviderName.SUMMARIZER, content="one"),
            ProviderPacket(name=ProviderName.SUMMARIZER, content="two"),
        ]

    packets = await run_providers_legacy(
        [ProviderName.SUMMARIZER], _request(), registry=ProviderRegistry({ProviderName.SUMMARIZER: summarizer})
    )

    assert [packet.content for packet in packets] == ["one", "two"]


def test_normalize_packets_rejects_non_packet_results() -> None:
    packet = ProviderPacket(name=ProviderName.MEMORY, content="x")

    assert normalize_packets(None) == []
    assert normalize_packets(packet) == [packet]
    assert normalize_packets([packet, None]) == [packet]
    with pytest.raises(InvalidProviderResultError) as excinfo:
        normalize_packets({"content": "x", "json": {}}, provider="Memory")
    assert excinfo.value.received == "dict"
    with pytest.raises(InvalidProviderResultError):
        normalize_packets("plain text", provider="Memory")
    with pytest.raises(InvalidProviderResultError):
        normalize_packets([packet, {"content": "y"}], provider="Memory")


@pytest.mark.asyncio
async def test_legacy_runner_turns_malformed_results_into_error_packets() -> None:
    async def dict_handler(request: ProviderRequest) -> dict:
        return {"content": "x", "json": {}}

    registry = ProviderRegistry(
        {ProviderName.MEMORY: dict_handler, ProviderName.SUMMARIZER: StubProvider(ProviderName.SUMMARIZER)}
    )

    packets = await run_providers_legacy([ProviderName.MEMORY, ProviderName.SUMMARIZER], _request(), registry=registry)

    assert [packet.name for packet in packets] == [ProviderName.MEMORY, ProviderName.SUMMARIZER]
    assert packets[0].has_error
    assert "returned dict" in packets[0].data["error"]
    assert not packets[1].has_error
