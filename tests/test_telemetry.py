from __future__ import annotations

import pytest

from turnpilot.orchestration.enums import AgentEventType
from turnpilot.orchestration.events import EventLog
from turnpilot.telemetry import InMemoryTelemetrySink, emit, serialize
from tests.helpers.stubs import FailingTelemetrySink


def test_event_log_assigns_sequential_ids() -> None:
    log = EventLog("trace-1")

    log.emit(AgentEventType.GRAPH_STARTED)
    log.emit(AgentEventType.NODE_STARTED, node_id="memory-1", agent="Memory", attempt=1)

    assert [event.id for event in log.events] == ["trace-1:1", "trace-1:2"]
    assert len(log.of_type(AgentEventType.NODE_STARTED)) == 1
    assert len(log) == 2


def test_serialize_handles_models_and_lists() -> None:
    log = EventLog("trace-1")
    event = log.emit(AgentEventType.GRAPH_COMPLETED, details={"failed_tasks": 0})

    assert serialize(event)["type"] == "graph_completed"
    assert serialize([event, {"raw": True}])["items"][1] == {"raw": True}
    assert serialize({"a": 1}) == {"a": 1}


@pytest.mark.asyncio
async def test_emit_delivers_to_sink() -> None:
    sink = InMemoryTelemetrySink()

    delivered = await emit(sink, "budget", "trace-1", {"graph_nodes": 2})

    assert delivered is True
    assert sink.records == [("budget", "trace-1", {"graph_nodes": 2})]


@pytest.mark.asyncio
async def test_emit_swallows_sink_failures() -> None:
    sink = FailingTelemetrySink()

    assert await emit(sink, "graph", "trace-1", {}) is False
    assert await emit(None, "graph", "trace-1", {}) is False
    assert sink.attempts == 1
