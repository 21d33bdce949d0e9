from __future__ import annotations

import asyncio
from typing import Any

import pytest

from turnpilot.core.errors import GraphValidationError
from turnpilot.orchestration.enums import AgentEventType, ProviderName, TaskStatus
from turnpilot.orchestration.events import EventLog
from turnpilot.orchestration import executor as executor_module
from turnpilot.orchestration.executor import GraphExecutor
from turnpilot.orchestration.graph_builder import build_fanout_graph, build_linear_graph
from turnpilot.providers.registry import ProviderPacket, ProviderRegistry, ProviderRequest
from turnpilot.schemas.graph import AgentGraph, AgentTaskNode, TaskBudget
from tests.helpers.stubs import ConcurrencyProbe, StubProvider


def _request(trace_id: str = "trace-exec") -> ProviderRequest:
    return ProviderRequest(trace_id=trace_id, user_id="u1", channel_id="c1", user_text="what did we talk about?")


def _registry(*providers: StubProvider) -> ProviderRegistry:
    return ProviderRegistry({provider.name: provider for provider in providers})


@pytest.mark.asyncio
async def test_fanout_execution_records_every_node() -> None:
    memory = StubProvider(ProviderName.MEMORY)
    social = StubProvider(ProviderName.SOCIAL_GRAPH)
    executor = GraphExecutor(_registry(memory, social))

    result = await executor.execute(build_fanout_graph("chat", [ProviderName.MEMORY, ProviderName.SOCIAL_GRAPH]), _request())

    assert result.state.counters.completed_tasks == 2
    assert result.state.counters.failed_tasks == 0
    assert len(result.state.artifacts) == 2
    assert {run.status for run in result.node_runs} == {TaskStatus.OK}
    assert result.events[0].type is AgentEventType.GRAPH_STARTED
    assert result.events[-1].type is AgentEventType.GRAPH_COMPLETED
    assert [event.id for event in result.events] == [f"trace-exec:{i}" for i in range(1, len(result.events) + 1)]


@pytest.mark.asyncio
async def test_partial_failure_does_not_abort_siblings() -> None:
    memory = StubProvider(ProviderName.MEMORY, always_fail=True)
    social = StubProvider(ProviderName.SOCIAL_GRAPH)
    executor = GraphExecutor(_registry(memory, social))

    result = await executor.execute(build_fanout_graph("chat", [ProviderName.MEMORY, ProviderName.SOCIAL_GRAPH]), _request())

    assert result.state.counters.completed_tasks == 1
    assert result.state.counters.failed_tasks == 1
    assert result.failed_nodes == ["memory-1"]
    failed = next(run for run in result.node_runs if run.node_id == "memory-1")
    assert "Memory failed" in (failed.error_text or "")
    assert len(result.state.artifacts) == 1


@pytest.mark.asyncio
async def test_retries_until_budget_is_spent() -> None:
    # SocialGraph allows one retry.
    flaky = StubProvider(ProviderName.SOCIAL_GRAPH, failures=1)
    executor = GraphExecutor(_registry(flaky))

    result = await executor.execute(build_fanout_graph("chat", [ProviderName.SOCIAL_GRAPH]), _request())

    run = result.node_runs[0]
    assert run.status is TaskStatus.OK
    assert run.attempts == 2
    assert flaky.calls == 2
    retries = [event for event in result.events if event.type is AgentEventType.NODE_RETRY]
    assert [event.attempt for event in retries] == [2]
    assert result.state.tasks["socialgraph-1"].attempts == 2


@pytest.mark.asyncio
async def test_exhausted_retries_mark_node_failed() -> None:
    broken = StubProvider(ProviderName.SOCIAL_GRAPH, always_fail=True)
    executor = GraphExecutor(_registry(broken))

    result = await executor.execute(build_fanout_graph("chat", [ProviderName.SOCIAL_GRAPH]), _request())

    assert broken.calls == 2
    assert result.node_runs[0].status is TaskStatus.ERROR
    assert any(event.type is AgentEventType.NODE_FAILED for event in result.events)


@pytest.mark.asyncio
async def test_timeout_is_reported_as_node_failure() -> None:
    slow = StubProvider(ProviderName.MEMORY, delay=0.5)
    fast = StubProvider(ProviderName.SUMMARIZER)
    graph = AgentGraph(
        nodes=[
            AgentTaskNode(id="slow", provider=ProviderName.MEMORY, budget=TaskBudget(max_latency_ms=20, max_retries=0)),
            AgentTaskNode(id="fast", provider=ProviderName.SUMMARIZER),
        ],
        route_kind="chat",
    )

    result = await GraphExecutor(_registry(slow, fast)).execute(graph, _request())

    runs = {run.node_id: run for run in result.node_runs}
    assert runs["slow"].status is TaskStatus.ERROR
    assert "exceeded 20ms" in (runs["slow"].error_text or "")
    assert runs["fast"].status is TaskStatus.OK


@pytest.mark.asyncio
async def test_parallel_ceiling_is_respected() -> None:
    probe = ConcurrencyProbe()
    providers = [ProviderName.MEMORY, ProviderName.SUMMARIZER, ProviderName.SOCIAL_GRAPH, ProviderName.VOICE_ANALYTICS]
    registry = ProviderRegistry({name: probe.handler(name) for name in providers})

    result = await GraphExecutor(registry, max_parallel=3).execute(
        build_fanout_graph("chat", providers), _request(), max_parallel=2
    )

    assert probe.peak == 2
    assert result.state.counters.completed_tasks == 4


@pytest.mark.asyncio
async def test_dependent_node_waits_and_reads_upstream_context() -> None:
    memory = StubProvider(ProviderName.MEMORY, content="user likes jazz", delay=0.02)
    summarizer = StubProvider(ProviderName.SUMMARIZER)
    graph = build_linear_graph("chat", [ProviderName.MEMORY, ProviderName.SUMMARIZER])

    result = await GraphExecutor(_registry(memory, summarizer)).execute(graph, _request())

    assert memory.finished_at is not None and summarizer.finished_at is not None
    assert memory.finished_at <= summarizer.finished_at
    assert summarizer.requests[0].upstream_context == "[Memory] user likes jazz"
    assert summarizer.requests[0].inputs == ["node:memory-1"]
    assert [artifact.label for artifact in result.state.artifacts] == ["Memory", "Summarizer"]


@pytest.mark.asyncio
async def test_invalid_graph_raises_before_running() -> None:
    memory = StubProvider(ProviderName.MEMORY)
    graph = AgentGraph(
        nodes=[AgentTaskNode(id="a", provider=ProviderName.MEMORY, depends_on=["a"])],
        route_kind="chat",
    )
    log = EventLog("trace-invalid")

    with pytest.raises(GraphValidationError) as excinfo:
        await GraphExecutor(_registry(memory)).execute(graph, _request("trace-invalid"), log=log)

    assert "node a depends on itself" in excinfo.value.violations
    assert memory.calls == 0
    assert [event.type for event in log.events] == [AgentEventType.GRAPH_VALIDATION_FAILED]


@pytest.mark.asyncio
async def test_unregistered_provider_is_skipped() -> None:
    memory = StubProvider(ProviderName.MEMORY)
    graph = build_fanout_graph("chat", [ProviderName.MEMORY, ProviderName.VOICE_ANALYTICS])

    result = await GraphExecutor(_registry(memory)).execute(graph, _request())

    runs = {run.node_id: run for run in result.node_runs}
    assert runs["voiceanalytics-2"].status is TaskStatus.SKIPPED
    assert result.state.counters.completed_tasks == 2
    assert result.state.counters.failed_tasks == 0


def test_executor_rejects_zero_parallelism() -> None:
    with pytest.raises(ValueError):
        GraphExecutor(ProviderRegistry(), max_parallel=0)


@pytest.mark.asyncio
async def test_fanout_artifacts_follow_completion_order() -> None:
    slow = StubProvider(ProviderName.MEMORY, delay=0.05)
    fast = StubProvider(ProviderName.SOCIAL_GRAPH)
    graph = build_fanout_graph("chat", [ProviderName.MEMORY, ProviderName.SOCIAL_GRAPH])

    result = await GraphExecutor(_registry(slow, fast)).execute(graph, _request())

    assert [artifact.label for artifact in result.state.artifacts] == ["SocialGraph", "Memory"]
    assert [run.node_id for run in result.node_runs] == ["socialgraph-2", "memory-1"]


@pytest.mark.asyncio
async def test_malformed_handler_result_fails_only_its_node() -> None:
    async def dict_handler(request: ProviderRequest) -> dict[str, Any]:
        return {"content": "x", "json": {}}

    social = StubProvider(ProviderName.SOCIAL_GRAPH, delay=0.05)
    registry = ProviderRegistry({ProviderName.MEMORY: dict_handler, ProviderName.SOCIAL_GRAPH: social})
    graph = build_fanout_graph("chat", [ProviderName.MEMORY, ProviderName.SOCIAL_GRAPH])

    result = await GraphExecutor(registry).execute(graph, _request())

    runs = {run.node_id: run for run in result.node_runs}
    assert runs["memory-1"].status is TaskStatus.ERROR
    assert "returned dict" in (runs["memory-1"].error_text or "")
    assert runs["socialgraph-2"].status is TaskStatus.OK
    assert social.finished_at is not None
    assert result.state.counters.completed_tasks == 1
    assert result.state.counters.failed_tasks == 1
    assert [artifact.label for artifact in result.state.artifacts] == ["SocialGraph"]
    assert result.events[-1].type is AgentEventType.GRAPH_COMPLETED


@pytest.mark.asyncio
async def test_bookkeeping_error_is_recorded_as_node_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    original = executor_module.packets_to_artifacts

    def flaky_artifacts(task_id: str, agent: str, packets: list[ProviderPacket], **kwargs: Any):
        if task_id == "memory-1":
            raise RuntimeError("artifact conversion broke")
        return original(task_id, agent, packets, **kwargs)

    monkeypatch.setattr(executor_module, "packets_to_artifacts", flaky_artifacts)
    memory = StubProvider(ProviderName.MEMORY)
    social = StubProvider(ProviderName.SOCIAL_GRAPH, delay=0.02)
    graph = build_fanout_graph("chat", [ProviderName.MEMORY, ProviderName.SOCIAL_GRAPH])

    result = await GraphExecutor(_registry(memory, social)).execute(graph, _request())

    assert result.failed_nodes == ["memory-1"]
    assert result.state.tasks["memory-1"].status is TaskStatus.ERROR
    assert result.state.tasks["memory-1"].error == "artifact conversion broke"
    assert result.state.counters.completed_tasks == 1
    assert result.state.counters.failed_tasks == 1
    failed = [event for event in result.events if event.type is AgentEventType.NODE_FAILED]
    assert [event.node_id for event in failed] == ["memory-1"]


@pytest.mark.asyncio
async def test_aborted_execution_leaves_no_running_nodes(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_artifacts(*args: Any, **kwargs: Any):
        raise RuntimeError("artifact conversion broke")

    def broken_crash_handler(self: GraphExecutor, *args: Any) -> None:
        raise RuntimeError("crash handler broke")

    monkeypatch.setattr(executor_module, "packets_to_artifacts", broken_artifacts)
    monkeypatch.setattr(GraphExecutor, "_record_crash", broken_crash_handler)
    memory = StubProvider(ProviderName.MEMORY)
    social = StubProvider(ProviderName.SOCIAL_GRAPH, delay=0.5)
    graph = build_fanout_graph("chat", [ProviderName.MEMORY, ProviderName.SOCIAL_GRAPH])

    with pytest.raises(RuntimeError, match="crash handler broke"):
        await GraphExecutor(_registry(memory, social)).execute(graph, _request())

    pending = [task for task in asyncio.all_tasks() if task.get_name().startswith("graph-node:") and not task.done()]
    assert pending == []
    assert social.calls == 1
    assert social.finished_at is not None
