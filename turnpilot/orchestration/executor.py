"""Dependency-aware graph executor with a parallelism ceiling and per-node isolation."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Sequence

from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_none

from ..core.errors import GraphValidationError
from ..core.logging import get_logger
from ..core.metrics import increment_node_retry, record_node_outcome
from ..providers.registry import ProviderPacket, ProviderRegistry, ProviderRequest, normalize_packets
from ..schemas.blackboard import BlackboardState, TaskResult
from ..schemas.events import AgentEvent
from ..schemas.graph import AgentGraph, AgentTaskNode, NodeRunRecord, utcnow
from .blackboard import Blackboard, packets_to_artifacts
from .enums import AgentEventType, TaskStatus
from .events import EventLog
from .graph_policy import validate_agent_graph
from .tokens import DEFAULT_CHARS_PER_TOKEN

logger = get_logger(name=__name__)


class NodeTimeoutError(TimeoutError):
    def __init__(self, node_id: str, limit_ms: int) -> None:
        super().__init__(f"node {node_id} exceeded {limit_ms}ms")
        self.node_id = node_id
        self.limit_ms = limit_ms


@dataclass(slots=True)
class ExecutionResult:
    graph: AgentGraph
    blackboard: Blackboard
    node_runs: list[NodeRunRecord] = field(default_factory=list)
    events: list[AgentEvent] = field(default_factory=list)
    packets: list[ProviderPacket] = field(default_factory=list)

    @property
    def state(self) -> BlackboardState:
        return self.blackboard.state

    @property
    def failed_nodes(self) -> list[str]:
        return [run.node_id for run in self.node_runs if run.status is TaskStatus.ERROR]

    def render_context(self) -> str:
        return self.blackboard.render_context()


@dataclass(slots=True)
class _NodeOutcome:
    status: TaskStatus
    packets: list[ProviderPacket]
    attempts: int
    error: str | None = None


class GraphExecutor:
    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        max_parallel: int = 3,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
        retry_backoff_seconds: float = 0.0,
    ) -> None:
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        self._registry = registry
        self._max_parallel = max_parallel
        self._chars_per_token = chars_per_token
        self._retry_backoff_seconds = retry_backoff_seconds

    @property
    def max_parallel(self) -> int:
        return self._max_parallel

    async def execute(
        self,
        graph: AgentGraph,
        request: ProviderRequest,
        *,
        max_parallel: int | None = None,
        log: EventLog | None = None,
    ) -> ExecutionResult:
        trace_id = request.trace_id
        log = log if log is not None else EventLog(trace_id)
        violations = validate_agent_graph(graph)
        if violations:
            log.emit(
                AgentEventType.GRAPH_VALIDATION_FAILED,
                message="graph rejected by policy",
                details={"violations": violations},
            )
            logger.warning("graph_validation_failed", trace_id=trace_id, violations=violations)
            raise GraphValidationError(violations)

        blackboard = Blackboard.create(
            trace_id=trace_id,
            route_kind=graph.route_kind,
            user_text=request.user_text,
            graph=graph,
            chars_per_token=self._chars_per_token,
        )
        ceiling = max(1, max_parallel or self._max_parallel)
        semaphore = asyncio.Semaphore(ceiling)
        result = ExecutionResult(graph=graph, blackboard=blackboard)
        log.emit(
            AgentEventType.GRAPH_STARTED,
            details={"nodes": len(graph.nodes), "edges": len(graph.edges), "max_parallel": ceiling},
        )
        started = time.perf_counter()

        tasks: dict[str, asyncio.Task[None]] = {}
        for node in graph.nodes:
            tasks[node.id] = asyncio.create_task(
                self._run_node(node, tasks, semaphore, blackboard, log, request, result),
                name=f"graph-node:{node.id}",
            )
        if tasks:
            try:
                await asyncio.gather(*tasks.values())
            except BaseException:
                for task in tasks.values():
                    task.cancel()
                await asyncio.gather(*tasks.values(), return_exceptions=True)
                raise

        counters = blackboard.state.counters
        log.emit(
            AgentEventType.GRAPH_COMPLETED,
            details={
                "completed_tasks": counters.completed_tasks,
                "failed_tasks": counters.failed_tasks,
                "artifact_count": len(blackboard.state.artifacts),
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        logger.info(
            "graph_completed",
            trace_id=trace_id,
            route=graph.route_kind,
            completed=counters.completed_tasks,
            failed=counters.failed_tasks,
        )
        result.events = log.events
        return result

    async def _run_node(
        self,
        node: AgentTaskNode,
        tasks: dict[str, asyncio.Task[None]],
        semaphore: asyncio.Semaphore,
        blackboard: Blackboard,
        log: EventLog,
        request: ProviderRequest,
        result: ExecutionResult,
    ) -> None:
        try:
            await self._execute_node(node, tasks, semaphore, blackboard, log, request, result)
        except Exception as exc:
            self._record_crash(node, blackboard, log, request, result, exc)

    def _record_crash(
        self,
        node: AgentTaskNode,
        blackboard: Blackboard,
        log: EventLog,
        request: ProviderRequest,
        result: ExecutionResult,
        exc: Exception,
    ) -> None:
        """Record a node whose bookkeeping raised as failed so siblings and dependents keep going."""
        error = _describe(exc)
        logger.error(
            "graph_node_crashed",
            trace_id=request.trace_id,
            node_id=node.id,
            error=error,
            exc_info=exc,
        )
        if blackboard.has_result(node.id):
            return
        finished_at = utcnow()
        snapshot = blackboard.state.tasks.get(node.id)
        attempts = max(1, snapshot.attempts) if snapshot is not None else 1
        blackboard.record_task_result(
            TaskResult(task_id=node.id, status=TaskStatus.ERROR, error=error, finished_at=finished_at)
        )
        agent = node.provider.value
        result.node_runs.append(
            NodeRunRecord(
                node_id=node.id,
                agent=agent,
                status=TaskStatus.ERROR,
                attempts=attempts,
                started_at=(snapshot.started_at if snapshot is not None else None) or finished_at,
                finished_at=finished_at,
                latency_ms=0.0,
                error_text=error,
                metadata={"summary": "", "confidence": 0.0, "artifact_count": 0, "packet_count": 0},
            )
        )
        record_node_outcome(provider=agent, status=TaskStatus.ERROR.value, latency=0.0)
        log.emit(AgentEventType.NODE_FAILED, node_id=node.id, agent=agent, attempt=attempts, message=error)

    async def _execute_node(
        self,
        node: AgentTaskNode,
        tasks: dict[str, asyncio.Task[None]],
        semaphore: asyncio.Semaphore,
        blackboard: Blackboard,
        log: EventLog,
        request: ProviderRequest,
        result: ExecutionResult,
    ) -> None:
        dependencies = [tasks[dependency] for dependency in node.depends_on if dependency in tasks]
        if dependencies:
            # Dependencies never raise; each one records its own failure.
            await asyncio.gather(*dependencies)

        async with semaphore:
            started_at = utcnow()
            clock = time.perf_counter()
            node_request = request.model_copy(
                update={
                    "objective": node.objective,
                    "inputs": list(node.inputs),
                    "upstream_context": self._upstream_context(node, blackboard),
                }
            )
            outcome = await self._invoke(node, node_request, blackboard, log)
            latency_ms = (time.perf_counter() - clock) * 1000

        finished_at = utcnow()
        agent = node.provider.value
        artifacts = packets_to_artifacts(node.id, agent, outcome.packets, now=finished_at)
        added = blackboard.record_task_result(
            TaskResult(
                task_id=node.id,
                status=outcome.status,
                error=outcome.error,
                finished_at=finished_at,
                artifacts=artifacts,
            )
        )
        for artifact in added:
            log.emit(
                AgentEventType.ARTIFACT_WRITTEN,
                node_id=node.id,
                agent=agent,
                details={"artifact_id": artifact.id, "confidence": artifact.confidence},
            )

        confidence = max((a.confidence for a in artifacts), default=0.0)
        run = NodeRunRecord(
            node_id=node.id,
            agent=agent,
            status=outcome.status,
            attempts=outcome.attempts,
            started_at=started_at,
            finished_at=finished_at,
            latency_ms=round(latency_ms, 2),
            error_text=outcome.error,
            metadata={
                "summary": _summarize(outcome.packets),
                "confidence": confidence,
                "artifact_count": len(added),
                "packet_count": len(outcome.packets),
            },
        )
        result.node_runs.append(run)
        result.packets.extend(outcome.packets)
        record_node_outcome(provider=agent, status=outcome.status.value, latency=latency_ms / 1000)

        if outcome.status is TaskStatus.ERROR:
            log.emit(
                AgentEventType.NODE_FAILED,
                node_id=node.id,
                agent=agent,
                attempt=outcome.attempts,
                message=outcome.error or "",
            )
            logger.warning(
                "graph_node_failed",
                trace_id=request.trace_id,
                node_id=node.id,
                attempts=outcome.attempts,
                error=outcome.error,
            )
        else:
            log.emit(
                AgentEventType.NODE_COMPLETED,
                node_id=node.id,
                agent=agent,
                attempt=outcome.attempts,
                details={"status": outcome.status.value, "latency_ms": run.latency_ms},
            )

    async def _invoke(
        self,
        node: AgentTaskNode,
        request: ProviderRequest,
        blackboard: Blackboard,
        log: EventLog,
    ) -> _NodeOutcome:
        agent = node.provider.value
        handler = self._registry.get(node.provider)
        if handler is None:
            blackboard.mark_task_started(node.id)
            log.emit(AgentEventType.NODE_STARTED, node_id=node.id, agent=agent, attempt=1)
            logger.warning("graph_provider_unregistered", trace_id=request.trace_id, provider=agent)
            return _NodeOutcome(status=TaskStatus.SKIPPED, packets=[], attempts=1, error="provider not registered")

        timeout = node.budget.max_latency_ms / 1000
        max_attempts = max(0, node.budget.max_retries) + 1
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=(
                wait_exponential(multiplier=self._retry_backoff_seconds, max=self._retry_backoff_seconds * 8)
                if self._retry_backoff_seconds > 0
                else wait_none()
            ),
            retry=retry_if_exception_type(Exception),
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if attempts > 1:
                        increment_node_retry(provider=agent)
                        log.emit(AgentEventType.NODE_RETRY, node_id=node.id, agent=agent, attempt=attempts)
                    blackboard.mark_task_started(node.id)
                    log.emit(AgentEventType.NODE_STARTED, node_id=node.id, agent=agent, attempt=attempts)
                    try:
                        raw = await asyncio.wait_for(handler(request), timeout=timeout)
                    except asyncio.TimeoutError as exc:
                        raise NodeTimeoutError(node.id, node.budget.max_latency_ms) from exc
                    packets = normalize_packets(raw, provider=agent)
        except RetryError as exc:
            error = exc.last_attempt.exception()
            return _NodeOutcome(status=TaskStatus.ERROR, packets=[], attempts=attempts, error=_describe(error))
        return _NodeOutcome(status=TaskStatus.OK, packets=packets, attempts=attempts)

    def _upstream_context(self, node: AgentTaskNode, blackboard: Blackboard) -> str:
        if not node.depends_on:
            return ""
        prefixes = tuple(f"{dependency}:packet:" for dependency in node.depends_on)
        blocks = [
            f"[{artifact.label}] {artifact.content}"
            for artifact in blackboard.state.artifacts
            if artifact.id.startswith(prefixes) and artifact.content
        ]
        return "\n\n".join(blocks)


def _describe(error: BaseException | None) -> str:
    if error is None:
        return "unknown error"
    return str(error) or type(error).__name__


def _summarize(packets: Sequence[ProviderPacket], limit: int = 160) -> str:
    if not packets:
        return ""
    text = " | ".join(packet.content.strip() for packet in packets if packet.content)
    return text if len(text) <= limit else text[: limit - 3] + "..."


__all__ = ["ExecutionResult", "GraphExecutor", "NodeTimeoutError"]
