"""Per-turn orchestration: canary gate, context graph, synthesis, critic, telemetry."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from ..core.config import Settings
from ..core.errors import SynthesisError
from ..core.logging import get_logger, turn_log_context
from ..core.metrics import observe_turn_latency, record_graph_run
from ..llm.budgets import fit_context, get_model_budget
from ..llm.client import ChatClient, ChatResponse, to_langchain_messages
from ..llm.health import ModelHealthTracker
from ..llm.resolver import ModelResolver, infer_requirements
from ..providers.registry import ProviderPacket, ProviderRegistry, ProviderRequest
from ..providers.runner import run_providers_legacy
from ..schemas.canary import CanaryDecision
from ..schemas.graph import AgentGraph
from ..schemas.quality import CriticLoopResult
from ..schemas.turn import GraphStats, RouteDecision, Turn, TurnResult
from ..telemetry import TelemetrySink, emit
from .canary import CanaryController
from .critic import CriticEvaluator, CriticLoop
from .enums import AgentEventType, CanaryFailureCode, ContextMode, ProviderName
from .events import EventLog
from .executor import ExecutionResult, GraphExecutor
from .graph_builder import (
    build_context_graph,
    build_fanout_graph,
    dedupe_providers,
    provider_timeout_seconds,
    standard_providers_for_route,
)
from .tenant_policy import ResolvedTenantPolicy, TenantPolicyResolver
from .tokens import estimate_tokens
from .tool_policy import ToolPolicy, ToolSpec

logger = get_logger(name=__name__)

FALLBACK_REPLY = "I'm having trouble connecting right now. Please try again later."

SYSTEM_PROMPT = (
    "You are a helpful assistant in a group chat. Answer the latest user message directly. "
    "Use the provided context when it is relevant and never invent facts about people."
)


def render_packets(packets: Sequence[ProviderPacket]) -> str:
    return "\n\n".join(f"[{packet.name.value}] {packet.content}" for packet in packets if packet.content)


@dataclass(slots=True)
class _ContextOutcome:
    mode: ContextMode
    context: str
    graph: AgentGraph | None = None
    execution: ExecutionResult | None = None
    packets: list[ProviderPacket] = field(default_factory=list)
    graph_failed: bool = False


class AgentRuntime:
    def __init__(
        self,
        *,
        settings: Settings,
        registry: ProviderRegistry,
        client: ChatClient,
        resolver: ModelResolver,
        health: ModelHealthTracker,
        canary: CanaryController,
        telemetry: TelemetrySink | None = None,
        tenant: TenantPolicyResolver | None = None,
        tools: Sequence[ToolSpec] = (),
        executor: GraphExecutor | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._client = client
        self._resolver = resolver
        self._health = health
        self._canary = canary
        self._telemetry = telemetry
        self._tenant = tenant or TenantPolicyResolver(settings)
        self._tools = list(tools)
        self._executor = executor or GraphExecutor(
            registry,
            max_parallel=settings.graph.max_parallel,
            chars_per_token=settings.graph.chars_per_token,
        )
        self._evaluator = CriticEvaluator(
            client=client,
            resolver=resolver,
            health=health,
            timeout_seconds=settings.chat.timeout_seconds,
            api_key=settings.chat.api_key,
        )

    @property
    def canary(self) -> CanaryController:
        return self._canary

    async def run_turn(self, turn: Turn, route: RouteDecision) -> TurnResult:
        with turn_log_context(
            trace_id=turn.trace_id,
            route=route.kind,
            guild_id=turn.guild_id,
            channel_id=turn.channel_id,
        ):
            return await self._run_turn(turn, route)

    async def _run_turn(self, turn: Turn, route: RouteDecision) -> TurnResult:
        started = time.perf_counter()
        route_kind = route.kind
        policy = self._tenant.resolve(turn.guild_id)
        providers = self._active_providers(route)
        log = EventLog(turn.trace_id)

        decision = await self._canary.evaluate(trace_id=turn.trace_id, route=route_kind)
        log.emit(
            AgentEventType.CANARY_DECISION,
            message=decision.reason.value,
            details=decision.model_dump(mode="json"),
        )
        request = ProviderRequest(
            trace_id=turn.trace_id,
            user_id=turn.user_id,
            channel_id=turn.channel_id,
            guild_id=turn.guild_id,
            user_text=turn.user_text,
            route_kind=route_kind,
        )
        outcome = await self._gather_context(route, providers, request, decision, policy, log)
        record_graph_run(route=route_kind, mode=outcome.mode.value)

        requirements = infer_requirements(
            route=route_kind,
            text=turn.user_text,
            image_count=len(turn.image_urls),
            has_audio=turn.has_audio,
            audio_out=route.audio_out,
            search_mode=route.search_mode,
        )
        resolution = await self._resolver.resolve(
            route=route_kind,
            requirements=requirements,
            prompt_chars=len(turn.user_text) + len(outcome.context),
            allowed_models=policy.allowed_models,
        )
        model = resolution.model
        budget = get_model_budget(model, self._settings.models, chars_per_token=self._settings.graph.chars_per_token)
        reserved = sum(budget.estimate_message_tokens(m.content) for m in turn.history)
        reserved += budget.estimate_message_tokens(turn.user_text, images=len(turn.image_urls))
        context = fit_context(outcome.context, budget, reserved_tokens=reserved)
        messages = self._synthesis_messages(turn, context, vision_enabled=budget.vision_enabled)
        allowed_tools, _ = ToolPolicy.from_tenant(policy).filter_tools(self._tools)

        reply = FALLBACK_REPLY
        synthesis_failed = False
        critic_result: CriticLoopResult | None = None
        try:
            draft = await self._generate(messages, model=model, temperature=route.temperature, tools=allowed_tools)
            reply = draft.content.strip() or FALLBACK_REPLY
        except SynthesisError as exc:
            synthesis_failed = True
            logger.error("synthesis_failed", trace_id=turn.trace_id, model=model, error=str(exc))
        else:
            critic_result = await self._run_critic(
                turn, route, policy, request, providers, messages, reply, model, allowed_tools, outcome, log
            )
            reply = critic_result.final_text

        if decision.allowed:
            reason_codes: list[str] = []
            failed_tasks = outcome.execution.state.counters.failed_tasks if outcome.execution else 0
            if outcome.graph_failed or failed_tasks > 0:
                reason_codes.append(CanaryFailureCode.GRAPH_FAILED_TASKS.value)
            if synthesis_failed:
                reason_codes.append(CanaryFailureCode.TOOL_LOOP_FAILED.value)
            await self._canary.record_outcome(success=not reason_codes, reason_codes=reason_codes)
            log.emit(
                AgentEventType.CANARY_OUTCOME,
                details={"success": not reason_codes, "reason_codes": reason_codes},
            )

        stats = self._graph_stats(outcome)
        budget_payload: dict[str, Any] = {
            "mode": outcome.mode.value,
            "graph_nodes": stats.nodes,
            "graph_edges": stats.edges,
            "completed_tasks": stats.completed_tasks,
            "failed_tasks": stats.failed_tasks,
            "artifact_count": stats.artifact_count,
            "estimated_artifact_tokens": stats.estimated_artifact_tokens,
            "graph_parallel_enabled": self._settings.graph.parallel_enabled,
            "graph_max_parallel": policy.max_parallel,
            "canary_decision": decision.model_dump(mode="json"),
            "model_budget": {
                "model": budget.model,
                "input_budget": budget.input_budget,
                "context_tokens": estimate_tokens(context, chars_per_token=budget.chars_per_token),
            },
        }
        result = TurnResult(
            trace_id=turn.trace_id,
            route=route_kind,
            reply=reply,
            model=model,
            mode=outcome.mode,
            canary=decision,
            graph=stats,
            node_runs=list(outcome.execution.node_runs) if outcome.execution else [],
            events=log.events,
            resolution=resolution,
            critic=critic_result,
            budget=budget_payload,
        )
        await self._emit_telemetry(result, outcome)
        latency = time.perf_counter() - started
        observe_turn_latency(route=route_kind, latency=latency)
        logger.info(
            "turn_completed",
            trace_id=turn.trace_id,
            route=route_kind,
            mode=outcome.mode.value,
            model=model,
            latency_ms=round(latency * 1000, 2),
        )
        return result

    def _active_providers(self, route: RouteDecision) -> list[ProviderName]:
        selected = route.providers or standard_providers_for_route(route.kind)
        providers = dedupe_providers(selected)
        if route.skip_memory:
            providers = [provider for provider in providers if provider is not ProviderName.MEMORY]
        return providers

    async def _gather_context(
        self,
        route: RouteDecision,
        providers: list[ProviderName],
        request: ProviderRequest,
        decision: CanaryDecision,
        policy: ResolvedTenantPolicy,
        log: EventLog,
    ) -> _ContextOutcome:
        if not decision.allowed:
            return await self._legacy_context(
                providers,
                request,
                log,
                mode=ContextMode.CANARY_LEGACY_RUNNER,
                event=AgentEventType.CANARY_SKIPPED,
                reason=f"graph skipped: {decision.reason.value}",
            )
        graph: AgentGraph | None = None
        try:
            graph = build_context_graph(
                route.kind,
                providers,
                skip_memory=route.skip_memory,
                parallel_enabled=self._settings.graph.parallel_enabled,
            )
            execution = await self._executor.execute(graph, request, max_parallel=policy.max_parallel, log=log)
        except Exception as exc:
            logger.warning("graph_execution_failed", trace_id=request.trace_id, error=str(exc))
            fallback = await self._legacy_context(
                providers,
                request,
                log,
                mode=ContextMode.LEGACY_PROVIDER_RUNNER,
                event=AgentEventType.GRAPH_FALLBACK,
                reason=str(exc),
            )
            fallback.graph = graph
            fallback.graph_failed = True
            return fallback
        return _ContextOutcome(
            mode=ContextMode.GRAPH,
            context=execution.render_context(),
            graph=graph,
            execution=execution,
            packets=list(execution.packets),
        )

    async def _legacy_context(
        self,
        providers: list[ProviderName],
        request: ProviderRequest,
        log: EventLog,
        *,
        mode: ContextMode,
        event: AgentEventType,
        reason: str,
    ) -> _ContextOutcome:
        try:
            packets = await run_providers_legacy(
                providers,
                request,
                registry=self._registry,
                timeout_seconds=self._settings.chat.timeout_seconds,
            )
        except Exception as exc:
            logger.warning("legacy_provider_runner_failed", trace_id=request.trace_id, error=str(exc))
            log.emit(AgentEventType.GRAPH_FALLBACK_FAILED, message=str(exc))
            return _ContextOutcome(mode=ContextMode.FALLBACK_FAILED, context="")
        log.emit(event, message=reason, details={"provider_count": len(packets)})
        return _ContextOutcome(mode=mode, context=render_packets(packets), packets=packets)

    def _synthesis_messages(self, turn: Turn, context: str, *, vision_enabled: bool) -> list[BaseMessage]:
        system = SYSTEM_PROMPT
        if context:
            system = f"{system}\n\nContext:\n{context}"
        if turn.reply_context:
            system = f"{system}\n\nThe user is replying to:\n{turn.reply_context}"
        messages: list[BaseMessage] = [SystemMessage(content=system)]
        messages.extend(to_langchain_messages(turn.history))
        if vision_enabled and turn.image_urls:
            content: list[Any] = [{"type": "text", "text": turn.user_text}]
            content.extend({"type": "image_url", "image_url": {"url": url}} for url in turn.image_urls)
            messages.append(HumanMessage(content=content))
        else:
            messages.append(HumanMessage(content=turn.user_text))
        return messages

    async def _generate(
        self,
        messages: Sequence[BaseMessage],
        *,
        model: str,
        temperature: float,
        tools: Sequence[ToolSpec] = (),
    ) -> ChatResponse:
        started = time.perf_counter()
        try:
            response = await self._client.chat(
                messages,
                model=model,
                temperature=temperature,
                timeout=self._settings.chat.timeout_seconds,
                api_key=self._settings.chat.api_key,
                tools=[tool.as_function() for tool in tools] or None,
            )
        except Exception as exc:
            self._health.record_outcome(model, success=False)
            raise SynthesisError(str(exc) or type(exc).__name__) from exc
        self._health.record_outcome(model, success=True, latency_ms=(time.perf_counter() - started) * 1000)
        return response

    async def _run_critic(
        self,
        turn: Turn,
        route: RouteDecision,
        policy: ResolvedTenantPolicy,
        request: ProviderRequest,
        providers: list[ProviderName],
        messages: list[BaseMessage],
        draft: str,
        model: str,
        tools: Sequence[ToolSpec],
        outcome: _ContextOutcome,
        log: EventLog,
    ) -> CriticLoopResult:
        async def redispatch(targets: list[ProviderName]) -> str:
            log.emit(AgentEventType.CRITIC_REDISPATCH, details={"providers": [p.value for p in targets]})
            graph = build_fanout_graph(route.kind, targets)
            try:
                execution = await self._executor.execute(graph, request, max_parallel=policy.max_parallel, log=log)
            except Exception as exc:
                logger.warning("critic_redispatch_graph_failed", trace_id=turn.trace_id, error=str(exc))
                packets = await run_providers_legacy(
                    targets,
                    request,
                    registry=self._registry,
                    timeout_seconds=provider_timeout_seconds(targets),
                )
                return render_packets(packets)
            return execution.render_context()

        async def regenerate(revision: list[BaseMessage], temperature: float) -> ChatResponse:
            return await self._generate(revision, model=model, temperature=temperature, tools=tools)

        loop = CriticLoop(self._evaluator, policy.critic)
        return await loop.run(
            route=route.kind,
            user_text=turn.user_text,
            draft=draft,
            base_messages=messages,
            temperature=route.temperature,
            active_providers=providers,
            redispatch=redispatch,
            regenerate=regenerate,
            history=to_langchain_messages(turn.history),
            allowed_models=policy.allowed_models,
            voice_active=turn.voice_active,
            has_files=turn.has_attachments,
        )

    @staticmethod
    def _graph_stats(outcome: _ContextOutcome) -> GraphStats:
        if outcome.execution is None:
            return GraphStats(
                nodes=len(outcome.graph.nodes) if outcome.graph else 0,
                edges=len(outcome.graph.edges) if outcome.graph else 0,
            )
        state = outcome.execution.state
        return GraphStats(
            nodes=len(outcome.execution.graph.nodes),
            edges=len(outcome.execution.graph.edges),
            completed_tasks=state.counters.completed_tasks,
            failed_tasks=state.counters.failed_tasks,
            artifact_count=len(state.artifacts),
            estimated_artifact_tokens=state.counters.total_estimated_tokens,
        )

    async def _emit_telemetry(self, result: TurnResult, outcome: _ContextOutcome) -> None:
        trace_id = result.trace_id
        if outcome.graph is not None:
            await emit(self._telemetry, "graph", trace_id, outcome.graph)
        await emit(self._telemetry, "events", trace_id, list(result.events))
        await emit(self._telemetry, "node_runs", trace_id, list(result.node_runs))
        if result.resolution is not None:
            await emit(self._telemetry, "model_resolution", trace_id, result.resolution)
        if result.critic is not None:
            await emit(self._telemetry, "quality", trace_id, result.critic)
        await emit(self._telemetry, "budget", trace_id, result.budget)
        await emit(
            self._telemetry,
            "turn",
            trace_id,
            {
                "route": result.route,
                "mode": result.mode.value,
                "canary": result.canary.model_dump(mode="json"),
                "model": result.model,
                "reply": result.reply,
            },
        )


__all__ = ["AgentRuntime", "FALLBACK_REPLY", "render_packets"]
