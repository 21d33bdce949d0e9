"""Builds per-turn context task graphs from a route and its provider set."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..schemas.graph import AgentGraph, AgentTaskNode, GraphEdge, TaskBudget
from .enums import GraphStrategy, ProviderName, RouteKind

DEFAULT_BUDGET = TaskBudget(
    max_latency_ms=30_000,
    max_retries=1,
    max_input_tokens=2_000,
    max_output_tokens=2_000,
)

PROVIDER_BUDGET_OVERRIDES: dict[ProviderName, dict[str, int]] = {
    ProviderName.MEMORY: {"max_latency_ms": 15_000, "max_retries": 0},
    ProviderName.SUMMARIZER: {"max_latency_ms": 20_000, "max_retries": 1},
    ProviderName.SOCIAL_GRAPH: {"max_latency_ms": 25_000, "max_retries": 1},
    ProviderName.VOICE_ANALYTICS: {"max_latency_ms": 25_000, "max_retries": 1},
}

_OBJECTIVES: dict[ProviderName, str] = {
    ProviderName.MEMORY: "Retrieve stable memory and profile facts relevant to this request.",
    ProviderName.SUMMARIZER: "Provide concise channel context summaries for this turn.",
    ProviderName.SOCIAL_GRAPH: "Provide relationship context that can improve response personalization.",
    ProviderName.VOICE_ANALYTICS: "Provide current and historical voice activity context.",
    ProviderName.CHANNEL_MEMORY: "Recall recent channel conversation relevant to this request.",
}

USER_INPUT = "user_input"


def budget_for(provider: ProviderName | str) -> TaskBudget:
    try:
        override = PROVIDER_BUDGET_OVERRIDES.get(ProviderName(provider), {})
    except ValueError:
        override = {}
    return DEFAULT_BUDGET.model_copy(update=override)


def provider_timeout_seconds(providers: Iterable[ProviderName | str]) -> float:
    """Longest per-node latency budget among ``providers``, in seconds."""
    limits = [budget_for(provider).max_latency_ms for provider in providers]
    return max(limits, default=DEFAULT_BUDGET.max_latency_ms) / 1000


def node_id_for(provider: ProviderName, index: int) -> str:
    return f"{provider.value.lower()}-{index + 1}"


def standard_providers_for_route(route_kind: str) -> list[ProviderName]:
    if route_kind == RouteKind.CHAT.value:
        return [ProviderName.MEMORY, ProviderName.SOCIAL_GRAPH, ProviderName.VOICE_ANALYTICS]
    return [ProviderName.MEMORY]


def dedupe_providers(providers: Iterable[ProviderName | str]) -> list[ProviderName]:
    seen: set[ProviderName] = set()
    ordered: list[ProviderName] = []
    for raw in providers:
        provider = ProviderName(raw)
        if provider in seen:
            continue
        seen.add(provider)
        ordered.append(provider)
    return ordered


def _prepare(providers: Sequence[ProviderName | str], skip_memory: bool) -> list[ProviderName]:
    return [p for p in dedupe_providers(providers) if not (skip_memory and p is ProviderName.MEMORY)]


def _node(
    provider: ProviderName,
    index: int,
    *,
    route_kind: str,
    inputs: list[str],
    depends_on: list[str],
    strategy: GraphStrategy,
) -> AgentTaskNode:
    return AgentTaskNode(
        id=node_id_for(provider, index),
        provider=provider,
        objective=_OBJECTIVES.get(provider, f"Produce relevant context for {route_kind}."),
        inputs=inputs,
        success_criteria=["returns_context_packet"],
        budget=budget_for(provider),
        depends_on=depends_on,
        metadata={"agent_kind": route_kind, "provider": provider.value, "strategy": strategy.value},
    )


def _strategy(requested: GraphStrategy, count: int) -> GraphStrategy:
    # A single node has no ordering to express, so both shapes collapse to linear.
    return requested if count > 1 else GraphStrategy.LINEAR


def build_linear_graph(
    route_kind: str,
    providers: Sequence[ProviderName | str],
    *,
    skip_memory: bool = False,
) -> AgentGraph:
    """Chain providers so each node reads the previous node's output."""
    selected = _prepare(providers, skip_memory)
    strategy = _strategy(GraphStrategy.LINEAR, len(selected))
    nodes: list[AgentTaskNode] = []
    for index, provider in enumerate(selected):
        previous = nodes[index - 1].id if index else None
        nodes.append(
            _node(
                provider,
                index,
                route_kind=route_kind,
                inputs=[f"node:{previous}"] if previous else [USER_INPUT],
                depends_on=[previous] if previous else [],
                strategy=strategy,
            )
        )
    edges = [GraphEdge(source=nodes[i - 1].id, target=nodes[i].id) for i in range(1, len(nodes))]
    return AgentGraph(nodes=nodes, edges=edges, route_kind=route_kind)


def build_fanout_graph(
    route_kind: str,
    providers: Sequence[ProviderName | str],
    *,
    skip_memory: bool = False,
) -> AgentGraph:
    """Independent nodes that all read the raw user input."""
    selected = _prepare(providers, skip_memory)
    strategy = _strategy(GraphStrategy.FANOUT, len(selected))
    nodes = [
        _node(provider, index, route_kind=route_kind, inputs=[USER_INPUT], depends_on=[], strategy=strategy)
        for index, provider in enumerate(selected)
    ]
    return AgentGraph(nodes=nodes, edges=[], route_kind=route_kind)


def build_context_graph(
    route_kind: str,
    providers: Sequence[ProviderName | str] | None = None,
    *,
    skip_memory: bool = False,
    parallel_enabled: bool = True,
) -> AgentGraph:
    selected = list(providers) if providers else standard_providers_for_route(route_kind)
    remaining = _prepare(selected, skip_memory)
    if parallel_enabled and len(remaining) > 1:
        return build_fanout_graph(route_kind, remaining)
    return build_linear_graph(route_kind, remaining)


__all__ = [
    "DEFAULT_BUDGET",
    "PROVIDER_BUDGET_OVERRIDES",
    "budget_for",
    "build_context_graph",
    "build_fanout_graph",
    "build_linear_graph",
    "dedupe_providers",
    "node_id_for",
    "provider_timeout_seconds",
    "standard_providers_for_route",
]
