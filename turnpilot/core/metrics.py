from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

GRAPH_RUNS_TOTAL = Counter(
    "turnpilot_graph_runs_total",
    "Turns grouped by the context pipeline that served them",
    labelnames=("route", "mode"),
)

GRAPH_NODE_EVENTS_TOTAL = Counter(
    "turnpilot_graph_node_events_total",
    "Graph node terminal outcomes grouped by provider",
    labelnames=("provider", "status"),
)

GRAPH_NODE_LATENCY_SECONDS = Histogram(
    "turnpilot_graph_node_latency_seconds",
    "Latency of a single graph node including retries",
    labelnames=("provider",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, float("inf")),
)

GRAPH_NODE_RETRIES_TOTAL = Counter(
    "turnpilot_graph_node_retries_total",
    "Retry attempts issued for graph nodes",
    labelnames=("provider",),
)

CANARY_DECISIONS_TOTAL = Counter(
    "turnpilot_canary_decisions_total",
    "Canary admission decisions grouped by reason",
    labelnames=("route", "reason"),
)

CANARY_TRIPS_TOTAL = Counter(
    "turnpilot_canary_trips_total",
    "Number of times the canary error budget tripped a cooldown",
)

CANARY_FAILURE_RATE = Gauge(
    "turnpilot_canary_failure_rate",
    "Failure rate observed in the canary rolling window",
)

MODEL_RESOLUTIONS_TOTAL = Counter(
    "turnpilot_model_resolutions_total",
    "Model resolution outcomes grouped by route and selected model",
    labelnames=("route", "model", "fallback"),
)

MODEL_HEALTH_SCORE = Gauge(
    "turnpilot_model_health_score",
    "Exponentially weighted health score per model",
    labelnames=("model",),
)

CRITIC_ITERATIONS_TOTAL = Counter(
    "turnpilot_critic_iterations_total",
    "Critic evaluations grouped by route and verdict",
    labelnames=("route", "verdict"),
)

CRITIC_SCORE = Histogram(
    "turnpilot_critic_score",
    "Scores returned by the critic evaluator",
    labelnames=("route",),
    buckets=(0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0),
)

TELEMETRY_FAILURES_TOTAL = Counter(
    "turnpilot_telemetry_failures_total",
    "Telemetry payloads that could not be delivered",
    labelnames=("kind",),
)

TURN_LATENCY_SECONDS = Histogram(
    "turnpilot_turn_latency_seconds",
    "End-to-end turn latency",
    labelnames=("route",),
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, float("inf")),
)


def record_graph_run(*, route: str, mode: str) -> None:
    GRAPH_RUNS_TOTAL.labels(route=route, mode=mode).inc()


def record_node_outcome(*, provider: str, status: str, latency: float | None = None) -> None:
    GRAPH_NODE_EVENTS_TOTAL.labels(provider=provider, status=status).inc()
    if latency is not None:
        GRAPH_NODE_LATENCY_SECONDS.labels(provider=provider).observe(latency)


def increment_node_retry(*, provider: str) -> None:
    GRAPH_NODE_RETRIES_TOTAL.labels(provider=provider).inc()


def record_canary_decision(*, route: str, reason: str) -> None:
    CANARY_DECISIONS_TOTAL.labels(route=route or "unknown", reason=reason).inc()


def record_canary_window(*, failure_rate: float, tripped: bool) -> None:
    CANARY_FAILURE_RATE.set(failure_rate)
    if tripped:
        CANARY_TRIPS_TOTAL.inc()


def record_model_resolution(*, route: str, model: str, fallback: bool) -> None:
    MODEL_RESOLUTIONS_TOTAL.labels(route=route, model=model, fallback=str(fallback).lower()).inc()


def record_model_health(*, model: str, score: float) -> None:
    MODEL_HEALTH_SCORE.labels(model=model).set(score)


def record_critic_iteration(*, route: str, verdict: str, score: float) -> None:
    CRITIC_ITERATIONS_TOTAL.labels(route=route, verdict=verdict).inc()
    CRITIC_SCORE.labels(route=route).observe(score)


def increment_telemetry_failure(*, kind: str) -> None:
    TELEMETRY_FAILURES_TOTAL.labels(kind=kind).inc()


def observe_turn_latency(*, route: str, latency: float) -> None:
    TURN_LATENCY_SECONDS.labels(route=route).observe(latency)
