from __future__ import annotations

from enum import Enum


class RouteKind(str, Enum):
    CHAT = "chat"
    CODING = "coding"
    SEARCH = "search"
    CREATIVE = "creative"
    ANALYZE = "analyze"
    MANAGE = "manage"


class ProviderName(str, Enum):
    MEMORY = "Memory"
    SUMMARIZER = "Summarizer"
    SOCIAL_GRAPH = "SocialGraph"
    VOICE_ANALYTICS = "VoiceAnalytics"
    CHANNEL_MEMORY = "ChannelMemory"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    OK = "ok"
    SKIPPED = "skipped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskStatus.PENDING, TaskStatus.RUNNING)

    @property
    def is_success(self) -> bool:
        return self in (TaskStatus.OK, TaskStatus.SKIPPED)


class GraphStrategy(str, Enum):
    LINEAR = "linear"
    FANOUT = "fanout"


class AgentEventType(str, Enum):
    GRAPH_STARTED = "graph_started"
    GRAPH_VALIDATION_FAILED = "graph_validation_failed"
    NODE_STARTED = "node_started"
    NODE_RETRY = "node_retry"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    ARTIFACT_WRITTEN = "artifact_written"
    GRAPH_COMPLETED = "graph_completed"
    CANARY_DECISION = "canary_decision"
    CANARY_SKIPPED = "canary_skipped"
    CANARY_OUTCOME = "canary_outcome"
    GRAPH_FALLBACK = "graph_fallback"
    GRAPH_FALLBACK_FAILED = "graph_fallback_failed"
    CRITIC_REDISPATCH = "critic_redispatch"


class CanaryReason(str, Enum):
    DISABLED = "disabled"
    ROUTE_NOT_ALLOWLISTED = "route_not_allowlisted"
    ERROR_BUDGET_COOLDOWN = "error_budget_cooldown"
    OUT_OF_ROLLOUT_SAMPLE = "out_of_rollout_sample"
    ALLOWED = "allowed"


class CanaryFailureCode(str, Enum):
    GRAPH_FAILED_TASKS = "graph_failed_tasks"
    HARD_GATE_UNMET = "hard_gate_unmet"
    TOOL_LOOP_FAILED = "tool_loop_failed"


class ContextMode(str, Enum):
    GRAPH = "graph"
    LEGACY_PROVIDER_RUNNER = "legacy_provider_runner"
    CANARY_LEGACY_RUNNER = "canary_legacy_runner"
    FALLBACK_FAILED = "graph_fallback_failed"


class CriticVerdict(str, Enum):
    PASS = "pass"
    REVISE = "revise"


__all__ = [
    "RouteKind",
    "ProviderName",
    "TaskStatus",
    "GraphStrategy",
    "AgentEventType",
    "CanaryReason",
    "CanaryFailureCode",
    "ContextMode",
    "CriticVerdict",
]
