from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from ..orchestration.enums import ProviderName, TaskStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskBudget(BaseModel):
    max_latency_ms: int = 30_000
    max_retries: int = 1
    max_input_tokens: int = 2_000
    max_output_tokens: int = 2_000


class AgentTaskNode(BaseModel):
    id: str = Field(..., min_length=1)
    provider: ProviderName
    objective: str = ""
    inputs: list[str] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    budget: TaskBudget = Field(default_factory=TaskBudget)
    depends_on: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class GraphEdge(BaseModel):
    source: str
    target: str


class AgentGraph(BaseModel):
    nodes: list[AgentTaskNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    route_kind: str
    created_at: datetime = Field(default_factory=utcnow)

    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> AgentTaskNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class NodeRunRecord(BaseModel):
    """Structured outcome of one executed graph node."""

    node_id: str
    agent: str
    status: TaskStatus
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    latency_ms: float = 0.0
    error_text: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
