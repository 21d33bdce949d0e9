from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ..orchestration.enums import TaskStatus
from .graph import AgentGraph, utcnow


class BlackboardArtifact(BaseModel):
    id: str = Field(..., min_length=1)
    kind: str = "context_packet"
    label: str = ""
    content: str = ""
    confidence: float = 0.5
    source_agent: str = ""
    provenance: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class TaskSnapshot(BaseModel):
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None


class BlackboardCounters(BaseModel):
    completed_tasks: int = 0
    failed_tasks: int = 0
    total_estimated_tokens: int = 0


class TaskResult(BaseModel):
    """Terminal outcome of a task handed to the blackboard in one record call."""

    task_id: str
    status: TaskStatus
    error: str | None = None
    finished_at: datetime = Field(default_factory=utcnow)
    artifacts: list[BlackboardArtifact] = Field(default_factory=list)


class BlackboardState(BaseModel):
    trace_id: str
    route_kind: str
    user_text: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    graph: AgentGraph
    artifacts: list[BlackboardArtifact] = Field(default_factory=list)
    tasks: dict[str, TaskSnapshot] = Field(default_factory=dict)
    unresolved_questions: list[str] = Field(default_factory=list)
    counters: BlackboardCounters = Field(default_factory=BlackboardCounters)
