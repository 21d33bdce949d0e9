from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from ..orchestration.enums import ContextMode, ProviderName, RouteKind
from .canary import CanaryDecision
from .events import AgentEvent
from .graph import NodeRunRecord
from .models import ModelResolutionDetails
from .quality import CriticLoopResult


class TurnMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class Turn(BaseModel):
    """A normalized conversational turn handed over by the ingestion layer."""

    trace_id: str = Field(..., min_length=1)
    user_id: str
    channel_id: str
    guild_id: str | None = None
    user_text: str = ""
    image_urls: list[str] = Field(default_factory=list)
    has_audio: bool = False
    history: list[TurnMessage] = Field(default_factory=list)
    reply_context: str | None = None
    has_attachments: bool = False
    voice_active: bool = False


class RouteDecision(BaseModel):
    kind: str = RouteKind.CHAT.value
    search_mode: str | None = None
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    providers: list[ProviderName] | None = None
    skip_memory: bool = False
    audio_out: bool = False


class GraphStats(BaseModel):
    nodes: int = 0
    edges: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    artifact_count: int = 0
    estimated_artifact_tokens: int = 0


class TurnResult(BaseModel):
    trace_id: str
    route: str
    reply: str
    model: str | None = None
    mode: ContextMode
    canary: CanaryDecision
    graph: GraphStats = Field(default_factory=GraphStats)
    node_runs: list[NodeRunRecord] = Field(default_factory=list)
    events: list[AgentEvent] = Field(default_factory=list)
    resolution: ModelResolutionDetails | None = None
    critic: CriticLoopResult | None = None
    budget: dict[str, Any] = Field(default_factory=dict)
