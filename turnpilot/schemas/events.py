from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ..orchestration.enums import AgentEventType
from .graph import utcnow


class AgentEvent(BaseModel):
    id: str
    trace_id: str
    type: AgentEventType
    timestamp: datetime = Field(default_factory=utcnow)
    node_id: str | None = None
    agent: str | None = None
    attempt: int | None = None
    message: str = ""
    details: dict[str, Any] = Field(default_factory=dict)
