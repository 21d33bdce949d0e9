from __future__ import annotations

from typing import Any

from ..schemas.events import AgentEvent
from .enums import AgentEventType


class EventLog:
    """Ordered per-trace event log with sequential ids."""

    def __init__(self, trace_id: str) -> None:
        self.trace_id = trace_id
        self._sequence = 0
        self._events: list[AgentEvent] = []

    def emit(
        self,
        event_type: AgentEventType,
        *,
        node_id: str | None = None,
        agent: str | None = None,
        attempt: int | None = None,
        message: str = "",
        details: dict[str, Any] | None = None,
    ) -> AgentEvent:
        self._sequence += 1
        event = AgentEvent(
            id=f"{self.trace_id}:{self._sequence}",
            trace_id=self.trace_id,
            type=event_type,
            node_id=node_id,
            agent=agent,
            attempt=attempt,
            message=message,
            details=details or {},
        )
        self._events.append(event)
        return event

    @property
    def events(self) -> list[AgentEvent]:
        return list(self._events)

    def of_type(self, event_type: AgentEventType) -> list[AgentEvent]:
        return [event for event in self._events if event.type is event_type]

    def __len__(self) -> int:
        return len(self._events)
