"""Single-writer aggregate of one turn's task status and artifacts."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Sequence

from ..core.logging import get_logger
from ..providers.registry import ProviderPacket
from ..schemas.blackboard import BlackboardArtifact, BlackboardState, TaskResult, TaskSnapshot
from ..schemas.graph import AgentGraph, utcnow
from .enums import TaskStatus
from .tokens import DEFAULT_CHARS_PER_TOKEN, estimate_tokens

logger = get_logger(name=__name__)

ERROR_PACKET_CONFIDENCE = 0.2
PACKET_CONFIDENCE = 0.7


def clamp_confidence(value: float) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(numeric) or numeric < 0:
        return 0.0
    if numeric > 1:
        return 1.0
    return numeric


def packets_to_artifacts(
    task_id: str,
    agent: str,
    packets: Sequence[ProviderPacket],
    *,
    now: datetime | None = None,
) -> list[BlackboardArtifact]:
    timestamp = now or utcnow()
    artifacts: list[BlackboardArtifact] = []
    for index, packet in enumerate(packets):
        artifacts.append(
            BlackboardArtifact(
                id=f"{task_id}:packet:{index}:{packet.name.value}",
                kind="context_packet",
                label=packet.name.value,
                content=packet.content,
                confidence=ERROR_PACKET_CONFIDENCE if packet.has_error else PACKET_CONFIDENCE,
                source_agent=agent,
                provenance=[f"provider:{packet.name.value}"],
                created_at=timestamp,
            )
        )
    return artifacts


class Blackboard:
    """Holds a :class:`BlackboardState` and exposes the only operations allowed to mutate it."""

    def __init__(self, state: BlackboardState, *, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> None:
        self._state = state
        self._chars_per_token = chars_per_token
        self._artifact_ids = {artifact.id for artifact in state.artifacts}
        self._recorded: set[str] = set()

    @classmethod
    def create(
        cls,
        *,
        trace_id: str,
        route_kind: str,
        user_text: str,
        graph: AgentGraph,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    ) -> "Blackboard":
        now = utcnow()
        state = BlackboardState(
            trace_id=trace_id,
            route_kind=route_kind,
            user_text=user_text,
            created_at=now,
            updated_at=now,
            graph=graph,
            tasks={node.id: TaskSnapshot() for node in graph.nodes},
        )
        return cls(state, chars_per_token=chars_per_token)

    @property
    def state(self) -> BlackboardState:
        return self._state

    def snapshot(self) -> BlackboardState:
        return self._state.model_copy(deep=True)

    def _touch(self, when: datetime | None = None) -> None:
        self._state.updated_at = when or utcnow()

    def mark_task_started(self, task_id: str, *, started_at: datetime | None = None) -> None:
        task = self._state.tasks.get(task_id)
        if task is None:
            logger.warning("blackboard_unknown_task", trace_id=self._state.trace_id, task_id=task_id)
            return
        when = started_at or utcnow()
        task.status = TaskStatus.RUNNING
        task.started_at = when
        task.attempts += 1
        self._touch(when)

    def append_artifacts(self, artifacts: Iterable[BlackboardArtifact]) -> list[BlackboardArtifact]:
        """Insert artifacts not seen before; returns the ones actually stored."""
        added: list[BlackboardArtifact] = []
        for artifact in artifacts:
            if artifact.id in self._artifact_ids:
                continue
            stored = artifact.model_copy(update={"confidence": clamp_confidence(artifact.confidence)})
            self._state.artifacts.append(stored)
            self._state.counters.total_estimated_tokens += estimate_tokens(
                stored.content, chars_per_token=self._chars_per_token
            )
            self._artifact_ids.add(stored.id)
            added.append(stored)
        self._touch()
        return added

    def record_task_result(self, result: TaskResult) -> list[BlackboardArtifact]:
        task = self._state.tasks.get(result.task_id)
        if task is None:
            logger.warning("blackboard_unknown_task", trace_id=self._state.trace_id, task_id=result.task_id)
            return []
        if result.task_id in self._recorded:
            logger.warning("blackboard_duplicate_result", trace_id=self._state.trace_id, task_id=result.task_id)
            return []
        if not result.status.is_terminal:
            raise ValueError(f"Task result for {result.task_id} must be terminal, got {result.status.value}")

        task.status = result.status
        task.finished_at = result.finished_at
        task.error = result.error
        if result.status.is_success:
            self._state.counters.completed_tasks += 1
        else:
            self._state.counters.failed_tasks += 1
        self._recorded.add(result.task_id)

        added = self.append_artifacts(result.artifacts)
        self._touch(result.finished_at)
        return added

    def add_unresolved_question(self, question: str) -> bool:
        trimmed = (question or "").strip()
        if not trimmed or trimmed in self._state.unresolved_questions:
            return False
        self._state.unresolved_questions.append(trimmed)
        self._touch()
        return True

    def render_context(self) -> str:
        blocks = [f"[{artifact.label}] {artifact.content}" for artifact in self._state.artifacts if artifact.content]
        return "\n\n".join(blocks)

    def has_result(self, task_id: str) -> bool:
        return task_id in self._recorded

    @property
    def recorded_results(self) -> int:
        return len(self._recorded)


__all__ = ["Blackboard", "clamp_confidence", "packets_to_artifacts"]
