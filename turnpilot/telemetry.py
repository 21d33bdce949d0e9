from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel

from .core.logging import get_logger
from .core.metrics import increment_telemetry_failure

logger = get_logger(name=__name__)


class TelemetrySink(Protocol):
    async def write(self, kind: str, trace_id: str, payload: dict[str, Any]) -> None:  # pragma: no cover - protocol
        ...


class LoggingTelemetrySink:
    """Writes telemetry payloads to the structured log."""

    async def write(self, kind: str, trace_id: str, payload: dict[str, Any]) -> None:
        logger.info("telemetry_payload", kind=kind, trace_id=trace_id, payload=payload)


class InMemoryTelemetrySink:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    async def write(self, kind: str, trace_id: str, payload: dict[str, Any]) -> None:
        self.records.append((kind, trace_id, payload))

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [payload for recorded, _, payload in self.records if recorded == kind]


def serialize(payload: BaseModel | dict[str, Any] | list[Any]) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, list):
        return {"items": [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in payload]}
    return dict(payload)


async def emit(sink: TelemetrySink | None, kind: str, trace_id: str, payload: BaseModel | dict[str, Any] | list[Any]) -> bool:
    """Best-effort delivery; failures are logged and counted, never raised."""
    if sink is None:
        return False
    try:
        await sink.write(kind, trace_id, serialize(payload))
    except Exception as exc:
        increment_telemetry_failure(kind=kind)
        logger.warning("telemetry_write_failed", kind=kind, trace_id=trace_id, error=str(exc))
        return False
    return True


__all__ = ["InMemoryTelemetrySink", "LoggingTelemetrySink", "TelemetrySink", "emit", "serialize"]
