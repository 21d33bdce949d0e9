from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ..orchestration.enums import CanaryReason
from .graph import utcnow


class CanaryDecision(BaseModel):
    allowed: bool
    reason: CanaryReason
    sample_percent: float | None = None


class CanaryOutcome(BaseModel):
    success: bool
    reason_codes: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


class CanarySnapshot(BaseModel):
    total_samples: int = 0
    total_failures: int = 0
    failure_rate: float = 0.0
    cooldown_until: datetime | None = None
    tripped: bool = False
    recent_failure_reason_counts: dict[str, int] = Field(default_factory=dict)
    latest_outcome: CanaryOutcome | None = None
    persistence_mode: str = "memory"
    degraded_mode: bool = False
    last_persistence_error: str | None = None
