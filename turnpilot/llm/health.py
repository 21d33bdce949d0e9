from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterable

from ..core.logging import get_logger
from ..core.metrics import record_model_health

logger = get_logger(name=__name__)

DEFAULT_HEALTH_SCORE = 0.5
ALPHA = 0.2


def normalize_model_id(model: str | None) -> str:
    return (model or "").strip().lower()


def score_outcome(success: bool, latency_ms: float | None = None) -> float:
    if not success:
        return 0.0
    if latency_ms is None or latency_ms <= 0:
        return 1.0
    if latency_ms <= 30_000:
        return 1.0
    if latency_ms <= 60_000:
        return 0.9
    if latency_ms <= 120_000:
        return 0.75
    return 0.6


@dataclass(slots=True)
class HealthEntry:
    score: float
    samples: int
    updated_at: float


class ModelHealthTracker:
    """Exponentially weighted per-model reliability score in [0, 1]."""

    def __init__(self, *, alpha: float = ALPHA, default_score: float = DEFAULT_HEALTH_SCORE) -> None:
        self._alpha = alpha
        self._default = default_score
        self._entries: dict[str, HealthEntry] = {}

    def record_outcome(self, model: str, *, success: bool, latency_ms: float | None = None) -> float | None:
        model_id = normalize_model_id(model)
        if not model_id:
            return None
        outcome = score_outcome(success, latency_ms)
        entry = self._entries.get(model_id)
        now = time.time()
        if entry is None:
            entry = HealthEntry(score=outcome, samples=1, updated_at=now)
            self._entries[model_id] = entry
        else:
            entry.score = entry.score * (1 - self._alpha) + outcome * self._alpha
            entry.samples += 1
            entry.updated_at = now
        record_model_health(model=model_id, score=entry.score)
        logger.debug("model_health_recorded", model=model_id, success=success, score=round(entry.score, 4))
        return entry.score

    def get_health_score(self, model: str) -> float:
        entry = self._entries.get(normalize_model_id(model))
        return entry.score if entry is not None else self._default

    def get_health_scores(self, models: Iterable[str]) -> dict[str, float]:
        return {normalize_model_id(model): self.get_health_score(model) for model in models if normalize_model_id(model)}

    def snapshot(self, models: Iterable[str] | None = None) -> dict[str, dict[str, float | int]]:
        ids = [normalize_model_id(model) for model in models] if models else list(self._entries)
        result: dict[str, dict[str, float | int]] = {}
        for model_id in dict.fromkeys(filter(None, ids)):
            entry = self._entries.get(model_id)
            if entry is None:
                result[model_id] = {"score": self._default, "samples": 0, "updated_at": 0.0}
            else:
                result[model_id] = {"score": entry.score, "samples": entry.samples, "updated_at": entry.updated_at}
        return result

    def reset(self) -> None:
        self._entries.clear()
