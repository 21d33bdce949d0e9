"""Canary admission gate for the graph pipeline with a rolling error budget."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Iterable

from ..core.config import CanarySettings
from ..core.logging import get_logger
from ..core.metrics import record_canary_decision, record_canary_window
from ..schemas.canary import CanaryDecision, CanaryOutcome, CanarySnapshot
from ..schemas.graph import utcnow
from .canary_store import CanaryStateStore, CanaryWindowState, InMemoryCanaryStateStore
from .enums import CanaryFailureCode, CanaryReason

logger = get_logger(name=__name__)

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193


def fnv1a32(value: str) -> int:
    digest = FNV_OFFSET_BASIS
    for char in value:
        digest ^= ord(char)
        digest = (digest * FNV_PRIME) & 0xFFFFFFFF
    return digest


def sample_bucket(trace_id: str) -> float:
    """Deterministic bucket in [0, 100) with two decimals of resolution."""
    return (fnv1a32(trace_id) % 10_000) / 100


def normalize_reason_codes(codes: Iterable[str] | None) -> list[str]:
    allowed = {code.value for code in CanaryFailureCode}
    normalized: list[str] = []
    for code in codes or []:
        value = str(getattr(code, "value", code)).strip().lower()
        if value in allowed and value not in normalized:
            normalized.append(value)
    return normalized


class CanaryController:
    """Process-wide gate; state lives behind an injectable store."""

    def __init__(
        self,
        settings: CanarySettings,
        *,
        durable_store: CanaryStateStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._memory = InMemoryCanaryStateStore()
        self._durable = durable_store if settings.persistence_enabled else None
        self._clock = clock
        self._initialized = False
        self._persistence_mode = "memory"
        self._degraded = False
        self._last_error: str | None = None
        self._degraded_logged = False

    @property
    def settings(self) -> CanarySettings:
        return self._settings

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        if self._durable is None:
            return
        try:
            persisted = await self._durable.get()
        except Exception as exc:
            self._degrade(exc)
            return
        if persisted is not None:
            trimmed = persisted.outcomes[-self._settings.window_size :]
            await self._memory.replace(CanaryWindowState(outcomes=trimmed, cooldown_until=persisted.cooldown_until))
        self._persistence_mode = "db"

    def _degrade(self, exc: BaseException) -> None:
        self._persistence_mode = "memory"
        self._degraded = True
        self._last_error = str(exc) or type(exc).__name__
        if not self._degraded_logged:
            logger.warning("canary_persistence_degraded", error=self._last_error)
            self._degraded_logged = True

    async def evaluate(self, *, trace_id: str, route: str, now: datetime | None = None) -> CanaryDecision:
        await self._ensure_initialized()
        moment = now or self._clock()
        route_kind = (route or "").strip().lower()
        decision = await self._decide(trace_id, route_kind, moment)
        record_canary_decision(route=route_kind, reason=decision.reason.value)
        logger.debug(
            "canary_decision",
            trace_id=trace_id,
            route=route_kind,
            allowed=decision.allowed,
            reason=decision.reason.value,
            sample=decision.sample_percent,
        )
        return decision

    async def _decide(self, trace_id: str, route_kind: str, moment: datetime) -> CanaryDecision:
        if not self._settings.enabled:
            return CanaryDecision(allowed=True, reason=CanaryReason.DISABLED)
        allowlist = self._settings.allowed_routes
        if allowlist and route_kind not in allowlist:
            return CanaryDecision(allowed=False, reason=CanaryReason.ROUTE_NOT_ALLOWLISTED)
        state = await self._memory.get()
        if state.cooldown_until is not None and moment < state.cooldown_until:
            return CanaryDecision(allowed=False, reason=CanaryReason.ERROR_BUDGET_COOLDOWN)
        bucket = sample_bucket(trace_id)
        if bucket >= self._settings.rollout_percent:
            return CanaryDecision(allowed=False, reason=CanaryReason.OUT_OF_ROLLOUT_SAMPLE, sample_percent=bucket)
        return CanaryDecision(allowed=True, reason=CanaryReason.ALLOWED, sample_percent=bucket)

    async def record_outcome(
        self,
        *,
        success: bool,
        reason_codes: Iterable[str] | None = None,
        now: datetime | None = None,
    ) -> CanarySnapshot:
        await self._ensure_initialized()
        moment = now or self._clock()
        outcome = CanaryOutcome(
            success=success,
            reason_codes=[] if success else normalize_reason_codes(reason_codes),
            timestamp=moment,
        )
        window_size = self._settings.window_size
        current = await self._memory.get()
        prospective = [*current.outcomes, outcome][-window_size:]
        failures = sum(1 for item in prospective if not item.success)
        failure_rate = failures / len(prospective)

        cooldown_until: datetime | None = None
        if len(prospective) >= self._settings.min_samples and failure_rate >= self._settings.max_failure_rate:
            cooldown_until = moment + timedelta(seconds=self._settings.cooldown_seconds)

        was_tripped = current.cooldown_until is not None and moment < current.cooldown_until
        state = await self._memory.append(outcome, window_size=window_size, cooldown_until=cooldown_until)
        tripped_now = state.cooldown_until is not None and moment < state.cooldown_until
        record_canary_window(failure_rate=failure_rate, tripped=tripped_now and not was_tripped)
        if tripped_now and not was_tripped:
            logger.warning(
                "canary_error_budget_tripped",
                failure_rate=round(failure_rate, 4),
                samples=len(state.outcomes),
                cooldown_until=state.cooldown_until.isoformat() if state.cooldown_until else None,
            )

        if self._durable is not None and self._persistence_mode == "db":
            try:
                await self._durable.append(outcome, window_size=window_size, cooldown_until=cooldown_until)
            except Exception as exc:
                self._degrade(exc)
        return self._build_snapshot(state, moment)

    async def snapshot(self, *, now: datetime | None = None) -> CanarySnapshot:
        await self._ensure_initialized()
        state = await self._memory.get()
        return self._build_snapshot(state, now or self._clock())

    def _build_snapshot(self, state: CanaryWindowState, moment: datetime) -> CanarySnapshot:
        total = len(state.outcomes)
        failures = [item for item in state.outcomes if not item.success]
        reason_counts: Counter[str] = Counter({code.value: 0 for code in CanaryFailureCode})
        for item in failures:
            reason_counts.update(item.reason_codes)
        return CanarySnapshot(
            total_samples=total,
            total_failures=len(failures),
            failure_rate=(len(failures) / total) if total else 0.0,
            cooldown_until=state.cooldown_until,
            tripped=state.cooldown_until is not None and moment < state.cooldown_until,
            recent_failure_reason_counts=dict(reason_counts),
            latest_outcome=state.outcomes[-1] if state.outcomes else None,
            persistence_mode=self._persistence_mode,
            degraded_mode=self._degraded,
            last_persistence_error=self._last_error,
        )

    async def reset(self) -> None:
        if self._durable is not None:
            try:
                await self._durable.reset()
            except Exception as exc:
                logger.warning("canary_persistence_reset_failed", error=str(exc))
        await self._memory.reset()
        self._initialized = False
        self._persistence_mode = "memory"
        self._degraded = False
        self._last_error = None
        self._degraded_logged = False


__all__ = ["CanaryController", "fnv1a32", "normalize_reason_codes", "sample_bucket"]
