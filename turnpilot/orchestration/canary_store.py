from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Protocol

import asyncpg
from pydantic import BaseModel, Field, ValidationError

from ..core.config import Settings
from ..core.errors import CanaryStateError
from ..core.logging import get_logger
from ..schemas.canary import CanaryOutcome

logger = get_logger(name=__name__)

SCHEMA_VERSION = 1


class CanaryWindowState(BaseModel):
    outcomes: list[CanaryOutcome] = Field(default_factory=list)
    cooldown_until: datetime | None = None


def _later(current: datetime | None, candidate: datetime | None) -> datetime | None:
    if current is None:
        return candidate
    if candidate is None:
        return current
    return max(current, candidate)


def apply_append(
    state: CanaryWindowState,
    outcome: CanaryOutcome,
    *,
    window_size: int,
    cooldown_until: datetime | None,
) -> CanaryWindowState:
    outcomes = [*state.outcomes, outcome]
    if len(outcomes) > window_size:
        outcomes = outcomes[len(outcomes) - window_size :]
    return CanaryWindowState(outcomes=outcomes, cooldown_until=_later(state.cooldown_until, cooldown_until))


class CanaryStateStore(Protocol):
    persistence_mode: str

    async def get(self) -> CanaryWindowState | None:  # pragma: no cover - protocol
        ...

    async def append(
        self,
        outcome: CanaryOutcome,
        *,
        window_size: int,
        cooldown_until: datetime | None = None,
    ) -> CanaryWindowState:  # pragma: no cover - protocol
        ...

    async def reset(self) -> None:  # pragma: no cover - protocol
        ...


class InMemoryCanaryStateStore:
    persistence_mode = "memory"

    def __init__(self, initial: CanaryWindowState | None = None) -> None:
        self._state = initial.model_copy(deep=True) if initial is not None else CanaryWindowState()

    async def get(self) -> CanaryWindowState:
        return self._state.model_copy(deep=True)

    async def append(
        self,
        outcome: CanaryOutcome,
        *,
        window_size: int,
        cooldown_until: datetime | None = None,
    ) -> CanaryWindowState:
        self._state = apply_append(self._state, outcome, window_size=window_size, cooldown_until=cooldown_until)
        return self._state.model_copy(deep=True)

    async def replace(self, state: CanaryWindowState) -> None:
        self._state = state.model_copy(deep=True)

    async def reset(self) -> None:
        self._state = CanaryWindowState()


def decode_payload(payload: Any, cooldown_until: datetime | None) -> CanaryWindowState | None:
    """Parse a persisted row; anything unrecognised is treated as absent state."""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("canary_state_payload_unreadable")
            return None
    if not isinstance(payload, dict) or payload.get("schema_version") != SCHEMA_VERSION:
        found = payload.get("schema_version") if isinstance(payload, dict) else type(payload).__name__
        logger.warning("canary_state_schema_mismatch", found=found)
        return None
    try:
        outcomes = [CanaryOutcome.model_validate(item) for item in payload.get("outcomes", [])]
    except (ValidationError, TypeError) as exc:
        logger.warning("canary_state_schema_mismatch", error=str(exc))
        return None
    return CanaryWindowState(outcomes=outcomes, cooldown_until=cooldown_until)


def encode_payload(state: CanaryWindowState) -> str:
    return json.dumps(
        {
            "schema_version": SCHEMA_VERSION,
            "outcomes": [outcome.model_dump(mode="json") for outcome in state.outcomes],
        }
    )


class PostgresCanaryStateStore:
    """Durable rolling window shared by every instance using the same key."""

    persistence_mode = "db"

    _CREATE = """
        CREATE TABLE IF NOT EXISTS canary_state(
            state_key TEXT PRIMARY KEY,
            payload JSONB NOT NULL,
            cooldown_until TIMESTAMPTZ NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """
    _SELECT = "SELECT payload, cooldown_until FROM canary_state WHERE state_key = $1"
    _SELECT_FOR_UPDATE = _SELECT + " FOR UPDATE"
    _UPSERT = """
        INSERT INTO canary_state(state_key, payload, cooldown_until, updated_at)
        VALUES($1, $2::jsonb, $3, now())
        ON CONFLICT (state_key) DO UPDATE
        SET payload = EXCLUDED.payload, cooldown_until = EXCLUDED.cooldown_until, updated_at = now()
    """
    _DELETE = "DELETE FROM canary_state WHERE state_key = $1"

    def __init__(self, pool: Any, *, state_key: str = "global") -> None:
        self._pool_or_factory = pool
        self._pool: asyncpg.Pool | None = None
        self._state_key = state_key
        self._schema_ready = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresCanaryStateStore":
        pool = asyncpg.create_pool(
            dsn=str(settings.postgres.dsn),
            min_size=settings.postgres.pool_min_size,
            max_size=settings.postgres.pool_max_size,
        )
        return cls(pool, state_key=settings.canary.state_key)

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool
        candidate = self._pool_or_factory
        # asyncpg pools are awaitable and awaiting an initialised pool returns it unchanged.
        if hasattr(candidate, "__await__"):
            candidate = await candidate
        if candidate is None:
            raise CanaryStateError("Invalid asyncpg pool supplied to PostgresCanaryStateStore")
        self._pool = candidate
        return self._pool

    async def _connection_ready(self, connection: Any) -> None:
        if not self._schema_ready:
            await connection.execute(self._CREATE)
            self._schema_ready = True

    async def get(self) -> CanaryWindowState | None:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as connection:
                await self._connection_ready(connection)
                row = await connection.fetchrow(self._SELECT, self._state_key)
        except CanaryStateError:
            raise
        except Exception as exc:
            raise CanaryStateError(f"canary state read failed: {exc}") from exc
        if row is None:
            return None
        return decode_payload(row["payload"], row["cooldown_until"])

    async def append(
        self,
        outcome: CanaryOutcome,
        *,
        window_size: int,
        cooldown_until: datetime | None = None,
    ) -> CanaryWindowState:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as connection:
                await self._connection_ready(connection)
                async with connection.transaction():
                    row = await connection.fetchrow(self._SELECT_FOR_UPDATE, self._state_key)
                    current = decode_payload(row["payload"], row["cooldown_until"]) if row is not None else None
                    updated = apply_append(
                        current or CanaryWindowState(),
                        outcome,
                        window_size=window_size,
                        cooldown_until=cooldown_until,
                    )
                    await connection.execute(
                        self._UPSERT, self._state_key, encode_payload(updated), updated.cooldown_until
                    )
        except CanaryStateError:
            raise
        except Exception as exc:
            raise CanaryStateError(f"canary state write failed: {exc}") from exc
        return updated

    async def reset(self) -> None:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as connection:
                await self._connection_ready(connection)
                await connection.execute(self._DELETE, self._state_key)
        except CanaryStateError:
            raise
        except Exception as exc:
            raise CanaryStateError(f"canary state reset failed: {exc}") from exc

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["PostgresCanaryStateStore"]:
        try:
            await self._ensure_pool()
            yield self
        finally:
            await self.close()


__all__ = [
    "CanaryStateStore",
    "CanaryWindowState",
    "InMemoryCanaryStateStore",
    "PostgresCanaryStateStore",
    "apply_append",
    "decode_payload",
    "encode_payload",
]
