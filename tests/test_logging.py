from __future__ import annotations

import structlog

from turnpilot.core.logging import turn_log_context


def test_turn_context_is_bound_and_released() -> None:
    structlog.contextvars.clear_contextvars()

    with turn_log_context(trace_id="trace-log", route="chat", guild_id="g1", channel_id=None) as bound:
        assert bound == {"trace_id": "trace-log", "route": "chat", "guild_id": "g1"}
        assert structlog.contextvars.get_contextvars() == bound

    assert structlog.contextvars.get_contextvars() == {}


def test_nested_turn_context_restores_outer_values() -> None:
    structlog.contextvars.clear_contextvars()

    with turn_log_context(trace_id="outer", route="chat"):
        with turn_log_context(trace_id="inner", route="search"):
            assert structlog.contextvars.get_contextvars()["trace_id"] == "inner"
        assert structlog.contextvars.get_contextvars() == {"trace_id": "outer", "route": "chat"}
