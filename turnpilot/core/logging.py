from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, MutableMapping

import structlog

SERVICE_NAME = "turnpilot"


def _add_service(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(level: str = "INFO", *, json_output: bool = True) -> None:
    """Configure structlog on top of stdlib logging.

    Turn context bound with :func:`turn_log_context` is merged into every event,
    so per-node and per-model log lines can be joined back to their trace.
    """
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def turn_log_context(
    *,
    trace_id: str,
    route: str,
    guild_id: str | None = None,
    channel_id: str | None = None,
) -> Iterator[dict[str, Any]]:
    context = {"trace_id": trace_id, "route": route, "guild_id": guild_id, "channel_id": channel_id}
    bound = {key: value for key, value in context.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield bound


def get_logger(*, name: str | None = None, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    if kwargs:
        return logger.bind(**kwargs)
    return logger


__all__ = ["configure_logging", "get_logger", "turn_log_context"]
