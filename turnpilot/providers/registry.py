"""Provider registry mapping each closed provider variant to its handler."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol, Sequence, Union

from pydantic import BaseModel, Field

from ..core.errors import InvalidProviderResultError, ProviderNotRegisteredError
from ..core.logging import get_logger
from ..orchestration.enums import ProviderName

logger = get_logger(name=__name__)


class ProviderPacket(BaseModel):
    """Bounded context produced by one provider call."""

    name: ProviderName
    content: str = ""
    data: dict[str, Any] | None = Field(default=None, description="Structured copy kept for traces.")
    token_estimate: int | None = None

    @property
    def has_error(self) -> bool:
        return isinstance(self.data, dict) and "error" in self.data


class ProviderRequest(BaseModel):
    trace_id: str
    user_id: str
    channel_id: str
    guild_id: str | None = None
    user_text: str = ""
    route_kind: str = "chat"
    objective: str = ""
    inputs: list[str] = Field(default_factory=list)
    upstream_context: str = ""


ProviderResult = Union[ProviderPacket, Sequence[ProviderPacket], None]


class ProviderHandler(Protocol):
    async def __call__(self, request: ProviderRequest) -> ProviderResult:  # pragma: no cover - protocol
        ...


def normalize_packets(result: ProviderResult, *, provider: str = "unknown") -> list[ProviderPacket]:
    """Flatten a handler result into packets; any other shape is a provider error."""
    if result is None:
        return []
    if isinstance(result, ProviderPacket):
        return [result]
    if isinstance(result, (str, bytes, Mapping)) or not isinstance(result, Iterable):
        raise InvalidProviderResultError(provider, type(result).__name__)
    packets: list[ProviderPacket] = []
    for item in result:
        if item is None:
            continue
        if not isinstance(item, ProviderPacket):
            raise InvalidProviderResultError(provider, type(item).__name__)
        packets.append(item)
    return packets


class ProviderRegistry:
    def __init__(self, handlers: Mapping[ProviderName, ProviderHandler] | None = None) -> None:
        self._handlers: dict[ProviderName, ProviderHandler] = {}
        for name, handler in (handlers or {}).items():
            self.register(name, handler)

    def register(self, name: ProviderName | str, handler: ProviderHandler) -> None:
        provider = ProviderName(name)
        self._handlers[provider] = handler
        logger.debug("provider_registered", provider=provider.value)

    def get(self, name: ProviderName | str) -> ProviderHandler | None:
        try:
            provider = ProviderName(name)
        except ValueError:
            return None
        return self._handlers.get(provider)

    def require(self, name: ProviderName | str) -> ProviderHandler:
        handler = self.get(name)
        if handler is None:
            raise ProviderNotRegisteredError(str(getattr(name, "value", name)))
        return handler

    def __contains__(self, name: object) -> bool:
        return isinstance(name, (str, ProviderName)) and self.get(name) is not None

    @property
    def names(self) -> list[ProviderName]:
        return list(self._handlers)

    def missing(self, expected: Iterable[ProviderName] | None = None) -> list[ProviderName]:
        """Return provider variants that have no handler registered."""
        variants = list(expected) if expected is not None else list(ProviderName)
        return [name for name in variants if name not in self._handlers]

    def ensure_complete(self, expected: Iterable[ProviderName] | None = None) -> None:
        missing = self.missing(expected)
        if missing:
            raise ProviderNotRegisteredError(", ".join(name.value for name in missing))


def from_callables(handlers: Mapping[str, Callable[[ProviderRequest], Awaitable[ProviderResult]]]) -> ProviderRegistry:
    return ProviderRegistry({ProviderName(name): handler for name, handler in handlers.items()})


__all__ = [
    "ProviderHandler",
    "ProviderPacket",
    "ProviderRegistry",
    "ProviderRequest",
    "ProviderResult",
    "from_callables",
    "normalize_packets",
]
