from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from ..core.logging import get_logger
from ..schemas.turn import TurnMessage

logger = get_logger(name=__name__)


@dataclass(slots=True)
class ChatResponse:
    content: str
    model: str
    metadata: dict[str, Any] = field(default_factory=dict)


class ChatClient(Protocol):
    async def chat(
        self,
        messages: Sequence[BaseMessage],
        *,
        model: str,
        temperature: float,
        timeout: float,
        api_key: str | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> ChatResponse:  # pragma: no cover - protocol
        ...


def to_langchain_messages(history: Sequence[TurnMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in history:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def extract_content(result: Any) -> str:
    content = getattr(result, "content", result)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text", "")))
            else:
                parts.append(str(item))
        return " ".join(part for part in parts if part)
    return str(content)


class LangChainChatClient:
    """Adapts any LangChain chat model factory to :class:`ChatClient`."""

    def __init__(self, model_factory: Callable[[str], Any], *, max_attempts: int = 2) -> None:
        self._factory = model_factory
        self._cache: dict[str, Any] = {}
        self._max_attempts = max_attempts

    def _model(self, name: str) -> Any:
        cached = self._cache.get(name)
        if cached is None:
            cached = self._factory(name)
            self._cache[name] = cached
        return cached

    async def chat(
        self,
        messages: Sequence[BaseMessage],
        *,
        model: str,
        temperature: float,
        timeout: float,
        api_key: str | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> ChatResponse:
        runnable = self._model(model)
        options: dict[str, Any] = {"temperature": temperature}
        if api_key:
            options["api_key"] = api_key
        if tools:
            options["tools"] = list(tools)
        if response_format:
            options["response_format"] = response_format
        runnable = runnable.bind(**options)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_random_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception_type((asyncio.TimeoutError, ConnectionError)),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning("chat_client_retry", model=model, attempt=attempt.retry_state.attempt_number)
                result = await asyncio.wait_for(runnable.ainvoke(list(messages)), timeout=timeout)
        return ChatResponse(content=extract_content(result), model=model)


__all__ = ["ChatClient", "ChatResponse", "LangChainChatClient", "extract_content", "to_langchain_messages"]
