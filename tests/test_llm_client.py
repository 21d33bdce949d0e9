from __future__ import annotations

from typing import Any

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from turnpilot.llm.client import LangChainChatClient, extract_content, to_langchain_messages
from turnpilot.schemas.turn import TurnMessage


class _FakeChatModel:
    def __init__(self, name: str, *, failures: int = 0) -> None:
        self.name = name
        self.failures = failures
        self.bound: dict[str, Any] = {}
        self.invocations = 0

    def bind(self, **options: Any) -> "_FakeChatModel":
        self.bound = options
        return self

    async def ainvoke(self, messages: list[Any]) -> AIMessage:
        self.invocations += 1
        if self.invocations <= self.failures:
            raise ConnectionError("transient")
        return AIMessage(content=[{"type": "text", "text": f"{self.name} says hi"}])


def test_history_is_converted_to_langchain_messages() -> None:
    history = [
        TurnMessage(role="system", content="rules"),
        TurnMessage(role="user", content="hi"),
        TurnMessage(role="assistant", content="hello"),
    ]

    converted = to_langchain_messages(history)

    assert [type(message) for message in converted] == [SystemMessage, HumanMessage, AIMessage]


def test_extract_content_flattens_parts() -> None:
    assert extract_content(AIMessage(content="plain")) == "plain"
    assert extract_content(AIMessage(content=[{"text": "a"}, "b", {"type": "image"}])) == "a b"


@pytest.mark.asyncio
async def test_client_binds_options_and_caches_models() -> None:
    created: list[_FakeChatModel] = []

    def factory(name: str) -> _FakeChatModel:
        model = _FakeChatModel(name)
        created.append(model)
        return model

    client = LangChainChatClient(factory)
    response = await client.chat(
        [HumanMessage(content="hi")],
        model="kimi",
        temperature=0.3,
        timeout=5,
        api_key="secret",
        response_format={"type": "json_object"},
    )
    await client.chat([HumanMessage(content="again")], model="kimi", temperature=0.3, timeout=5)

    assert response.content == "kimi says hi"
    assert response.model == "kimi"
    assert len(created) == 1
    assert created[0].bound == {"temperature": 0.3}


@pytest.mark.asyncio
async def test_client_retries_transient_errors() -> None:
    model = _FakeChatModel("openai-fast", failures=1)
    client = LangChainChatClient(lambda name: model, max_attempts=2)

    response = await client.chat([HumanMessage(content="hi")], model="openai-fast", temperature=0.7, timeout=5)

    assert response.content == "openai-fast says hi"
    assert model.invocations == 2
