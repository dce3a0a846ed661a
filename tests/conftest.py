"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from agentcli.config import ApiSettings, LoggingSettings, Settings
from agentcli.llm.models import (
    ASSISTANT,
    USER,
    ChatResponse,
    FunctionCall,
    Message,
    ToolCall,
)


class ScriptedTransport:
    """Chat transport replaying prepared responses and recording requests."""

    def __init__(self, responses: list[ChatResponse | Exception]) -> None:
        self.responses = list(responses)
        self.requests: list[dict] = []
        self.model = "test-model"
        self.closed = False

    def chat(self, messages, *, tools=None, tool_choice=None) -> ChatResponse:
        self.requests.append(
            {"messages": list(messages), "tools": tools, "tool_choice": tool_choice},
        )
        if not self.responses:
            raise AssertionError("unexpected chat call")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def simple_query(self, prompt: str) -> str:
        return self.chat([Message(role=USER, content=prompt)]).message.text

    def chat_stream(self, messages, on_chunk=None, **_kwargs) -> str:
        text = self.chat(messages).message.text
        if on_chunk is not None and text:
            on_chunk(text)
        return text

    def close(self) -> None:
        self.closed = True


def text_response(text: str) -> ChatResponse:
    return ChatResponse(message=Message(role=ASSISTANT, content=text), finish_reason="stop")


def tool_response(*calls: tuple[str, str, dict | str]) -> ChatResponse:
    """Build a response requesting ``(call_id, tool_name, arguments)`` calls."""

    tool_calls = [
        ToolCall(
            id=call_id,
            function=FunctionCall(
                name=name,
                arguments=arguments if isinstance(arguments, str) else json.dumps(arguments),
            ),
        )
        for call_id, name, arguments in calls
    ]
    return ChatResponse(
        message=Message(role=ASSISTANT, content=None, tool_calls=tool_calls),
        finish_reason="tool_calls",
    )


@pytest.fixture()
def scripted_transport() -> Callable[[list[ChatResponse | Exception]], ScriptedTransport]:
    return ScriptedTransport


@pytest.fixture()
def make_text_response() -> Callable[[str], ChatResponse]:
    return text_response


@pytest.fixture()
def make_tool_response() -> Callable[..., ChatResponse]:
    return tool_response


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Valid settings writing logs, history and memory under ``tmp_path``."""

    return Settings(
        api=ApiSettings(api_key="test-key", base_url="https://llm.test/v1", model="test-model"),
        logging=LoggingSettings(level="DEBUG", log_dir=tmp_path / "logs"),
        history_dir=tmp_path / "history",
        memory_dir=tmp_path / "memory",
    )
