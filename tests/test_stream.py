from __future__ import annotations

import json

import allure
import httpx
import pytest

from agentcli.llm.client import LlmClient, TransportStatusError
from agentcli.llm.models import USER, Message
from agentcli.llm.stream import StreamAccumulator, consume_event_stream, iter_stream_events

pytestmark = [
    allure.epic("LLM Transport"),
    allure.feature("Streaming"),
]


def _content_event(text: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]})


def _sse(*lines: str) -> bytes:
    return ("\n\n".join(lines) + "\n\n").encode()


def _client(handler) -> LlmClient:
    return LlmClient(
        api_key="test-key",
        base_url="https://llm.test/v1",
        model="test-model",
        transport=httpx.MockTransport(handler),
    )


def _stream_handler(body: bytes, captured: list[httpx.Request] | None = None, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(request)
        return httpx.Response(
            status,
            content=body,
            headers={"content-type": "text/event-stream"},
        )

    return handler


def test_stream_accumulates_text_and_calls_back_in_order() -> None:
    captured: list[httpx.Request] = []
    body = _sse(_content_event("ab"), _content_event("cd"), "data: [DONE]")
    chunks: list[str] = []

    with _client(_stream_handler(body, captured)) as client:
        text = client.chat_stream([Message(role=USER, content="hi")], chunks.append)

    assert text == "abcd"
    assert chunks == ["ab", "cd"]
    request = captured[0]
    assert request.url == "https://llm.test/v1/chat/completions"
    assert request.headers["Accept"] == "text/event-stream"
    assert request.headers["Authorization"] == "Bearer test-key"
    payload = json.loads(request.content)
    assert payload["stream"] is True
    assert payload["model"] == "test-model"


def test_invalid_event_between_valid_deltas_is_skipped() -> None:
    body = _sse(_content_event("ab"), "data: {not json", _content_event("cd"), "data: [DONE]")
    chunks: list[str] = []

    with _client(_stream_handler(body)) as client:
        text = client.chat_stream([Message(role=USER, content="hi")], chunks.append)

    assert text == "abcd"
    assert chunks == ["ab", "cd"]


@pytest.mark.parametrize(
    "malformed",
    [
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": "oops"}]}}]},
        {"choices": [{"delta": {"tool_calls": 5}}]},
        {"choices": [{"delta": {"tool_calls": ["not a call"]}}]},
        {"choices": [{"delta": {"role": 7, "content": "zz"}}]},
        {"choices": [{"delta": {"content": "zz"}, "finish_reason": ["stop"]}]},
    ],
)
def test_badly_shaped_delta_between_valid_deltas_is_skipped(malformed: dict) -> None:
    lines = [_content_event("ab"), "data: " + json.dumps(malformed), _content_event("cd")]
    chunks: list[str] = []

    accumulator = consume_event_stream([*lines, "data: [DONE]"], StreamAccumulator(), chunks.append)

    assert accumulator.text == "abcd"
    assert chunks == ["ab", "cd"]
    assert accumulator.to_message().tool_calls == []


def test_error_status_raises_with_body() -> None:
    body = b'{"error": {"message": "rate limited"}}'

    with _client(_stream_handler(body, status=429)) as client:
        with pytest.raises(TransportStatusError, match="rate limited") as excinfo:
            client.chat_stream([Message(role=USER, content="hi")])

    assert excinfo.value.status_code == 429


def test_callback_error_stops_reading_and_propagates() -> None:
    body = _sse(_content_event("ab"), _content_event("cd"), "data: [DONE]")
    seen: list[str] = []

    def on_chunk(text: str) -> None:
        seen.append(text)
        raise KeyError("consumer gone")

    with _client(_stream_handler(body)) as client:
        with pytest.raises(KeyError, match="consumer gone"):
            client.chat_stream([Message(role=USER, content="hi")], on_chunk)

    assert seen == ["ab"]


def test_stream_message_merges_tool_call_fragments() -> None:
    first = {
        "choices": [
            {
                "delta": {
                    "role": "assistant",
                    "tool_calls": [
                        {
                            "index": 0,
                            "id": "call-1",
                            "function": {"name": "read_file", "arguments": '{"file'},
                        },
                    ],
                },
            },
        ],
    }
    second = {
        "choices": [
            {
                "delta": {
                    "tool_calls": [{"index": 0, "function": {"arguments": 'path": "a.py"}'}}],
                },
                "finish_reason": "tool_calls",
            },
        ],
    }
    body = _sse("data: " + json.dumps(first), "data: " + json.dumps(second), "data: [DONE]")

    with _client(_stream_handler(body)) as client:
        message = client.chat_stream_message([Message(role=USER, content="read a.py")])

    assert message.content is None
    assert len(message.tool_calls) == 1
    call = message.tool_calls[0]
    assert call.id == "call-1"
    assert call.function.name == "read_file"
    assert json.loads(call.function.arguments) == {"filepath": "a.py"}


def test_event_iterator_ignores_blank_comment_and_post_done_lines() -> None:
    lines = [
        "",
        ": keep-alive",
        _content_event("x"),
        "event: ping",
        "data: [DONE]",
        _content_event("after done"),
    ]

    deltas = list(iter_stream_events(lines))

    assert [delta.content for delta in deltas] == ["x"]


def test_event_without_choices_contributes_nothing() -> None:
    accumulator = StreamAccumulator()
    lines = ['data: {"usage": {"total_tokens": 3}}', _content_event("ok")]

    consume_event_stream(lines, accumulator)

    assert accumulator.text == "ok"
