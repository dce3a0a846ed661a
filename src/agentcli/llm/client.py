"""HTTP client for OpenAI-compatible chat-completion backends."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from typing import Any

import httpx

from agentcli.errors import AgentError
from agentcli.llm.models import ChatResponse, Message, ToolDefinition, Usage
from agentcli.llm.stream import ChunkCallback, StreamAccumulator, consume_event_stream

logger = logging.getLogger(__name__)


class TransportError(AgentError):
    """Fatal failure talking to the chat-completion backend."""


class TransportRequestError(TransportError):
    """Network-level failure (connect, read, timeout)."""


class TransportStatusError(TransportError):
    """Backend answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"API request failed (status {status_code}): {body}")
        self.status_code = status_code
        self.body = body


class TransportDecodeError(TransportError):
    """Backend response could not be decoded."""


class LlmClient:
    """Chat-completion client for blocking and streamed requests."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        timeout_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._client = httpx.Client(
            timeout=self._timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @property
    def completions_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    def build_payload(
        self,
        messages: Iterable[Message],
        *,
        tools: Sequence[ToolDefinition] | None = None,
        tool_choice: str | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_payload() for message in messages],
        }
        if tools:
            payload["tools"] = [tool.to_payload() for tool in tools]
            if tool_choice:
                payload["tool_choice"] = tool_choice
        if stream:
            payload["stream"] = True
        return payload

    def chat(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[ToolDefinition] | None = None,
        tool_choice: str | None = None,
    ) -> ChatResponse:
        """Send one non-streaming chat request and return the first choice."""

        payload = self.build_payload(messages, tools=tools, tool_choice=tool_choice)
        logger.debug(
            "POST %s model=%s messages=%d",
            self.completions_url,
            self.model,
            len(messages),
        )
        try:
            response = self._client.post(self.completions_url, json=payload)
        except httpx.HTTPError as error:
            raise TransportRequestError(
                f"Request to {self.completions_url} failed: {error}",
            ) from error

        if not response.is_success:
            raise TransportStatusError(response.status_code, response.text)
        return parse_chat_response(response.text)

    def simple_query(self, prompt: str) -> str:
        """Ask a single user prompt and return the answer text."""

        response = self.chat([Message(role="user", content=prompt)])
        return response.message.text

    def chat_stream(
        self,
        messages: Sequence[Message],
        on_chunk: ChunkCallback | None = None,
        *,
        tools: Sequence[ToolDefinition] | None = None,
        tool_choice: str | None = None,
    ) -> str:
        """Stream a chat completion and return the accumulated text.

        ``on_chunk`` receives every non-empty content fragment in arrival order.
        An exception raised by the callback stops reading and propagates as is.
        """

        return self.chat_stream_message(
            messages,
            on_chunk,
            tools=tools,
            tool_choice=tool_choice,
        ).text

    def chat_stream_message(
        self,
        messages: Sequence[Message],
        on_chunk: ChunkCallback | None = None,
        *,
        tools: Sequence[ToolDefinition] | None = None,
        tool_choice: str | None = None,
    ) -> Message:
        """Stream a chat completion and return the merged assistant message."""

        payload = self.build_payload(messages, tools=tools, tool_choice=tool_choice, stream=True)
        # Streams may run far longer than a regular request; only connect is bounded.
        stream_timeout = httpx.Timeout(None, connect=self._timeout.connect)
        accumulator = StreamAccumulator()
        logger.debug("POST %s (stream) model=%s", self.completions_url, self.model)
        try:
            with self._client.stream(
                "POST",
                self.completions_url,
                json=payload,
                headers={"Accept": "text/event-stream"},
                timeout=stream_timeout,
            ) as response:
                if not response.is_success:
                    response.read()
                    raise TransportStatusError(response.status_code, response.text)
                consume_event_stream(response.iter_lines(), accumulator, on_chunk)
        except httpx.HTTPError as error:
            raise TransportRequestError(f"Failed to read stream: {error}") from error
        return accumulator.to_message()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> LlmClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def parse_chat_response(body: str) -> ChatResponse:
    """Decode a non-streaming chat-completion body."""

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as error:
        raise TransportDecodeError(f"Failed to parse response: {error}\nBody: {body}") from error
    if not isinstance(payload, dict):
        raise TransportDecodeError(f"Expected JSON object in response, got: {body}")

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise TransportDecodeError("Response contains no choices")
    first = choices[0]
    if not isinstance(first, dict) or not isinstance(first.get("message"), dict):
        raise TransportDecodeError("Response choice has no message")

    raw_usage = payload.get("usage") or {}
    try:
        return ChatResponse(
            message=Message.from_payload(first["message"]),
            finish_reason=first.get("finish_reason"),
            response_id=str(payload.get("id") or ""),
            model=str(payload.get("model") or ""),
            usage=Usage(
                prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
                completion_tokens=int(raw_usage.get("completion_tokens") or 0),
                total_tokens=int(raw_usage.get("total_tokens") or 0),
            ),
        )
    except (AttributeError, TypeError, ValueError) as error:
        raise TransportDecodeError(f"Malformed response payload: {error}") from error
