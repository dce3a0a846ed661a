"""Tolerant decoder for chat-completion Server-Sent-Events streams.

The decoder works on already-split text lines so that it can be driven by
``httpx.Response.iter_lines()`` in production and by plain lists in tests.

Tolerance policy: an event whose payload is not a JSON object, or whose delta
has the wrong shape, is skipped and decoding continues with the next line, so
one corrupted event never loses the rest of the stream. Only the callback may
abort decoding, by raising.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from agentcli.llm.models import ASSISTANT, FunctionCall, Message, ToolCall

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]

DATA_PREFIX = "data:"
DONE_TOKEN = "[DONE]"


@dataclass(slots=True)
class StreamDelta:
    """One decoded incremental fragment of model output."""

    role: str | None = None
    content: str = ""
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    finish_reason: str | None = None


@dataclass(slots=True)
class _ToolCallFragment:
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)


class StreamAccumulator:
    """Collects deltas into full text and merged tool calls."""

    def __init__(self) -> None:
        self.role = ASSISTANT
        self.finish_reason: str | None = None
        self._parts: list[str] = []
        self._tool_calls: dict[int, _ToolCallFragment] = {}

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def add(self, delta: StreamDelta) -> None:
        if delta.role:
            self.role = delta.role
        if delta.content:
            self._parts.append(delta.content)
        if delta.finish_reason:
            self.finish_reason = delta.finish_reason
        for raw_call in delta.tool_calls:
            self._merge_tool_call(raw_call)

    def _merge_tool_call(self, raw_call: dict[str, Any]) -> None:
        index = raw_call.get("index")
        if not isinstance(index, int):
            index = len(self._tool_calls)
        fragment = self._tool_calls.setdefault(index, _ToolCallFragment())
        if raw_call.get("id"):
            fragment.id = str(raw_call["id"])
        function = raw_call.get("function") or {}
        if function.get("name"):
            fragment.name += str(function["name"])
        if function.get("arguments"):
            fragment.arguments.append(str(function["arguments"]))

    def to_message(self) -> Message:
        tool_calls = [
            ToolCall(
                id=fragment.id,
                function=FunctionCall(name=fragment.name, arguments="".join(fragment.arguments)),
            )
            for _, fragment in sorted(self._tool_calls.items())
        ]
        return Message(
            role=self.role,
            content=self.text if self.text or not tool_calls else None,
            tool_calls=tool_calls,
        )


def parse_event_data(data: str) -> StreamDelta | None:
    """Decode one ``data:`` payload; return ``None`` for undecodable events."""

    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return StreamDelta()

    choice = choices[0]
    delta = choice.get("delta") or {}
    if not isinstance(delta, dict):
        return None
    role = delta.get("role")
    finish_reason = choice.get("finish_reason")
    if not _optional_str(role) or not _optional_str(finish_reason):
        return None
    raw_calls = delta.get("tool_calls") or []
    if not _valid_tool_calls(raw_calls):
        return None
    content = delta.get("content")
    return StreamDelta(
        role=role,
        content=content if isinstance(content, str) else "",
        tool_calls=raw_calls,
        finish_reason=finish_reason,
    )


def _optional_str(value: Any) -> bool:
    return value is None or isinstance(value, str)


def _valid_tool_calls(raw_calls: Any) -> bool:
    if not isinstance(raw_calls, list):
        return False
    for call in raw_calls:
        if not isinstance(call, dict):
            return False
        function = call.get("function")
        if function is not None and not isinstance(function, dict):
            return False
    return True


def iter_stream_events(lines: Iterable[str]) -> Iterator[StreamDelta]:
    """Yield decoded deltas in wire order until the ``[DONE]`` token."""

    for raw_line in lines:
        line = raw_line.strip()
        if not line or not line.startswith(DATA_PREFIX):
            continue
        data = line[len(DATA_PREFIX) :].strip()
        if data == DONE_TOKEN:
            return
        delta = parse_event_data(data)
        if delta is None:
            logger.debug("Skipping undecodable stream event: %.200s", data)
            continue
        yield delta


def consume_event_stream(
    lines: Iterable[str],
    accumulator: StreamAccumulator,
    on_chunk: ChunkCallback | None = None,
) -> StreamAccumulator:
    """Feed stream lines into ``accumulator``, invoking ``on_chunk`` per content fragment."""

    for delta in iter_stream_events(lines):
        accumulator.add(delta)
        if delta.content and on_chunk is not None:
            on_chunk(delta.content)
    return accumulator
