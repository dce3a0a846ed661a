"""Wire models for the chat-completion API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"
TOOL = "tool"


@dataclass(slots=True)
class FunctionCall:
    """Function name plus raw JSON arguments requested by the model."""

    name: str
    arguments: str = ""


@dataclass(slots=True)
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    function: FunctionCall
    type: str = "function"

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.function.name, "arguments": self.function.arguments},
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ToolCall:
        function = payload.get("function") or {}
        if not isinstance(function, dict):
            raise ValueError(
                f"tool call function must be an object, got {type(function).__name__}",
            )
        return cls(
            id=str(payload.get("id") or ""),
            type=str(payload.get("type") or "function"),
            function=FunctionCall(
                name=str(function.get("name") or ""),
                arguments=str(function.get("arguments") or ""),
            ),
        )


@dataclass(slots=True)
class Message:
    """Conversation message; content may be text or a list of content parts."""

    role: str
    content: str | list[dict[str, Any]] | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            return "".join(
                str(part.get("text", "")) for part in self.content if part.get("type") == "text"
            )
        return ""

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role}
        if self.content is not None:
            payload["content"] = self.content
        elif not self.tool_calls:
            payload["content"] = ""
        if self.tool_calls:
            payload["tool_calls"] = [call.to_payload() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Message:
        raw_calls = payload.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise ValueError(f"tool_calls must be a list, got {type(raw_calls).__name__}")
        if not all(isinstance(call, dict) for call in raw_calls):
            raise ValueError("every tool call must be an object")
        return cls(
            role=str(payload.get("role") or ASSISTANT),
            content=payload.get("content"),
            tool_calls=[ToolCall.from_payload(call) for call in raw_calls],
            tool_call_id=payload.get("tool_call_id"),
        )


@dataclass(slots=True)
class ToolDefinition:
    """Function tool declaration sent with a chat request."""

    name: str
    description: str
    parameter_names: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {name: {"type": "string"} for name in self.parameter_names},
                    "required": list(self.parameter_names),
                },
            },
        }


@dataclass(slots=True)
class Usage:
    """Token accounting reported by the backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class ChatResponse:
    """Parsed non-streaming chat-completion response."""

    message: Message
    finish_reason: str | None = None
    response_id: str = ""
    model: str = ""
    usage: Usage = field(default_factory=Usage)

    @property
    def tool_calls(self) -> list[ToolCall]:
        return self.message.tool_calls