"""Chat-completion transport."""

from agentcli.llm.client import (
    LlmClient,
    TransportDecodeError,
    TransportError,
    TransportRequestError,
    TransportStatusError,
)
from agentcli.llm.models import ChatResponse, FunctionCall, Message, ToolCall, ToolDefinition

__all__ = [
    "ChatResponse",
    "FunctionCall",
    "LlmClient",
    "Message",
    "ToolCall",
    "ToolDefinition",
    "TransportDecodeError",
    "TransportError",
    "TransportRequestError",
    "TransportStatusError",
]
