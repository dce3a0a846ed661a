"""Bounded tool-calling loop driving one user turn.

One turn alternates model calls and capability execution until the model
answers without requesting tools, or the iteration budget runs out.

Failure semantics: malformed arguments, unknown capabilities and capability
errors become tool-role messages for the next model call. Transport errors,
cancellation and an exhausted budget end the turn.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from agentcli.agent.context_log import ContextLog
from agentcli.errors import AgentError
from agentcli.llm.client import TransportError
from agentcli.llm.models import (
    ASSISTANT,
    SYSTEM,
    TOOL,
    USER,
    ChatResponse,
    Message,
    ToolCall,
    ToolDefinition,
)
from agentcli.tools.base import CapabilityNotFoundError, ToolRegistry

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 10
DEFAULT_PERSONA = "You are a helpful assistant."
TOOL_USAGE_POLICY = (
    "You can call the provided tools to read files, write code, describe images "
    "and run shell commands. Call a tool only when the request needs it, pass "
    "every argument as a string, and answer directly once you have what you need. "
    "If a tool reports an error, adjust the arguments or explain the problem."
)

OutputCallback = Callable[[str], None]


class ChatTransport(Protocol):
    """Anything able to answer a chat request with optional tools."""

    def chat(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[ToolDefinition] | None = None,
        tool_choice: str | None = None,
    ) -> ChatResponse:
        """Return the model response for ``messages``."""


class IterationBudgetExceededError(AgentError):
    """Model kept requesting tools for the whole iteration budget."""

    def __init__(self, iterations: int) -> None:
        super().__init__(
            f"iteration budget exceeded: no final answer after {iterations} iterations",
        )
        self.iterations = iterations


class TurnCancelledError(AgentError):
    """Turn was cancelled by the caller."""


@dataclass(slots=True)
class TurnResult:
    """Outcome of a completed turn."""

    answer: str
    iterations: int
    messages: list[Message] = field(default_factory=list)
    context: str = ""


class ToolCallingLoop:
    """Runs one turn at a time; all state lives in ``run_turn`` locals."""

    def __init__(
        self,
        *,
        transport: ChatTransport,
        registry: ToolRegistry,
        max_iterations: int = MAX_TOOL_ITERATIONS,
    ) -> None:
        self.transport = transport
        self.registry = registry
        self.max_iterations = max_iterations

    def build_messages(
        self,
        user_input: str,
        *,
        persona: str = "",
        analysis: str = "",
        context: str = "",
        history: Sequence[Message] = (),
    ) -> list[Message]:
        system_prompt = f"{persona.strip() or DEFAULT_PERSONA}\n\n{TOOL_USAGE_POLICY}"
        messages = [Message(role=SYSTEM, content=system_prompt)]
        messages.extend(history)

        request = user_input
        if analysis.strip():
            request += f"\n\nUpstream analysis:\n{analysis.strip()}"
        if context.strip():
            request += f"\n\nRecent tool outcomes:\n{context.strip()}"
        messages.append(Message(role=USER, content=request))
        return messages

    def run_turn(  # noqa: PLR0913
        self,
        user_input: str,
        *,
        persona: str = "",
        analysis: str = "",
        context: str = "",
        history: Sequence[Message] = (),
        on_output: OutputCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> TurnResult:
        """Drive the model until it answers without tool calls."""

        emit = on_output or (lambda _text: None)
        context_log = ContextLog()
        messages = self.build_messages(
            user_input,
            persona=persona,
            analysis=analysis,
            context=context,
            history=history,
        )
        definitions = self.registry.definitions()

        for iteration in range(1, self.max_iterations + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise TurnCancelledError(f"turn cancelled before iteration {iteration}")

            try:
                response = self.transport.chat(
                    messages,
                    tools=definitions or None,
                    tool_choice="auto" if definitions else None,
                )
            except TransportError as error:
                logger.error("Model call failed: iteration=%d error=%s", iteration, error)
                error.add_note(f"turn iteration {iteration}/{self.max_iterations}")
                raise

            if not response.tool_calls:
                answer = response.message.text
                emit(answer)
                logger.info("Turn finished: iterations=%d", iteration)
                return TurnResult(
                    answer=answer,
                    iterations=iteration,
                    messages=messages,
                    context=context_log.consume(),
                )

            logger.info(
                "Model requested tools: iteration=%d tools=%s",
                iteration,
                ",".join(call.function.name for call in response.tool_calls),
            )
            messages.append(
                Message(
                    role=ASSISTANT,
                    content=response.message.content,
                    tool_calls=list(response.tool_calls),
                ),
            )
            for call in response.tool_calls:
                if cancel_event is not None and cancel_event.is_set():
                    raise TurnCancelledError(f"turn cancelled during iteration {iteration}")
                messages.append(self._execute_tool_call(call, context_log, emit, cancel_event))

        logger.error("Turn aborted: iteration budget of %d exhausted", self.max_iterations)
        raise IterationBudgetExceededError(self.max_iterations)

    def _execute_tool_call(
        self,
        call: ToolCall,
        context_log: ContextLog,
        emit: OutputCallback,
        cancel_event: threading.Event | None,
    ) -> Message:
        name = call.function.name
        arguments, parse_error = _parse_arguments(call.function.arguments)
        if parse_error is not None:
            logger.warning(
                "Invalid tool arguments: call=%s tool=%s error=%s",
                call.id,
                name,
                parse_error,
            )
            emit(f"[tool] {name}: invalid arguments\n")
            return _tool_message(call, f"error: invalid arguments for {name}: {parse_error}")

        try:
            capability = self.registry.get(name)
        except CapabilityNotFoundError as error:
            logger.warning("Unknown capability requested: call=%s tool=%s", call.id, name)
            emit(f"[tool] {name}: not available\n")
            return _tool_message(call, f"error: {error}")

        emit(f"[tool] running {name}\n")
        result: Any = None
        failure: Exception | None = None
        try:
            result = capability.execute(arguments, cancel_event)
        except Exception as error:  # noqa: BLE001
            failure = error
        context_log.record_tool_call(name, arguments, result, failure)

        if failure is not None:
            logger.warning("Tool failed: call=%s tool=%s error=%s", call.id, name, failure)
            emit(f"[tool] {name} failed: {failure}\n")
            return _tool_message(call, f"error: {failure}")

        logger.info("Tool succeeded: call=%s tool=%s", call.id, name)
        emit(f"[tool] {name} ok\n")
        return _tool_message(call, json.dumps(result, ensure_ascii=False, indent=2, default=str))


def _parse_arguments(raw: str) -> tuple[dict[str, Any], str | None]:
    if not raw.strip():
        return {}, None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as error:
        return {}, str(error)
    if not isinstance(parsed, dict):
        return {}, f"expected a JSON object, got {type(parsed).__name__}"
    return parsed, None


def _tool_message(call: ToolCall, content: str) -> Message:
    return Message(role=TOOL, content=content, tool_call_id=call.id)
