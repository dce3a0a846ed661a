"""Four-stage think -> decision -> tool -> summary pipeline on the task graph."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from agentcli.config import GraphSettings
from agentcli.graph import GraphCancelledError, NodeKind, TaskGraph, TaskNode
from agentcli.llm.models import USER, Message
from agentcli.tools.base import CapabilityNotFoundError, ToolRegistry

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]

THINK_PROMPT = """Think through how to complete the user's request.

Available tools:
{tools}

User request: {user_input}
Intent analysis: {intention}

Work out:
1. which steps are needed
2. which tools are needed
3. in which order the tools should run
4. which arguments each tool needs

Answer with JSON in this shape:
{{
  "steps": ["step 1", "step 2"],
  "tools_needed": ["tool1", "tool2"],
  "reasoning": "your reasoning"
}}"""

DECISION_PROMPT = """Turn the following reasoning into a concrete tool call plan.

Reasoning:
{thinking}

User request: {user_input}

Answer with a JSON array of tool calls in this shape:
[
  {{
    "tool": "tool_name",
    "params": {{
      "param1": "value1"
    }}
  }}
]

If no tool is needed, answer with an empty array []."""

SUMMARY_PROMPT = """Write a friendly reply for the user based on these tool results.

User request: {user_input}

Tool results:
{results}

Say whether the task is done and what the concrete results are."""


class PromptClient(Protocol):
    """Subset of the chat transport the pipeline stages rely on."""

    def simple_query(self, prompt: str) -> str:
        """Return the answer to a single user prompt."""

    def chat_stream(
        self,
        messages: Sequence[Message],
        on_chunk: Callable[[str], None] | None = None,
    ) -> str:
        """Stream an answer, forwarding fragments to ``on_chunk``."""


class ThinkHandler:
    def __init__(self, client: PromptClient, registry: ToolRegistry) -> None:
        self.client = client
        self.registry = registry

    def execute(self, inputs: dict[str, Any], cancel_event: threading.Event) -> dict[str, Any]:
        user_input = str(inputs.get("user_input", ""))
        prompt = THINK_PROMPT.format(
            tools=self.registry.describe(),
            user_input=user_input,
            intention=inputs.get("intention", ""),
        )
        thinking = self.client.simple_query(prompt)
        logger.debug("Think stage finished: chars=%d", len(thinking))
        return {"thinking": thinking, "user_input": user_input}


class DecisionHandler:
    def __init__(self, client: PromptClient) -> None:
        self.client = client

    def execute(self, inputs: dict[str, Any], cancel_event: threading.Event) -> dict[str, Any]:
        user_input = str(inputs.get("user_input", ""))
        prompt = DECISION_PROMPT.format(thinking=inputs.get("thinking", ""), user_input=user_input)
        plan = self.client.simple_query(prompt)
        logger.debug("Decision stage finished: chars=%d", len(plan))
        return {"plan": plan, "user_input": user_input}


class ToolPlanHandler:
    """Executes the decision stage's JSON plan step by step.

    Missing tools and tool failures are reported as result lines, not raised.
    An unparsable plan means no tool is needed.
    """

    def __init__(self, registry: ToolRegistry, on_output: OutputCallback | None = None) -> None:
        self.registry = registry
        self.on_output = on_output or (lambda _text: None)

    def execute(self, inputs: dict[str, Any], cancel_event: threading.Event) -> dict[str, Any]:
        user_input = inputs.get("user_input", "")
        steps = parse_plan(str(inputs.get("plan", "")))
        results: list[str] = []
        for tool_name, params in steps:
            if cancel_event.is_set():
                raise GraphCancelledError("tool stage cancelled")
            try:
                capability = self.registry.get(tool_name)
            except CapabilityNotFoundError as error:
                results.append(f"tool {tool_name} is not available: {error}")
                continue

            self.on_output(f"[tool] running {tool_name}\n")
            try:
                result = capability.execute(params, cancel_event)
            except Exception as error:  # noqa: BLE001
                logger.warning("Planned tool failed: tool=%s error=%s", tool_name, error)
                results.append(f"tool {tool_name} failed: {error}")
                continue
            rendered = json.dumps(result, ensure_ascii=False, indent=2, default=str)
            results.append(f"tool {tool_name} succeeded:\n{rendered}")
        return {"results": results, "user_input": user_input}


class SummaryHandler:
    def __init__(self, client: PromptClient, on_output: OutputCallback | None = None) -> None:
        self.client = client
        self.on_output = on_output

    def execute(self, inputs: dict[str, Any], cancel_event: threading.Event) -> dict[str, Any]:
        user_input = str(inputs.get("user_input", ""))
        results = list(inputs.get("results") or [])
        if results:
            prompt = SUMMARY_PROMPT.format(user_input=user_input, results="\n\n".join(results))
        else:
            prompt = user_input

        if self.on_output is None:
            return {"result": self.client.simple_query(prompt)}
        answer = self.client.chat_stream([Message(role=USER, content=prompt)], self.on_output)
        self.on_output("\n")
        return {"result": answer}


def build_stage_graph(  # noqa: PLR0913
    client: PromptClient,
    registry: ToolRegistry,
    *,
    user_input: str,
    intention: str,
    settings: GraphSettings,
    on_output: OutputCallback | None = None,
) -> TaskGraph:
    graph = TaskGraph(
        parallelism=settings.parallel_nodes,
        timeout_seconds=settings.timeout_seconds,
        max_depth=settings.max_depth,
        verbose=settings.verbose,
        on_progress=(lambda message: on_output(message + "\n")) if on_output else None,
    )
    think = TaskNode(
        "think",
        "Deep thinking",
        NodeKind.THINK,
        handler=ThinkHandler(client, registry),
    )
    think.set_input("user_input", user_input)
    think.set_input("intention", intention)
    graph.add_node(think)
    graph.add_node(
        TaskNode(
            "decision",
            "Decision",
            NodeKind.DECISION,
            dependencies=["think"],
            handler=DecisionHandler(client),
        ),
    )
    graph.add_node(
        TaskNode(
            "tool",
            "Tool execution",
            NodeKind.TOOL,
            dependencies=["decision"],
            handler=ToolPlanHandler(registry, on_output),
        ),
    )
    graph.add_node(
        TaskNode(
            "summary",
            "Summary",
            NodeKind.END,
            dependencies=["tool"],
            handler=SummaryHandler(client, on_output),
        ),
    )
    return graph


def run_stage_pipeline(  # noqa: PLR0913
    client: PromptClient,
    registry: ToolRegistry,
    *,
    user_input: str,
    intention: str,
    settings: GraphSettings,
    on_output: OutputCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> str:
    """Run the four stages and return the summary answer."""

    graph = build_stage_graph(
        client,
        registry,
        user_input=user_input,
        intention=intention,
        settings=settings,
        on_output=on_output,
    )
    graph.execute(cancel_event)
    summary = graph.get_results().get("summary", {}).get("result")
    if isinstance(summary, str):
        return summary
    return "Execution finished without a summary."


def parse_plan(text: str) -> list[tuple[str, dict[str, Any]]]:
    """Decode ``[{"tool": ..., "params": {...}}]`` into (tool, params) pairs."""

    try:
        decoded = json.loads(extract_json(text))
    except json.JSONDecodeError:
        logger.debug("Tool plan is not JSON; nothing to execute")
        return []
    if not isinstance(decoded, list):
        return []

    steps: list[tuple[str, dict[str, Any]]] = []
    for item in decoded:
        if not isinstance(item, dict) or not isinstance(item.get("tool"), str):
            continue
        params = item.get("params")
        steps.append((item["tool"], params if isinstance(params, dict) else {}))
    return steps


def extract_json(text: str) -> str:
    """Slice from the first ``[`` (else ``{``) to the last ``]`` (else ``}``)."""

    start = text.find("[")
    if start == -1:
        start = text.find("{")
    if start == -1:
        return text

    end = text.rfind("]")
    if end == -1:
        end = text.rfind("}")
    if end == -1 or end <= start:
        return text
    return text[start : end + 1]
