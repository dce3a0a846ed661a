"""Agent session: one transport, one capability registry, one persona."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import httpx

from agentcli.agent.loop import ToolCallingLoop, TurnCancelledError, TurnResult
from agentcli.agent.pipeline import parse_plan, run_stage_pipeline
from agentcli.config import Settings
from agentcli.llm.client import LlmClient
from agentcli.llm.models import SYSTEM, USER, Message
from agentcli.tools import CapabilityNotFoundError, ToolRegistry, build_registry

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]

FILE_CONTENT_LIMIT = 20_000

INTENT_PROMPT = """Analyze the user's intent and decide which operations are needed.

User request: {user_input}

Answer in this format:

<thinking>
Reason about what the user wants and which information or tools are needed.
Describe the reasoning in plain language.
</thinking>

```json
{{
  "intent": "short summary of what the user wants",
  "need_code_analysis": true,
  "need_image_analysis": false,
  "target_files": ["relevant file paths, if code must be analyzed"],
  "target_images": ["image paths, if images must be analyzed"]
}}
```"""

DEFAULT_PERSONA = "You are a helpful assistant."

STREAM_PROMPT = """{persona}

Available tools:
{tools}

Prior analysis and actions:
{intention}

User request: {user_input}

Use the request and the prior analysis (files may already have been read). If the task
is complete, answer directly. If tools are needed, end your answer with a JSON array
tool plan (no Markdown code fence) in this format:
[{{"tool": "tool_name", "params": {{"param1": "value1"}}}}]
"""

VISION_PROMPT = "Describe this image in detail, including any visible text."

_MIME_SUBTYPES = {"jpg": "jpeg"}


@dataclass(slots=True)
class IntentAnalysis:
    """Decoded intent block of the analysis response."""

    intent: str = ""
    need_code_analysis: bool = False
    need_image_analysis: bool = False
    target_files: list[str] = field(default_factory=list)
    target_images: list[str] = field(default_factory=list)


class AgentSession:
    """Runs user turns through the tool-calling loop or the stage pipeline."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: LlmClient | None = None,
        registry: ToolRegistry | None = None,
        http_transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.client = client or LlmClient(
            api_key=settings.api.api_key,
            base_url=settings.api.base_url,
            model=settings.api.model,
            timeout_seconds=settings.api.timeout_seconds,
            transport=http_transport,
        )
        if registry is None:
            registry = build_registry(settings.tools, image_describer=self.describe_image)
        self.registry = registry
        self.memory = ""
        self._pending_context = ""

    @property
    def model(self) -> str:
        return self.client.model

    def set_memory(self, memory: str) -> None:
        self.memory = memory.strip()
        logger.info("Persona memory set: chars=%d", len(self.memory))

    def update_model(self, model: str) -> None:
        self.client.model = model
        logger.info("Model switched: model=%s", model)

    def describe_image(self, encoded_image: str, image_format: str) -> str:
        """Ask the chat backend to describe a base64-encoded image."""

        subtype = _MIME_SUBTYPES.get(image_format, image_format)
        message = Message(
            role=USER,
            content=[
                {"type": "text", "text": VISION_PROMPT},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/{subtype};base64,{encoded_image}"},
                },
            ],
        )
        return self.client.chat([message]).message.text

    def analyze_intention(self, user_input: str, on_output: OutputCallback | None = None) -> str:
        """Return an analysis summary enriched with requested file and image contents."""

        emit = on_output or (lambda _text: None)
        response = self.client.simple_query(INTENT_PROMPT.format(user_input=user_input))
        thinking = _extract_thinking(response)
        if thinking:
            emit(f"thinking: {thinking}\n")

        analysis = parse_intent(response)
        if analysis is None:
            logger.debug("Intent response has no decodable JSON block")
            if not thinking:
                emit(f"{response}\n\n")
            return response

        emit(f"intent: {analysis.intent}\n\n")
        summary = analysis.intent
        if thinking:
            summary = f"Reasoning: {thinking}\n\nIntent: {summary}"

        files = [path for path in analysis.target_files if path]
        if analysis.need_code_analysis and files:
            summary += "\nFiles to analyze: " + ", ".join(files)
            summary += self._read_target_files(files)

        images = [path for path in analysis.target_images if path]
        if analysis.need_image_analysis and images:
            summary += "\nImages to analyze: " + ", ".join(images)
            summary += self._recognize_target_images(images)
        return summary

    def run_turn(
        self,
        user_input: str,
        *,
        history: Sequence[Message] = (),
        on_output: OutputCallback | None = None,
        cancel_event: threading.Event | None = None,
        analyze: bool = True,
    ) -> TurnResult:
        """Analyze intent, then drive the tool-calling loop for one turn."""

        logger.info("User input: %s", user_input)
        analysis = self.analyze_intention(user_input, on_output) if analyze else ""
        loop = ToolCallingLoop(transport=self.client, registry=self.registry)
        context, self._pending_context = self._pending_context, ""
        result = loop.run_turn(
            user_input,
            persona=self.memory,
            analysis=analysis,
            context=context,
            history=history,
            on_output=on_output,
            cancel_event=cancel_event,
        )
        self._pending_context = result.context
        logger.info("Agent output: %s", result.answer)
        return result

    def process_request(
        self,
        user_input: str,
        *,
        on_output: OutputCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Analyze intent, then run the think/decision/tool/summary pipeline."""

        logger.info("User input (pipeline): %s", user_input)
        intention = self.analyze_intention(user_input, on_output)
        answer = run_stage_pipeline(
            self.client,
            self.registry,
            user_input=user_input,
            intention=intention,
            settings=self.settings.graph,
            on_output=on_output,
            cancel_event=cancel_event,
        )
        logger.info("Agent output (pipeline): %s", answer)
        return answer

    def stream_answer(self, prompt: str, on_chunk: OutputCallback | None = None) -> str:
        """Stream a plain completion without tools."""

        messages = []
        if self.memory:
            messages.append(Message(role=SYSTEM, content=self.memory))
        messages.append(Message(role=USER, content=prompt))
        return self.client.chat_stream(messages, on_chunk)

    def stream_request(
        self,
        user_input: str,
        *,
        on_output: OutputCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Analyze intent, stream the answer, then run its trailing JSON tool plan.

        Tool outcomes are streamed as ``[tool]`` lines after the answer; a missing
        or failing tool is reported and the remaining steps still run.
        """

        logger.info("User input (stream): %s", user_input)
        emit = on_output or (lambda _text: None)
        intention = self.analyze_intention(user_input, on_output)
        prompt = STREAM_PROMPT.format(
            persona=self.memory or DEFAULT_PERSONA,
            tools=self.registry.describe(),
            intention=intention,
            user_input=user_input,
        )
        answer = self.client.chat_stream([Message(role=USER, content=prompt)], emit)

        steps = parse_plan(answer)
        if steps:
            emit("\n\n")
        for tool_name, params in steps:
            if cancel_event is not None and cancel_event.is_set():
                raise TurnCancelledError(f"turn cancelled before running {tool_name}")
            try:
                capability = self.registry.get(tool_name)
            except CapabilityNotFoundError:
                emit(f"[tool] {tool_name} is not available\n")
                continue

            emit(f"[tool] running {tool_name}\n")
            try:
                result = capability.execute(params, cancel_event)
            except Exception as error:  # noqa: BLE001
                logger.warning("Streamed plan tool failed: tool=%s error=%s", tool_name, error)
                emit(f"[tool] {tool_name} failed: {error}\n")
                continue
            rendered = json.dumps(result, ensure_ascii=False, indent=2, default=str)
            emit(f"[tool] {tool_name} succeeded:\n{rendered}\n")

        logger.info("Agent output (stream): %s", answer)
        return answer

    def close(self) -> None:
        self.client.close()

    def _read_target_files(self, paths: list[str]) -> str:
        if "read_file" not in self.registry:
            return ""
        reader = self.registry.get("read_file")
        sections = []
        for path in paths:
            try:
                result = reader.execute({"filepath": path})
            except Exception as error:  # noqa: BLE001
                logger.warning("Could not read target file: path=%s error=%s", path, error)
                continue
            content = result.get("content") if isinstance(result, dict) else None
            if not isinstance(content, str):
                sections.append(f"\n- read {path} (no content available)")
                continue
            if len(content) > FILE_CONTENT_LIMIT:
                content = content[:FILE_CONTENT_LIMIT] + "\n... (file truncated)"
            sections.append(f"\n\nContents of {path}:\n```\n{content}\n```\n")
        return "".join(sections)

    def _recognize_target_images(self, paths: list[str]) -> str:
        if "recognize_image" not in self.registry:
            return ""
        recognizer = self.registry.get("recognize_image")
        sections = []
        for path in paths:
            try:
                result = recognizer.execute({"filepath": path})
            except Exception as error:  # noqa: BLE001
                logger.warning("Could not recognize target image: path=%s error=%s", path, error)
                continue
            description = result.get("description") if isinstance(result, dict) else None
            if description:
                sections.append(f"\n- image {path}: {description}")
            else:
                sections.append(f"\n- recognized {path}")
        return "".join(sections)


def parse_intent(response: str) -> IntentAnalysis | None:
    """Decode the JSON object of an intent response, or ``None``."""

    start = response.find("{")
    end = response.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(response[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return IntentAnalysis(
        intent=str(payload.get("intent") or ""),
        need_code_analysis=bool(payload.get("need_code_analysis")),
        need_image_analysis=bool(payload.get("need_image_analysis")),
        target_files=_string_list(payload.get("target_files")),
        target_images=_string_list(payload.get("target_images")),
    )


def _extract_thinking(response: str) -> str:
    start = response.find("<thinking>")
    end = response.find("</thinking>")
    if start == -1 or end == -1 or end < start:
        return ""
    return response[start + len("<thinking>") : end].strip()


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]
