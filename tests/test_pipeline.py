from __future__ import annotations

import allure
import pytest

from agentcli.agent.pipeline import build_stage_graph, extract_json, parse_plan, run_stage_pipeline
from agentcli.config import GraphSettings
from agentcli.graph import GraphExecutionError, NodeKind
from agentcli.llm.client import TransportStatusError
from agentcli.tools.base import ToolRegistry

pytestmark = [
    allure.epic("Stage Graph"),
    allure.feature("Think / Decide / Act / Summarize"),
]


class EchoTool:
    name = "echo"
    description = "Echo the text argument."
    parameter_names = ("text",)

    def execute(self, arguments, cancel_event=None):
        return {"echo": arguments["text"]}


class BrokenTool:
    name = "broken"
    description = "Always fails."
    parameter_names = ()

    def execute(self, arguments, cancel_event=None):
        raise OSError("disk full")


def _registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(EchoTool())
    registry.register(BrokenTool())
    return registry


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ('plan:\n```json\n[{"tool": "echo"}]\n```', '[{"tool": "echo"}]'),
        ('result {"a": 1} end', '{"a": 1}'),
        ("no json here", "no json here"),
        ("] before [", "] before ["),
    ],
)
def test_extract_json_slices_outermost_brackets(text: str, expected: str) -> None:
    assert extract_json(text) == expected


def test_parse_plan_skips_malformed_steps() -> None:
    plan = '[{"tool": "echo", "params": {"text": "a"}}, {"params": {}}, "x", {"tool": "broken"}]'

    assert parse_plan(plan) == [("echo", {"text": "a"}), ("broken", {})]
    assert parse_plan("I would not use any tool.") == []
    assert parse_plan('{"tool": "echo"}') == []


def test_stage_graph_has_four_chained_nodes(scripted_transport) -> None:
    graph = build_stage_graph(
        scripted_transport([]),
        _registry(),
        user_input="hi",
        intention="greet",
        settings=GraphSettings(),
    )

    kinds = [graph.get_node(node_id).kind for node_id in ("think", "decision", "tool", "summary")]
    assert kinds == [NodeKind.THINK, NodeKind.DECISION, NodeKind.TOOL, NodeKind.END]
    assert graph.get_node("summary").dependencies == ["tool"]
    assert graph.get_node("think").inputs == {"user_input": "hi", "intention": "greet"}


def test_pipeline_runs_plan_and_summarizes_results(scripted_transport, make_text_response) -> None:
    transport = scripted_transport(
        [
            make_text_response('{"steps": ["echo"], "tools_needed": ["echo"]}'),
            make_text_response(
                'Plan:\n[{"tool": "echo", "params": {"text": "hi"}}, '
                '{"tool": "ghost", "params": {}}, {"tool": "broken", "params": {}}]',
            ),
            make_text_response("Everything is done."),
        ],
    )

    answer = run_stage_pipeline(
        transport,
        _registry(),
        user_input="say hi",
        intention="echo a greeting",
        settings=GraphSettings(),
    )

    assert answer == "Everything is done."
    think_prompt = transport.requests[0]["messages"][0].text
    assert "- echo: Echo the text argument." in think_prompt
    assert "Intent analysis: echo a greeting" in think_prompt
    assert '"tools_needed": ["echo"]' in transport.requests[1]["messages"][0].text
    summary_prompt = transport.requests[2]["messages"][0].text
    assert 'tool echo succeeded:\n{\n  "echo": "hi"\n}' in summary_prompt
    assert "tool ghost is not available: capability not found: ghost" in summary_prompt
    assert "tool broken failed: disk full" in summary_prompt


def test_unparsable_plan_answers_request_directly(scripted_transport, make_text_response) -> None:
    transport = scripted_transport(
        [
            make_text_response("thinking"),
            make_text_response("No tools are needed."),
            make_text_response("Paris."),
        ],
    )

    answer = run_stage_pipeline(
        transport,
        _registry(),
        user_input="Capital of France?",
        intention="geography question",
        settings=GraphSettings(),
    )

    assert answer == "Paris."
    assert transport.requests[2]["messages"][0].text == "Capital of France?"


def test_summary_streams_through_output_callback(scripted_transport, make_text_response) -> None:
    transport = scripted_transport(
        [make_text_response("t"), make_text_response("[]"), make_text_response("streamed answer")],
    )
    outputs: list[str] = []

    answer = run_stage_pipeline(
        transport,
        _registry(),
        user_input="hello",
        intention="chat",
        settings=GraphSettings(verbose=True),
        on_output=outputs.append,
    )

    assert answer == "streamed answer"
    assert "streamed answer" in outputs
    assert "[graph] running node: Deep thinking (think)\n" in outputs


def test_stage_failure_aborts_pipeline(scripted_transport) -> None:
    transport = scripted_transport([TransportStatusError(503, "unavailable")])

    with pytest.raises(GraphExecutionError) as excinfo:
        run_stage_pipeline(
            transport,
            _registry(),
            user_input="hello",
            intention="chat",
            settings=GraphSettings(),
        )

    assert excinfo.value.node_id == "think"
    assert isinstance(excinfo.value.__cause__, TransportStatusError)
    assert excinfo.value.partial_results == {}
