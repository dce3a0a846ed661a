from __future__ import annotations

import allure

from agentcli.agent.context_log import ContextLog, format_command_line
from agentcli.tools.base import CapabilityError

pytestmark = [
    allure.epic("Agent Turn"),
    allure.feature("Context Log"),
]


def test_consume_joins_entries_and_drains_once() -> None:
    log = ContextLog()
    log.append("note", "  first  ")
    log.append("note", "second")
    log.append("note", "   ")

    assert log.consume() == "[note] first\n\n[note] second"
    assert log.entries() == []

    log.append("note", "late")
    assert log.consume() == ""


def test_reset_allows_a_new_drain() -> None:
    log = ContextLog()
    log.append("note", "one")
    log.consume()

    log.reset()
    log.append("note", "two")

    assert log.consume() == "[note] two"


def test_shell_outcomes_are_recorded_with_status() -> None:
    log = ContextLog()
    log.record_tool_call(
        "execute_command",
        {"command": "ls", "args": ["-la"]},
        {"success": True},
        None,
    )
    log.record_tool_call(
        "execute_command",
        {"command": "false"},
        {"success": False, "error": "exit status 1"},
        None,
    )
    log.record_tool_call(
        "execute_command",
        {"command": "sleep 9"},
        None,
        CapabilityError("timed out"),
    )

    assert log.entries() == [
        "[execute_command] ls -la | success=true",
        "[execute_command] false | error=exit status 1",
        "[execute_command] sleep 9 | error=timed out",
    ]


def test_other_capabilities_and_empty_commands_are_ignored() -> None:
    log = ContextLog()
    log.record_tool_call("read_file", {"filepath": "a.py"}, {"content": "x"}, None)
    log.record_tool_call("execute_command", {"command": "  "}, {"success": True}, None)
    log.record_tool_call("execute_command", None, None, None)

    assert log.entries() == []


def test_format_command_line_accepts_string_and_list_args() -> None:
    assert format_command_line({"command": "echo", "args": "hi"}) == "echo hi"
    assert format_command_line({"command": "echo", "args": ["a", "", "b"]}) == "echo a b"
    assert format_command_line({"command": "pwd"}) == "pwd"
    assert format_command_line({}) == ""
