"""Turn-scoped log of recent tool outcomes folded into the next prompt."""

from __future__ import annotations

import threading
from typing import Any

from agentcli.tools.execute_command import shell_command_line

SHELL_CAPABILITY = "execute_command"


class ContextLog:
    """Append-only entry list, reset per turn and drained at most once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[str] = []
        self._drained = False

    def reset(self) -> None:
        with self._lock:
            self._entries = []
            self._drained = False

    def append(self, kind: str, content: str) -> None:
        content = content.strip()
        if not content:
            return
        with self._lock:
            self._entries.append(f"[{kind}] {content}")

    def consume(self) -> str:
        """Return all entries joined by blank lines and clear; empty after the first drain."""

        with self._lock:
            if self._drained or not self._entries:
                return ""
            combined = "\n\n".join(self._entries)
            self._entries = []
            self._drained = True
            return combined

    def entries(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def record_tool_call(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None,
        result: Any,
        error: BaseException | None,
    ) -> None:
        """Record shell command outcomes; other capabilities are ignored."""

        if tool_name != SHELL_CAPABILITY:
            return
        command_line = format_command_line(arguments)
        if not command_line:
            return

        entry = command_line
        if error is not None:
            entry = f"{command_line} | error={error}"
        elif isinstance(result, dict):
            success = result.get("success")
            if isinstance(success, bool):
                entry = f"{command_line} | success={str(success).lower()}"
            error_text = result.get("error")
            if isinstance(error_text, str) and error_text:
                entry = f"{command_line} | error={error_text}"
        self.append(SHELL_CAPABILITY, entry)


def format_command_line(arguments: dict[str, Any] | None) -> str:
    if not arguments:
        return ""
    command = arguments.get("command")
    if not isinstance(command, str) or not command.strip():
        return ""
    return shell_command_line(command, arguments.get("args"))
