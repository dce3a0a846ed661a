"""Run a shell command with a timeout."""

from __future__ import annotations

import os
import shlex
import subprocess
import tempfile
import threading
import time
from typing import Any

from agentcli.tools.base import CapabilityError, require_string

_POLL_INTERVAL_SECONDS = 0.05


class ExecuteCommandTool:
    name = "execute_command"
    description = "Execute a shell command. Parameters: command, args (optional list)."
    parameter_names = ("command",)

    def __init__(self, *, timeout_seconds: float, os_name: str | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        self._os_name = os_name or os.name

    def execute(
        self,
        arguments: dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        command = shell_command_line(require_string(arguments, "command"), arguments.get("args"))

        if self._os_name == "nt":
            run_args = ["cmd", "/c", command]
        else:
            run_args = ["sh", "-c", command]

        exit_code, output = _run_with_timeout(
            run_args,
            timeout_seconds=self.timeout_seconds,
            cancel_event=cancel_event or threading.Event(),
        )
        if exit_code is None:
            raise CapabilityError(f"command timed out after {self.timeout_seconds:g}s")
        if exit_code != 0:
            return {
                "command": command,
                "output": output,
                "error": f"exit status {exit_code}",
                "success": False,
            }
        return {"command": command, "output": output, "success": True}


def shell_command_line(command: str, raw_args: Any) -> str:
    """Command plus quoted ``args``, exactly as handed to the shell."""

    args = command_args(raw_args)
    return " ".join([command.strip(), *(shlex.quote(arg) for arg in args)])


def command_args(raw: Any) -> list[str]:
    """Normalize the ``args`` argument: a list of items or a shell-style string."""

    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            return shlex.split(raw)
        except ValueError:
            return [raw] if raw.strip() else []
    if isinstance(raw, list | tuple):
        return [str(item) for item in raw if item != ""]
    return [str(raw)]


def _run_with_timeout(
    run_args: list[str],
    *,
    timeout_seconds: float,
    cancel_event: threading.Event,
) -> tuple[int | None, str]:
    """Run ``run_args`` with combined output; exit code is ``None`` on timeout."""

    with tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace") as output_handle:
        try:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                stdout=output_handle,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
            )
        except OSError as error:
            raise CapabilityError(f"failed to start command: {error}") from error

        start_monotonic = time.monotonic()
        returncode: int | None = None
        while True:
            returncode = process.poll()
            if returncode is not None:
                break
            if cancel_event.is_set():
                _terminate_process(process)
                raise CapabilityError("command cancelled")
            if time.monotonic() - start_monotonic >= timeout_seconds:
                _terminate_process(process)
                break
            time.sleep(_POLL_INTERVAL_SECONDS)

        output_handle.seek(0)
        return returncode, output_handle.read()


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
