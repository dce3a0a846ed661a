from __future__ import annotations

import base64
import os
import threading
import time
from pathlib import Path

import allure
import pytest

from agentcli.agent.context_log import format_command_line
from agentcli.config import ToolsSettings
from agentcli.tools import (
    CapabilityError,
    CapabilityNotFoundError,
    ExecuteCommandTool,
    ReadFileTool,
    RecognizeImageTool,
    WriteCodeTool,
    build_registry,
)

pytestmark = [
    allure.epic("Capabilities"),
    allure.feature("Built-in Tools"),
]

_PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def test_registry_honours_enabled_list() -> None:
    registry = build_registry(ToolsSettings(enabled=("read_file", "execute_command")))

    assert [tool.name for tool in registry] == ["read_file", "execute_command"]
    assert "write_code" not in registry
    with pytest.raises(CapabilityNotFoundError) as excinfo:
        registry.get("write_code")
    assert str(excinfo.value) == "capability not found: write_code"


def test_registry_definitions_and_description() -> None:
    registry = build_registry(ToolsSettings(enabled=("write_code",)))

    (definition,) = registry.definitions()
    assert definition.name == "write_code"
    assert definition.parameter_names == ("filepath", "code", "language")
    assert registry.describe().startswith("- write_code: Write code to a file.")


def test_write_code_creates_parents_and_infers_language(tmp_path: Path) -> None:
    tool = WriteCodeTool(max_lines=10, supported_languages=("python",))
    target = tmp_path / "pkg" / "hello.py"

    result = tool.execute({"file_path": str(target), "code": "print('hi')\n"})

    assert target.read_text() == "print('hi')\n"
    assert result == {"filepath": str(target), "lines": 2, "bytes": 12}


def test_write_code_rejects_unsupported_language_and_long_code(tmp_path: Path) -> None:
    tool = WriteCodeTool(max_lines=2, supported_languages=("python",))

    with pytest.raises(CapabilityError, match="unsupported language: go"):
        tool.execute({"filepath": str(tmp_path / "main.go"), "code": "package main"})
    with pytest.raises(CapabilityError, match="line limit"):
        tool.execute({"filepath": str(tmp_path / "a.py"), "code": "a\nb\nc", "language": "python"})
    with pytest.raises(CapabilityError, match="cannot infer"):
        tool.execute({"filepath": str(tmp_path / "notes"), "code": "x"})


def test_read_file_returns_content_and_validates_path(tmp_path: Path) -> None:
    tool = ReadFileTool(max_size_mb=1, allowed_extensions=(".py",))
    source = tmp_path / "main.py"
    source.write_text("a = 1\nb = 2")

    result = tool.execute({"filepath": str(source)})

    assert result == {"filepath": str(source), "content": "a = 1\nb = 2", "size": 11, "lines": 2}
    with pytest.raises(CapabilityError, match="does not exist"):
        tool.execute({"filepath": str(tmp_path / "missing.py")})
    with pytest.raises(CapabilityError, match="directory"):
        tool.execute({"filepath": str(tmp_path)})
    (tmp_path / "data.bin").write_bytes(b"\x00")
    with pytest.raises(CapabilityError, match="unsupported file extension: .bin"):
        tool.execute({"filepath": str(tmp_path / "data.bin")})
    with pytest.raises(CapabilityError, match="missing required argument: filepath"):
        tool.execute({})


def test_recognize_image_without_backend_reports_not_configured(tmp_path: Path) -> None:
    image = tmp_path / "pixel.png"
    image.write_bytes(_PNG_BYTES)
    tool = RecognizeImageTool(max_size_mb=1, supported_formats=("png",))

    result = tool.execute({"filepath": str(image)})

    assert result["format"] == "png"
    assert result["message"] == "image recognition backend is not configured"


def test_recognize_image_passes_base64_to_describer(tmp_path: Path) -> None:
    image = tmp_path / "pixel.png"
    image.write_bytes(_PNG_BYTES)
    received: list[tuple[str, str]] = []

    def describer(encoded: str, image_format: str) -> str:
        received.append((encoded, image_format))
        return "a single pixel"

    tool = RecognizeImageTool(max_size_mb=1, supported_formats=("png",), describer=describer)
    result = tool.execute({"filepath": str(image)})

    assert result["description"] == "a single pixel"
    assert base64.b64decode(received[0][0]) == _PNG_BYTES
    assert received[0][1] == "png"
    with pytest.raises(CapabilityError, match="unsupported image format: gif"):
        gif = tmp_path / "anim.gif"
        gif.write_bytes(b"GIF89a")
        tool.execute({"filepath": str(gif)})


@pytest.mark.skipif(os.name == "nt", reason="uses POSIX shell commands")
def test_execute_command_reports_success_and_failure() -> None:
    tool = ExecuteCommandTool(timeout_seconds=5)

    ok = tool.execute({"command": "echo", "args": ["hello world"]})
    failed = tool.execute({"command": "echo oops; exit 3"})

    assert ok == {"command": "echo 'hello world'", "output": "hello world\n", "success": True}
    assert failed["success"] is False
    assert failed["error"] == "exit status 3"
    assert failed["output"] == "oops\n"


@pytest.mark.skipif(os.name == "nt", reason="uses POSIX shell commands")
def test_execute_command_times_out() -> None:
    tool = ExecuteCommandTool(timeout_seconds=0.2)

    with pytest.raises(CapabilityError, match="timed out after 0.2s"):
        tool.execute({"command": "sleep 5"})


@pytest.mark.skipif(os.name == "nt", reason="uses POSIX shell commands")
def test_execute_command_stops_when_cancelled() -> None:
    tool = ExecuteCommandTool(timeout_seconds=30)
    cancel_event = threading.Event()
    timer = threading.Timer(0.1, cancel_event.set)
    timer.start()
    started = time.monotonic()

    try:
        with pytest.raises(CapabilityError, match="command cancelled"):
            tool.execute({"command": "sleep 10"}, cancel_event)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 5


@pytest.mark.skipif(os.name == "nt", reason="uses POSIX shell commands")
def test_execute_command_runs_string_args_as_logged() -> None:
    tool = ExecuteCommandTool(timeout_seconds=5)
    arguments = {"command": "echo", "args": "hello 'big world'"}

    result = tool.execute(arguments)

    assert result["output"] == "hello big world\n"
    assert result["command"] == "echo hello 'big world'"
    assert format_command_line(arguments) == result["command"]
