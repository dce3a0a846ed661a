"""Write generated code to a file."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

from agentcli.tools.base import CapabilityError, require_string

_LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".go": "go",
    ".js": "javascript",
    ".ts": "typescript",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
}


class WriteCodeTool:
    name = "write_code"
    description = "Write code to a file. Parameters: filepath, code, language."
    parameter_names = ("filepath", "code", "language")

    def __init__(self, *, max_lines: int, supported_languages: tuple[str, ...]) -> None:
        self.max_lines = max_lines
        self.supported_languages = supported_languages

    def execute(
        self,
        arguments: dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        file_path = Path(require_string(arguments, "filepath", "file_path"))
        code = require_string(arguments, "code")

        language = arguments.get("language")
        if not isinstance(language, str) or not language.strip():
            language = _LANGUAGE_BY_EXTENSION.get(file_path.suffix.lower())
            if language is None:
                raise CapabilityError(
                    "cannot infer the programming language, pass the language argument",
                )
        if not any(language.lower() == supported.lower() for supported in self.supported_languages):
            raise CapabilityError(f"unsupported language: {language}")

        lines = code.split("\n")
        if len(lines) > self.max_lines:
            raise CapabilityError(f"code exceeds line limit: {len(lines)} > {self.max_lines}")

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(code, "utf-8")
        except OSError as error:
            raise CapabilityError(f"failed to write file: {error}") from error

        return {
            "filepath": str(file_path),
            "lines": len(lines),
            "bytes": len(code.encode("utf-8")),
        }
