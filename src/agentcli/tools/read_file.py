"""Read a text file from disk."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

from agentcli.tools.base import CapabilityError, require_string

_BYTES_PER_MB = 1024 * 1024


class ReadFileTool:
    name = "read_file"
    description = "Read file contents. Parameters: filepath."
    parameter_names = ("filepath",)

    def __init__(self, *, max_size_mb: int, allowed_extensions: tuple[str, ...]) -> None:
        self.max_size_mb = max_size_mb
        self.allowed_extensions = allowed_extensions

    def execute(
        self,
        arguments: dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        file_path = Path(require_string(arguments, "filepath", "file_path"))
        if not file_path.exists():
            raise CapabilityError(f"file does not exist: {file_path}")
        if file_path.is_dir():
            raise CapabilityError(f"path is a directory, not a file: {file_path}")

        size = file_path.stat().st_size
        if size > self.max_size_mb * _BYTES_PER_MB:
            raise CapabilityError(
                f"file exceeds size limit: {size // _BYTES_PER_MB} MB > {self.max_size_mb} MB",
            )
        extension = file_path.suffix
        if not any(extension.lower() == allowed.lower() for allowed in self.allowed_extensions):
            raise CapabilityError(f"unsupported file extension: {extension or '<none>'}")

        try:
            content = file_path.read_text("utf-8", errors="replace")
        except OSError as error:
            raise CapabilityError(f"failed to read file: {error}") from error

        return {
            "filepath": str(file_path),
            "content": content,
            "size": size,
            "lines": content.count("\n") + 1,
        }
