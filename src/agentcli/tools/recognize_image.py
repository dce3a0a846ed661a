"""Describe an image file through a pluggable vision backend."""

from __future__ import annotations

import base64
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from agentcli.tools.base import CapabilityError, require_string

_BYTES_PER_MB = 1024 * 1024

# (base64 image data, image format) -> description
ImageDescriber = Callable[[str, str], str]


class RecognizeImageTool:
    name = "recognize_image"
    description = "Describe image contents. Parameters: filepath."
    parameter_names = ("filepath",)

    def __init__(
        self,
        *,
        max_size_mb: int,
        supported_formats: tuple[str, ...],
        describer: ImageDescriber | None = None,
    ) -> None:
        self.max_size_mb = max_size_mb
        self.supported_formats = supported_formats
        self.describer = describer

    def execute(
        self,
        arguments: dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        file_path = Path(require_string(arguments, "filepath", "file_path"))
        if not file_path.is_file():
            raise CapabilityError(f"file does not exist: {file_path}")

        size = file_path.stat().st_size
        if size > self.max_size_mb * _BYTES_PER_MB:
            raise CapabilityError(
                f"image exceeds size limit: {size // _BYTES_PER_MB} MB > {self.max_size_mb} MB",
            )
        image_format = file_path.suffix.lower().lstrip(".")
        if not any(image_format == supported.lower() for supported in self.supported_formats):
            raise CapabilityError(f"unsupported image format: {image_format or '<none>'}")

        try:
            encoded = base64.b64encode(file_path.read_bytes()).decode("ascii")
        except OSError as error:
            raise CapabilityError(f"failed to read image: {error}") from error

        result: dict[str, Any] = {
            "filepath": str(file_path),
            "size": size,
            "format": image_format,
        }
        if self.describer is None:
            result["message"] = "image recognition backend is not configured"
            return result
        try:
            result["description"] = self.describer(encoded, image_format)
        except Exception as error:
            raise CapabilityError(f"image recognition failed: {error}") from error
        return result
