"""Capabilities invocable by the model."""

from __future__ import annotations

from agentcli.config import ToolsSettings
from agentcli.tools.base import (
    Capability,
    CapabilityError,
    CapabilityNotFoundError,
    ToolRegistry,
)
from agentcli.tools.execute_command import ExecuteCommandTool
from agentcli.tools.read_file import ReadFileTool
from agentcli.tools.recognize_image import ImageDescriber, RecognizeImageTool
from agentcli.tools.write_code import WriteCodeTool

__all__ = [
    "Capability",
    "CapabilityError",
    "CapabilityNotFoundError",
    "ExecuteCommandTool",
    "ReadFileTool",
    "RecognizeImageTool",
    "ToolRegistry",
    "WriteCodeTool",
    "build_registry",
]


def build_registry(
    settings: ToolsSettings,
    *,
    image_describer: ImageDescriber | None = None,
) -> ToolRegistry:
    """Register every capability named in ``settings.enabled``."""

    registry = ToolRegistry()
    enabled = set(settings.enabled)
    if "write_code" in enabled:
        registry.register(
            WriteCodeTool(
                max_lines=settings.write_code_max_lines,
                supported_languages=settings.write_code_languages,
            ),
        )
    if "read_file" in enabled:
        registry.register(
            ReadFileTool(
                max_size_mb=settings.read_file_max_size_mb,
                allowed_extensions=settings.read_file_extensions,
            ),
        )
    if "recognize_image" in enabled:
        registry.register(
            RecognizeImageTool(
                max_size_mb=settings.image_max_size_mb,
                supported_formats=settings.image_formats,
                describer=image_describer,
            ),
        )
    if "execute_command" in enabled:
        registry.register(ExecuteCommandTool(timeout_seconds=settings.command_timeout_seconds))
    return registry
