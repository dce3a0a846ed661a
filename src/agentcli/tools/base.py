"""Capability protocol and name-keyed registry."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Any, Protocol, runtime_checkable

from agentcli.llm.models import ToolDefinition


class CapabilityError(RuntimeError):
    """Capability execution failure reported back to the model as text."""


class CapabilityNotFoundError(KeyError):
    """Requested capability is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"capability not found: {self.name}"


@runtime_checkable
class Capability(Protocol):
    """Side-effecting operation invocable by name with a JSON argument object."""

    name: str
    description: str
    parameter_names: tuple[str, ...]

    def execute(
        self,
        arguments: dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> Any:
        """Run the capability and return a JSON-serializable result.

        Long-running capabilities stop early once ``cancel_event`` is set.
        """


class ToolRegistry:
    """Name to capability mapping built once per session."""

    def __init__(self) -> None:
        self._tools: dict[str, Capability] = {}

    def register(self, tool: Capability) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Capability:
        try:
            return self._tools[name]
        except KeyError as error:
            raise CapabilityNotFoundError(name) from error

    def list(self) -> list[Capability]:
        return list(self._tools.values())

    def definitions(self) -> list[ToolDefinition]:
        """Tool declarations for a chat request, every parameter required and string-typed."""

        return [
            ToolDefinition(
                name=tool.name,
                description=tool.description,
                parameter_names=tuple(tool.parameter_names),
            )
            for tool in self._tools.values()
        ]

    def describe(self) -> str:
        return "\n".join(f"- {tool.name}: {tool.description}" for tool in self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


def require_string(arguments: dict[str, Any], *names: str) -> str:
    """Return the first non-empty string argument among ``names``."""

    for name in names:
        value = arguments.get(name)
        if isinstance(value, str) and value.strip():
            return value
    raise CapabilityError(f"missing required argument: {names[0]}")
