"""Task node model for the stage graph scheduler."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class NodeKind(str, Enum):
    """Stage kinds used by the four-stage pipeline."""

    THINK = "think"
    DECISION = "decision"
    TOOL = "tool"
    END = "end"


class NodeStatus(str, Enum):
    """Node lifecycle states; COMPLETED and FAILED are terminal."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class NodeHandler(Protocol):
    """Accepts merged inputs and produces outputs or raises."""

    def execute(
        self,
        inputs: dict[str, Any],
        cancel_event: threading.Event,
    ) -> dict[str, Any]:
        """Run one stage."""


class NodeStateError(RuntimeError):
    """Node was asked to run outside the PENDING state."""


@dataclass(slots=True)
class TaskNode:
    """One stage of a graph run; mutated only by the scheduler."""

    node_id: str
    name: str
    kind: NodeKind
    dependencies: list[str] = field(default_factory=list)
    handler: NodeHandler | None = None
    status: NodeStatus = NodeStatus.PENDING
    inputs: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_dependency(self, node_id: str) -> None:
        with self._lock:
            if node_id not in self.dependencies:
                self.dependencies.append(node_id)

    def set_input(self, key: str, value: Any) -> None:
        with self._lock:
            self.inputs[key] = value

    def get_status(self) -> NodeStatus:
        with self._lock:
            return self.status

    @property
    def is_completed(self) -> bool:
        return self.get_status() is NodeStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.get_status() is NodeStatus.FAILED

    def run(self, cancel_event: threading.Event) -> None:
        """Transition PENDING -> RUNNING -> COMPLETED/FAILED around the handler call."""

        with self._lock:
            if self.status is not NodeStatus.PENDING:
                raise NodeStateError(
                    f"node {self.node_id} is not pending: {self.status.value}",
                )
            self.status = NodeStatus.RUNNING
            inputs = dict(self.inputs)

        if self.handler is None:
            with self._lock:
                self.status = NodeStatus.COMPLETED
            return

        try:
            outputs = self.handler.execute(inputs, cancel_event) or {}
            if not isinstance(outputs, dict):
                raise TypeError(
                    f"node {self.node_id} handler returned {type(outputs).__name__}, not a dict",
                )
        except Exception as error:
            with self._lock:
                self.status = NodeStatus.FAILED
                self.error = error
            raise
        with self._lock:
            self.outputs = dict(outputs)
            self.status = NodeStatus.COMPLETED
