"""Dependency-graph scheduler for small multi-stage LLM pipelines.

Execution contract:

- A node becomes eligible when it is PENDING and every dependency is COMPLETED.
- All eligible nodes of a round are launched together on their own threads,
  admission-gated by a semaphore sized to ``parallelism``.
- Before its handler runs, a node receives the outputs of its dependencies
  merged into its inputs in dependency order (later keys win).
- Fail-fast is batch-level: once a batch is launched, its nodes are allowed to
  finish, then the first recorded failure aborts the run and no further batch
  is launched. ``GraphExecutionError.partial_results`` carries the outputs of
  the nodes that completed.
- The deadline and the cancel event are checked at every scheduling decision;
  running handlers are never pre-empted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from agentcli.errors import AgentError
from agentcli.graph.node import NodeStatus, TaskNode

logger = logging.getLogger(__name__)

_WAIT_INTERVAL_SECONDS = 0.1


class GraphError(AgentError):
    """Base class for graph construction and execution failures."""


class DuplicateNodeError(GraphError):
    """Node id already present in the graph."""


class MissingDependencyError(GraphError):
    """Declared dependency id is not part of the graph."""


class CycleDetectedError(GraphError):
    """Dependency relation contains a cycle."""


class GraphDepthError(GraphError):
    """Longest dependency chain exceeds the configured depth."""


class GraphStateError(GraphError):
    """Operation is not valid in the graph's current state."""


class GraphTimeoutError(GraphError):
    """Execution exceeded the graph deadline."""


class GraphCancelledError(GraphError):
    """Execution was cancelled by the caller."""


class GraphExecutionError(GraphError):
    """A node failed; carries outputs of nodes that completed before the abort."""

    def __init__(
        self,
        message: str,
        *,
        node_id: str | None = None,
        partial_results: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.partial_results = partial_results or {}


class TaskGraph:
    """Owns task nodes and runs them respecting dependencies."""

    def __init__(
        self,
        *,
        parallelism: int = 4,
        timeout_seconds: float = 300.0,
        max_depth: int = 0,
        verbose: bool = False,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        if parallelism <= 0:
            raise ValueError("parallelism must be > 0")
        self.parallelism = parallelism
        self.timeout_seconds = timeout_seconds
        self.max_depth = max_depth
        self.verbose = verbose
        self._on_progress = on_progress or (lambda _msg: None)
        self._nodes: dict[str, TaskNode] = {}
        self._lock = threading.RLock()
        self._node_finished = threading.Condition(self._lock)
        self._succeeded = False

    # -- construction ------------------------------------------------------------

    def add_node(self, node: TaskNode) -> None:
        with self._lock:
            if node.node_id in self._nodes:
                raise DuplicateNodeError(f"node {node.node_id} already exists")
            self._nodes[node.node_id] = node
            self._succeeded = False

    def get_node(self, node_id: str) -> TaskNode | None:
        with self._lock:
            return self._nodes.get(node_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def validate(self) -> None:
        """Check dependencies exist, are acyclic and respect ``max_depth``."""

        with self._lock:
            for node in self._nodes.values():
                for dependency_id in node.dependencies:
                    if dependency_id not in self._nodes:
                        raise MissingDependencyError(
                            f"node {node.node_id} depends on missing node {dependency_id}",
                        )
            self._detect_cycle()
            if self.max_depth > 0:
                depth = self._longest_chain()
                if depth > self.max_depth:
                    raise GraphDepthError(
                        f"dependency chain of {depth} nodes exceeds max depth {self.max_depth}",
                    )

    def _detect_cycle(self) -> None:
        visited: set[str] = set()
        on_stack: set[str] = set()

        def visit(node_id: str) -> bool:
            visited.add(node_id)
            on_stack.add(node_id)
            for dependency_id in self._nodes[node_id].dependencies:
                if dependency_id not in visited:
                    if visit(dependency_id):
                        return True
                elif dependency_id in on_stack:
                    return True
            on_stack.discard(node_id)
            return False

        for node_id in self._nodes:
            if node_id not in visited and visit(node_id):
                raise CycleDetectedError(f"dependency cycle detected involving node {node_id}")

    def _longest_chain(self) -> int:
        depths: dict[str, int] = {}

        def depth(node_id: str) -> int:
            if node_id not in depths:
                dependencies = self._nodes[node_id].dependencies
                depths[node_id] = 1 + max((depth(dep) for dep in dependencies), default=0)
            return depths[node_id]

        return max((depth(node_id) for node_id in self._nodes), default=0)

    # -- execution ---------------------------------------------------------------

    def execute(self, cancel_event: threading.Event | None = None) -> None:
        """Run every node to completion or raise on the first failure."""

        self.validate()
        cancel_event = cancel_event or threading.Event()
        deadline = time.monotonic() + self.timeout_seconds
        semaphore = threading.BoundedSemaphore(self.parallelism)
        self._succeeded = False
        total = len(self)
        logger.info(
            "Graph execution started: nodes=%d parallelism=%d timeout=%.1fs",
            total,
            self.parallelism,
            self.timeout_seconds,
        )

        while self._count(NodeStatus.COMPLETED) < total:
            self._check_interrupts(deadline, cancel_event)
            ready = self._ready_nodes()
            if not ready:
                if self._count(NodeStatus.FAILED):
                    raise GraphExecutionError(
                        "failed node(s) present",
                        partial_results=self._completed_outputs(),
                    )
                with self._node_finished:
                    self._node_finished.wait(timeout=_remaining(deadline, _WAIT_INTERVAL_SECONDS))
                continue

            failures = self._run_batch(ready, semaphore, cancel_event, deadline)
            if failures:
                node_id, error = failures[0]
                logger.error("Graph node failed: node=%s error=%s", node_id, error)
                raise GraphExecutionError(
                    f"node {node_id} failed: {error}",
                    node_id=node_id,
                    partial_results=self._completed_outputs(),
                ) from error

        self._succeeded = True
        logger.info("Graph execution completed: nodes=%d", total)

    def get_results(self) -> dict[str, dict[str, Any]]:
        """Snapshot of node outputs; valid only after a successful ``execute``."""

        if not self._succeeded:
            raise GraphStateError("results are only available after a successful execution")
        with self._lock:
            return {node_id: dict(node.outputs) for node_id, node in self._nodes.items()}

    def _run_batch(
        self,
        ready: list[TaskNode],
        semaphore: threading.BoundedSemaphore,
        cancel_event: threading.Event,
        deadline: float,
    ) -> list[tuple[str, BaseException]]:
        failures: list[tuple[str, BaseException]] = []
        threads = [
            threading.Thread(
                target=self._run_node,
                args=(node, semaphore, cancel_event, failures),
                name=f"graph-node-{node.node_id}",
                daemon=True,
            )
            for node in ready
        ]
        for thread in threads:
            thread.start()

        with self._node_finished:
            while any(thread.is_alive() for thread in threads):
                if time.monotonic() >= deadline:
                    raise GraphTimeoutError(
                        f"graph execution exceeded {self.timeout_seconds:g}s",
                    )
                self._node_finished.wait(timeout=_remaining(deadline, _WAIT_INTERVAL_SECONDS))
        return failures

    def _run_node(
        self,
        node: TaskNode,
        semaphore: threading.BoundedSemaphore,
        cancel_event: threading.Event,
        failures: list[tuple[str, BaseException]],
    ) -> None:
        try:
            with semaphore:
                if cancel_event.is_set():
                    return
                self._merge_dependency_outputs(node)
                if self.verbose:
                    self._on_progress(f"[graph] running node: {node.name} ({node.node_id})")
                logger.debug("Graph node started: node=%s", node.node_id)
                try:
                    node.run(cancel_event)
                except Exception as error:
                    with self._lock:
                        failures.append((node.node_id, error))
                    return
                if self.verbose:
                    self._on_progress(f"[graph] node completed: {node.name} ({node.node_id})")
                logger.debug("Graph node completed: node=%s", node.node_id)
        finally:
            with self._node_finished:
                self._node_finished.notify_all()

    def _merge_dependency_outputs(self, node: TaskNode) -> None:
        with self._lock:
            for dependency_id in node.dependencies:
                dependency = self._nodes.get(dependency_id)
                if dependency is None:
                    continue
                for key, value in dependency.outputs.items():
                    node.set_input(key, value)

    def _ready_nodes(self) -> list[TaskNode]:
        with self._lock:
            return [
                node
                for node in self._nodes.values()
                if node.get_status() is NodeStatus.PENDING
                and all(self._nodes[dep].is_completed for dep in node.dependencies)
            ]

    def _count(self, status: NodeStatus) -> int:
        with self._lock:
            return sum(1 for node in self._nodes.values() if node.get_status() is status)

    def _completed_outputs(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                node_id: dict(node.outputs)
                for node_id, node in self._nodes.items()
                if node.is_completed
            }

    def _check_interrupts(self, deadline: float, cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise GraphCancelledError("graph execution cancelled")
        if time.monotonic() >= deadline:
            raise GraphTimeoutError(f"graph execution exceeded {self.timeout_seconds:g}s")


def _remaining(deadline: float, cap: float) -> float:
    return max(0.0, min(cap, deadline - time.monotonic()))
