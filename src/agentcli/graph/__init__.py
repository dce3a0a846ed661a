"""Stage graph scheduler."""

from agentcli.graph.node import NodeHandler, NodeKind, NodeStatus, TaskNode
from agentcli.graph.scheduler import (
    CycleDetectedError,
    DuplicateNodeError,
    GraphCancelledError,
    GraphDepthError,
    GraphError,
    GraphExecutionError,
    GraphStateError,
    GraphTimeoutError,
    MissingDependencyError,
    TaskGraph,
)

__all__ = [
    "CycleDetectedError",
    "DuplicateNodeError",
    "GraphCancelledError",
    "GraphDepthError",
    "GraphError",
    "GraphExecutionError",
    "GraphStateError",
    "GraphTimeoutError",
    "MissingDependencyError",
    "NodeHandler",
    "NodeKind",
    "NodeStatus",
    "TaskGraph",
    "TaskNode",
]
