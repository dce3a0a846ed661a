"""Agent turn execution: tool-calling loop, stage pipeline and session."""

from agentcli.agent.context_log import ContextLog
from agentcli.agent.loop import (
    DEFAULT_PERSONA,
    MAX_TOOL_ITERATIONS,
    IterationBudgetExceededError,
    ToolCallingLoop,
    TurnCancelledError,
    TurnResult,
)
from agentcli.agent.memory import MemoryStoreError, load_memory, save_memory
from agentcli.agent.pipeline import build_stage_graph, extract_json, run_stage_pipeline
from agentcli.agent.session import AgentSession

__all__ = [
    "DEFAULT_PERSONA",
    "MAX_TOOL_ITERATIONS",
    "AgentSession",
    "ContextLog",
    "IterationBudgetExceededError",
    "MemoryStoreError",
    "ToolCallingLoop",
    "TurnCancelledError",
    "TurnResult",
    "build_stage_graph",
    "extract_json",
    "load_memory",
    "run_stage_pipeline",
    "save_memory",
]
