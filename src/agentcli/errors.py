"""Base error shared by all fatal agent failures."""

from __future__ import annotations


class AgentError(RuntimeError):
    """Fatal error surfaced to the user as a failed request."""
