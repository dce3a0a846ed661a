"""Command-line assistant orchestrating LLM tool calls."""

__version__ = "2.0.0"
