"""Integrations with processes outside the engine."""

from .external import DEFAULT_TOOL_TIMEOUT, ToolResult, run_tool
from .vcs import GitError, GitRepository

__all__ = [
    "DEFAULT_TOOL_TIMEOUT",
    "GitError",
    "GitRepository",
    "ToolResult",
    "run_tool",
]
