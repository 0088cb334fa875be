"""Tools package for Memory Assistant."""

from memory_assistant.tools.registry import (
    Executor,
    ToolDescriptor,
    ToolRegistry,
    ToolResult,
)

__all__ = [
    "Executor",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolResult",
]
