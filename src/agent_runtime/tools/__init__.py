"""
Tools module: tool definitions, the per-agent registry and built-in tools.
"""

from .base import BaseTool, Tool, ToolArgumentError, ToolCallContext, ToolParameter, ToolResult
from .registry import ToolRegistry, as_registry
from .memory_tool import create_shared_memory_tools

__all__ = [
    "BaseTool",
    "Tool",
    "ToolArgumentError",
    "ToolCallContext",
    "ToolParameter",
    "ToolResult",
    "ToolRegistry",
    "as_registry",
    "create_shared_memory_tools",
]
