"""
Subagents module: registry of child agents and the delegation tool.
"""

from ..memory import SharedMemoryStore
from .delegate import DelegateTool, create_delegation_tools
from .registry import AgentConfig, SubagentEntry, SubagentRegistry

__all__ = [
    "AgentConfig",
    "SubagentEntry",
    "SubagentRegistry",
    "SharedMemoryStore",
    "DelegateTool",
    "create_delegation_tools",
]
