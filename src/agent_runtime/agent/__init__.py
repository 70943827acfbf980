"""
Agent module: the turn loop, its state, context transforms and tool-use hooks.
"""

from .context import (
    CompactionConfig,
    CompactionTransform,
    ContextTransform,
    chain,
    estimate_tokens,
    sliding_window,
    token_budget,
    trim_orphan_tool_results,
)
from .core import Agent, QueueMode
from .hooks import (
    HookConfig,
    HookContext,
    HookDecision,
    HookMatcher,
    HookRunner,
    PreToolUseResult,
)
from .state import AgentState, AgentStateSnapshot, TurnResult

__all__ = [
    "Agent",
    "AgentState",
    "AgentStateSnapshot",
    "QueueMode",
    "TurnResult",
    "CompactionConfig",
    "CompactionTransform",
    "ContextTransform",
    "chain",
    "estimate_tokens",
    "sliding_window",
    "token_budget",
    "trim_orphan_tool_results",
    "HookConfig",
    "HookContext",
    "HookDecision",
    "HookMatcher",
    "HookRunner",
    "PreToolUseResult",
]
