"""
Delegation tool - exposes a registered subagent as an ordinary tool.
"""

from typing import Any, Iterable

from ..events import Observer
from ..messages import StopReason
from ..tools.base import BaseTool, ToolCallContext, ToolResult
from .registry import SubagentRegistry


class DelegateTool(BaseTool):
    """Forward a task to a subagent and return its final answer."""

    def __init__(
        self,
        registry: SubagentRegistry,
        subagent_id: str,
        name: str | None = None,
        description: str | None = None,
        observers: Iterable[Observer] = (),
    ):
        self.registry = registry
        self.subagent_id = subagent_id
        self._name = name or f"delegate_{subagent_id}"
        entry = registry.get(subagent_id)
        self._description = description or (
            entry.description
            or f"Delegate a self-contained task to the '{subagent_id}' subagent."
        )
        self.observers = tuple(observers)

    @property
    def name(self) -> str:
        return self._name

    @property
    def label(self) -> str:
        return f"Delegate to {self.subagent_id}"

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "task": {
                    "type": "string",
                    "description": "Complete instructions for the subagent",
                },
            },
            "required": ["task"],
        }

    async def execute(self, context: ToolCallContext, arguments: dict[str, Any]) -> ToolResult:
        result = await self.registry.run(
            self.subagent_id,
            arguments["task"],
            cancellation=context.cancellation,
            observers=self.observers,
        )
        details = {
            "subagent_id": self.subagent_id,
            "stop_reason": result.stop_reason.value,
            "input_tokens": result.usage.input_tokens,
            "output_tokens": result.usage.output_tokens,
        }
        if result.stop_reason != StopReason.END_TURN:
            reason = result.error or result.text or "no answer"
            return ToolResult.error(
                f"Subagent '{self.subagent_id}' stopped ({result.stop_reason.value}): {reason}",
                details=details,
            )
        return ToolResult.text(result.text, details=details)


def create_delegation_tools(
    registry: SubagentRegistry,
    observers: Iterable[Observer] = (),
) -> list[DelegateTool]:
    """One delegation tool per registered subagent."""
    observers = tuple(observers)
    return [DelegateTool(registry, entry.id, observers=observers) for entry in registry.list()]
