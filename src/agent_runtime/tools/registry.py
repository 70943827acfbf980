"""
Tool registry: the name -> tool capability set of one agent.
"""

from typing import Iterable, Union

import structlog

from ..cancellation import CancellationSignal
from ..errors import DuplicateToolError, OperationAborted
from ..llm.base import UNPARSED_ARGUMENTS_KEY, ToolDefinition
from ..messages import ToolCallContent
from .base import BaseTool, Tool, ToolArgumentError, ToolCallContext, ToolResult

logger = structlog.get_logger()

AnyTool = Union[BaseTool, Tool]


class ToolRegistry:
    """Registry for managing tools."""

    def __init__(self, tools: Iterable[AnyTool] = ()):
        self._tools: dict[str, AnyTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: AnyTool) -> None:
        """Register a tool. Names must be unique."""
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> bool:
        """Unregister a tool. Returns whether it was registered."""
        if name in self._tools:
            del self._tools[name]
            logger.debug("Tool unregistered", tool_name=name)
            return True
        return False

    def get(self, name: str) -> AnyTool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def copy(self) -> "ToolRegistry":
        return ToolRegistry(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for LLM."""
        return [tool.to_definition() for tool in self._tools.values()]

    async def execute(
        self,
        call: ToolCallContent,
        cancellation: CancellationSignal | None = None,
    ) -> ToolResult:
        """Execute a tool call.

        Never raises for tool-side problems: unknown tools, invalid
        arguments and exceptions all come back as error results.
        """
        tool = self.get(call.name)
        if tool is None:
            logger.warning("Unknown tool requested", tool_name=call.name, tool_call_id=call.id)
            return ToolResult.error(
                f"Tool '{call.name}' not found",
                details={"reason": "unknown_tool"},
            )

        if UNPARSED_ARGUMENTS_KEY in call.arguments:
            logger.warning("Undecodable tool arguments", tool_name=call.name, tool_call_id=call.id)
            return ToolResult.error(
                f"Invalid arguments for tool '{call.name}': arguments are not a JSON object: "
                f"{call.arguments[UNPARSED_ARGUMENTS_KEY]}",
                details={"reason": "invalid_arguments"},
            )

        try:
            arguments = tool.validate_arguments(call.arguments)
        except ToolArgumentError as e:
            logger.warning("Invalid tool arguments", tool_name=call.name, error=str(e))
            return ToolResult.error(
                f"Invalid arguments for tool '{call.name}': {e}",
                details={"reason": "invalid_arguments"},
            )

        context = ToolCallContext(
            call_id=call.id,
            tool_name=call.name,
            cancellation=cancellation or CancellationSignal(),
        )

        try:
            logger.info("Executing tool", tool_name=call.name, arguments=arguments)
            result = await tool.execute(context, arguments)
        except OperationAborted as e:
            logger.info("Tool aborted", tool_name=call.name, reason=e.reason)
            return ToolResult.error(
                f"Tool execution aborted: {e.reason}",
                details={"reason": "aborted"},
            )
        except Exception as e:
            logger.error("Tool execution error", tool_name=call.name, error=str(e))
            return ToolResult.error(str(e) or type(e).__name__, details={"reason": "exception"})

        if not isinstance(result, ToolResult):
            logger.error("Tool returned an invalid result", tool_name=call.name)
            return ToolResult.error(f"Tool '{call.name}' returned an invalid result")

        logger.info("Tool executed", tool_name=call.name, is_error=result.is_error)
        return result


def as_registry(tools: Union[ToolRegistry, Iterable[AnyTool], None]) -> ToolRegistry:
    """Accept either a registry or a plain list of tools."""
    if tools is None:
        return ToolRegistry()
    if isinstance(tools, ToolRegistry):
        return tools
    return ToolRegistry(tools)
