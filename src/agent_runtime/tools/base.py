"""
Base classes for tools.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from ..cancellation import CancellationSignal
from ..llm.base import ToolDefinition
from ..messages import ImageContent, TextContent


class ToolArgumentError(ValueError):
    """Arguments supplied by the model do not match the tool schema."""


@dataclass(frozen=True)
class ToolResult:
    """Result from a tool execution."""

    content: tuple[Union[TextContent, ImageContent], ...] = ()
    is_error: bool = False
    details: Any = None

    def __post_init__(self):
        if not isinstance(self.content, tuple):
            object.__setattr__(self, "content", tuple(self.content))

    @classmethod
    def text(cls, text: str, details: Any = None) -> "ToolResult":
        return cls(content=(TextContent(text),), details=details)

    @classmethod
    def error(cls, message: str, details: Any = None) -> "ToolResult":
        return cls(content=(TextContent(message),), is_error=True, details=details)

    @property
    def output(self) -> str:
        """Text fragments joined by newlines."""
        return "\n".join(c.text for c in self.content if isinstance(c, TextContent))

    def summary(self, limit: int = 200) -> str:
        """Short one-line description for events and logs."""
        parts = [
            c.text if isinstance(c, TextContent) else f"[image: {c.mime_type}]"
            for c in self.content
        ]
        text = " ".join(" ".join(parts).split())
        if len(text) > limit:
            return text[: limit - 3] + "..."
        return text


@dataclass(frozen=True)
class ToolCallContext:
    """Per-call information handed to a tool."""

    call_id: str
    tool_name: str
    cancellation: CancellationSignal = field(default_factory=CancellationSignal)


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


_PYTHON_TYPES: dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
}


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "arguments"
        problems.append(f"{location}: {err['msg']}")
    return "; ".join(problems)


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    The handler receives the call context followed by the validated
    arguments as keyword arguments, and returns a ToolResult or a string.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, Union[ToolResult, str]]]
    label: str = ""
    _args_model: type[BaseModel] | None = field(default=None, init=False, repr=False)

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def _build_args_model(self) -> type[BaseModel]:
        fields: dict[str, Any] = {}
        for param in self.parameters:
            py_type = _PYTHON_TYPES.get(param.param_type, Any)
            if param.enum:
                py_type = Literal[tuple(param.enum)]  # type: ignore[valid-type]
            if param.required:
                fields[param.name] = (py_type, Field(..., description=param.description))
            else:
                fields[param.name] = (
                    Optional[py_type],
                    Field(default=param.default, description=param.description),
                )
        return create_model(
            f"{self.name}_arguments",
            __config__=ConfigDict(extra="forbid"),
            **fields,
        )

    def validate_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validate model-supplied arguments against the parameter list."""
        if self._args_model is None:
            self._args_model = self._build_args_model()
        try:
            model = self._args_model.model_validate(arguments)
        except ValidationError as e:
            raise ToolArgumentError(_format_validation_error(e)) from e

        validated = model.model_dump(exclude_unset=True)
        for param in self.parameters:
            if param.name not in validated and param.default is not None:
                validated[param.name] = param.default
        return validated

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )

    async def execute(self, context: ToolCallContext, arguments: dict[str, Any]) -> ToolResult:
        """Execute the tool handler."""
        result = await self.handler(context, **arguments)
        if isinstance(result, str):
            return ToolResult.text(result)
        return result


class BaseTool(ABC):
    """Base class for class-based tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    def label(self) -> str:
        """Human-readable label, defaults to the name."""
        return self.name

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """Get the tool parameters schema (JSON Schema)."""
        pass

    def validate_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Check required arguments. Subclasses may validate further."""
        missing = [
            name for name in self.parameters.get("required", [])
            if name not in arguments
        ]
        if missing:
            raise ToolArgumentError(f"Missing required argument(s): {', '.join(missing)}")
        return dict(arguments)

    @abstractmethod
    async def execute(self, context: ToolCallContext, arguments: dict[str, Any]) -> ToolResult:
        """Execute the tool with validated arguments."""
        pass

    def to_definition(self) -> ToolDefinition:
        """Convert to a tool definition for LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )
