"""
Subagent registry - a directory of independently configured child agents.

Every invocation builds a fresh Agent from the stored configuration, so
concurrent invocations never share conversation state. The only channel
between agents is an explicitly shared SharedMemoryStore.
"""

from dataclasses import dataclass, field
from typing import Iterable

import structlog

from ..agent.context import ContextTransform
from ..agent.core import Agent
from ..agent.state import TurnResult
from ..cancellation import CancellationSignal
from ..config import Settings, get_settings
from ..errors import DuplicateSubagentError, SubagentLimitError, UnknownSubagentError
from ..events import Observer
from ..llm.base import BaseLLM
from ..memory import SharedMemoryStore
from ..tools.memory_tool import create_shared_memory_tools
from ..tools.registry import AnyTool, ToolRegistry

logger = structlog.get_logger()


@dataclass
class AgentConfig:
    """Everything needed to build an Agent."""

    llm: BaseLLM
    tools: ToolRegistry | Iterable[AnyTool] = ()
    system_prompt: str | None = None
    transform: ContextTransform | None = None
    max_turns: int | None = None
    parallel_tool_calls: bool | None = None
    expose_shared_memory: bool = True


@dataclass
class SubagentEntry:
    """A registered subagent."""

    id: str
    config: AgentConfig
    memory: SharedMemoryStore | None = None
    description: str = ""


class SubagentRegistry:
    """Registry of subagents, owned by the integrator for the process lifetime."""

    def __init__(self, max_agents: int | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.max_agents = max_agents if max_agents is not None else self.settings.max_subagents
        self._entries: dict[str, SubagentEntry] = {}

    def register(self, entry: SubagentEntry) -> None:
        if entry.id in self._entries:
            raise DuplicateSubagentError(entry.id)
        if len(self._entries) >= self.max_agents:
            raise SubagentLimitError(
                f"Cannot register '{entry.id}': limit of {self.max_agents} subagents reached"
            )
        self._entries[entry.id] = entry
        logger.info("Subagent registered", subagent_id=entry.id)

    def unregister(self, subagent_id: str) -> bool:
        if subagent_id in self._entries:
            del self._entries[subagent_id]
            logger.info("Subagent unregistered", subagent_id=subagent_id)
            return True
        return False

    def get(self, subagent_id: str) -> SubagentEntry:
        try:
            return self._entries[subagent_id]
        except KeyError:
            raise UnknownSubagentError(subagent_id) from None

    def list(self) -> list[SubagentEntry]:
        return list(self._entries.values())

    def __contains__(self, subagent_id: object) -> bool:
        return subagent_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _build_tools(self, entry: SubagentEntry) -> ToolRegistry:
        tools = entry.config.tools
        registry = tools.copy() if isinstance(tools, ToolRegistry) else ToolRegistry(tools)

        if entry.memory is not None and entry.config.expose_shared_memory:
            for tool in create_shared_memory_tools(entry.memory):
                if tool.name in registry:
                    logger.debug("Keeping configured tool over memory tool", tool_name=tool.name)
                    continue
                registry.register(tool)
        return registry

    def build_agent(self, subagent_id: str) -> Agent:
        """Build a fresh Agent from the stored configuration."""
        entry = self.get(subagent_id)
        config = entry.config
        return Agent(
            config.llm,
            self._build_tools(entry),
            system_prompt=config.system_prompt,
            transform=config.transform,
            max_turns=config.max_turns,
            parallel_tool_calls=config.parallel_tool_calls,
            settings=self.settings,
        )

    async def run(
        self,
        subagent_id: str,
        task: str,
        cancellation: CancellationSignal | None = None,
        observers: Iterable[Observer] = (),
    ) -> TurnResult:
        """Run one prompt call on a fresh subagent.

        ``observers`` are subscribed to this invocation only; nothing is
        forwarded to a parent's event stream implicitly.
        """
        agent = self.build_agent(subagent_id)
        unsubscribers = [agent.subscribe(observer) for observer in observers]
        logger.info("Subagent invoked", subagent_id=subagent_id)
        try:
            result = await agent.prompt(task, cancellation=cancellation)
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()
        logger.info(
            "Subagent finished",
            subagent_id=subagent_id,
            stop_reason=result.stop_reason.value,
        )
        return result

    async def invoke(
        self,
        subagent_id: str,
        task: str,
        cancellation: CancellationSignal | None = None,
        observers: Iterable[Observer] = (),
    ) -> str:
        """Run the subagent and return its final assistant text."""
        result = await self.run(subagent_id, task, cancellation=cancellation, observers=observers)
        return result.text
