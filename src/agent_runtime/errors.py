"""
Exception hierarchy for the agent runtime.

Configuration errors fail fast at registration or dispatch time, provider
faults end the current prompt call, invariant violations are programming
errors. Tool faults never show up here: they become error tool results.
"""


class AgentRuntimeError(Exception):
    """Base class for all runtime errors."""


class ConfigurationError(AgentRuntimeError):
    """Invalid agent, tool or subagent configuration."""


class DuplicateToolError(ConfigurationError):
    """A tool with the same name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' is already registered")
        self.name = name


class DuplicateSubagentError(ConfigurationError):
    """A subagent with the same id is already registered."""

    def __init__(self, subagent_id: str):
        super().__init__(f"Subagent '{subagent_id}' is already registered")
        self.subagent_id = subagent_id


class UnknownSubagentError(ConfigurationError):
    """No subagent is registered under the requested id."""

    def __init__(self, subagent_id: str):
        super().__init__(f"Subagent '{subagent_id}' is not registered")
        self.subagent_id = subagent_id


class SubagentLimitError(ConfigurationError):
    """The registry already holds the maximum number of subagents."""


class ProviderError(AgentRuntimeError):
    """The model provider failed during a model call."""


class InvariantViolationError(AgentRuntimeError):
    """An internal invariant was broken (e.g. an orphan tool result)."""


class SessionError(AgentRuntimeError):
    """Base class for session persistence errors."""


class SessionFormatError(SessionError):
    """A persisted session document could not be decoded."""


class SessionIntegrityError(SessionError):
    """An appended entry would break the session tree structure."""


class OperationAborted(AgentRuntimeError):
    """Raised by cooperative code that observes a cancelled signal."""

    def __init__(self, reason: str = "aborted"):
        super().__init__(reason)
        self.reason = reason
