from __future__ import annotations


class AgentError(Exception):
    """Base class for errors raised by the agent loop."""


class ToolExecutionError(AgentError):
    """A tool invocation failed. Converted into an error tool result."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class ProviderError(AgentError):
    """The LLM provider failed. Fatal to the current turn."""

    def __init__(self, provider_name: str, message: str):
        super().__init__(message)
        self.provider_name = provider_name


class ApprovalProtocolError(AgentError):
    """Misuse of the approval rendezvous (duplicate id, second continue gate)."""


class ProcessError(AgentError):
    """Subprocess spawn/write/resize failure."""


class PersistenceError(AgentError):
    """A checkpoint could not be written. The loop continues and retries later."""


class IterationCeilingError(AgentError):
    """The hard step ceiling of a single run was reached."""

    def __init__(self, ceiling: int):
        super().__init__(f"Conversation exceeded the hard ceiling of {ceiling} steps")
        self.ceiling = ceiling
