"""
Exception hierarchy for the conversation engine.

Errors that the model can reasonably react to (tool failures) are turned into
tool-result turns inside the round loop. Everything else is surfaced to the
caller, either raised or carried on an answer-shaped result.
"""


class AgentError(Exception):
    """Base class for all ai-chat-agent errors."""


class ConfigError(AgentError, ValueError):
    """A configuration value is outside its allowed bounds."""


class ProviderConnectionError(AgentError):
    """A tool provider (or LLM provider) could not be reached."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"Provider '{provider}' is not available: {message}")
        self.provider = provider


class ToolInvocationError(AgentError):
    """A tool call failed: unknown name, bad arguments or remote failure."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class MalformedToolCallError(ToolInvocationError):
    """The model requested a tool call without a name or an argument object."""


class RoundLimitExceeded(AgentError):
    """The request/tool-call loop did not finish within the round cap."""

    def __init__(self, max_rounds: int):
        super().__init__(f"Maximum number of tool rounds ({max_rounds}) reached")
        self.max_rounds = max_rounds


class TransportError(AgentError):
    """Network, status or parse failure while talking to an LLM provider."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class EmptyHistoryError(AgentError):
    """Summarization was requested for a session with no history."""


class PersistenceError(AgentError):
    """The session store failed to save a change."""


class UnknownSessionError(AgentError, KeyError):
    """No session is registered under the requested id."""

    def __str__(self) -> str:
        return f"Unknown session: {self.args[0]}"
