"""Custom exceptions for the agent loop."""


class AgentLoopError(Exception):
    """Base exception for the agent loop."""

    pass


class ConfigurationError(AgentLoopError):
    """Configuration-related errors."""

    pass


class LLMError(AgentLoopError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """Model endpoint unreachable or rejected the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(AgentLoopError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolBlockedError(ToolError):
    """Tool execution blocked by the command safety gate."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Tool '{tool_name}' blocked: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class ToolArgumentsError(ToolError):
    """Tool call arguments are not a well-formed JSON object."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"invalid arguments for {tool_name}: {message}")
        self.tool_name = tool_name


class ConversationStateError(AgentLoopError):
    """A message would break the tool-call/tool-result pairing of the history."""

    pass


class MaxTurnsExceededError(AgentLoopError):
    """The model kept requesting tools past the configured turn limit."""

    def __init__(self, max_turns: int):
        super().__init__(f"Max turns exceeded: {max_turns}")
        self.max_turns = max_turns


class AgentCancelledError(AgentLoopError):
    """The loop was aborted by its caller."""

    pass
