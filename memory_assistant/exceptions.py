"""Custom exceptions for Memory Assistant."""


class MemoryAssistantError(Exception):
    """Base exception for Memory Assistant."""

    pass


class ConfigurationError(MemoryAssistantError):
    """Configuration-related errors."""

    pass


class LLMError(MemoryAssistantError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(MemoryAssistantError):
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
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ConversationError(MemoryAssistantError):
    """Conversation state errors."""

    pass


class InvalidTransitionError(ConversationError):
    """A tool-call part was asked to leave a terminal state."""

    def __init__(self, tool_call_id: str, current: str, target: str):
        super().__init__(
            f"Tool call '{tool_call_id}' cannot move from '{current}' to '{target}'"
        )
        self.tool_call_id = tool_call_id
        self.current = current
        self.target = target


class ConversationNotReadyError(ConversationError):
    """Conversation still holds unresolved tool calls."""

    def __init__(self, pending_call_ids: list[str]):
        joined = ", ".join(pending_call_ids)
        super().__init__(f"Conversation has unresolved tool calls: {joined}")
        self.pending_call_ids = list(pending_call_ids)


class ResolutionCancelledError(ConversationError):
    """Tool-call resolution was aborted before the pass finished."""

    pass
