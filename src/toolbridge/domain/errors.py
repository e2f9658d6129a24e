"""Domain exception hierarchy.

All domain-level errors inherit from ToolBridgeError.
This allows clean exception handling at adapter boundaries.
"""


class ToolBridgeError(Exception):
    """Base exception for all domain errors."""


class DuplicateCallIdError(ToolBridgeError):
    """A call id was registered while an entry for it is still pending."""

    def __init__(self, call_id: str) -> None:
        super().__init__(f"Tool call {call_id} is already pending")
        self.call_id = call_id


class ToolCallRejectedError(ToolBridgeError):
    """A pending tool call was completed with a failure (teardown, timeout)."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NoExpectedToolCallError(ToolBridgeError):
    """An MCP tools/call arrived for a tool nobody announced."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f'No expected tool call for "{tool_name}"')
        self.tool_name = tool_name


class UnresolvedToolResultError(ToolBridgeError):
    """A tool result arrived for a call id with no pending entry.

    The router reports this as a NOT_FOUND outcome rather than raising; the
    exception exists for callers that choose to treat it as fatal.
    """


class ToolNameUnresolvedError(ToolBridgeError):
    """A tool name is ambiguous or unknown against the cached definitions."""


class SessionTeardownError(ToolBridgeError):
    """A session-end listener failed after pending calls were rejected."""

    def __init__(self, message: str, rejected: int = 0) -> None:
        super().__init__(message)
        self.rejected = rejected


class ModelNotAvailableError(ToolBridgeError):
    """No exact, normalized or same-family match for the requested model."""

    def __init__(self, model: str) -> None:
        super().__init__(f"Model {model!r} is not available")
        self.model = model


class InvalidRequestError(ToolBridgeError):
    """Request validation failed (unsupported content part, empty input, etc)."""


class ConversationNotFoundError(ToolBridgeError):
    """Requested conversation id does not exist in the manager."""


class UpstreamError(ToolBridgeError):
    """The upstream completion service failed or returned an unusable reply."""
