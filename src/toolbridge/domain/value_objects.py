"""Domain value objects (immutable data structures).

Value objects are immutable data structures that represent concepts
from the domain model. They have no identity - two instances with
the same values are considered equal.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Delimiter between namespace, server and tool in fully-qualified tool names
# (e.g. "mcp__xcode-tools__XcodeRead").
TOOL_NAME_DELIMITER = "__"


class ResolveOutcome(Enum):
    """Result of delivering a tool result to the correlation table.

    Only NOT_FOUND is falsy, so callers that just need "was it known?"
    can keep treating the outcome as a boolean.
    """

    RESOLVED = "resolved"
    CLEARED = "cleared"
    NOT_FOUND = "not_found"

    def __bool__(self) -> bool:
        return self is not ResolveOutcome.NOT_FOUND


@dataclass(frozen=True)
class ToolDefinition:
    """A tool advertised to the model for the current turn.

    Attributes:
        name: Fully-qualified name (typically "<namespace>__<server>__<tool>").
        description: Human-readable description forwarded to the model.
        input_schema: JSON schema of the tool arguments.
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    """A tool result the client reports back for a call id."""

    call_id: str
    output: str


@dataclass(frozen=True)
class ToolRequest:
    """A tool call the model wants the client to execute."""

    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelInfo:
    """A model the upstream completion service serves."""

    id: str
    owned_by: str = "upstream"


# Upstream session events


@dataclass(frozen=True)
class TextDelta:
    """Incremental assistant text."""

    text: str


@dataclass(frozen=True)
class ToolRequests:
    """The model asked for one or more tool calls."""

    requests: tuple[ToolRequest, ...]


@dataclass(frozen=True)
class SessionIdle:
    """The upstream finished the turn."""


@dataclass(frozen=True)
class SessionError:
    """The upstream failed mid-turn."""

    message: str


SessionEvent = TextDelta | ToolRequests | SessionIdle | SessionError
