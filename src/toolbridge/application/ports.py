"""Application layer ports (interfaces for adapters).

Defines protocols that the upstream completion-service adapter must
implement. This keeps the application layer free of HTTP client details.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Protocol

from toolbridge.domain.value_objects import ModelInfo, SessionEvent, ToolDefinition

RegisterCall = Callable[[str], "asyncio.Future[str]"]


@dataclass
class SessionConfig:
    """Everything an upstream session needs to run one conversation.

    Attributes:
        model: Resolved upstream model id.
        conversation_id: Id of the owning conversation (used in the MCP URL
            handed to agent-style upstreams).
        register_call: Registers a call id with the conversation's router and
            returns the handle the upstream awaits for the client's result.
        system: Optional system / instructions text.
        tools: Tool definitions advertised for this turn.
    """

    model: str
    conversation_id: str
    register_call: RegisterCall
    system: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)


class UpstreamSession(Protocol):
    """One live upstream conversation."""

    def stream(self, prompt: str) -> AsyncIterator[SessionEvent]:
        """Send prompt and yield session events until idle or error.

        Tool calls must be registered through SessionConfig.register_call
        before the ToolRequests event carrying them is yielded.
        """
        ...

    async def abort(self) -> None:
        """Stop the session; the stream will not be resumed."""
        ...


class CompletionBackend(Protocol):
    """Port for the upstream completion service.

    Implementations:
        - OpenAIUpstream: any OpenAI-compatible /chat/completions service
    """

    async def list_models(self) -> list[ModelInfo]:
        """Models the upstream currently serves."""
        ...

    def open_session(self, config: SessionConfig) -> UpstreamSession:
        """Create a session for one conversation."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
