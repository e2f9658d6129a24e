"""Conversations and the manager that owns them.

A Conversation bundles one SessionLifecycle, ToolRouter and ToolCache for a
single logical multi-turn exchange with a client. The ConversationManager is
the registry HTTP adapters use to find the conversation a request belongs to.
"""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

import structlog

from toolbridge.application.ports import UpstreamSession
from toolbridge.domain.errors import SessionTeardownError
from toolbridge.domain.session_lifecycle import SessionLifecycle
from toolbridge.domain.tool_cache import NameMatchKind, ToolCache
from toolbridge.domain.tool_router import DEFAULT_TOOL_TIMEOUT_SECONDS, ToolRouter
from toolbridge.domain.value_objects import ResolveOutcome, SessionEvent, ToolDefinition

logger = structlog.get_logger(__name__)


class Conversation:
    """Per-conversation state and the facade over its domain objects.

    Attributes:
        id: Stable key the HTTP layer (and the MCP URL) refers to.
        model: Upstream model resolved for this conversation.
        session: Upstream session, once opened.
        events: Upstream event stream, parked between HTTP requests while the
            client executes tool calls.
    """

    def __init__(
        self,
        conversation_id: str,
        tool_call_timeout_seconds: float | None = DEFAULT_TOOL_TIMEOUT_SECONDS,
    ) -> None:
        self.id = conversation_id
        self.tool_router = ToolRouter(
            timeout_seconds=tool_call_timeout_seconds,
            on_expire=self._on_call_expired,
        )
        self.tool_cache = ToolCache()
        self.lifecycle = SessionLifecycle(self.tool_router)
        self.model: str | None = None
        self.session: UpstreamSession | None = None
        self.events: AsyncIterator[SessionEvent] | None = None
        self.created_at = time.time()

    # -- SessionLifecycle delegation --

    @property
    def session_active(self) -> bool:
        return self.lifecycle.active

    @property
    def had_error(self) -> bool:
        return self.lifecycle.errored

    def start_session(self) -> None:
        self.lifecycle.mark_active()
        logger.debug("session_started", conversation_id=self.id)

    def mark_errored(self) -> None:
        self.lifecycle.mark_errored()

    def end_session(self) -> int:
        """Mark the session inactive, rejecting every pending tool call."""
        return self._teardown(self.lifecycle.mark_inactive, "session_ended")

    def cleanup(self) -> int:
        """Force the session inactive from any phase. Safe to call twice."""
        return self._teardown(self.lifecycle.cleanup, "session_cleaned_up")

    def on_session_end(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self.lifecycle.on_session_end(listener)

    # -- ToolRouter delegation --

    def register_call(self, call_id: str) -> asyncio.Future[str]:
        future = self.tool_router.register(call_id)
        logger.debug("tool_call_registered", conversation_id=self.id, call_id=call_id)
        return future

    def expect_call(self, call_id: str, tool_name: str) -> None:
        self.tool_router.expect(call_id, tool_name)
        logger.debug(
            "tool_call_expected", conversation_id=self.id, call_id=call_id, tool=tool_name
        )

    def claim_call(self, tool_name: str) -> asyncio.Future[str]:
        return self.tool_router.claim(tool_name)

    def resolve_tool_call(self, call_id: str, output: str) -> ResolveOutcome:
        """Deliver a client-reported result; NOT_FOUND is left to the caller to log."""
        outcome = self.tool_router.resolve(call_id, output)
        if outcome:
            logger.debug(
                "tool_call_resolved",
                conversation_id=self.id,
                call_id=call_id,
                outcome=outcome.value,
            )
        return outcome

    def has_pending_call(self, call_id: str) -> bool:
        return self.tool_router.has_pending_call(call_id)

    def has_expected_tool(self, tool_name: str) -> bool:
        return self.tool_router.has_expected_tool(tool_name)

    @property
    def has_pending(self) -> bool:
        return self.tool_router.has_pending

    # -- ToolCache delegation --

    def cache_tools(self, tools: Iterable[ToolDefinition]) -> None:
        self.tool_cache.cache_tools(tools)

    def get_cached_tools(self) -> tuple[ToolDefinition, ...]:
        return self.tool_cache.get_cached_tools()

    def resolve_tool_name(self, name: str) -> str:
        match = self.tool_cache.match_tool_name(name)
        if match.kind is NameMatchKind.SUFFIX:
            logger.debug(
                "tool_name_resolved", conversation_id=self.id, requested=name, resolved=match.name
            )
        elif match.kind is NameMatchKind.AMBIGUOUS:
            logger.warning(
                "tool_name_ambiguous",
                conversation_id=self.id,
                requested=name,
                candidates=list(match.candidates),
            )
        elif match.kind is NameMatchKind.UNKNOWN:
            logger.warning("tool_name_unknown", conversation_id=self.id, requested=name)
        return match.name

    def normalize_args(self, tool_name: str, args: dict[str, Any]) -> dict[str, Any]:
        normalized = self.tool_cache.normalize_args(tool_name, args)
        if normalized != args:
            logger.debug(
                "tool_args_normalized",
                conversation_id=self.id,
                tool=tool_name,
                renamed=sorted(set(normalized) - set(args)),
            )
        return normalized

    # -- Upstream --

    async def abort(self) -> None:
        """Abort the upstream session and drop the parked stream."""
        session, self.session, self.events = self.session, None, None
        if session is None:
            return
        try:
            await session.abort()
        except Exception as e:
            logger.error("session_abort_failed", conversation_id=self.id, error=str(e))

    def _teardown(self, teardown: Callable[[], int], event: str) -> int:
        try:
            rejected = teardown()
        except SessionTeardownError as e:
            # Pending calls were already rejected before the listeners ran
            logger.error(
                "session_teardown_failed",
                conversation_id=self.id,
                error=str(e),
                rejected=e.rejected,
            )
            return e.rejected
        logger.debug(event, conversation_id=self.id, rejected=rejected)
        return rejected

    def _on_call_expired(self, call_id: str) -> None:
        logger.warning("tool_call_timed_out", conversation_id=self.id, call_id=call_id)
        self.events = None
        self.cleanup()


class ConversationManager:
    """Registry of live conversations, keyed by conversation id.

    Each conversation removes itself once its session ends, so a returned
    conversation is never reused across unrelated client sessions.

    Example:
        >>> manager = ConversationManager()
        >>> conversation = manager.create()
        >>> manager.get(conversation.id) is conversation
        True
        >>> manager.remove(conversation.id)
        >>> len(manager)
        0
    """

    def __init__(
        self, tool_call_timeout_seconds: float | None = DEFAULT_TOOL_TIMEOUT_SECONDS
    ) -> None:
        self._tool_call_timeout_seconds = tool_call_timeout_seconds
        self._conversations: dict[str, Conversation] = {}

    def create(self) -> Conversation:
        conversation = Conversation(
            uuid.uuid4().hex,
            tool_call_timeout_seconds=self._tool_call_timeout_seconds,
        )
        self._conversations[conversation.id] = conversation
        conversation.on_session_end(lambda: self._discard(conversation.id))
        logger.debug(
            "conversation_created",
            conversation_id=conversation.id,
            active=len(self._conversations),
        )
        return conversation

    def get(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def remove(self, conversation_id: str) -> None:
        conversation = self._conversations.pop(conversation_id, None)
        if conversation is None:
            return
        conversation.cleanup()
        logger.debug(
            "conversation_removed",
            conversation_id=conversation_id,
            active=len(self._conversations),
        )

    def find_by_continuation(self, call_ids: Iterable[str]) -> Conversation | None:
        """Find the conversation a batch of tool results belongs to.

        Falls back to the only conversation with an active session: the model
        sometimes retries a tool after an internal failure, so the reported
        call id matches nothing.
        """
        call_ids = list(call_ids)
        if not call_ids:
            return None

        for conversation in self._conversations.values():
            for call_id in call_ids:
                if conversation.has_pending_call(call_id):
                    logger.debug(
                        "continuation_matched",
                        conversation_id=conversation.id,
                        call_id=call_id,
                    )
                    return conversation

        active = [c for c in self._conversations.values() if c.session_active]
        if len(active) == 1:
            logger.debug("continuation_matched_active_session", conversation_id=active[0].id)
            return active[0]
        return None

    def find_by_expected_tool(self, tool_name: str) -> Conversation | None:
        for conversation in self._conversations.values():
            if conversation.has_expected_tool(tool_name):
                return conversation
        return None

    async def cleanup_all(self) -> int:
        """Tear down every conversation (server shutdown)."""
        conversations = list(self._conversations.values())
        for conversation in conversations:
            conversation.cleanup()
            await conversation.abort()
        self._conversations.clear()
        return len(conversations)

    def __len__(self) -> int:
        return len(self._conversations)

    def __iter__(self):
        return iter(list(self._conversations.values()))

    def _discard(self, conversation_id: str) -> None:
        if self._conversations.pop(conversation_id, None) is not None:
            logger.debug(
                "conversation_discarded",
                conversation_id=conversation_id,
                active=len(self._conversations),
            )
