"""Turn orchestration between provider adapters and the upstream session.

A turn is one inbound completions request. It either starts a fresh
conversation or resumes the upstream stream a previous turn parked when the
model asked the client to run tools.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field, replace

import structlog

from toolbridge.application.conversation import Conversation, ConversationManager
from toolbridge.application.ports import CompletionBackend, SessionConfig
from toolbridge.domain.errors import ModelNotAvailableError
from toolbridge.domain.model_resolver import ModelResolution, ResolutionStrategy, resolve_model
from toolbridge.domain.value_objects import (
    ResolveOutcome,
    SessionError,
    SessionEvent,
    SessionIdle,
    TextDelta,
    ToolDefinition,
    ToolRequest,
    ToolRequests,
    ToolResult,
)

logger = structlog.get_logger(__name__)

DEFAULT_BRIDGE_SERVER_NAME = "xcode-bridge"


@dataclass
class TurnRequest:
    """Provider-neutral view of one inbound completions request.

    Attributes:
        model: Model id as the client asked for it.
        prompt: Flattened conversation text.
        system: System / instructions text, if any.
        tools: Tools the client advertises this turn.
        tool_results: Results the client reports for earlier tool calls.
    """

    model: str
    prompt: str
    system: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)


@dataclass
class Turn:
    """A running turn, handed back to the provider adapter.

    Attributes:
        conversation: Conversation the turn runs in.
        model: Upstream model id serving the turn.
        outcomes: Resolve outcome per reported call id.
        events: Session events to render in the provider's wire format.
        continued: True when the turn resumed a parked stream.
        strategy: How the model was resolved (None for continued turns).
    """

    conversation: Conversation
    model: str
    outcomes: dict[str, ResolveOutcome]
    events: AsyncIterator[SessionEvent]
    continued: bool = False
    strategy: ResolutionStrategy | None = None

    @property
    def unresolved(self) -> list[str]:
        return [call_id for call_id, outcome in self.outcomes.items() if not outcome]


def strip_bridge_prefix(name: str, bridge_server_name: str) -> str:
    """Drop the "<bridge_server_name>-" prefix upstream agents put on bridged tools."""
    prefix = f"{bridge_server_name}-"
    if name.startswith(prefix):
        return name[len(prefix):]
    return name


class BridgeService:
    """Opens turns against the upstream and keeps tool calls correlated.

    Example:
        >>> service = BridgeService(backend, ConversationManager())
        >>> turn = await service.open_turn(TurnRequest(model="gpt-4o", prompt="[User]: hi"))
        >>> async for event in turn.events:
        ...     print(event)
    """

    def __init__(
        self,
        backend: CompletionBackend,
        conversations: ConversationManager,
        bridge_server_name: str = DEFAULT_BRIDGE_SERVER_NAME,
    ) -> None:
        self._backend = backend
        self._conversations = conversations
        self._bridge_server_name = bridge_server_name

    @property
    def conversations(self) -> ConversationManager:
        return self._conversations

    async def open_turn(self, request: TurnRequest) -> Turn:
        """Resume a parked conversation or start a new one.

        A parked stream is only resumed when at least one reported result
        reached a pending or expected call. Otherwise the parked upstream is
        still waiting on calls nobody answered, so it is torn down and the
        request runs as a fresh conversation.

        Raises:
            ModelNotAvailableError: If a new conversation is needed and the
                requested model has no match upstream.
        """
        outcomes: dict[str, ResolveOutcome] = {}
        if request.tool_results:
            conversation = self._conversations.find_by_continuation(
                result.call_id for result in request.tool_results
            )
            outcomes = self._resolve_results(conversation, request.tool_results)
            if conversation is not None and conversation.events is not None:
                if any(outcomes.values()):
                    return self._continue_turn(conversation, request, outcomes)
                await self._abandon_parked(conversation)

        resolution = await self._resolve_model(request.model)

        conversation = self._conversations.create()
        structlog.contextvars.bind_contextvars(conversation_id=conversation.id)
        conversation.model = resolution.model_id
        conversation.cache_tools(request.tools)

        session = self._backend.open_session(
            SessionConfig(
                model=resolution.model_id,
                conversation_id=conversation.id,
                register_call=conversation.register_call,
                system=request.system,
                tools=list(request.tools),
            )
        )
        conversation.session = session
        conversation.start_session()
        conversation.events = aiter(session.stream(request.prompt))

        logger.info(
            "turn_started",
            model=resolution.model_id,
            strategy=resolution.strategy.value,
            tools=len(request.tools),
        )
        return Turn(
            conversation=conversation,
            model=resolution.model_id,
            outcomes=outcomes,
            events=self._run(conversation),
            strategy=resolution.strategy,
        )

    def _continue_turn(
        self,
        conversation: Conversation,
        request: TurnRequest,
        outcomes: dict[str, ResolveOutcome],
    ) -> Turn:
        structlog.contextvars.bind_contextvars(conversation_id=conversation.id)
        if request.tools:
            conversation.cache_tools(request.tools)
        logger.info(
            "turn_continued",
            results=len(request.tool_results),
            unresolved=sum(1 for o in outcomes.values() if not o),
        )
        return Turn(
            conversation=conversation,
            model=conversation.model or request.model,
            outcomes=outcomes,
            events=self._run(conversation),
            continued=True,
        )

    async def _abandon_parked(self, conversation: Conversation) -> None:
        logger.warning(
            "parked_turn_abandoned",
            conversation_id=conversation.id,
            pending=conversation.tool_router.pending_count,
        )
        conversation.mark_errored()
        conversation.cleanup()
        await conversation.abort()

    async def _resolve_model(self, requested: str) -> ModelResolution:
        models = await self._backend.list_models()
        resolution = resolve_model(requested, [model.id for model in models])
        if resolution is None:
            logger.warning("model_not_available", requested=requested, available=len(models))
            raise ModelNotAvailableError(requested)
        if resolution.strategy is ResolutionStrategy.FAMILY:
            logger.warning(
                "model_fallback", requested=requested, resolved=resolution.model_id
            )
        return resolution

    def _resolve_results(
        self, conversation: Conversation | None, results: list[ToolResult]
    ) -> dict[str, ResolveOutcome]:
        outcomes: dict[str, ResolveOutcome] = {}
        for result in results:
            if conversation is None:
                outcome = ResolveOutcome.NOT_FOUND
            else:
                outcome = conversation.resolve_tool_call(result.call_id, result.output)
            if not outcome:
                logger.warning("tool_result_unresolved", call_id=result.call_id)
            outcomes[result.call_id] = outcome
        return outcomes

    def _prepare_tool_requests(
        self, conversation: Conversation, event: ToolRequests
    ) -> ToolRequests:
        prepared: list[ToolRequest] = []
        for request in event.requests:
            name = strip_bridge_prefix(request.name, self._bridge_server_name)
            name = conversation.resolve_tool_name(name)
            arguments = conversation.normalize_args(name, request.arguments)
            if not conversation.has_pending_call(request.call_id):
                conversation.expect_call(request.call_id, name)
            prepared.append(replace(request, name=name, arguments=arguments))
        return ToolRequests(tuple(prepared))

    async def _run(self, conversation: Conversation) -> AsyncIterator[SessionEvent]:
        """Relay upstream events until the turn ends or parks on tool calls."""
        events = conversation.events
        if events is None:
            return

        settled = False
        try:
            while True:
                try:
                    event = await anext(events)
                except StopAsyncIteration:
                    event = SessionIdle()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("upstream_stream_failed", error=str(e), exc_info=True)
                    event = SessionError(str(e))

                if isinstance(event, TextDelta):
                    yield event
                elif isinstance(event, ToolRequests):
                    prepared = self._prepare_tool_requests(conversation, event)
                    logger.info(
                        "turn_parked",
                        tool_calls=[r.name for r in prepared.requests],
                    )
                    settled = True
                    yield prepared
                    return
                elif isinstance(event, SessionIdle):
                    settled = True
                    conversation.end_session()
                    await conversation.abort()
                    logger.info("turn_completed")
                    yield event
                    return
                elif isinstance(event, SessionError):
                    settled = True
                    conversation.mark_errored()
                    conversation.end_session()
                    await conversation.abort()
                    logger.error("session_error", error=event.message)
                    yield event
                    return
        except (asyncio.CancelledError, GeneratorExit):
            if not settled:
                logger.info("client_disconnected")
                conversation.mark_errored()
                conversation.cleanup()
                await conversation.abort()
            raise
