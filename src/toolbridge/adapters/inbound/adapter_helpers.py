"""Shared helper functions for inbound adapters.

Contains common functionality used by multiple API adapters to avoid code duplication.
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog
from fastapi import HTTPException, Request, status

from toolbridge.adapters.inbound.metrics import (
    model_resolution_total,
    tool_calls_forwarded_total,
    tool_results_total,
)
from toolbridge.application.bridge_service import Turn, TurnRequest
from toolbridge.domain.errors import UpstreamError
from toolbridge.domain.value_objects import SessionError, TextDelta, ToolRequest, ToolRequests

logger = structlog.get_logger(__name__)


def get_bridge_state(request: Request) -> Any:
    """Safely get bridge state from request, raising clear error if not initialized.

    Args:
        request: FastAPI request object

    Returns:
        The application state object (settings, bridge service, conversations)

    Raises:
        HTTPException: If the bridge state is not initialized
    """
    if not hasattr(request.app.state, "toolbridge") or request.app.state.toolbridge is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server is still initializing. Please retry in a few seconds.",
        )
    return request.app.state.toolbridge


def new_id(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:24]}"


def arguments_json(arguments: dict[str, Any]) -> str:
    return json.dumps(arguments)


@dataclass(frozen=True)
class TurnSummary:
    """What a completions request did to the correlation state."""

    conversation_id: str
    kind: str  # "started" or "continued"
    unresolved: int = 0


async def start_turn(request: Request, state: Any, turn_request: TurnRequest) -> Turn:
    """Open a turn on the bridge service and record its correlation metrics.

    The turn summary is kept on request.state so the request middleware can
    log it and tag the response with the conversation id.
    """
    turn = await state.service.open_turn(turn_request)
    for outcome in turn.outcomes.values():
        tool_results_total.labels(outcome=outcome.value).inc()
    if turn.strategy is not None:
        model_resolution_total.labels(strategy=turn.strategy.value).inc()
    request.state.turn = TurnSummary(
        conversation_id=turn.conversation.id,
        kind="continued" if turn.continued else "started",
        unresolved=len(turn.unresolved),
    )
    return turn


def record_tool_calls(api: str, event: ToolRequests) -> None:
    tool_calls_forwarded_total.labels(api=api).inc(len(event.requests))


@dataclass
class CollectedTurn:
    """A turn drained into a single non-streaming response."""

    text: str = ""
    tool_requests: list[ToolRequest] = field(default_factory=list)


async def collect_turn(turn: Turn, api: str) -> CollectedTurn:
    """Drain turn events for a non-streaming response.

    Raises:
        UpstreamError: If the upstream session failed mid-turn.
    """
    collected = CollectedTurn()
    chunks: list[str] = []
    async for event in turn.events:
        if isinstance(event, TextDelta):
            chunks.append(event.text)
        elif isinstance(event, ToolRequests):
            record_tool_calls(api, event)
            collected.tool_requests.extend(event.requests)
        elif isinstance(event, SessionError):
            raise UpstreamError(event.message)
    collected.text = "".join(chunks)
    return collected
