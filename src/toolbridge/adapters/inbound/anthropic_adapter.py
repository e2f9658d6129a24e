"""Anthropic Messages API adapter (POST /v1/messages).

Implements the Anthropic Messages API with:
- Non-streaming generation
- Streaming (SSE: message_start, content_block_*, message_delta, message_stop)
- Tool calls forwarded as `tool_use` blocks; results come back as
  `tool_result` blocks of the next user message
- Token counting estimate (POST /v1/messages/count_tokens)
"""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import structlog
from fastapi import APIRouter, Request, status
from sse_starlette.sse import EventSourceResponse

from toolbridge.adapters.inbound.adapter_helpers import (
    collect_turn,
    get_bridge_state,
    new_id,
    record_tool_calls,
    start_turn,
)
from toolbridge.adapters.inbound.prompt import (
    anthropic_system_text,
    anthropic_tool_definitions,
    count_anthropic_tokens,
    estimate_tokens,
    extract_anthropic_tool_results,
    format_anthropic_prompt,
)
from toolbridge.adapters.inbound.request_models import (
    ContentBlock,
    ContentBlockDeltaEvent,
    ContentBlockStartEvent,
    ContentBlockStopEvent,
    CountTokensRequest,
    CountTokensResponse,
    MessageDeltaEvent,
    MessagesRequest,
    MessagesResponse,
    MessageStartEvent,
    MessageStopEvent,
    TextContentBlock,
    ToolUseContentBlock,
    Usage,
)
from toolbridge.application.bridge_service import Turn, TurnRequest
from toolbridge.domain.value_objects import SessionError, TextDelta, ToolRequests

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["anthropic"])


def _sse(event: str, payload: Any) -> dict[str, str]:
    return {"event": event, "data": json.dumps(payload.model_dump())}


async def stream_message(turn: Turn, input_tokens: int) -> AsyncIterator[dict[str, Any]]:
    """Stream turn events as SSE events.

    Yields:
        SSE events in Anthropic Messages API format
    """
    yield _sse(
        "message_start",
        MessageStartEvent(
            message=MessagesResponse(
                id=new_id("msg_"),
                content=[],
                model=turn.model,
                stop_reason=None,
                usage=Usage(input_tokens=input_tokens, output_tokens=0),
            )
        ),
    )

    index = 0
    text_open = False
    output: list[str] = []
    stop_reason = "end_turn"

    try:
        async for event in turn.events:
            if isinstance(event, TextDelta):
                if not text_open:
                    yield _sse(
                        "content_block_start",
                        ContentBlockStartEvent(index=index, content_block=TextContentBlock(text="")),
                    )
                    text_open = True
                output.append(event.text)
                yield _sse(
                    "content_block_delta",
                    ContentBlockDeltaEvent(
                        index=index, delta={"type": "text_delta", "text": event.text}
                    ),
                )
            elif isinstance(event, ToolRequests):
                record_tool_calls("anthropic", event)
                if text_open:
                    yield _sse("content_block_stop", ContentBlockStopEvent(index=index))
                    index += 1
                    text_open = False
                for tool_request in event.requests:
                    yield _sse(
                        "content_block_start",
                        ContentBlockStartEvent(
                            index=index,
                            content_block=ToolUseContentBlock(
                                id=tool_request.call_id, name=tool_request.name, input={}
                            ),
                        ),
                    )
                    yield _sse(
                        "content_block_delta",
                        ContentBlockDeltaEvent(
                            index=index,
                            delta={
                                "type": "input_json_delta",
                                "partial_json": json.dumps(tool_request.arguments),
                            },
                        ),
                    )
                    yield _sse("content_block_stop", ContentBlockStopEvent(index=index))
                    index += 1
                stop_reason = "tool_use"
            elif isinstance(event, SessionError):
                yield {
                    "event": "error",
                    "data": json.dumps(
                        {"type": "error", "error": {"type": "api_error", "message": event.message}}
                    ),
                }
                return
    except asyncio.CancelledError:
        logger.info("stream_cancelled", api="anthropic")
        raise

    if text_open:
        yield _sse("content_block_stop", ContentBlockStopEvent(index=index))

    yield _sse(
        "message_delta",
        MessageDeltaEvent(
            delta={"stop_reason": stop_reason, "stop_sequence": None},
            usage=Usage(input_tokens=0, output_tokens=estimate_tokens("".join(output))),
        ),
    )
    yield _sse("message_stop", MessageStopEvent())
    logger.info("stream_complete", api="anthropic", stop_reason=stop_reason)


@router.post("/messages", status_code=status.HTTP_200_OK)
async def create_message(request_body: MessagesRequest, request: Request) -> Any:
    """Create a message (POST /v1/messages).

    Args:
        request_body: Validated MessagesRequest
        request: FastAPI request (for accessing app state)

    Returns:
        MessagesResponse, or an SSE stream when stream=true
    """
    logger.info(
        "messages_request",
        model=request_body.model,
        stream=request_body.stream,
        messages=len(request_body.messages),
    )
    state = get_bridge_state(request)

    prompt = format_anthropic_prompt(
        request_body.messages, state.settings.bridge.excluded_patterns
    )
    turn = await start_turn(
        request,
        state,
        TurnRequest(
            model=request_body.model,
            prompt=prompt,
            system=anthropic_system_text(request_body.system),
            tools=anthropic_tool_definitions(request_body.tools),
            tool_results=extract_anthropic_tool_results(request_body.messages),
        ),
    )
    input_tokens = count_anthropic_tokens(request_body)

    if request_body.stream:
        return EventSourceResponse(stream_message(turn, input_tokens))

    collected = await collect_turn(turn, "anthropic")
    content: list[ContentBlock] = []
    if collected.text:
        content.append(TextContentBlock(text=collected.text))
    content.extend(
        ToolUseContentBlock(id=r.call_id, name=r.name, input=r.arguments)
        for r in collected.tool_requests
    )

    return MessagesResponse(
        id=new_id("msg_"),
        content=content,
        model=turn.model,
        stop_reason="tool_use" if collected.tool_requests else "end_turn",
        usage=Usage(input_tokens=input_tokens, output_tokens=estimate_tokens(collected.text)),
    )


@router.post("/messages/count_tokens", status_code=status.HTTP_200_OK)
async def count_tokens(request_body: CountTokensRequest) -> CountTokensResponse:
    """Count tokens for a request (POST /v1/messages/count_tokens).

    The upstream exposes no tokenizer, so this is a character-based estimate.
    """
    input_tokens = count_anthropic_tokens(request_body)
    logger.debug("token_count_estimate", model=request_body.model, input_tokens=input_tokens)
    return CountTokensResponse(input_tokens=input_tokens)
