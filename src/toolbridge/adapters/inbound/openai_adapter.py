r"""OpenAI Chat Completions API adapter (POST /v1/chat/completions).

Implements the OpenAI Chat Completions API with:
- Non-streaming generation
- Streaming (SSE format: data: {...}\ndata: [DONE])
- Tool calls forwarded to the client as `tool_calls`; the client's answers
  come back as trailing `role: "tool"` messages on the next request
"""

import asyncio
import json
import time
from collections.abc import AsyncIterator, Sequence
from typing import Any

import structlog
from fastapi import APIRouter, Request, status
from sse_starlette.sse import EventSourceResponse

from toolbridge.adapters.inbound.adapter_helpers import (
    arguments_json,
    collect_turn,
    get_bridge_state,
    new_id,
    record_tool_calls,
    start_turn,
)
from toolbridge.adapters.inbound.prompt import (
    estimate_tokens,
    extract_openai_system,
    extract_openai_tool_results,
    format_openai_prompt,
    openai_tool_definitions,
)
from toolbridge.adapters.inbound.request_models import (
    ChatCompletionsRequest,
    ChatCompletionsResponse,
    OpenAIChatChoice,
    OpenAIChatCompletionUsage,
    OpenAIResponseMessage,
)
from toolbridge.application.bridge_service import Turn, TurnRequest
from toolbridge.domain.value_objects import SessionError, TextDelta, ToolRequest, ToolRequests

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["openai"])


def tool_calls_payload(requests: Sequence[ToolRequest], streaming: bool = False) -> list[dict[str, Any]]:
    """Render tool requests as OpenAI tool_calls entries."""
    payload = []
    for index, tool_request in enumerate(requests):
        entry: dict[str, Any] = {
            "id": tool_request.call_id,
            "type": "function",
            "function": {
                "name": tool_request.name,
                "arguments": arguments_json(tool_request.arguments),
            },
        }
        if streaming:
            entry = {"index": index, **entry}
        payload.append(entry)
    return payload


def _chunk(
    completion_id: str,
    created: int,
    model: str,
    delta: dict[str, Any],
    finish_reason: str | None = None,
) -> dict[str, str]:
    return {
        "data": json.dumps(
            {
                "id": completion_id,
                "object": "chat.completion.chunk",
                "created": created,
                "model": model,
                "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
            }
        )
    }


async def stream_chat_completion(turn: Turn) -> AsyncIterator[dict[str, str]]:
    """Stream turn events as SSE events (OpenAI format).

    OpenAI SSE format:
    - data: {"id": "...", "choices": [{"delta": {"content": "..."}, ...}], ...}
    - data: [DONE]

    Yields:
        SSE events in OpenAI Chat Completions format
    """
    completion_id = new_id("chatcmpl-")
    created = int(time.time())
    finish_reason = "stop"

    yield _chunk(completion_id, created, turn.model, {"role": "assistant", "content": ""})

    try:
        async for event in turn.events:
            if isinstance(event, TextDelta):
                yield _chunk(completion_id, created, turn.model, {"content": event.text})
            elif isinstance(event, ToolRequests):
                record_tool_calls("openai", event)
                finish_reason = "tool_calls"
                yield _chunk(
                    completion_id,
                    created,
                    turn.model,
                    {"tool_calls": tool_calls_payload(event.requests, streaming=True)},
                )
            elif isinstance(event, SessionError):
                yield {
                    "data": json.dumps(
                        {"error": {"message": event.message, "type": "api_error"}}
                    )
                }
                yield {"data": "[DONE]"}
                return
    except asyncio.CancelledError:
        logger.info("stream_cancelled", api="openai")
        raise

    yield _chunk(completion_id, created, turn.model, {}, finish_reason)
    yield {"data": "[DONE]"}
    logger.info("stream_complete", api="openai", finish_reason=finish_reason)


@router.post("/chat/completions", status_code=status.HTTP_200_OK)
async def create_chat_completion(
    request_body: ChatCompletionsRequest, request: Request
) -> Any:
    """Create a chat completion (POST /v1/chat/completions).

    Args:
        request_body: Validated ChatCompletionsRequest
        request: FastAPI request (for accessing app state)

    Returns:
        ChatCompletionsResponse, or an SSE stream when stream=true
    """
    logger.info(
        "chat_completion_request",
        model=request_body.model,
        stream=request_body.stream,
        messages=len(request_body.messages),
    )
    state = get_bridge_state(request)
    messages = request_body.messages

    prompt = format_openai_prompt(messages, state.settings.bridge.excluded_patterns)
    turn = await start_turn(
        request,
        state,
        TurnRequest(
            model=request_body.model,
            prompt=prompt,
            system=extract_openai_system(messages),
            tools=openai_tool_definitions(request_body.tools),
            tool_results=extract_openai_tool_results(messages),
        ),
    )

    if request_body.stream:
        return EventSourceResponse(stream_chat_completion(turn))

    collected = await collect_turn(turn, "openai")
    prompt_tokens = estimate_tokens(prompt)
    completion_tokens = estimate_tokens(collected.text)

    return ChatCompletionsResponse(
        id=new_id("chatcmpl-"),
        created=int(time.time()),
        model=turn.model,
        choices=[
            OpenAIChatChoice(
                index=0,
                message=OpenAIResponseMessage(
                    content=collected.text or None,
                    tool_calls=tool_calls_payload(collected.tool_requests) or None,
                ),
                finish_reason="tool_calls" if collected.tool_requests else "stop",
            )
        ],
        usage=OpenAIChatCompletionUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )
