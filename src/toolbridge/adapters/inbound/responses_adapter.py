"""OpenAI Responses API adapter (POST /v1/responses), as used by Codex.

Tool calls go out as `function_call` output items; the client reports
their results as `function_call_output` input items on the next request.
Streaming follows the Responses event sequence: response.created, output
items with text deltas, then response.completed (or response.failed).
"""

import asyncio
import json
import time
from collections.abc import AsyncIterator
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
    extract_function_call_outputs,
    extract_responses_instructions,
    format_responses_prompt,
    responses_tool_definitions,
)
from toolbridge.adapters.inbound.request_models import (
    ResponsesRequest,
    ResponsesResponse,
    ResponsesUsage,
)
from toolbridge.application.bridge_service import Turn, TurnRequest
from toolbridge.domain.value_objects import SessionError, TextDelta, ToolRequest, ToolRequests

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["responses"])


def message_item(item_id: str, text: str, item_status: str = "completed") -> dict[str, Any]:
    return {
        "type": "message",
        "id": item_id,
        "role": "assistant",
        "status": item_status,
        "content": [{"type": "output_text", "text": text, "annotations": []}],
    }


def function_call_item(tool_request: ToolRequest) -> dict[str, Any]:
    return {
        "type": "function_call",
        "id": new_id("fc_"),
        "call_id": tool_request.call_id,
        "name": tool_request.name,
        "arguments": arguments_json(tool_request.arguments),
        "status": "completed",
    }


class _ResponseStream:
    """Builds Responses SSE events with monotonically increasing sequence numbers."""

    def __init__(self, response_id: str, model: str, input_tokens: int) -> None:
        self.response_id = response_id
        self.model = model
        self.input_tokens = input_tokens
        self.created_at = int(time.time())
        self.output: list[dict[str, Any]] = []
        self.text: list[str] = []
        self._seq = 0

    def event(self, name: str, payload: dict[str, Any]) -> dict[str, str]:
        self._seq += 1
        return {
            "event": name,
            "data": json.dumps({"type": name, "sequence_number": self._seq, **payload}),
        }

    def envelope(self, response_status: str) -> dict[str, Any]:
        output_tokens = estimate_tokens("".join(self.text))
        return {
            "id": self.response_id,
            "object": "response",
            "created_at": self.created_at,
            "model": self.model,
            "status": response_status,
            "output": self.output,
            "usage": {
                "input_tokens": self.input_tokens,
                "output_tokens": output_tokens,
                "total_tokens": self.input_tokens + output_tokens,
            },
        }


async def stream_response(turn: Turn, input_tokens: int) -> AsyncIterator[dict[str, str]]:
    """Stream turn events as Responses API SSE events."""
    stream = _ResponseStream(new_id("resp_"), turn.model, input_tokens)
    yield stream.event("response.created", {"response": stream.envelope("in_progress")})

    message_id: str | None = None

    def close_message() -> list[dict[str, str]]:
        nonlocal message_id
        if message_id is None:
            return []
        text = "".join(stream.text)
        index = len(stream.output)
        item = message_item(message_id, text)
        stream.output.append(item)
        events = [
            stream.event(
                "response.output_text.done",
                {"item_id": message_id, "output_index": index, "content_index": 0, "text": text},
            ),
            stream.event("response.output_item.done", {"output_index": index, "item": item}),
        ]
        message_id = None
        return events

    try:
        async for event in turn.events:
            if isinstance(event, TextDelta):
                if message_id is None:
                    message_id = new_id("msg_")
                    yield stream.event(
                        "response.output_item.added",
                        {
                            "output_index": len(stream.output),
                            "item": message_item(message_id, "", "in_progress"),
                        },
                    )
                stream.text.append(event.text)
                yield stream.event(
                    "response.output_text.delta",
                    {
                        "item_id": message_id,
                        "output_index": len(stream.output),
                        "content_index": 0,
                        "delta": event.text,
                    },
                )
            elif isinstance(event, ToolRequests):
                record_tool_calls("responses", event)
                for closing in close_message():
                    yield closing
                for tool_request in event.requests:
                    index = len(stream.output)
                    item = function_call_item(tool_request)
                    yield stream.event(
                        "response.output_item.added",
                        {"output_index": index, "item": {**item, "status": "in_progress"}},
                    )
                    stream.output.append(item)
                    yield stream.event(
                        "response.output_item.done", {"output_index": index, "item": item}
                    )
            elif isinstance(event, SessionError):
                for closing in close_message():
                    yield closing
                failed = stream.envelope("failed")
                failed["error"] = {"code": "server_error", "message": event.message}
                yield stream.event("response.failed", {"response": failed})
                return
    except asyncio.CancelledError:
        logger.info("stream_cancelled", api="responses")
        raise

    for closing in close_message():
        yield closing
    yield stream.event("response.completed", {"response": stream.envelope("completed")})
    logger.info("stream_complete", api="responses", output_items=len(stream.output))


@router.post("/responses", status_code=status.HTTP_200_OK)
async def create_response(request_body: ResponsesRequest, request: Request) -> Any:
    """Create a response (POST /v1/responses).

    Args:
        request_body: Validated ResponsesRequest
        request: FastAPI request (for accessing app state)

    Returns:
        ResponsesResponse, or an SSE stream when stream=true
    """
    logger.info("responses_request", model=request_body.model, stream=request_body.stream)
    state = get_bridge_state(request)

    prompt = format_responses_prompt(
        request_body.input, state.settings.bridge.excluded_patterns
    )
    turn = await start_turn(
        request,
        state,
        TurnRequest(
            model=request_body.model,
            prompt=prompt,
            system=extract_responses_instructions(request_body.input, request_body.instructions),
            tools=responses_tool_definitions(request_body.tools),
            tool_results=extract_function_call_outputs(request_body.input),
        ),
    )
    input_tokens = estimate_tokens(prompt)

    if request_body.stream:
        return EventSourceResponse(stream_response(turn, input_tokens))

    collected = await collect_turn(turn, "responses")
    output: list[dict[str, Any]] = []
    if collected.text:
        output.append(message_item(new_id("msg_"), collected.text))
    output.extend(function_call_item(r) for r in collected.tool_requests)
    output_tokens = estimate_tokens(collected.text)

    return ResponsesResponse(
        id=new_id("resp_"),
        created_at=int(time.time()),
        model=turn.model,
        output=output,
        usage=ResponsesUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        ),
    )
