"""MCP tool bridge (JSON-RPC 2.0 over HTTP at /mcp/{conversation_id}).

Agent-style upstreams run tools through an MCP server. This adapter is that
server: `tools/list` advertises the conversation's cached tools and
`tools/call` suspends until the IDE client reports the tool's result on a
later completions request.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Request, Response, status
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from toolbridge.adapters.inbound.adapter_helpers import get_bridge_state
from toolbridge.adapters.inbound.metrics import mcp_tool_calls_total
from toolbridge.adapters.inbound.request_models import JSONRPCRequest
from toolbridge.application.conversation import Conversation
from toolbridge.domain.errors import NoExpectedToolCallError, ToolCallRejectedError
from toolbridge.domain.value_objects import TOOL_NAME_DELIMITER

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/mcp", tags=["mcp"])

# Pinned to the version upstream MCP clients speak
PROTOCOL_VERSION = "2024-11-05"
SERVER_VERSION = "1.0.0"

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

MCP_NAMESPACE = "mcp"


def jsonrpc_result(request_id: int | str, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def jsonrpc_error(request_id: int | str, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def strip_mcp_tool_prefix(name: str) -> str:
    """Strip an "mcp__<server>__" prefix: "mcp__xcode-tools__XcodeRead" -> "XcodeRead".

    The server segment may not contain an underscore; other names pass
    through unchanged.
    """
    prefix = f"{MCP_NAMESPACE}{TOOL_NAME_DELIMITER}"
    if not name.startswith(prefix):
        return name
    server, sep, tool = name[len(prefix):].partition(TOOL_NAME_DELIMITER)
    if not sep or not server or "_" in server:
        return name
    return tool


def _tools_list(conversation: Conversation) -> dict[str, Any]:
    tools = [
        {
            "name": strip_mcp_tool_prefix(tool.name),
            "description": tool.description,
            "inputSchema": tool.input_schema,
        }
        for tool in conversation.get_cached_tools()
    ]
    return {"tools": tools}


async def _tools_call(
    state: Any, conversation_id: str, request_id: int | str, params: dict[str, Any]
) -> dict[str, Any]:
    name = params.get("name")
    if not isinstance(name, str) or not name:
        return jsonrpc_error(request_id, INVALID_PARAMS, "Missing tool name")

    conversation = state.conversations.get(conversation_id)
    if conversation is None:
        conversation = state.conversations.find_by_expected_tool(name)
    if conversation is None:
        logger.warning("mcp_conversation_not_found", method="tools/call")
        mcp_tool_calls_total.labels(result="unexpected").inc()
        return jsonrpc_error(request_id, INTERNAL_ERROR, "Conversation not found")

    resolved = conversation.resolve_tool_name(name)
    logger.info("mcp_tool_call", tool=name, resolved=resolved, arguments=params.get("arguments"))

    try:
        future = conversation.claim_call(resolved)
    except NoExpectedToolCallError as e:
        logger.warning("mcp_tool_call_unexpected", tool=resolved)
        mcp_tool_calls_total.labels(result="unexpected").inc()
        return jsonrpc_error(request_id, INTERNAL_ERROR, str(e))

    try:
        output = await future
    except ToolCallRejectedError as e:
        logger.error("mcp_tool_call_rejected", tool=resolved, reason=e.reason)
        mcp_tool_calls_total.labels(result="rejected").inc()
        return jsonrpc_error(request_id, INTERNAL_ERROR, e.reason)

    logger.info("mcp_tool_call_resolved", tool=resolved)
    mcp_tool_calls_total.labels(result="ok").inc()
    return jsonrpc_result(request_id, {"content": [{"type": "text", "text": output}]})


@router.post("/{conversation_id}")
async def handle_mcp(conversation_id: str, request: Request) -> Any:
    """Dispatch one JSON-RPC message for a conversation's MCP bridge."""
    state = get_bridge_state(request)
    structlog.contextvars.bind_contextvars(conversation_id=conversation_id)

    try:
        message = JSONRPCRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        return jsonrpc_error(0, PARSE_ERROR, "Parse error")

    logger.debug("mcp_message", rpc_method=message.method, rpc_id=message.id)

    # Notifications have no id, so there is nothing to respond to
    if message.is_notification:
        return Response(status_code=status.HTTP_202_ACCEPTED)

    request_id = message.id
    if message.method == "initialize":
        return jsonrpc_result(
            request_id,
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {
                    "name": state.settings.bridge.bridge_server_name,
                    "version": SERVER_VERSION,
                },
            },
        )

    if message.method == "tools/list":
        conversation = state.conversations.get(conversation_id)
        if conversation is None:
            logger.warning("mcp_conversation_not_found", method="tools/list")
            return jsonrpc_error(request_id, INTERNAL_ERROR, "Conversation not found")
        return jsonrpc_result(request_id, _tools_list(conversation))

    if message.method == "tools/call":
        return await _tools_call(state, conversation_id, request_id, message.params)

    return jsonrpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {message.method}")


async def _idle_stream(state: Any, conversation_id: str):
    # MCP clients open this stream after initialize; nothing is ever pushed
    logger.debug("mcp_sse_opened", conversation_id=conversation_id)
    try:
        yield {"comment": "connected"}
        await state.shutdown.wait()
    finally:
        logger.debug("mcp_sse_closed", conversation_id=conversation_id)


@router.get("/{conversation_id}")
async def open_mcp_stream(conversation_id: str, request: Request) -> EventSourceResponse:
    """Keep a server-to-client SSE stream open until shutdown."""
    state = get_bridge_state(request)
    return EventSourceResponse(_idle_stream(state, conversation_id))
