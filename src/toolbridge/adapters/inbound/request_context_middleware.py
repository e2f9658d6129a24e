"""Per-request logging context for the gateway.

Binds request_id and the API surface the request hit to structlog
contextvars. MCP requests also carry their conversation id in the URL, so
a tools/call from an upstream agent logs under the same conversation_id as
the completions request that announced the call.
"""

import uuid
from collections.abc import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"
CONVERSATION_ID_HEADER = "X-Conversation-ID"

MCP_PREFIX = "/mcp/"


def api_surface(path: str) -> str:
    """Name the wire protocol a path belongs to ("openai", "mcp", ...)."""
    if path.startswith(MCP_PREFIX):
        return "mcp"
    if path.endswith("/chat/completions"):
        return "openai"
    if path.startswith("/v1/messages"):
        return "anthropic"
    if path.startswith("/v1/responses"):
        return "responses"
    if path.startswith("/v1/models"):
        return "models"
    return "server"


def mcp_conversation_id(path: str) -> str | None:
    if not path.startswith(MCP_PREFIX):
        return None
    return path[len(MCP_PREFIX):].strip("/") or None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request context for logging and echo correlation headers.

    The response carries X-Request-ID (reused from the request when the
    client sent one) and, for completions requests, X-Conversation-ID: the
    id the MCP endpoint for that turn is reachable under.

    Example:
        app.add_middleware(RequestContextMiddleware)
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            api=api_surface(path),
            method=request.method,
            path=path,
        )
        conversation_id = mcp_conversation_id(path)
        if conversation_id is not None:
            structlog.contextvars.bind_contextvars(conversation_id=conversation_id)

        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request_id
        turn = getattr(request.state, "turn", None)
        if turn is not None:
            response.headers[CONVERSATION_ID_HEADER] = turn.conversation_id
        return response
