"""Request logging for the gateway.

One line when a request arrives and one when its response starts. For
completions requests the completion line also says what the request did to
the correlation state: which conversation it ran in, whether it started a
new turn or resumed a parked one, and how many reported tool results
matched nothing.
"""

import time
from collections.abc import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from toolbridge.adapters.inbound.request_context_middleware import MCP_PREFIX

logger = structlog.get_logger(__name__)

HTTP_ERROR_THRESHOLD = 400

QUIET_PATHS = frozenset({"/health", "/health/live", "/health/ready", "/metrics"})


def is_quiet(request: Request, skip_paths: frozenset[str] = QUIET_PATHS) -> bool:
    """Quiet paths and the long-lived MCP SSE stream are not logged."""
    path = request.url.path
    if path in skip_paths:
        return True
    return request.method == "GET" and path.startswith(MCP_PREFIX)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log request arrival, completion and unhandled errors.

    For streamed responses the logged duration is the time to the first
    byte (the turn may keep streaming long after), reported as ttfb_ms.

    Example:
        app.add_middleware(RequestLoggingMiddleware)
    """

    def __init__(self, app, skip_paths: frozenset[str] = QUIET_PATHS):
        super().__init__(app)
        self.skip_paths = skip_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if is_quiet(request, self.skip_paths):
            return await call_next(request)

        start_time = time.perf_counter()
        logger.info(
            "request_start",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_error",
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error_type=type(exc).__name__,
                error_message=str(exc),
                exc_info=True,
            )
            raise

        elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
        streaming = response.headers.get("content-type", "").startswith("text/event-stream")
        fields: dict = {"status_code": response.status_code}
        fields["ttfb_ms" if streaming else "duration_ms"] = elapsed_ms

        turn = getattr(request.state, "turn", None)
        if turn is not None:
            fields.update(
                conversation_id=turn.conversation_id,
                turn=turn.kind,
                unresolved_results=turn.unresolved,
            )

        log_method = logger.info if response.status_code < HTTP_ERROR_THRESHOLD else logger.warning
        log_method("request_complete", **fields)

        response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"
        return response
