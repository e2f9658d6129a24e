"""Prometheus request and turn metrics.

Requests are labelled by route template, so every /mcp/{conversation_id}
URL lands in one series. A streamed response only tells the middleware when
its first byte left, so SSE streams are timed into their own time-to-first-
byte histogram instead of skewing request latency.
"""

import time
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from toolbridge.adapters.inbound.metrics import (
    request_duration_seconds,
    request_total,
    stream_ttfb_seconds,
    turns_total,
)
from toolbridge.adapters.inbound.request_context_middleware import api_surface


def route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Collect request counts, latency and turn kinds.

    Collects:
    - request_total (counter by method, route, status)
    - request_duration_seconds (histogram by method, route; non-streamed)
    - stream_ttfb_seconds (histogram by API; SSE responses)
    - turns_total (counter by API and turn kind)

    Example:
        app.add_middleware(RequestMetricsMiddleware, skip_paths=frozenset({"/metrics"}))
    """

    def __init__(self, app, skip_paths: frozenset[str] = frozenset()):
        super().__init__(app)
        self.skip_paths = skip_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.skip_paths:
            return await call_next(request)

        api = api_surface(request.url.path)
        start_time = time.perf_counter()
        status_code = "500"
        streaming = False
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            streaming = response.headers.get("content-type", "").startswith(
                "text/event-stream"
            )
            return response
        finally:
            elapsed = time.perf_counter() - start_time
            route = route_label(request)
            if streaming:
                stream_ttfb_seconds.labels(api=api).observe(elapsed)
            else:
                request_duration_seconds.labels(method=request.method, path=route).observe(
                    elapsed
                )
            request_total.labels(method=request.method, path=route, status_code=status_code).inc()

            turn = getattr(request.state, "turn", None)
            if turn is not None:
                turns_total.labels(api=api, kind=turn.kind).inc()
