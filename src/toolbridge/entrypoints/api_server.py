"""FastAPI application factory and server setup.

This module provides the main FastAPI application with dependency injection,
middleware, error handlers, and route registration.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest

from toolbridge import __version__
from toolbridge.adapters.config.logging import configure_logging
from toolbridge.adapters.config.settings import Settings, get_settings
from toolbridge.adapters.inbound.anthropic_adapter import router as anthropic_router
from toolbridge.adapters.inbound.mcp_adapter import router as mcp_router
from toolbridge.adapters.inbound.metrics import conversations_active, registry
from toolbridge.adapters.inbound.metrics_middleware import RequestMetricsMiddleware
from toolbridge.adapters.inbound.models_adapter import router as models_router
from toolbridge.adapters.inbound.openai_adapter import router as openai_router
from toolbridge.adapters.inbound.request_context_middleware import (
    CONVERSATION_ID_HEADER,
    REQUEST_ID_HEADER,
    RequestContextMiddleware,
)
from toolbridge.adapters.inbound.request_logging_middleware import RequestLoggingMiddleware
from toolbridge.adapters.inbound.responses_adapter import router as responses_router
from toolbridge.adapters.outbound.openai_upstream import OpenAIUpstream
from toolbridge.application.bridge_service import BridgeService
from toolbridge.application.conversation import ConversationManager
from toolbridge.application.ports import CompletionBackend
from toolbridge.domain.errors import (
    ConversationNotFoundError,
    DuplicateCallIdError,
    InvalidRequestError,
    ModelNotAvailableError,
    ToolBridgeError,
    UpstreamError,
)


class AppState:
    """Application state container for dependency injection."""

    def __init__(
        self,
        settings: Settings,
        backend: CompletionBackend,
        conversations: ConversationManager,
        service: BridgeService,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.conversations = conversations
        self.service = service
        # Set on shutdown; ends the idle MCP SSE streams
        self.shutdown = asyncio.Event()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager (startup/shutdown).

    Shutdown rejects every pending tool call, aborts upstream sessions and
    closes the upstream HTTP client.

    Args:
        app: FastAPI application instance

    Yields:
        Control to application during its lifetime
    """
    logger = structlog.get_logger(__name__)
    state: AppState = app.state.toolbridge
    logger.info("server_starting", upstream=state.settings.upstream.base_url)
    app.state.shutting_down = False

    try:
        logger.info("server_ready")
        yield
    finally:
        logger.info("server_shutting_down")
        app.state.shutting_down = True
        state.shutdown.set()

        cleaned = await state.conversations.cleanup_all()
        await state.backend.aclose()
        logger.info("server_shutdown_complete", conversations_cleaned=cleaned)


def _register_middleware(app: FastAPI, settings: Settings):
    """Register all middleware in correct order.

    Args:
        app: FastAPI application
        settings: Application settings
    """
    logger = structlog.get_logger(__name__)

    app.add_middleware(RequestLoggingMiddleware)
    logger.info("middleware_registered", middleware="RequestLoggingMiddleware")

    app.add_middleware(RequestMetricsMiddleware, skip_paths=frozenset({"/metrics"}))
    logger.info("middleware_registered", middleware="RequestMetricsMiddleware")

    cors_origins_str = settings.server.cors_origins
    cors_origins = ["*"] if cors_origins_str == "*" else [
        origin.strip() for origin in cors_origins_str.split(",")
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, CONVERSATION_ID_HEADER],
    )

    # Added last so it runs first and the request context is bound for everything else
    app.add_middleware(RequestContextMiddleware)
    logger.info("middleware_registered", middleware="RequestContextMiddleware")


def _register_health_endpoints(app: FastAPI):
    """Register health check endpoints.

    Args:
        app: FastAPI application
    """
    @app.get("/health")
    async def health():
        """Basic health check."""
        return {"status": "ok"}

    @app.get("/health/live")
    async def health_live():
        """Liveness probe - process is alive."""
        return {"status": "alive"}

    @app.get("/health/ready")
    async def health_ready(response: Response):
        """Readiness probe - ready to accept requests."""
        if getattr(app.state, "shutting_down", False):
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "not_ready", "reason": "shutting_down"}
        return {"status": "ready", "conversations": len(app.state.toolbridge.conversations)}


def _register_metrics_endpoint(app: FastAPI):
    """Register Prometheus metrics endpoint.

    Args:
        app: FastAPI application
    """
    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        conversations_active.set(len(app.state.toolbridge.conversations))
        return Response(
            content=generate_latest(registry),
            media_type="text/plain; version=0.0.4",
        )


def _is_openai_request(request: Request) -> bool:
    """Check if request is to an OpenAI-style endpoint."""
    path = request.url.path
    return any(p in path for p in ("/chat/completions", "/responses", "/v1/models"))


def _is_anthropic_request(request: Request) -> bool:
    """Check if request is to an Anthropic-style endpoint."""
    path = request.url.path
    return "/messages" in path and "/chat/completions" not in path


def _format_error_response(
    request: Request,
    status_code: int,
    error_type: str,
    message: str,
) -> JSONResponse:
    """Format error response according to API type (OpenAI/Anthropic/default).

    Args:
        request: The HTTP request
        status_code: HTTP status code
        error_type: Error type string
        message: Error message

    Returns:
        JSONResponse with properly formatted error
    """
    if _is_openai_request(request):
        content = {
            "error": {
                "message": message,
                "type": error_type,
                "param": None,
                "code": None,
            }
        }
    elif _is_anthropic_request(request):
        content = {
            "type": "error",
            "error": {
                "type": error_type,
                "message": message,
            },
        }
    else:
        content = {
            "error": {
                "type": error_type,
                "message": message,
            }
        }

    return JSONResponse(status_code=status_code, content=content)


def _get_domain_error_details(exc: ToolBridgeError) -> tuple[int, str]:
    """Get HTTP status code and error type for ToolBridgeError subclasses.

    Args:
        exc: The ToolBridgeError instance

    Returns:
        Tuple of (status_code, error_type)
    """
    if isinstance(exc, (ModelNotAvailableError, ConversationNotFoundError)):
        return status.HTTP_404_NOT_FOUND, "not_found_error"
    elif isinstance(exc, InvalidRequestError):
        return status.HTTP_400_BAD_REQUEST, "invalid_request_error"
    elif isinstance(exc, DuplicateCallIdError):
        return status.HTTP_409_CONFLICT, "invalid_request_error"
    elif isinstance(exc, UpstreamError):
        return status.HTTP_502_BAD_GATEWAY, "api_error"
    else:
        return status.HTTP_400_BAD_REQUEST, "invalid_request_error"


def _register_error_handlers(app: FastAPI):
    """Register error handlers for exceptions.

    Args:
        app: FastAPI application
    """
    logger = structlog.get_logger(__name__)

    @app.exception_handler(ToolBridgeError)
    async def domain_error_handler(request: Request, exc: ToolBridgeError):
        """Handle domain errors with appropriate status codes and API format."""
        status_code, error_type = _get_domain_error_details(exc)
        log_method = logger.error if status_code >= 500 else logger.warning
        log_method(
            "domain_error",
            error_type=exc.__class__.__name__,
            http_status=status_code,
            message=str(exc),
        )
        return _format_error_response(request, status_code, error_type, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors.

        Both client wire protocols report a malformed body as 400.
        """
        logger.warning("validation_error", error=str(exc))
        error_messages = []
        for error in exc.errors():
            loc = ".".join(str(part) for part in error["loc"])
            error_messages.append(f"{loc}: {error['msg']}")
        message = "; ".join(error_messages)
        return _format_error_response(
            request,
            status.HTTP_400_BAD_REQUEST,
            "invalid_request_error",
            message,
        )

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        """Handle unexpected errors."""
        logger.error(
            "unexpected_error",
            error_type=type(exc).__name__,
            message=str(exc),
            exc_info=True,
        )
        return _format_error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "api_error",
            "An internal error occurred",
        )


def _register_routes(app: FastAPI):
    """Register API route handlers.

    Args:
        app: FastAPI application
    """
    logger = structlog.get_logger(__name__)

    @app.get("/", status_code=status.HTTP_200_OK)
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Tool Bridge Gateway",
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "openai": "/v1/chat/completions",
                "anthropic": "/v1/messages",
                "responses": "/v1/responses",
                "models": "/v1/models",
                "mcp": "/mcp/{conversation_id}",
            },
        }

    app.include_router(openai_router)
    logger.info("routes_registered", router="openai", path="/v1/chat/completions")

    app.include_router(anthropic_router)
    logger.info("routes_registered", router="anthropic", path="/v1/messages")

    app.include_router(responses_router)
    logger.info("routes_registered", router="responses", path="/v1/responses")

    app.include_router(models_router)
    logger.info("routes_registered", router="models", path="/v1/models")

    app.include_router(mcp_router)
    logger.info("routes_registered", router="mcp", path="/mcp/{conversation_id}")


def create_app(
    settings: Settings | None = None,
    backend: CompletionBackend | None = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use (default: the process-wide singleton)
        backend: Upstream completion service (default: OpenAIUpstream
            built from settings.upstream)

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()

    # JSON output for non-DEBUG levels (production-like environments)
    json_output = settings.server.log_level not in ("DEBUG",)
    configure_logging(log_level=settings.server.log_level, json_output=json_output)

    logger = structlog.get_logger(__name__)
    logger.info("creating_fastapi_app", version=__version__)

    backend = backend or OpenAIUpstream.from_settings(settings.upstream)
    conversations = ConversationManager(
        tool_call_timeout_seconds=settings.bridge.tool_call_timeout_seconds
    )
    service = BridgeService(
        backend,
        conversations,
        bridge_server_name=settings.bridge.bridge_server_name,
    )

    app = FastAPI(
        title="Tool Bridge Gateway",
        description="OpenAI/Anthropic-compatible gateway with an MCP tool-call bridge",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.toolbridge = AppState(settings, backend, conversations, service)

    _register_middleware(app, settings)
    _register_health_endpoints(app)
    _register_metrics_endpoint(app)
    _register_error_handlers(app)
    _register_routes(app)

    logger.info("fastapi_app_created", log_level=settings.server.log_level)
    return app
