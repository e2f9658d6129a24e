"""Unit tests for request context helpers shared by the middlewares."""

import pytest
from starlette.requests import Request

from toolbridge.adapters.inbound.request_context_middleware import (
    api_surface,
    mcp_conversation_id,
)
from toolbridge.adapters.inbound.request_logging_middleware import is_quiet

pytestmark = pytest.mark.unit


def _request(method: str, path: str) -> Request:
    return Request({"type": "http", "method": method, "path": path, "headers": []})


@pytest.mark.parametrize(
    ("path", "api"),
    [
        ("/v1/chat/completions", "openai"),
        ("/chat/completions", "openai"),
        ("/v1/messages", "anthropic"),
        ("/v1/messages/count_tokens", "anthropic"),
        ("/v1/responses", "responses"),
        ("/v1/models", "models"),
        ("/mcp/abc", "mcp"),
        ("/health", "server"),
    ],
)
def test_api_surface(path: str, api: str) -> None:
    assert api_surface(path) == api


def test_mcp_conversation_id() -> None:
    assert mcp_conversation_id("/mcp/abc123") == "abc123"
    assert mcp_conversation_id("/mcp/") is None
    assert mcp_conversation_id("/v1/messages") is None


def test_health_checks_and_mcp_stream_are_quiet() -> None:
    assert is_quiet(_request("GET", "/health/ready"))
    assert is_quiet(_request("GET", "/metrics"))
    assert is_quiet(_request("GET", "/mcp/abc"))
    assert not is_quiet(_request("POST", "/mcp/abc"))
    assert not is_quiet(_request("POST", "/v1/chat/completions"))
