"""Pytest configuration and shared fixtures.

This module defines:
- Test markers (unit, integration)
- A scripted fake CompletionBackend standing in for the upstream
- App / client fixtures wired to the fake backend
"""

import asyncio
from collections.abc import Sequence

import pytest
from fastapi.testclient import TestClient
from sse_starlette.sse import AppStatus

from toolbridge.adapters.config.settings import (
    BridgeSettings,
    ServerSettings,
    Settings,
    UpstreamSettings,
)
from toolbridge.application.ports import SessionConfig
from toolbridge.domain.errors import ToolCallRejectedError
from toolbridge.domain.value_objects import (
    ModelInfo,
    SessionEvent,
    ToolRequests,
)
from toolbridge.entrypoints.api_server import create_app

DEFAULT_MODELS = ("gpt-4o", "claude-sonnet-4-5-20250929")


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "unit: Fast unit tests with faked boundaries",
    )
    config.addinivalue_line(
        "markers",
        "integration: HTTP-level tests against the FastAPI app with a fake upstream",
    )


class FakeSession:
    """UpstreamSession that replays a fixed list of events.

    With register_calls=True it behaves like a chat-completions upstream:
    tool calls are registered before the ToolRequests event and the session
    waits for the client's results. Otherwise it behaves like an agent that
    will run the tools through the MCP bridge itself.
    """

    def __init__(
        self,
        config: SessionConfig,
        script: Sequence[SessionEvent],
        register_calls: bool,
    ) -> None:
        self.config = config
        self.script = list(script)
        self.register_calls = register_calls
        self.prompts: list[str] = []
        self.tool_outputs: list[str] = []
        self.rejected: str | None = None
        self.aborted = False

    def stream(self, prompt: str):
        return self._run(prompt)

    async def _run(self, prompt: str):
        self.prompts.append(prompt)
        for event in self.script:
            if isinstance(event, ToolRequests) and self.register_calls:
                futures = [self.config.register_call(r.call_id) for r in event.requests]
                yield event
                try:
                    self.tool_outputs.extend(await asyncio.gather(*futures))
                except ToolCallRejectedError as e:
                    self.rejected = e.reason
                    return
                continue
            yield event

    async def abort(self) -> None:
        self.aborted = True


class FakeBackend:
    """CompletionBackend serving a fixed model list and scripted sessions."""

    def __init__(
        self,
        models: Sequence[str] = DEFAULT_MODELS,
        script: Sequence[SessionEvent] = (),
        register_calls: bool = True,
    ) -> None:
        self.models = list(models)
        self.script = list(script)
        self.register_calls = register_calls
        self.sessions: list[FakeSession] = []
        self.closed = False

    async def list_models(self) -> list[ModelInfo]:
        return [ModelInfo(id=model_id) for model_id in self.models]

    def open_session(self, config: SessionConfig) -> FakeSession:
        session = FakeSession(config, self.script, self.register_calls)
        self.sessions.append(session)
        return session

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings() -> Settings:
    """Settings built explicitly so a developer's .env cannot leak in."""
    return Settings(
        server=ServerSettings(log_level="WARNING", cors_origins="*"),
        upstream=UpstreamSettings(base_url="http://upstream.test/v1"),
        bridge=BridgeSettings(
            excluded_file_patterns="secrets",
            tool_call_timeout_seconds=300,
            bridge_server_name="xcode-bridge",
        ),
    )


@pytest.fixture
def app(settings, fake_backend):
    return create_app(settings=settings, backend=fake_backend)


@pytest.fixture
def client(app):
    """TestClient inside its lifespan, so every request shares one event loop."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def bridge_state(app):
    return app.state.toolbridge


@pytest.fixture(autouse=True)
def _reset_sse_app_status():
    """sse-starlette keeps a process-wide exit event bound to the first event loop."""
    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None


def _parse_sse(body: str) -> list[tuple[str | None, str]]:
    events: list[tuple[str | None, str]] = []
    for block in body.replace("\r\n", "\n").split("\n\n"):
        name: str | None = None
        data: list[str] = []
        for line in block.split("\n"):
            if line.startswith("event:"):
                name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data.append(line[len("data:"):].strip())
        if data:
            events.append((name, "\n".join(data)))
    return events


@pytest.fixture
def parse_sse():
    """Split an SSE body into (event name, data) pairs, skipping comments."""
    return _parse_sse
