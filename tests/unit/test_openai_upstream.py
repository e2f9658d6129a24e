"""Unit tests for the OpenAI-compatible upstream adapter (httpx.MockTransport)."""

import json

import httpx
import pytest

from toolbridge.adapters.config.settings import UpstreamSettings
from toolbridge.adapters.outbound.openai_upstream import OpenAIUpstream
from toolbridge.application.ports import SessionConfig
from toolbridge.domain.errors import UpstreamError
from toolbridge.domain.tool_router import ToolRouter
from toolbridge.domain.value_objects import (
    SessionError,
    SessionIdle,
    TextDelta,
    ToolDefinition,
    ToolRequest,
    ToolRequests,
)

pytestmark = pytest.mark.unit

BASE_URL = "http://upstream.test/v1"
READ_TOOL = ToolDefinition("XcodeRead", "Read a file", {"type": "object"})


def _completion(content=None, tool_calls=None) -> dict:
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"choices": [{"index": 0, "message": message}]}


class ScriptedUpstream:
    """Replays canned /chat/completions replies and records request bodies."""

    def __init__(self, *replies: httpx.Response) -> None:
        self.replies = list(replies)
        self.bodies: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/models"):
            return httpx.Response(200, json={"data": [{"id": "gpt-4o"}, {"object": "model"}]})
        self.bodies.append(json.loads(request.content))
        return self.replies.pop(0)


def _upstream(handler) -> OpenAIUpstream:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return OpenAIUpstream(BASE_URL, client=client)


def _config(router: ToolRouter) -> SessionConfig:
    return SessionConfig(
        model="gpt-4o",
        conversation_id="c1",
        register_call=router.register,
        system="Be terse.",
        tools=[READ_TOOL],
    )


class TestListModels:
    async def test_parses_model_list(self) -> None:
        upstream = _upstream(ScriptedUpstream())

        models = await upstream.list_models()

        assert [m.id for m in models] == ["gpt-4o"]
        assert models[0].owned_by == "upstream"
        await upstream.aclose()

    async def test_http_error_raises_upstream_error(self) -> None:
        upstream = _upstream(lambda request: httpx.Response(503, text="down"))

        with pytest.raises(UpstreamError):
            await upstream.list_models()

    def test_from_settings(self) -> None:
        settings = UpstreamSettings(base_url="http://localhost:1234/v1/", api_key="sk-test")

        upstream = OpenAIUpstream.from_settings(settings)

        assert upstream._client.headers["Authorization"] == "Bearer sk-test"
        assert str(upstream._client.base_url) == "http://localhost:1234/v1/"


class TestSession:
    async def test_text_reply(self) -> None:
        handler = ScriptedUpstream(httpx.Response(200, json=_completion("Hello")))
        session = _upstream(handler).open_session(_config(ToolRouter(timeout_seconds=None)))

        events = [event async for event in session.stream("[User]: hi")]

        assert events == [TextDelta("Hello"), SessionIdle()]
        [body] = handler.bodies
        assert body["model"] == "gpt-4o"
        assert body["messages"] == [
            {"role": "system", "content": "Be terse."},
            {"role": "user", "content": "[User]: hi"},
        ]
        assert body["tools"][0]["function"]["name"] == "XcodeRead"

    async def test_tool_round_trip(self) -> None:
        tool_call = {
            "id": "call_1",
            "type": "function",
            "function": {"name": "XcodeRead", "arguments": '{"path": "a.swift"}'},
        }
        handler = ScriptedUpstream(
            httpx.Response(200, json=_completion(None, [tool_call])),
            httpx.Response(200, json=_completion("It prints 1.")),
        )
        router = ToolRouter(timeout_seconds=None)
        stream = _upstream(handler).open_session(_config(router)).stream("read a.swift")

        event = await anext(stream)
        assert event == ToolRequests((ToolRequest("call_1", "XcodeRead", {"path": "a.swift"}),))
        assert router.pending_count == 1

        router.resolve("call_1", "print(1)")
        rest = [event async for event in stream]

        assert rest == [TextDelta("It prints 1."), SessionIdle()]
        second = handler.bodies[1]["messages"]
        assert second[-2]["tool_calls"][0]["id"] == "call_1"
        assert second[-1] == {"role": "tool", "tool_call_id": "call_1", "content": "print(1)"}

    async def test_missing_call_id_is_generated(self) -> None:
        tool_call = {"type": "function", "function": {"name": "XcodeRead", "arguments": "not json"}}
        handler = ScriptedUpstream(httpx.Response(200, json=_completion(None, [tool_call])))
        session = _upstream(handler).open_session(_config(ToolRouter(timeout_seconds=None)))

        event = await anext(session.stream("go"))

        [request] = event.requests
        assert request.call_id.startswith("call_")
        assert request.arguments == {}

    async def test_rejection_ends_stream(self) -> None:
        tool_call = {"id": "call_1", "function": {"name": "XcodeRead", "arguments": "{}"}}
        handler = ScriptedUpstream(httpx.Response(200, json=_completion(None, [tool_call])))
        router = ToolRouter(timeout_seconds=None)
        stream = _upstream(handler).open_session(_config(router)).stream("go")

        await anext(stream)
        router.reject_all("Session ended")

        assert [event async for event in stream] == []
        assert len(handler.bodies) == 1

    async def test_http_error_yields_session_error(self) -> None:
        handler = ScriptedUpstream(httpx.Response(500, text="boom"))
        session = _upstream(handler).open_session(_config(ToolRouter(timeout_seconds=None)))

        events = [event async for event in session.stream("hi")]

        assert len(events) == 1
        assert isinstance(events[0], SessionError)
        assert "500" in events[0].message

    async def test_malformed_reply_yields_session_error(self) -> None:
        handler = ScriptedUpstream(httpx.Response(200, json={"choices": []}))
        session = _upstream(handler).open_session(_config(ToolRouter(timeout_seconds=None)))

        events = [event async for event in session.stream("hi")]

        assert events == [SessionError("Malformed upstream completion response")]

    async def test_abort_closes_suspended_stream(self) -> None:
        tool_call = {"id": "call_1", "function": {"name": "XcodeRead", "arguments": "{}"}}
        handler = ScriptedUpstream(httpx.Response(200, json=_completion(None, [tool_call])))
        router = ToolRouter(timeout_seconds=None)
        session = _upstream(handler).open_session(_config(router))
        stream = session.stream("go")

        await anext(stream)
        await session.abort()

        with pytest.raises(StopAsyncIteration):
            await anext(stream)
