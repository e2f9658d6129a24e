"""Integration tests for the MCP tool bridge at /mcp/{conversation_id}."""

import asyncio

import httpx
import pytest

from toolbridge.domain.value_objects import (
    SessionIdle,
    TextDelta,
    ToolDefinition,
    ToolRequest,
    ToolRequests,
)

pytestmark = pytest.mark.integration

READ_TOOL = {
    "type": "function",
    "function": {
        "name": "mcp__xcode-tools__XcodeRead",
        "description": "Read a file",
        "parameters": {"type": "object"},
    },
}


def _rpc(method: str, request_id=1, **params) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}


class TestProtocol:
    def test_initialize(self, client) -> None:
        response = client.post("/mcp/any", json=_rpc("initialize"))

        result = response.json()["result"]
        assert result["protocolVersion"] == "2024-11-05"
        assert result["capabilities"] == {"tools": {}}
        assert result["serverInfo"]["name"] == "xcode-bridge"

    def test_notification_is_accepted_without_body(self, client) -> None:
        response = client.post(
            "/mcp/any", json={"jsonrpc": "2.0", "method": "notifications/initialized"}
        )

        assert response.status_code == 202
        assert response.content == b""

    def test_unknown_method(self, client) -> None:
        response = client.post("/mcp/any", json=_rpc("resources/list", request_id="r1"))

        assert response.json() == {
            "jsonrpc": "2.0",
            "id": "r1",
            "error": {"code": -32601, "message": "Method not found: resources/list"},
        }

    def test_parse_error(self, client) -> None:
        response = client.post(
            "/mcp/any", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.json()["error"]["code"] == -32700

    def test_tools_list_strips_mcp_prefix(self, client, bridge_state) -> None:
        conversation = bridge_state.conversations.create()
        conversation.cache_tools(
            [
                ToolDefinition("mcp__xcode-tools__XcodeRead", "Read", {"type": "object"}),
                ToolDefinition("LocalTool"),
            ]
        )

        response = client.post(f"/mcp/{conversation.id}", json=_rpc("tools/list"))

        tools = response.json()["result"]["tools"]
        assert tools == [
            {"name": "XcodeRead", "description": "Read", "inputSchema": {"type": "object"}},
            {"name": "LocalTool", "description": "", "inputSchema": {}},
        ]

    def test_tools_list_unknown_conversation(self, client) -> None:
        response = client.post("/mcp/missing", json=_rpc("tools/list"))

        assert response.json()["error"]["code"] == -32603

    def test_tools_call_without_name(self, client) -> None:
        response = client.post("/mcp/any", json=_rpc("tools/call", arguments={}))

        assert response.json()["error"]["code"] == -32602

    def test_tools_call_without_conversation(self, client) -> None:
        response = client.post("/mcp/missing", json=_rpc("tools/call", name="XcodeRead"))

        error = response.json()["error"]
        assert error["code"] == -32603
        assert error["message"] == "Conversation not found"

    def test_tools_call_not_expected(self, client, bridge_state) -> None:
        conversation = bridge_state.conversations.create()

        response = client.post(
            f"/mcp/{conversation.id}", json=_rpc("tools/call", name="XcodeRead")
        )

        assert response.json()["error"]["code"] == -32603
        assert "XcodeRead" in response.json()["error"]["message"]

    def test_sse_stream_ends_on_shutdown(self, client, bridge_state) -> None:
        bridge_state.shutdown.set()

        response = client.get("/mcp/any")

        assert response.status_code == 200
        assert "connected" in response.text


async def _wait_for_pending(conversation, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while conversation.tool_router.pending_count == 0:
        assert loop.time() < deadline, "MCP tools/call never registered"
        await asyncio.sleep(0.01)


@pytest.fixture
def agent_backend(fake_backend):
    """Upstream that runs bridged tools through MCP instead of waiting itself."""
    fake_backend.register_calls = False
    fake_backend.script = [
        ToolRequests((ToolRequest("call_1", "xcode-bridge-XcodeRead", {"path": "a"}),)),
        TextDelta("Done."),
        SessionIdle(),
    ]
    return fake_backend


class TestToolsCallBridge:
    async def test_tools_call_waits_for_client_result(self, app, agent_backend) -> None:
        state = app.state.toolbridge
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            first = await http.post(
                "/v1/chat/completions",
                json={
                    "model": "gpt-4o",
                    "messages": [{"role": "user", "content": "read a"}],
                    "tools": [READ_TOOL],
                },
            )
            [tool_call] = first.json()["choices"][0]["message"]["tool_calls"]
            assert tool_call["function"]["name"] == "mcp__xcode-tools__XcodeRead"
            [conversation] = list(state.conversations)

            mcp_call = asyncio.create_task(
                http.post(
                    f"/mcp/{conversation.id}",
                    json=_rpc("tools/call", name="XcodeRead", arguments={"path": "a"}),
                )
            )
            await _wait_for_pending(conversation)

            second = await http.post(
                "/v1/chat/completions",
                json={
                    "model": "gpt-4o",
                    "messages": [
                        {"role": "user", "content": "read a"},
                        {"role": "assistant", "content": None, "tool_calls": [tool_call]},
                        {"role": "tool", "tool_call_id": "call_1", "content": "contents of a"},
                    ],
                },
            )
            mcp_response = await mcp_call

        assert mcp_response.json()["result"] == {
            "content": [{"type": "text", "text": "contents of a"}]
        }
        assert second.json()["choices"][0]["message"]["content"] == "Done."
        assert len(state.conversations) == 0

    async def test_tools_call_falls_back_to_expected_tool(self, app, agent_backend) -> None:
        state = app.state.toolbridge
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            await http.post(
                "/v1/chat/completions",
                json={
                    "model": "gpt-4o",
                    "messages": [{"role": "user", "content": "read a"}],
                    "tools": [READ_TOOL],
                },
            )
            [conversation] = list(state.conversations)

            # Agents that lost the conversation id still reach the right conversation
            mcp_call = asyncio.create_task(
                http.post(
                    "/mcp/stale-id",
                    json=_rpc("tools/call", name="mcp__xcode-tools__XcodeRead"),
                )
            )
            await _wait_for_pending(conversation)
            conversation.resolve_tool_call("call_1", "contents")
            mcp_response = await mcp_call

        assert mcp_response.json()["result"]["content"][0]["text"] == "contents"

    async def test_tools_call_rejected_on_shutdown(self, app, agent_backend) -> None:
        state = app.state.toolbridge
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            await http.post(
                "/v1/chat/completions",
                json={
                    "model": "gpt-4o",
                    "messages": [{"role": "user", "content": "read a"}],
                    "tools": [READ_TOOL],
                },
            )
            [conversation] = list(state.conversations)

            mcp_call = asyncio.create_task(
                http.post(f"/mcp/{conversation.id}", json=_rpc("tools/call", name="XcodeRead"))
            )
            await _wait_for_pending(conversation)
            await state.conversations.cleanup_all()
            mcp_response = await mcp_call

        error = mcp_response.json()["error"]
        assert error["code"] == -32603
        assert error["message"] == "Session cleanup"
