"""Integration tests for POST /v1/responses."""

import json

import pytest

from toolbridge.domain.value_objects import (
    SessionError,
    SessionIdle,
    TextDelta,
    ToolRequest,
    ToolRequests,
)

pytestmark = pytest.mark.integration

READ_TOOL = {
    "type": "function",
    "name": "mcp__xcode-tools__XcodeRead",
    "description": "Read a file",
    "parameters": {"type": "object"},
}


def _request(**overrides) -> dict:
    body = {"model": "gpt-4o", "input": "Hello"}
    body.update(overrides)
    return body


class TestNonStreaming:
    def test_text_response(self, client, fake_backend) -> None:
        fake_backend.script = [TextDelta("Hi there"), SessionIdle()]

        response = client.post("/v1/responses", json=_request(instructions="Be terse."))

        assert response.status_code == 200
        data = response.json()
        assert data["object"] == "response"
        assert data["status"] == "completed"
        [item] = data["output"]
        assert item["type"] == "message"
        assert item["content"][0]["text"] == "Hi there"
        assert fake_backend.sessions[0].config.system == "Be terse."
        assert fake_backend.sessions[0].prompts == ["[User]: Hello"]

    def test_function_call_round_trip(self, client, fake_backend) -> None:
        fake_backend.script = [
            ToolRequests((ToolRequest("call_1", "XcodeRead", {"path": "a"}),)),
            TextDelta("Done."),
            SessionIdle(),
        ]

        first = client.post("/v1/responses", json=_request(tools=[READ_TOOL]))

        [call] = first.json()["output"]
        assert call["type"] == "function_call"
        assert call["call_id"] == "call_1"
        assert call["name"] == "mcp__xcode-tools__XcodeRead"
        assert json.loads(call["arguments"]) == {"path": "a"}

        second = client.post(
            "/v1/responses",
            json=_request(
                tools=[READ_TOOL],
                input=[
                    {"role": "user", "content": "Hello"},
                    {
                        "type": "function_call",
                        "call_id": "call_1",
                        "name": call["name"],
                        "arguments": call["arguments"],
                    },
                    {"type": "function_call_output", "call_id": "call_1", "output": "contents"},
                ],
            ),
        )

        [message] = second.json()["output"]
        assert message["content"][0]["text"] == "Done."
        assert fake_backend.sessions[0].tool_outputs == ["contents"]

    def test_function_call_output_without_call_id_is_400(self, client) -> None:
        response = client.post(
            "/v1/responses",
            json=_request(input=[{"type": "function_call_output", "output": "x"}]),
        )

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "invalid_request_error"


class TestStreaming:
    def test_text_stream_event_sequence(self, client, fake_backend, parse_sse) -> None:
        fake_backend.script = [TextDelta("Hi "), TextDelta("there"), SessionIdle()]

        response = client.post("/v1/responses", json=_request(stream=True))

        events = [(name, json.loads(data)) for name, data in parse_sse(response.text)]
        assert [name for name, _ in events] == [
            "response.created",
            "response.output_item.added",
            "response.output_text.delta",
            "response.output_text.delta",
            "response.output_text.done",
            "response.output_item.done",
            "response.completed",
        ]
        sequence = [payload["sequence_number"] for _, payload in events]
        assert sequence == sorted(sequence)
        assert events[4][1]["text"] == "Hi there"
        completed = events[-1][1]["response"]
        assert completed["status"] == "completed"
        assert completed["output"][0]["content"][0]["text"] == "Hi there"

    def test_function_call_stream(self, client, fake_backend, parse_sse) -> None:
        fake_backend.script = [ToolRequests((ToolRequest("call_1", "XcodeRead", {}),))]

        response = client.post("/v1/responses", json=_request(stream=True, tools=[READ_TOOL]))

        events = [(name, json.loads(data)) for name, data in parse_sse(response.text)]
        added = next(p for name, p in events if name == "response.output_item.added")
        done = next(p for name, p in events if name == "response.output_item.done")
        assert added["item"]["type"] == "function_call"
        assert added["item"]["id"] == done["item"]["id"]
        assert done["item"]["call_id"] == "call_1"
        assert events[-1][0] == "response.completed"

    def test_failed_stream(self, client, fake_backend, parse_sse) -> None:
        fake_backend.script = [SessionError("upstream exploded")]

        response = client.post("/v1/responses", json=_request(stream=True))

        name, data = parse_sse(response.text)[-1]
        assert name == "response.failed"
        failed = json.loads(data)["response"]
        assert failed["status"] == "failed"
        assert failed["error"]["message"] == "upstream exploded"
