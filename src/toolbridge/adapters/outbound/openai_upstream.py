"""Upstream adapter for OpenAI-compatible completion services (httpx).

Each session keeps the upstream message history and loops over
non-streaming /chat/completions calls: when the model asks for tools the
calls are registered with the conversation, forwarded to the client as a
ToolRequests event, and the session waits for the client's results before
calling the upstream again.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from toolbridge.adapters.config.settings import UpstreamSettings
from toolbridge.application.ports import SessionConfig
from toolbridge.domain.errors import ToolCallRejectedError, UpstreamError
from toolbridge.domain.value_objects import (
    ModelInfo,
    SessionError,
    SessionEvent,
    SessionIdle,
    TextDelta,
    ToolDefinition,
    ToolRequest,
    ToolRequests,
)

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


def _tool_payload(tool: ToolDefinition) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.input_schema or _EMPTY_SCHEMA,
        },
    }


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Dropping unparseable tool arguments: {raw[:200]!r}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIUpstreamSession:
    """One upstream conversation driven through /chat/completions."""

    def __init__(self, client: httpx.AsyncClient, config: SessionConfig) -> None:
        self._client = client
        self._config = config
        self._tools = [_tool_payload(t) for t in config.tools]
        self._messages: list[dict[str, Any]] = []
        if config.system:
            self._messages.append({"role": "system", "content": config.system})
        self._stream: AsyncGenerator[SessionEvent, None] | None = None
        self._aborted = False

    def stream(self, prompt: str) -> AsyncGenerator[SessionEvent, None]:
        self._stream = self._run(prompt)
        return self._stream

    async def abort(self) -> None:
        self._aborted = True
        stream, self._stream = self._stream, None
        # A stream parked in another task is finished by that task
        if stream is not None and not stream.ag_running:
            await stream.aclose()

    async def _run(self, prompt: str) -> AsyncGenerator[SessionEvent, None]:
        self._messages.append({"role": "user", "content": prompt})

        while not self._aborted:
            try:
                message = await self._complete()
            except UpstreamError as e:
                yield SessionError(str(e))
                return

            content = message.get("content")
            if content:
                yield TextDelta(content)

            requests = [self._to_request(call) for call in message.get("tool_calls") or []]
            if not requests:
                yield SessionIdle()
                return

            self._messages.append(
                {
                    "role": "assistant",
                    "content": content,
                    "tool_calls": [
                        {
                            "id": r.call_id,
                            "type": "function",
                            "function": {"name": r.name, "arguments": json.dumps(r.arguments)},
                        }
                        for r in requests
                    ],
                }
            )

            # Registered before the event is yielded so a fast client answer
            # always finds its pending entry
            futures = [self._config.register_call(r.call_id) for r in requests]
            yield ToolRequests(tuple(requests))

            try:
                outputs = await asyncio.gather(*futures)
            except ToolCallRejectedError as e:
                logger.info(f"Session {self._config.conversation_id} stopped: {e.reason}")
                return

            for tool_request, output in zip(requests, outputs):
                self._messages.append(
                    {"role": "tool", "tool_call_id": tool_request.call_id, "content": output}
                )

    @staticmethod
    def _to_request(call: dict[str, Any]) -> ToolRequest:
        function = call.get("function") or {}
        return ToolRequest(
            call_id=call.get("id") or f"call_{uuid.uuid4().hex[:24]}",
            name=function.get("name", ""),
            arguments=_parse_arguments(function.get("arguments")),
        )

    async def _complete(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self._config.model, "messages": self._messages}
        if self._tools:
            payload["tools"] = self._tools

        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            return response.json()["choices"][0]["message"]
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"Upstream returned HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Upstream request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise UpstreamError("Malformed upstream completion response") from e


class OpenAIUpstream:
    """CompletionBackend for any OpenAI-compatible API.

    Example:
        >>> upstream = OpenAIUpstream("http://localhost:11434/v1")
        >>> models = await upstream.list_models()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if client is None:
            headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
            client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout_seconds)
        self._client = client

    @classmethod
    def from_settings(cls, settings: UpstreamSettings) -> "OpenAIUpstream":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key.get_secret_value(),
            timeout_seconds=settings.request_timeout_seconds,
        )

    async def list_models(self) -> list[ModelInfo]:
        try:
            response = await self._client.get("/models")
            response.raise_for_status()
            data = response.json().get("data", [])
        except httpx.HTTPError as e:
            raise UpstreamError(f"Failed to list upstream models: {e}") from e
        except (AttributeError, ValueError) as e:
            raise UpstreamError("Malformed upstream model list") from e

        models = [
            ModelInfo(id=item["id"], owned_by=item.get("owned_by") or "upstream")
            for item in data
            if isinstance(item, dict) and item.get("id")
        ]
        logger.debug(f"Upstream serves {len(models)} models")
        return models

    def open_session(self, config: SessionConfig) -> OpenAIUpstreamSession:
        return OpenAIUpstreamSession(self._client, config)

    async def aclose(self) -> None:
        await self._client.aclose()
