"""Flatten provider-specific conversations into the upstream prompt.

The upstream session takes a single prompt string, so every wire format is
rendered into the same transcript shape:

    [User]: ...
    [Assistant]: ...
    [Assistant called tool <name> with args: <json>]
    [Tool result for <call id>]: ...

Entries are separated by a blank line. System and developer messages are
not part of the transcript; they are extracted separately and handed to the
upstream as the system text.

This module also extracts the tool results a request reports back, which is
what feeds the correlation layer.
"""

import json
import math
import re
from collections.abc import Iterable, Sequence
from typing import Any

from toolbridge.adapters.inbound.request_models import (
    CountTokensRequest,
    Message,
    MessagesRequest,
    OpenAIChatMessage,
    OpenAITool,
    ResponsesTool,
    SystemBlock,
    Tool,
)
from toolbridge.domain.errors import InvalidRequestError
from toolbridge.domain.value_objects import ToolDefinition, ToolResult

# Rough heuristic (no tokenizer available for the upstream model)
CHARS_PER_TOKEN_ESTIMATE = 4

_SYSTEM_ROLES = frozenset({"system", "developer"})
_SEPARATOR = "\n\n"


def filter_excluded_files(text: str, patterns: Sequence[str]) -> str:
    """Strip fenced blocks whose header names an excluded file.

    Headers look like ```swift:/path/to/File.swift; a block is removed with
    both fence lines (and one trailing newline) when any pattern occurs,
    case-insensitively, in the header after the colon. Blocks that do not
    match are left byte-for-byte unchanged.
    """
    if not patterns:
        return text
    joined = "|".join(re.escape(pattern) for pattern in patterns)
    fence = re.compile(
        r"```\w*:[^\n]*(?:" + joined + r")[^\n]*\n.*?\n```\n?",
        re.IGNORECASE | re.DOTALL,
    )
    return fence.sub("", text)


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN_ESTIMATE)


def _join(parts: Iterable[str]) -> str:
    return _SEPARATOR.join(parts)


def _tool_call_line(name: str, arguments: str) -> str:
    return f"[Assistant called tool {name} with args: {arguments}]"


def _tool_result_line(call_id: str, output: str) -> str:
    return f"[Tool result for {call_id}]: {output}"


# ============================================================================
# OpenAI Chat Completions
# ============================================================================


def extract_content_text(content: str | list[dict[str, Any]] | None) -> str:
    """Concatenate text content parts.

    Raises:
        InvalidRequestError: For any non-text part or a text part without text.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content

    text = ""
    for part in content:
        part_type = part.get("type")
        if part_type != "text":
            raise InvalidRequestError(f"unsupported content type: {part_type}")
        if not isinstance(part.get("text"), str):
            raise InvalidRequestError("text content part missing required 'text' field")
        text += part["text"]
    return text


def format_openai_prompt(
    messages: Sequence[OpenAIChatMessage], excluded_patterns: Sequence[str] = ()
) -> str:
    parts: list[str] = []
    for message in messages:
        content = extract_content_text(message.content)
        if message.role in _SYSTEM_ROLES:
            continue
        if message.role == "user":
            parts.append(f"[User]: {filter_excluded_files(content, excluded_patterns)}")
        elif message.role == "assistant":
            if content:
                parts.append(f"[Assistant]: {content}")
            for tool_call in message.tool_calls or []:
                parts.append(_tool_call_line(tool_call.function.name, tool_call.function.arguments))
        elif message.role == "tool":
            parts.append(_tool_result_line(message.tool_call_id or "unknown", content))
    return _join(parts)


def extract_openai_system(messages: Sequence[OpenAIChatMessage]) -> str | None:
    texts = [
        extract_content_text(m.content) for m in messages if m.role in _SYSTEM_ROLES
    ]
    texts = [t for t in texts if t]
    return _join(texts) if texts else None


def extract_openai_tool_results(messages: Sequence[OpenAIChatMessage]) -> list[ToolResult]:
    """Tool messages trailing the last assistant turn."""
    results: list[ToolResult] = []
    for message in reversed(messages):
        if message.role != "tool":
            break
        if message.tool_call_id:
            results.append(
                ToolResult(message.tool_call_id, extract_content_text(message.content))
            )
    results.reverse()
    return results


def openai_tool_definitions(tools: Sequence[OpenAITool] | None) -> list[ToolDefinition]:
    return [
        ToolDefinition(
            name=tool.function.name,
            description=tool.function.description,
            input_schema=tool.function.parameters,
        )
        for tool in tools or []
        if tool.type == "function"
    ]


# ============================================================================
# Anthropic Messages
# ============================================================================


def _tool_result_content_text(content: str | list[dict[str, Any]] | None, sep: str = "") -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return sep.join(block["text"] for block in content if isinstance(block.get("text"), str))


def format_anthropic_prompt(
    messages: Sequence[Message], excluded_patterns: Sequence[str] = ()
) -> str:
    parts: list[str] = []
    for message in messages:
        if isinstance(message.content, str):
            if message.role == "user":
                parts.append(
                    f"[User]: {filter_excluded_files(message.content, excluded_patterns)}"
                )
            else:
                parts.append(f"[Assistant]: {message.content}")
            continue

        for block in message.content:
            if block.type == "text":
                if not block.text:
                    continue
                if message.role == "user":
                    parts.append(
                        f"[User]: {filter_excluded_files(block.text, excluded_patterns)}"
                    )
                else:
                    parts.append(f"[Assistant]: {block.text}")
            elif block.type == "tool_use":
                parts.append(_tool_call_line(block.name, json.dumps(block.input)))
            elif block.type == "tool_result":
                parts.append(
                    _tool_result_line(block.tool_use_id, _tool_result_content_text(block.content))
                )
    return _join(parts)


def anthropic_system_text(system: str | list[SystemBlock] | None) -> str | None:
    if system is None:
        return None
    if isinstance(system, str):
        return system or None
    text = _join(block.text for block in system if block.text)
    return text or None


def extract_anthropic_tool_results(messages: Sequence[Message]) -> list[ToolResult]:
    """tool_result blocks of the final user message."""
    if not messages:
        return []
    last = messages[-1]
    if last.role != "user" or isinstance(last.content, str):
        return []
    return [
        ToolResult(block.tool_use_id, _tool_result_content_text(block.content, "\n"))
        for block in last.content
        if block.type == "tool_result"
    ]


def anthropic_tool_definitions(tools: Sequence[Tool]) -> list[ToolDefinition]:
    return [
        ToolDefinition(name=t.name, description=t.description, input_schema=t.input_schema)
        for t in tools
    ]


def count_anthropic_tokens(request: CountTokensRequest | MessagesRequest) -> int:
    """Estimate input tokens over every piece of text in the request."""
    parts: list[str] = []
    if isinstance(request.system, str):
        parts.append(request.system)
    elif request.system:
        parts.extend(block.text for block in request.system)

    for message in request.messages:
        if isinstance(message.content, str):
            parts.append(message.content)
            continue
        for block in message.content:
            if block.type == "text":
                parts.append(block.text)
            elif block.type == "thinking":
                parts.append(block.thinking)
            elif block.type == "tool_use":
                parts.append(block.name)
                parts.append(json.dumps(block.input))
            elif block.type == "tool_result":
                parts.append(_tool_result_content_text(block.content, " "))

    for tool in request.tools:
        parts.append(tool.name)
        if tool.description:
            parts.append(tool.description)
        parts.append(json.dumps(tool.input_schema))

    return estimate_tokens(" ".join(parts))


# ============================================================================
# Responses API (Codex)
# ============================================================================


def _item_content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part["text"]
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    return ""


def _require(item: dict[str, Any], key: str) -> Any:
    if key not in item:
        raise InvalidRequestError(f"{item.get('type', 'input')} item missing '{key}'")
    return item[key]


def format_responses_prompt(
    input_items: str | Sequence[dict[str, Any]], excluded_patterns: Sequence[str] = ()
) -> str:
    if isinstance(input_items, str):
        return f"[User]: {filter_excluded_files(input_items, excluded_patterns)}"

    parts: list[str] = []
    for item in input_items:
        if "role" in item:
            content = _item_content_text(item.get("content"))
            role = item["role"]
            if role in _SYSTEM_ROLES:
                continue
            if role == "user":
                parts.append(f"[User]: {filter_excluded_files(content, excluded_patterns)}")
            elif role == "assistant" and content:
                parts.append(f"[Assistant]: {content}")
        elif item.get("type") == "function_call":
            parts.append(_tool_call_line(_require(item, "name"), item.get("arguments", "{}")))
        elif item.get("type") == "function_call_output":
            parts.append(
                _tool_result_line(_require(item, "call_id"), _item_content_text(item.get("output")))
            )
    return _join(parts)


def extract_responses_instructions(
    input_items: str | Sequence[dict[str, Any]], instructions: str | None = None
) -> str | None:
    """Top-level instructions plus any system/developer input messages."""
    texts = [instructions] if instructions else []
    if not isinstance(input_items, str):
        for item in input_items:
            if item.get("role") in _SYSTEM_ROLES:
                text = _item_content_text(item.get("content"))
                if text:
                    texts.append(text)
    return _join(texts) if texts else None


def extract_function_call_outputs(
    input_items: str | Sequence[dict[str, Any]],
) -> list[ToolResult]:
    """function_call_output items from the trailing run of tool-call items."""
    if isinstance(input_items, str):
        return []
    results: list[ToolResult] = []
    for item in reversed(input_items):
        item_type = item.get("type")
        if item_type == "function_call_output":
            results.append(
                ToolResult(_require(item, "call_id"), _item_content_text(item.get("output")))
            )
        elif item_type != "function_call":
            break
    results.reverse()
    return results


def responses_tool_definitions(tools: Sequence[ResponsesTool]) -> list[ToolDefinition]:
    return [
        ToolDefinition(name=t.name, description=t.description, input_schema=t.parameters)
        for t in tools
        if t.type == "function" and t.name
    ]
