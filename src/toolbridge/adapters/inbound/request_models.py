"""Pydantic request and response models for inbound API adapters.

Defines models for:
- Anthropic Messages API (/v1/messages, /v1/messages/count_tokens)
- OpenAI Chat Completions API (/v1/chat/completions)
- OpenAI Responses API (/v1/responses)
- Model listing (/v1/models)
- MCP JSON-RPC 2.0 envelope (/mcp/{conversation_id})

Unknown request fields are ignored so newer client versions keep working.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Anthropic Messages API Models
# ============================================================================


class TextContentBlock(BaseModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str


class ThinkingContentBlock(BaseModel):
    """Thinking content block (extended thinking)."""

    type: Literal["thinking"] = "thinking"
    thinking: str


class ToolUseContentBlock(BaseModel):
    """Tool use content block."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultContentBlock(BaseModel):
    """Tool result content block."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str | list[dict[str, Any]] | None = None
    is_error: bool = False


# Union of all content block types
ContentBlock = (
    TextContentBlock | ThinkingContentBlock | ToolUseContentBlock | ToolResultContentBlock
)


class Message(BaseModel):
    """Message in conversation (user or assistant)."""

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]


class SystemBlock(BaseModel):
    """System prompt block with optional cache control."""

    type: Literal["text"] = "text"
    text: str
    cache_control: dict[str, str] | None = None


class Tool(BaseModel):
    """Tool definition."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)


class MessagesRequest(BaseModel):
    """Request to Anthropic Messages API (POST /v1/messages).

    Example:
        {
          "model": "claude-sonnet-4-5-20250929",
          "max_tokens": 1024,
          "messages": [
            {"role": "user", "content": "Hello!"}
          ]
        }
    """

    model: str = Field(min_length=1)
    messages: list[Message]
    max_tokens: int = Field(default=4096, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    stream: bool = False
    stop_sequences: list[str] = Field(default_factory=list)
    system: str | list[SystemBlock] | None = None
    tools: list[Tool] = Field(default_factory=list)

    @field_validator("messages")
    @classmethod
    def validate_messages_not_empty(cls, messages: list[Message]) -> list[Message]:
        """Validate that messages list is not empty."""
        if not messages:
            raise ValueError("At least one message is required")
        return messages


class Usage(BaseModel):
    """Token usage statistics."""

    input_tokens: int
    output_tokens: int


class MessagesResponse(BaseModel):
    """Response from Anthropic Messages API.

    Example:
        {
          "id": "msg_01...",
          "type": "message",
          "role": "assistant",
          "content": [{"type": "text", "text": "Hello!"}],
          "model": "claude-sonnet-4-5",
          "stop_reason": "end_turn",
          "usage": {...}
        }
    """

    id: str
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    content: list[ContentBlock]
    model: str
    stop_reason: Literal["end_turn", "max_tokens", "stop_sequence", "tool_use"] | None
    stop_sequence: str | None = None
    usage: Usage


# ============================================================================
# Anthropic SSE Streaming Events
# ============================================================================


class MessageStartEvent(BaseModel):
    """SSE event: message_start."""

    type: Literal["message_start"] = "message_start"
    message: MessagesResponse


class ContentBlockStartEvent(BaseModel):
    """SSE event: content_block_start."""

    type: Literal["content_block_start"] = "content_block_start"
    index: int
    content_block: ContentBlock


class ContentBlockDeltaEvent(BaseModel):
    """SSE event: content_block_delta."""

    type: Literal["content_block_delta"] = "content_block_delta"
    index: int
    delta: dict[str, Any]  # {"type": "text_delta", "text": "..."}


class ContentBlockStopEvent(BaseModel):
    """SSE event: content_block_stop."""

    type: Literal["content_block_stop"] = "content_block_stop"
    index: int


class MessageDeltaEvent(BaseModel):
    """SSE event: message_delta."""

    type: Literal["message_delta"] = "message_delta"
    delta: dict[str, Any]  # {"stop_reason": "end_turn"}
    usage: Usage


class MessageStopEvent(BaseModel):
    """SSE event: message_stop."""

    type: Literal["message_stop"] = "message_stop"


class CountTokensRequest(BaseModel):
    """Request to count tokens (POST /v1/messages/count_tokens)."""

    model: str
    messages: list[Message]
    system: str | list[SystemBlock] | None = None
    tools: list[Tool] = Field(default_factory=list)


class CountTokensResponse(BaseModel):
    """Response from token counting."""

    input_tokens: int


# ============================================================================
# OpenAI Chat Completions API Models
# ============================================================================


class OpenAIFunctionCall(BaseModel):
    """Function name and JSON-encoded arguments of a tool call."""

    name: str
    arguments: str = "{}"


class OpenAIToolCall(BaseModel):
    """Tool call made by the assistant."""

    id: str | None = None
    type: str = "function"
    function: OpenAIFunctionCall


class OpenAIChatMessage(BaseModel):
    """Message in OpenAI chat format.

    Content parts are kept as raw dicts; anything but text is rejected when
    the prompt is built.
    """

    role: Literal["system", "developer", "user", "assistant", "tool"]
    content: str | list[dict[str, Any]] | None = None
    name: str | None = None
    tool_calls: list[OpenAIToolCall] | None = None
    tool_call_id: str | None = None


class OpenAIFunctionDefinition(BaseModel):
    """Function schema advertised to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class OpenAITool(BaseModel):
    """Tool definition in OpenAI format."""

    type: str = "function"
    function: OpenAIFunctionDefinition


class ChatCompletionsRequest(BaseModel):
    """Request to OpenAI Chat Completions API.

    Example:
        {
          "model": "gpt-4o",
          "messages": [
            {"role": "user", "content": "Hello!"}
          ]
        }
    """

    model: str = Field(min_length=1)
    messages: list[OpenAIChatMessage]
    max_tokens: int | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    stream: bool = False
    tools: list[OpenAITool] | None = None
    tool_choice: str | dict[str, Any] | None = None

    @field_validator("messages")
    @classmethod
    def validate_messages_not_empty(
        cls, messages: list[OpenAIChatMessage]
    ) -> list[OpenAIChatMessage]:
        """Validate that messages list is not empty."""
        if not messages:
            raise ValueError("At least one message is required")
        return messages


class OpenAIResponseMessage(BaseModel):
    """Assistant message in a chat completion response."""

    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[dict[str, Any]] | None = None


class OpenAIChatChoice(BaseModel):
    """Choice in OpenAI chat response."""

    index: int
    message: OpenAIResponseMessage
    finish_reason: str | None


class OpenAIChatCompletionUsage(BaseModel):
    """Token usage in OpenAI format."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatCompletionsResponse(BaseModel):
    """Response from OpenAI Chat Completions API.

    Example:
        {
          "id": "chatcmpl-...",
          "object": "chat.completion",
          "created": 1234567890,
          "model": "gpt-4o",
          "choices": [{...}],
          "usage": {...}
        }
    """

    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[OpenAIChatChoice]
    usage: OpenAIChatCompletionUsage


# ============================================================================
# OpenAI Responses API Models (Codex)
# ============================================================================


class ResponsesTool(BaseModel):
    """Function tool in Responses API format (flat, no "function" wrapper)."""

    type: str = "function"
    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class ResponsesRequest(BaseModel):
    """Request to the Responses API (POST /v1/responses).

    `input` is either a plain user string or a list of items: role-bearing
    messages, "function_call" items and "function_call_output" items.
    """

    model: str = Field(min_length=1)
    input: str | list[dict[str, Any]]
    instructions: str | None = None
    tools: list[ResponsesTool] = Field(default_factory=list)
    stream: bool = False


class ResponsesUsage(BaseModel):
    """Token usage in Responses API format."""

    input_tokens: int
    output_tokens: int
    total_tokens: int


class ResponsesResponse(BaseModel):
    """Response object from the Responses API."""

    id: str
    object: Literal["response"] = "response"
    created_at: int
    model: str
    status: Literal["completed", "failed", "incomplete"] = "completed"
    output: list[dict[str, Any]]
    usage: ResponsesUsage


# ============================================================================
# Model Listing
# ============================================================================


class ModelObject(BaseModel):
    """Model entry in OpenAI list format."""

    id: str
    object: Literal["model"] = "model"
    created: int
    owned_by: str


class ModelList(BaseModel):
    """Response from GET /v1/models."""

    object: Literal["list"] = "list"
    data: list[ModelObject]


# ============================================================================
# MCP JSON-RPC Models
# ============================================================================


class JSONRPCRequest(BaseModel):
    """JSON-RPC 2.0 request or notification (no id)."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str | None = None
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.id is None
