"""Domain layer for tool-call bridging.

This package contains pure business logic with zero external dependencies.
All domain code uses only Python stdlib (asyncio, dataclasses, enum, re)
and internal toolbridge.domain imports.

Modules:
    tool_router: Call-id correlation table (ToolRouter)
    session_lifecycle: Per-conversation session state machine
    tool_cache: Advertised tool definitions and name resolution
    model_resolver: Requested-model to available-model mapping
    value_objects: Immutable value objects (ToolDefinition, ToolResult, events)
    errors: Domain exception hierarchy
"""
