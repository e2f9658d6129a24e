"""Prometheus metrics for production monitoring.

Defines core metrics for observability:
- Request throughput and latency (time to first byte for SSE streams)
- Turns started and resumed per API
- Tool result correlation outcomes
- Model resolution strategies
- Active conversations
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Create registry (separate from default to avoid conflicts)
registry = CollectorRegistry()

# Request metrics
request_total = Counter(
    "toolbridge_request_total",
    "Total number of HTTP requests",
    ["method", "path", "status_code"],
    registry=registry,
)

request_duration_seconds = Histogram(
    "toolbridge_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    registry=registry,
)

# Correlation metrics
tool_results_total = Counter(
    "toolbridge_tool_results_total",
    "Tool results reported by clients",
    ["outcome"],  # "resolved", "cleared" or "not_found"
    registry=registry,
)

tool_calls_forwarded_total = Counter(
    "toolbridge_tool_calls_forwarded_total",
    "Tool calls forwarded to clients",
    ["api"],
    registry=registry,
)

mcp_tool_calls_total = Counter(
    "toolbridge_mcp_tool_calls_total",
    "MCP tools/call requests",
    ["result"],  # "ok", "rejected" or "unexpected"
    registry=registry,
)

# Model metrics
model_resolution_total = Counter(
    "toolbridge_model_resolution_total",
    "Model resolutions by strategy",
    ["strategy"],
    registry=registry,
)

# Conversation metrics
conversations_active = Gauge(
    "toolbridge_conversations_active",
    "Number of conversations currently tracked",
    registry=registry,
)

# Turn metrics
turns_total = Counter(
    "toolbridge_turns_total",
    "Completions requests by API and whether they started or resumed a turn",
    ["api", "kind"],  # kind: "started" or "continued"
    registry=registry,
)

stream_ttfb_seconds = Histogram(
    "toolbridge_stream_ttfb_seconds",
    "Time to first byte of streamed (SSE) responses",
    ["api"],
    registry=registry,
)
