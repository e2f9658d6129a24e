"""toolbridge: OpenAI / Anthropic protocol gateway with an MCP tool bridge.

Lets an IDE-embedded AI client speak OpenAI-style and Anthropic-style
completion protocols against a single upstream completion service while
relaying the tool calls the model makes back to that same client.

Architecture: Hexagonal (Ports & Adapters)
- Domain core: tool-call correlation, session lifecycle, name and model
  resolution (no external dependencies)
- Application: conversations and turn orchestration
- Adapters: FastAPI wire formats, MCP JSON-RPC, httpx upstream client
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
