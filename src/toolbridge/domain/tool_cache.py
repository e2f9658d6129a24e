"""Tool definitions advertised for the current turn.

Also reconciles the model's possibly-imprecise tool references (the model
sometimes shortens "mcp__xcode-tools__XcodeRead" to "XcodeRead") back to
the canonical, fully-qualified name, and remaps argument keys and enum
values the model renamed back to the ones the tool schema declares.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from toolbridge.domain.value_objects import TOOL_NAME_DELIMITER, ToolDefinition

# CLI-style flags the model renames to camelCase; these cannot be derived
# mechanically from the schema key.
FLAG_ALIASES: dict[str, str] = {
    "ignoreCase": "-i",
    "caseInsensitive": "-i",
    "lineNumbers": "-n",
    "showLineNumbers": "-n",
    "afterContext": "-A",
    "linesAfter": "-A",
    "beforeContext": "-B",
    "linesBefore": "-B",
}

_UPPER = re.compile(r"[A-Z]")
_SNAKE_PART = re.compile(r"_([a-z])")


def camel_to_snake(value: str) -> str:
    return _UPPER.sub(lambda m: f"_{m.group(0).lower()}", value)


def snake_to_camel(value: str) -> str:
    return _SNAKE_PART.sub(lambda m: m.group(1).upper(), value)


class NameMatchKind(Enum):
    EXACT = "exact"
    SUFFIX = "suffix"
    AMBIGUOUS = "ambiguous"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NameMatch:
    """Outcome of resolving a tool name against the cache.

    Attributes:
        requested: Name as the model produced it.
        name: Canonical name, or the requested name when unresolved.
        kind: How the name was matched.
        candidates: Every cached name that ended with "__<requested>".
    """

    requested: str
    name: str
    kind: NameMatchKind
    candidates: tuple[str, ...] = ()

    @property
    def resolved(self) -> bool:
        return self.kind in (NameMatchKind.EXACT, NameMatchKind.SUFFIX)


class ToolCache:
    """Holds the tool list most recently advertised to the model.

    The list is replaced wholesale on every refresh, never merged.
    """

    def __init__(self) -> None:
        self._tools: tuple[ToolDefinition, ...] = ()

    def cache_tools(self, tools: Iterable[ToolDefinition]) -> None:
        self._tools = tuple(tools)

    def get_cached_tools(self) -> tuple[ToolDefinition, ...]:
        return self._tools

    def get_tool(self, name: str) -> ToolDefinition | None:
        for tool in self._tools:
            if tool.name == name:
                return tool
        return None

    def match_tool_name(self, name: str) -> NameMatch:
        """Match name exactly, then as a delimiter-bounded suffix.

        The "__" boundary keeps "Read" from matching "SomeXcodeRead".
        """
        if self.get_tool(name) is not None:
            return NameMatch(requested=name, name=name, kind=NameMatchKind.EXACT)

        suffix = f"{TOOL_NAME_DELIMITER}{name}"
        candidates = tuple(t.name for t in self._tools if t.name.endswith(suffix))
        if len(candidates) == 1:
            return NameMatch(
                requested=name,
                name=candidates[0],
                kind=NameMatchKind.SUFFIX,
                candidates=candidates,
            )
        kind = NameMatchKind.AMBIGUOUS if candidates else NameMatchKind.UNKNOWN
        return NameMatch(requested=name, name=name, kind=kind, candidates=candidates)

    def resolve_tool_name(self, name: str) -> str:
        """Return the canonical name, or name unchanged if unresolved."""
        return self.match_tool_name(name).name

    def normalize_args(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        """Remap argument keys and enum values onto the tool's input schema.

        A key is matched as-is, then as snake_case, then as camelCase, then
        through FLAG_ALIASES ("ignoreCase" -> "-i"). A string value for an
        enum property falls back to its snake_case form
        ("filesWithMatches" -> "files_with_matches"). Anything that still
        does not match is passed through unchanged.
        """
        tool = self.get_tool(name)
        properties = tool.input_schema.get("properties") if tool is not None else None
        if not isinstance(properties, dict) or not properties:
            return args

        normalized: dict[str, Any] = {}
        for key, value in args.items():
            resolved = self._resolve_key(key, properties)
            normalized[resolved] = self._resolve_value(value, properties.get(resolved))
        return normalized

    @staticmethod
    def _resolve_key(key: str, properties: dict[str, Any]) -> str:
        candidates = (key, camel_to_snake(key), snake_to_camel(key), FLAG_ALIASES.get(key))
        for candidate in candidates:
            if candidate is not None and candidate in properties:
                return candidate
        return key

    @staticmethod
    def _resolve_value(value: Any, schema: Any) -> Any:
        if not isinstance(value, str) or not isinstance(schema, dict):
            return value
        allowed = schema.get("enum")
        if not isinstance(allowed, list) or value in allowed:
            return value
        snake = camel_to_snake(value)
        return snake if snake in allowed else value
