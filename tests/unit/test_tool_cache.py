"""Unit tests for ToolCache name resolution."""

import pytest

from toolbridge.domain.tool_cache import NameMatchKind, ToolCache
from toolbridge.domain.value_objects import ToolDefinition

pytestmark = pytest.mark.unit


@pytest.fixture
def cache() -> ToolCache:
    cache = ToolCache()
    cache.cache_tools(
        [
            ToolDefinition("mcp__xcode-tools__XcodeRead", "Read a file"),
            ToolDefinition("mcp__xcode-tools__XcodeWrite", "Write a file"),
            ToolDefinition("mcp__other__XcodeWrite", "Also writes"),
            ToolDefinition("SomeXcodeRead"),
        ]
    )
    return cache


def test_exact_match(cache) -> None:
    match = cache.match_tool_name("mcp__xcode-tools__XcodeRead")
    assert match.kind is NameMatchKind.EXACT
    assert match.resolved


def test_unique_suffix_resolves_to_full_name(cache) -> None:
    match = cache.match_tool_name("XcodeRead")

    assert match.kind is NameMatchKind.SUFFIX
    assert match.name == "mcp__xcode-tools__XcodeRead"
    assert cache.resolve_tool_name("XcodeRead") == "mcp__xcode-tools__XcodeRead"


def test_suffix_requires_delimiter(cache) -> None:
    # "SomeXcodeRead" ends with "XcodeRead" but not with "__XcodeRead"
    assert cache.match_tool_name("XcodeRead").candidates == ("mcp__xcode-tools__XcodeRead",)
    assert cache.match_tool_name("Read").kind is NameMatchKind.UNKNOWN


def test_ambiguous_suffix_returns_input(cache) -> None:
    match = cache.match_tool_name("XcodeWrite")

    assert match.kind is NameMatchKind.AMBIGUOUS
    assert not match.resolved
    assert match.name == "XcodeWrite"
    assert set(match.candidates) == {"mcp__xcode-tools__XcodeWrite", "mcp__other__XcodeWrite"}


def test_unknown_name_returns_input(cache) -> None:
    assert cache.resolve_tool_name("Bash") == "Bash"


def test_empty_cache_returns_input() -> None:
    assert ToolCache().resolve_tool_name("XcodeRead") == "XcodeRead"


def test_refresh_replaces_list(cache) -> None:
    cache.cache_tools([ToolDefinition("mcp__new__Tool")])

    assert [t.name for t in cache.get_cached_tools()] == ["mcp__new__Tool"]
    assert cache.get_tool("mcp__xcode-tools__XcodeRead") is None


GREP_TOOL = ToolDefinition(
    "mcp__xcode-tools__XcodeGrep",
    "Search files",
    {
        "type": "object",
        "properties": {
            "pattern": {"type": "string"},
            "output_mode": {"type": "string", "enum": ["content", "files_with_matches"]},
            "-i": {"type": "boolean"},
            "-A": {"type": "integer"},
            "filePath": {"type": "string"},
        },
    },
)


class TestNormalizeArgs:
    @pytest.fixture
    def grep_cache(self) -> ToolCache:
        cache = ToolCache()
        cache.cache_tools([GREP_TOOL])
        return cache

    def test_known_keys_untouched(self, grep_cache) -> None:
        args = {"pattern": "TODO", "output_mode": "content"}
        assert grep_cache.normalize_args(GREP_TOOL.name, args) == args

    def test_camel_case_key_mapped_to_snake_case(self, grep_cache) -> None:
        normalized = grep_cache.normalize_args(GREP_TOOL.name, {"outputMode": "content"})
        assert normalized == {"output_mode": "content"}

    def test_snake_case_key_mapped_to_camel_case(self, grep_cache) -> None:
        normalized = grep_cache.normalize_args(GREP_TOOL.name, {"file_path": "a.swift"})
        assert normalized == {"filePath": "a.swift"}

    def test_flag_aliases(self, grep_cache) -> None:
        normalized = grep_cache.normalize_args(
            GREP_TOOL.name, {"ignoreCase": True, "linesAfter": 3}
        )
        assert normalized == {"-i": True, "-A": 3}

    def test_enum_value_mapped_to_snake_case(self, grep_cache) -> None:
        normalized = grep_cache.normalize_args(
            GREP_TOOL.name, {"output_mode": "filesWithMatches"}
        )
        assert normalized == {"output_mode": "files_with_matches"}

    def test_unmatched_keys_and_values_pass_through(self, grep_cache) -> None:
        args = {"unknownFlag": 1, "output_mode": "countOnly"}
        assert grep_cache.normalize_args(GREP_TOOL.name, args) == args

    def test_unknown_tool_or_schemaless_tool_returns_args(self, cache) -> None:
        args = {"filePath": "a"}
        assert cache.normalize_args("mcp__xcode-tools__XcodeRead", args) == args
        assert cache.normalize_args("missing", args) == args
