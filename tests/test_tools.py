"""
Tests for the tool registry and search tools.
"""

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from tapir_agent.errors import ToolError
from tapir_agent.tools.base import Tool, ToolParameter
from tapir_agent.tools.registry import ToolRegistry, create_default_registry
from tapir_agent.tools.search_tool import find_files, format_rg_json, grep


def echo_tool() -> Tool:
    return Tool(
        name="echo",
        description="Echo text",
        parameters=[
            ToolParameter(name="text", param_type="string", description="Text to echo"),
            ToolParameter(name="times", param_type="integer", description="Repeat", required=False),
        ],
        handler=lambda working_dir, text, times=1: text * times,
    )


def test_default_registry_order():
    """Test the registered tools and their order."""
    registry = create_default_registry()
    assert registry.list_tools() == ["read_file", "write_file", "edit_file", "bash", "ls", "find", "grep"]


def test_only_last_definition_is_cached():
    """Test that the cache tag sits on the final tool definition."""
    definitions = create_default_registry().get_definitions()

    assert definitions[-1].cache is True
    assert not any(d.cache for d in definitions[:-1])
    assert definitions[-1].to_dict()["cache_control"] == {"type": "ephemeral"}


def test_registry_execute():
    """Test running a registered tool by name."""
    registry = ToolRegistry()
    registry.register(echo_tool())

    assert registry.execute(Path("."), "echo", {"text": "ab", "times": 2}) == "abab"


def test_registry_unknown_tool():
    """Test that an unknown tool name raises."""
    with pytest.raises(ToolError, match="unknown tool"):
        ToolRegistry().execute(Path("."), "nope", {})


def test_bool_is_not_an_integer():
    """Test that a boolean does not satisfy an integer parameter."""
    assert echo_tool().bind_arguments({"text": "a", "times": True}) == {"text": "a"}


def rg_record(kind: str, path: str, line: int, text: str) -> str:
    return json.dumps({
        "type": kind,
        "data": {"path": {"text": path}, "line_number": line, "lines": {"text": text + "\n"}},
    })


def test_format_rg_json():
    """Test condensing ripgrep JSON into grouped lines."""
    output = "\n".join([
        json.dumps({"type": "begin", "data": {}}),
        rg_record("context", "/work/a.py", 1, "import os"),
        rg_record("match", "/work/a.py", 2, "def main():"),
        rg_record("match", "/work/pkg/b.py", 10, "def main():"),
        json.dumps({"type": "summary", "data": {}}),
    ])

    assert format_rg_json(output, Path("/work")) == (
        "a.py\n"
        "  1-import os\n"
        "  2:def main():\n"
        "\n"
        "pkg/b.py\n"
        "  10:def main():\n"
    )


def test_format_rg_json_no_matches():
    """Test the empty result."""
    assert format_rg_json("", Path("/work")) == "No matches found."


def test_grep_missing_binary(tmp_path):
    """Test the install hint when ripgrep is missing."""
    with patch("tapir_agent.tools.search_tool._run", side_effect=FileNotFoundError):
        assert grep(tmp_path, "x").startswith("Error: rg (ripgrep) not found")


def test_find_missing_binary(tmp_path):
    """Test the install hint when fd is missing."""
    with patch("tapir_agent.tools.search_tool._run", side_effect=FileNotFoundError):
        assert find_files(tmp_path, "*.py").startswith("Error: fd not found")


def test_grep_pattern_starting_with_dash(tmp_path):
    """Test that a pattern like "-foo" is passed to rg as a pattern, not a flag."""
    done = subprocess.CompletedProcess([], 1, stdout="", stderr="")
    with patch("tapir_agent.tools.search_tool._run", return_value=done) as run:
        assert grep(tmp_path, "--files") == "No matches found."

    args = run.call_args[0][0]
    assert args[args.index("-e") + 1] == "--files"
    assert args[-2:] == ["--", str(tmp_path)]


def test_find_pattern_starting_with_dash(tmp_path):
    """Test that fd receives the pattern after the end-of-options marker."""
    done = subprocess.CompletedProcess([], 0, stdout="-draft.md\n", stderr="")
    with patch("tapir_agent.tools.search_tool._run", return_value=done) as run:
        assert find_files(tmp_path, "-draft*") == "-draft.md\n"

    assert run.call_args[0][0][-2:] == ["--", "-draft*"]
