"""
Search tools backed by fd and ripgrep.
"""

import json
import subprocess
from pathlib import Path

import structlog

from ..errors import ToolError
from ..text import truncate_head, truncate_line
from .base import Tool, ToolParameter
from .file_tool import READ_MAX_CHARS, READ_MAX_LINES, FileManager

logger = structlog.get_logger()

GREP_LINE_MAX_CHARS = 500
GREP_MAX_COUNT = 100
FIND_MAX_RESULTS = 1000


def _run(args: list[str], cwd: Path) -> subprocess.CompletedProcess:
    return subprocess.run(
        args,
        cwd=cwd,
        stdin=subprocess.DEVNULL,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
    )


def find_files(working_dir: Path, pattern: str, path: str | None = None) -> str:
    search_dir = FileManager(working_dir).safe_path(path) if path else working_dir
    try:
        result = _run(
            ["fd", "--glob", "--max-results", str(FIND_MAX_RESULTS), "--", pattern],
            cwd=search_dir,
        )
    except FileNotFoundError:
        return "Error: fd not found. Install it: https://github.com/sharkdp/fd"
    except OSError as e:
        raise ToolError("find", f"failed to run fd: {e}") from e

    if result.returncode != 0 and result.stderr:
        return f"stderr: {result.stderr}"
    if not result.stdout:
        return "No files found matching pattern."
    output, _ = truncate_head(result.stdout, READ_MAX_LINES, READ_MAX_CHARS)
    return output


def format_rg_json(json_output: str, working_dir: Path) -> str:
    """Condense ripgrep ``--json`` output to ``path`` headers and ``  N:text`` lines.

    Match lines use ``:`` after the line number, context lines use ``-``.
    """
    prefix = str(working_dir).rstrip("/") + "/"
    out: list[str] = []
    current_path: str | None = None

    for raw in json_output.splitlines():
        try:
            record = json.loads(raw)
        except json.JSONDecodeError:
            continue
        kind = record.get("type")
        if kind not in ("match", "context"):
            continue

        data = record.get("data") or {}
        path_text = (data.get("path") or {}).get("text", "")
        if path_text.startswith(prefix):
            path_text = path_text[len(prefix):]
        line_number = data.get("line_number") or 0
        text = truncate_line(((data.get("lines") or {}).get("text") or "").rstrip("\n"), GREP_LINE_MAX_CHARS)

        if path_text != current_path:
            if current_path is not None:
                out.append("")
            out.append(path_text)
            current_path = path_text
        sep = ":" if kind == "match" else "-"
        out.append(f"  {line_number}{sep}{text}")

    if not out:
        return "No matches found."
    output, _ = truncate_head("\n".join(out) + "\n", READ_MAX_LINES, READ_MAX_CHARS)
    return output


def grep(working_dir: Path, pattern: str, path: str | None = None, context: int = 2) -> str:
    search_path = FileManager(working_dir).safe_path(path) if path else working_dir
    try:
        result = _run(
            [
                "rg",
                "--json",
                "--max-count",
                str(GREP_MAX_COUNT),
                "--context",
                str(max(context, 0)),
                "-e",
                pattern,
                "--",
                str(search_path),
            ],
            cwd=working_dir,
        )
    except FileNotFoundError:
        return "Error: rg (ripgrep) not found. Install it: https://github.com/BurntSushi/ripgrep"
    except OSError as e:
        raise ToolError("grep", f"failed to run rg: {e}") from e

    if not result.stdout:
        return "No matches found."
    return format_rg_json(result.stdout, working_dir)


def create_search_tools() -> list[Tool]:
    """Create search tools."""
    find = Tool(
        name="find",
        description="Find files matching a glob pattern using fd. Returns up to 1000 results.",
        parameters=[
            ToolParameter(
                name="pattern",
                param_type="string",
                description='Glob pattern to search for (e.g. "*.py", "test_*")',
            ),
            ToolParameter(
                name="path",
                param_type="string",
                description="Directory to search in (default: working directory)",
                required=False,
            ),
        ],
        handler=find_files,
    )

    grep_tool = Tool(
        name="grep",
        description=(
            "Search file contents using ripgrep. Returns matching lines with file paths "
            "and line numbers."
        ),
        parameters=[
            ToolParameter(name="pattern", param_type="string", description="Regex pattern to search for"),
            ToolParameter(
                name="path",
                param_type="string",
                description="File or directory to search (default: working directory)",
                required=False,
            ),
            ToolParameter(
                name="context",
                param_type="integer",
                description="Lines of context around matches (default: 2)",
                required=False,
            ),
        ],
        handler=grep,
    )

    return [find, grep_tool]
