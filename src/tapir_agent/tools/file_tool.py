"""
File Operations Tool - read, write, edit and list files.

Every path is resolved against the working directory and must stay inside
it; anything else raises SecurityError.
"""

from pathlib import Path

import structlog

from ..errors import SecurityError, ToolError
from ..text import edit_diff, fuzzy_find, truncate_head
from .base import Tool, ToolParameter

logger = structlog.get_logger()

READ_MAX_LINES = 2000
READ_MAX_CHARS = 50_000
LS_MAX_ENTRIES = 500
LS_MAX_CHARS = 30_000


class FileManager:
    """File operations sandboxed to one working directory."""

    def __init__(self, working_dir: Path):
        self.working_dir = Path(working_dir)

    def _candidate(self, path: str) -> Path:
        p = Path(path).expanduser()
        return p if p.is_absolute() else self.working_dir / p

    def _root(self) -> Path:
        try:
            return self.working_dir.resolve(strict=True)
        except OSError as e:
            raise SecurityError(f"cannot resolve working dir: {e}") from e

    def safe_path(self, path: str) -> Path:
        """Resolve an existing path inside the working directory."""
        try:
            resolved = self._candidate(path).resolve(strict=True)
        except OSError as e:
            raise SecurityError(f"cannot resolve path {path}: {e}") from e
        if not resolved.is_relative_to(self._root()):
            logger.warning("Path outside working directory", path=path)
            raise SecurityError(f"path {path} is outside working directory")
        return resolved

    def safe_path_for_write(self, path: str) -> Path:
        """Resolve a possibly missing file whose parent is inside the working directory."""
        candidate = self._candidate(path)
        if not candidate.name:
            raise SecurityError(f"no filename in {path}")
        try:
            parent = candidate.parent.resolve(strict=True)
        except OSError as e:
            raise SecurityError(f"cannot resolve parent of {path}: {e}") from e
        if not parent.is_relative_to(self._root()):
            logger.warning("Path outside working directory", path=path)
            raise SecurityError(f"path {path} is outside working directory")
        return parent / candidate.name

    def read_file(self, path: str, offset: int | None = None, limit: int | None = None) -> str:
        """Read a file with 1-based line numbers."""
        content = self.safe_path(path).read_text(encoding="utf-8", errors="replace")
        lines = content.splitlines()

        start = max((offset or 1) - 1, 0)
        selected = lines[start:] if limit is None else lines[start:start + max(limit, 0)]
        numbered = "".join(f"{start + i + 1}\t{line}\n" for i, line in enumerate(selected))

        output, truncated = truncate_head(numbered, READ_MAX_LINES, READ_MAX_CHARS)
        if truncated:
            output += (
                "\nHint: use offset/limit to read specific sections "
                f"(file has {len(lines)} lines)"
            )
        return output

    def write_file(self, path: str, content: str) -> str:
        target = self.safe_path_for_write(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return f"Wrote {len(content)} chars to {path}"

    def edit_file(self, path: str, old_string: str, new_string: str) -> str:
        """Replace the single occurrence of ``old_string``.

        An exact match is tried first and must be unique. Failing that, a
        match that ignores whitespace, smart quotes and dashes is accepted
        when it too is unique.
        """
        target = self.safe_path(path)
        content = target.read_text(encoding="utf-8")

        count = content.count(old_string) if old_string else 0
        if count == 1:
            target.write_text(content.replace(old_string, new_string, 1), encoding="utf-8")
            return f"Edited {path}\n{edit_diff(path, content, old_string, new_string)}"
        if count > 1:
            raise ToolError("edit_file", f"old_string appears {count} times in {path} (must be unique)")

        span = fuzzy_find(content, old_string)
        if span is None:
            raise ToolError("edit_file", f"old_string not found in {path}")
        start, end = span
        target.write_text(content[:start] + new_string + content[end:], encoding="utf-8")
        diff = edit_diff(path, content, content[start:end], new_string)
        return f"Edited {path} (fuzzy match)\n{diff}"

    def list_directory(self, path: str | None = None) -> str:
        """List a directory, sorted case-insensitively, directories with a trailing /."""
        directory = self.safe_path(path) if path else self.working_dir
        try:
            children = list(directory.iterdir())
        except OSError as e:
            raise ToolError("ls", f"cannot read directory {directory}: {e}") from e

        entries = sorted(
            (f"{child.name}/" if child.is_dir() else child.name for child in children),
            key=str.lower,
        )
        if not entries:
            return "(empty directory)"

        out: list[str] = []
        size = 0
        for count, entry in enumerate(entries):
            if count >= LS_MAX_ENTRIES or size + len(entry) + 1 > LS_MAX_CHARS:
                out.append(f"\n... ({len(entries)} entries total, showing {count})")
                break
            out.append(entry + "\n")
            size += len(entry) + 1
        return "".join(out)


def read_file_handler(working_dir: Path, path: str, offset: int | None = None, limit: int | None = None) -> str:
    return FileManager(working_dir).read_file(path, offset, limit)


def write_file_handler(working_dir: Path, path: str, content: str) -> str:
    return FileManager(working_dir).write_file(path, content)


def edit_file_handler(working_dir: Path, path: str, old_string: str, new_string: str) -> str:
    return FileManager(working_dir).edit_file(path, old_string, new_string)


def ls_handler(working_dir: Path, path: str | None = None) -> str:
    return FileManager(working_dir).list_directory(path)


def create_file_tools() -> list[Tool]:
    """Create file operation tools."""
    read_file = Tool(
        name="read_file",
        description="Read the contents of a file. Supports offset and limit for partial reads.",
        parameters=[
            ToolParameter(name="path", param_type="string", description="Path to the file to read"),
            ToolParameter(
                name="offset",
                param_type="integer",
                description="Line number to start from (1-indexed, default: 1)",
                required=False,
            ),
            ToolParameter(
                name="limit",
                param_type="integer",
                description="Maximum number of lines to read",
                required=False,
            ),
        ],
        handler=read_file_handler,
    )

    write_file = Tool(
        name="write_file",
        description="Write content to a file, creating it if it doesn't exist",
        parameters=[
            ToolParameter(name="path", param_type="string", description="Path to the file to write"),
            ToolParameter(name="content", param_type="string", description="Content to write to the file"),
        ],
        handler=write_file_handler,
    )

    edit_file = Tool(
        name="edit_file",
        description=(
            "Edit a file by replacing a string match with new content. The old_string "
            "must appear exactly once in the file. Supports fuzzy matching for "
            "whitespace and unicode variations."
        ),
        parameters=[
            ToolParameter(name="path", param_type="string", description="Path to the file to edit"),
            ToolParameter(
                name="old_string",
                param_type="string",
                description="String to find (must be unique in file)",
            ),
            ToolParameter(name="new_string", param_type="string", description="String to replace it with"),
        ],
        handler=edit_file_handler,
    )

    ls = Tool(
        name="ls",
        description="List directory contents, sorted alphabetically. Directories have a trailing /.",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Directory to list (default: working directory)",
                required=False,
            ),
        ],
        handler=ls_handler,
    )

    return [read_file, write_file, edit_file, ls]
