"""
System prompt assembly.

Order: base prompt (project .tapir/SYSTEM.md, else global SYSTEM.md, else the
built-in default), APPEND_SYSTEM.md files, the working directory line, then
the AGENTS.md / CLAUDE.md context files from the filesystem root down.
"""

from dataclasses import dataclass, field
from pathlib import Path

import structlog

logger = structlog.get_logger()

DEFAULT_PROMPT = """\
You are a coding assistant. You help users with software engineering tasks \
including solving bugs, adding features, refactoring code, and explaining code.

# Tools

You have seven tools:
- read_file: Read file contents with line numbers. Supports offset (1-indexed) \
and limit parameters for reading specific sections of large files.
- write_file: Write content to a file (create or overwrite)
- edit_file: Replace a unique string in a file. Supports fuzzy matching for \
whitespace and unicode variations (smart quotes, dashes) when exact match fails.
- bash: Run a shell command
- ls: List directory contents
- find: Find files by glob pattern (uses fd)
- grep: Search file contents by regex (uses ripgrep)

All file paths are sandboxed to the working directory. Paths outside it will \
be rejected.

# Guidelines

- Read files before modifying them. Understand existing code before suggesting \
changes.
- Use edit_file for targeted changes to existing files. Use write_file only for \
new files or complete rewrites.
- Use ls, find, and grep to explore the codebase before making changes. Prefer \
these over bash for file discovery and search.
- Do not create files unless necessary. Prefer editing existing files to \
creating new ones.
- Keep changes minimal and focused. Only make changes that are directly \
requested or clearly necessary.
- Do not add features, refactor code, or make improvements beyond what was asked.
- Do not add error handling, comments, or type annotations to code you did not \
change.
- Run tests after making changes when a test command is available.

# Executing actions with care

Consider the reversibility of your actions. You can freely read files and run \
non-destructive commands. But for actions that are hard to reverse or could be \
destructive, explain what you intend to do and why before proceeding.

Examples of risky actions:
- Deleting files or directories
- Overwriting files with significant content
- Running commands that modify system state
- Git operations like force-push, reset --hard, or branch deletion

When you encounter unexpected state (unfamiliar files, uncommitted changes, \
lock files), investigate before overwriting or deleting.

# Security

Be careful not to introduce security vulnerabilities such as command injection, \
XSS, SQL injection, and other common vulnerabilities. Prioritize writing safe, \
secure, and correct code.

# Style

- Be concise. Explain what you are doing briefly.
- When referencing code, include file paths to help the user navigate.
- Do not give time estimates for tasks."""

CONTEXT_FILENAMES = ("AGENTS.md", "CLAUDE.md")


@dataclass
class SystemPrompt:
    prompt: str
    context_files: list[Path] = field(default_factory=list)


def _read_optional(path: Path) -> str | None:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("Cannot read prompt file", path=str(path), error=str(e))
        return None
    return text if text.strip() else None


def load_base_prompt(agent_dir: Path, working_dir: Path) -> str:
    project_dir = working_dir / ".tapir"
    prompt = (
        _read_optional(project_dir / "SYSTEM.md")
        or _read_optional(agent_dir / "SYSTEM.md")
        or DEFAULT_PROMPT
    )
    for path in (project_dir / "APPEND_SYSTEM.md", agent_dir / "APPEND_SYSTEM.md"):
        extra = _read_optional(path)
        if extra:
            prompt += "\n\n" + extra
    return prompt


def _read_context_in(directory: Path) -> tuple[str, Path] | None:
    for name in CONTEXT_FILENAMES:
        path = directory / name
        text = _read_optional(path)
        if text:
            return text, path
    return None


def find_context_files(agent_dir: Path, working_dir: Path) -> tuple[str, list[Path]]:
    """Collect AGENTS.md (preferred) or CLAUDE.md from the global dir, then
    every ancestor of ``working_dir`` root-first, then ``working_dir`` itself."""
    directories = [agent_dir]
    directories.extend(d for d in reversed(working_dir.parents) if d != agent_dir)
    if working_dir != agent_dir:
        directories.append(working_dir)

    parts: list[str] = []
    paths: list[Path] = []
    for directory in directories:
        found = _read_context_in(directory)
        if found:
            parts.append(found[0])
            paths.append(found[1])
    return "\n\n".join(parts), paths


def load_system_prompt(agent_dir: Path, working_dir: Path) -> SystemPrompt:
    prompt = load_base_prompt(agent_dir, working_dir)
    prompt += f"\n\nWorking directory: {working_dir}"

    context, context_files = find_context_files(agent_dir, working_dir)
    if context:
        prompt += "\n\n---\n\n" + context
    return SystemPrompt(prompt=prompt, context_files=context_files)


def display_path(path: Path, working_dir: Path) -> str:
    """Show ``path`` relative to the working directory or home when possible."""
    if path.is_relative_to(working_dir):
        return f"./{path.relative_to(working_dir)}"
    home = Path.home()
    if path.is_relative_to(home):
        return f"~/{path.relative_to(home)}"
    return str(path)
