"""
Shell Command Tool - run commands with a timeout and cooperative cancellation.

The command runs in its own process group. A background thread drains its
pipes while the caller polls every 200ms for completion, timeout or
cancellation; on timeout or cancellation the whole group is killed.
"""

import os
import queue
import signal
import subprocess
import threading
import time
from pathlib import Path

import structlog

from ..cancel import CancelToken
from ..errors import ToolError
from ..text import truncate_tail
from .base import Tool, ToolParameter

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 120
MAX_TIMEOUT = 600
POLL_INTERVAL = 0.2
KILL_GRACE = 5.0
MAX_OUTPUT_LINES = 1000
MAX_OUTPUT_CHARS = 30_000

SHELL = "bash"


def format_output(returncode: int | None, stdout: str, stderr: str) -> str:
    """Combine stdout, stderr and a non-zero exit code into one text."""
    parts = []
    if stdout:
        parts.append(stdout)
    if stderr:
        parts.append(f"stderr: {stderr}")
    if returncode != 0:
        parts.append(f"exit code: {returncode if returncode is not None else -1}")
    if not parts:
        return "(no output, exit code 0)"
    return "\n".join(parts)


def _kill_group(process: subprocess.Popen) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_bash(
    working_dir: Path,
    command: str,
    timeout: float,
    cancel: CancelToken | None = None,
) -> str:
    """Run ``command`` and return its formatted output.

    Hitting the timeout is not an error: whatever output was produced is
    returned followed by a ``(timed out after Ns)`` marker. Cancellation
    raises ToolError.
    """
    process = subprocess.Popen(
        [SHELL, "-c", command],
        cwd=working_dir,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        start_new_session=True,
    )
    results: queue.Queue = queue.Queue(maxsize=1)

    def _drain() -> None:
        stdout, stderr = process.communicate()
        results.put((stdout or "", stderr or ""))

    threading.Thread(target=_drain, name=f"bash-{process.pid}", daemon=True).start()
    started = time.monotonic()

    while True:
        try:
            stdout, stderr = results.get(timeout=POLL_INTERVAL)
            return format_output(process.returncode, stdout, stderr)
        except queue.Empty:
            pass

        if cancel is not None and cancel.is_set():
            logger.info("Cancelling shell command", pid=process.pid)
            _kill_group(process)
            try:
                results.get(timeout=KILL_GRACE)
            except queue.Empty:
                logger.warning("Shell command did not exit after kill", pid=process.pid)
            raise ToolError("bash", "(cancelled)")

        if time.monotonic() - started >= timeout:
            logger.info("Shell command timed out", pid=process.pid, timeout=timeout)
            _kill_group(process)
            marker = f"(timed out after {timeout:g}s)"
            try:
                stdout, stderr = results.get(timeout=KILL_GRACE)
            except queue.Empty:
                return marker
            return f"{format_output(process.returncode, stdout, stderr)}\n{marker}"


def create_shell_tools(cancel: CancelToken | None = None) -> list[Tool]:
    """Create shell-related tools."""

    def bash_handler(working_dir: Path, command: str, timeout: int = DEFAULT_TIMEOUT) -> str:
        timeout = min(max(timeout, 1), MAX_TIMEOUT)
        output = run_bash(working_dir, command, timeout, cancel)
        truncated, _ = truncate_tail(output, MAX_OUTPUT_LINES, MAX_OUTPUT_CHARS)
        return truncated

    bash = Tool(
        name="bash",
        description="Run a shell command",
        parameters=[
            ToolParameter(
                name="command",
                param_type="string",
                description="Shell command to execute",
            ),
            ToolParameter(
                name="timeout",
                param_type="integer",
                description="Timeout in seconds (default: 120)",
                required=False,
            ),
        ],
        handler=bash_handler,
    )

    return [bash]
