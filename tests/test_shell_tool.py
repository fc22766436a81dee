"""
Tests for the bash tool.
"""

import os
import threading
import time

import pytest

from tapir_agent.cancel import CancelToken
from tapir_agent.errors import ToolError
from tapir_agent.tools.shell_tool import create_shell_tools, format_output, run_bash


def process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    # a zombie still answers signal 0
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().split()[2] != "Z"
    except OSError:
        return True


def test_format_output():
    """Test combining stdout, stderr and the exit code."""
    assert format_output(0, "hello\n", "") == "hello\n"
    assert format_output(2, "", "oops") == "stderr: oops\nexit code: 2"
    assert format_output(0, "", "") == "(no output, exit code 0)"


def test_run_bash_output(tmp_path):
    """Test a command running in the working directory."""
    (tmp_path / "marker.txt").write_text("x")
    assert run_bash(tmp_path, "ls", 10) == "marker.txt\n"


def test_run_bash_nonzero_exit(tmp_path):
    """Test that a failing command reports its exit code."""
    output = run_bash(tmp_path, "echo out; echo err >&2; exit 3", 10)
    assert output == "out\n\nstderr: err\n\nexit code: 3"


def test_timeout_kills_process(tmp_path):
    """Test the timeout marker and that the process is gone afterwards."""
    started = time.monotonic()
    output = run_bash(tmp_path, "echo $$ > pid; echo started; sleep 30", 1)

    assert time.monotonic() - started < 10
    assert output.endswith("(timed out after 1s)")
    pid = int((tmp_path / "pid").read_text())
    assert not process_alive(pid)


def test_cancel_kills_process(tmp_path):
    """Test that a set token stops the command and raises."""
    cancel = CancelToken()
    threading.Timer(0.5, cancel.set).start()

    with pytest.raises(ToolError, match="cancelled"):
        run_bash(tmp_path, "echo $$ > pid; sleep 30", 60, cancel)

    pid = int((tmp_path / "pid").read_text())
    assert not process_alive(pid)


def test_bash_tool_clamps_timeout(tmp_path):
    """Test that the tool accepts a timeout argument and truncates long output."""
    (bash,) = create_shell_tools()
    output = bash.execute(tmp_path, {"command": "seq 1 2000", "timeout": 0})

    assert output.startswith("... (2000 lines,")
    assert output.endswith("2000\n")


def test_bash_tool_requires_command(tmp_path):
    """Test the missing-argument error."""
    (bash,) = create_shell_tools()
    with pytest.raises(ToolError, match="missing command"):
        bash.execute(tmp_path, {})
