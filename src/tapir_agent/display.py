"""
Terminal presentation.

Model speech goes to stdout; everything else (notices, tool headers, the
thinking timer, the tool output log) goes to stderr as ``* ...`` lines.
"""

import sys
import threading
import time
from typing import Any, TextIO

COLLAPSED_LINES = 3
INDENT = "    "
DIM = "\x1b[2m"
RESET = "\x1b[0m"
CLEAR_LINE = "\r\x1b[K"


def format_duration(seconds: float) -> str:
    """Format elapsed time as ``37s``, ``1m 37s`` or ``1h 2m 3s``."""
    total = int(seconds)
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}h {m}m {s}s"
    if m:
        return f"{m}m {s}s"
    return f"{s}s"


def tool_call_header(name: str, tool_input: dict[str, Any]) -> str:
    """Short one-line description of a tool call."""
    labels = {
        "read_file": ("read", "path"),
        "write_file": ("write", "path"),
        "edit_file": ("edit", "path"),
        "bash": ("bash", "command"),
    }
    if name not in labels:
        return name
    label, key = labels[name]
    value = tool_input.get(key)
    return f"{label}: {value if isinstance(value, str) else '?'}"


class Display:
    """Writes to the terminal. Safe to call from tool worker threads."""

    def __init__(self, out: TextIO | None = None, err: TextIO | None = None):
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self._lock = threading.Lock()

    def write_err(self, text: str) -> None:
        with self._lock:
            self.err.write(text)
            self.err.flush()

    def write_out(self, text: str) -> None:
        with self._lock:
            self.out.write(text)
            self.out.flush()

    def line(self, text: str = "") -> None:
        self.write_err(text + "\n")

    def notice(self, message: str) -> None:
        self.line(f"* {message}")

    def warning(self, message: str) -> None:
        self.notice(f"warning: {message}")

    def error(self, message: str) -> None:
        self.notice(f"error: {message}")

    def thinking_done(self, thinking: str) -> None:
        self.notice(f"thinking (~{len(thinking) // 4} tokens)")

    def tool_call(self, name: str, tool_input: dict[str, Any]) -> None:
        lines = [f"* {tool_call_header(name, tool_input)}"]
        if name == "edit_file":
            for key, sign in (("old_string", "-"), ("new_string", "+")):
                value = tool_input.get(key)
                if isinstance(value, str):
                    lines.extend(f"{sign} {line}" for line in value.splitlines())
        self.write_err("\n".join(lines) + "\n")

    def text_echo(self) -> "TextEcho":
        return TextEcho(self)

    def thinking_timer(self, interval: float = 1.0) -> "ThinkingTimer":
        return ThinkingTimer(self, interval)


class TextEcho:
    """Echo streamed text with a ``< `` prefix on the first line."""

    def __init__(self, display: Display):
        self.display = display
        self.at_line_start = True
        self.first_line = True

    def write(self, fragment: str) -> None:
        parts = []
        for ch in fragment:
            if self.at_line_start:
                parts.append("< " if self.first_line else "  ")
                self.at_line_start = False
            parts.append(ch)
            if ch == "\n":
                self.at_line_start = True
                self.first_line = False
        self.display.write_out("".join(parts))

    def finish(self) -> None:
        if not self.at_line_start:
            self.display.write_out("\n")
            self.at_line_start = True


class ThinkingTimer:
    """Elapsed-time indicator shown until the first stream event arrives.

    Runs on its own thread; ``stop`` joins it, so after ``stop`` returns the
    timer no longer writes to the terminal.
    """

    def __init__(self, display: Display, interval: float = 1.0):
        self.display = display
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._started_at = 0.0

    def start(self) -> "ThinkingTimer":
        self._started_at = time.monotonic()
        self.display.write_err("\n* pretending to thinking...")
        self._thread = threading.Thread(target=self._run, name="thinking-timer", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            elapsed = format_duration(time.monotonic() - self._started_at)
            self.display.write_err(f"{CLEAR_LINE}* pretending to thinking... {elapsed}")

    @property
    def running(self) -> bool:
        return self._thread is not None

    def stop(self) -> float:
        """Stop and join the timer; returns elapsed seconds. Idempotent."""
        if self._thread is None:
            return 0.0
        elapsed = time.monotonic() - self._started_at
        self._stop.set()
        self._thread.join()
        self._thread = None
        self.display.write_err(f"{CLEAR_LINE}* Thinking... {format_duration(elapsed)}\n\n")
        return elapsed


class ToolOutput:
    def __init__(self, header: str, output: str):
        self.header = header
        self.output = output
        self.expanded = False

    def render(self) -> str:
        lines = self.output.splitlines()
        out = [f"{INDENT}{DIM}⎿{RESET}"]
        if self.expanded or len(lines) <= COLLAPSED_LINES:
            out.extend(f"{INDENT} {line}" for line in lines)
        else:
            out.extend(f"{INDENT} {line}" for line in lines[:COLLAPSED_LINES])
            remaining = len(lines) - COLLAPSED_LINES
            out.append(f"{INDENT} {DIM}… +{remaining} lines (/expand to toggle){RESET}")
        return "\n".join(out) + "\n"


class ToolOutputLog:
    """Recent tool outputs for the current turn, collapsed by default."""

    def __init__(self, display: Display):
        self.display = display
        self.entries: list[ToolOutput] = []

    def push(self, header: str, output: str) -> None:
        self.entries.append(ToolOutput(header, output))

    def print_last(self) -> None:
        if self.entries:
            self.display.write_err(self.entries[-1].render())

    def toggle_last(self) -> bool:
        """Flip the last entry between collapsed and expanded and reprint it."""
        if not self.entries:
            return False
        entry = self.entries[-1]
        entry.expanded = not entry.expanded
        self.display.notice(entry.header)
        self.display.write_err(entry.render())
        return True

    def clear(self) -> None:
        self.entries.clear()
