"""
Line input for the interactive prompt.

Ctrl-C cancels the current line and prompts again; Ctrl-D (EOF) ends input.
Line editing and history come from the readline module when the platform
provides it.
"""

import sys
from pathlib import Path
from typing import Callable, TextIO

import structlog

try:
    import readline
except ImportError:  # not available on Windows
    readline = None

logger = structlog.get_logger()

HISTORY_LENGTH = 1000


class LineEditor:
    """Reads one line per prompt."""

    def __init__(
        self,
        history_path: Path | None = None,
        input_fn: Callable[[str], str] = input,
        err: TextIO | None = None,
    ):
        self.history_path = history_path
        self._input = input_fn
        self.err = err or sys.stderr
        if readline is not None and history_path is not None:
            self._load_history()

    def _load_history(self) -> None:
        readline.set_history_length(HISTORY_LENGTH)
        try:
            readline.read_history_file(str(self.history_path))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug("Cannot read input history", error=str(e))

    def save_history(self) -> None:
        if readline is None or self.history_path is None:
            return
        try:
            self.history_path.parent.mkdir(parents=True, exist_ok=True)
            readline.write_history_file(str(self.history_path))
        except OSError as e:
            logger.debug("Cannot write input history", error=str(e))

    def readline(self, prompt: str) -> str | None:
        """Return the next line, or None on end of input."""
        while True:
            try:
                return self._input(prompt)
            except KeyboardInterrupt:
                self.err.write("\n")
                self.err.flush()
            except EOFError:
                self.err.write("\n")
                self.err.flush()
                return None


def styled_prompt(pct: int | None) -> str:
    """The input prompt, prefixed with the last context-fill percentage."""
    if readline is not None:
        arrow = "\001\x1b[1m\002>\001\x1b[0m\002 "
    else:
        arrow = "> "
    return f"{pct}% {arrow}" if pct is not None else arrow
