"""
Concurrent tool dispatch.

Every tool call of a turn gets its own worker thread. Results come back in
the order the model requested them, whatever order the workers finish in.
"""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Protocol

import structlog

from ..cancel import CancelToken
from ..display import Display, ToolOutputLog, tool_call_header
from ..llm.base import ToolCall, ToolResultBlock
from ..text import truncate

logger = structlog.get_logger()

MAX_RESULT_CHARS = 50_000
CANCELLED = "(cancelled)"


class ToolExecutor(Protocol):
    def execute(self, working_dir: Path, name: str, arguments: dict[str, Any]) -> str: ...


class ToolDispatcher:
    """Runs one turn's tool calls and collects their results."""

    def __init__(
        self,
        executor: ToolExecutor,
        working_dir: Path,
        cancel: CancelToken,
        display: Display | None = None,
    ):
        self.executor = executor
        self.working_dir = working_dir
        self.cancel = cancel
        self.display = display

    def _run_one(self, call: ToolCall) -> ToolResultBlock:
        if self.cancel.is_set():
            return ToolResultBlock(call.id, CANCELLED, is_error=True)
        try:
            output = self.executor.execute(self.working_dir, call.name, call.input)
        except Exception as e:
            message = str(e)
            logger.warning("Tool call failed", tool_name=call.name, tool_use_id=call.id, error=message)
            if self.display:
                self.display.error(message)
            return ToolResultBlock(call.id, message, is_error=True)
        return ToolResultBlock(call.id, truncate(output, MAX_RESULT_CHARS))

    def dispatch(self, calls: list[ToolCall], log: ToolOutputLog | None = None) -> list[ToolResultBlock]:
        """Execute ``calls`` concurrently; one result per call, in call order."""
        if not calls:
            return []

        logger.debug("Dispatching tool calls", count=len(calls))
        with ThreadPoolExecutor(max_workers=len(calls), thread_name_prefix="tool") as pool:
            futures = [pool.submit(self._run_one, call) for call in calls]
            results = [future.result() for future in futures]

        if self.cancel.is_set():
            self.cancel.clear()
            if self.display:
                self.display.notice("tools interrupted")

        if log is not None:
            for call, result in zip(calls, results):
                if result.is_error or not result.content:
                    continue
                log.push(tool_call_header(call.name, call.input), result.content)
                log.print_last()

        return results
