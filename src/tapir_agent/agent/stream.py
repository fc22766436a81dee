"""
Stream reducer: folds decoded events into one finished assistant turn.

At most one content block is being accumulated at a time. Opening a new
block always finalizes the current one first.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

import structlog

from ..cancel import CancelToken
from ..display import Display, TextEcho, ThinkingTimer
from ..errors import APIError
from ..llm.base import ContentBlock, StopReason, TextBlock, ThinkingBlock, ToolUseBlock, Usage
from ..llm.sse import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    Event,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamError,
)

logger = structlog.get_logger()

STREAM_ERROR_STATUS = {
    "invalid_request_error": 400,
    "authentication_error": 401,
    "permission_error": 403,
    "not_found_error": 404,
    "rate_limit_error": 429,
    "api_error": 500,
    "overloaded_error": 529,
}


class BlockState(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    TEXT = "text"
    TOOL_USE = "tool_use"


@dataclass
class StreamResult:
    """A finished (or interrupted) assistant turn."""

    content: list[ContentBlock] = field(default_factory=list)
    stop_reason: StopReason = StopReason.END_TURN
    usage: Usage = field(default_factory=Usage)
    interrupted: bool = False

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))


class StreamReducer:
    """Explicit state machine over content block events.

    With ``display=None`` nothing is echoed; compaction uses this to collect
    a summary silently.
    """

    def __init__(self, display: Display | None = None):
        self.display = display
        self.state = BlockState.IDLE
        self.result = StreamResult()
        self._parts: list[str] = []
        self._signature: list[str] = []
        self._tool_id = ""
        self._tool_name = ""
        self._echo: TextEcho | None = None

    def feed(self, event: Event) -> bool:
        """Apply one event. Returns True once the message is complete."""
        if isinstance(event, MessageStart):
            usage = self.result.usage
            usage.input_tokens = event.input_tokens
            usage.cache_creation_input_tokens = event.cache_creation_input_tokens
            usage.cache_read_input_tokens = event.cache_read_input_tokens
        elif isinstance(event, ContentBlockStart):
            self.open(event)
        elif isinstance(event, ContentBlockDelta):
            self.apply_delta(event)
        elif isinstance(event, ContentBlockStop):
            self.finalize()
        elif isinstance(event, MessageDelta):
            self.result.stop_reason = event.stop_reason
            self.result.usage.output_tokens = event.output_tokens
        elif isinstance(event, MessageStop):
            self.finalize()
            return True
        elif isinstance(event, StreamError):
            raise APIError(STREAM_ERROR_STATUS.get(event.type, 500), event.message)
        return False

    def open(self, start: ContentBlockStart) -> None:
        if self.state != BlockState.IDLE:
            logger.debug("Block opened before previous one stopped", state=self.state.value)
            self.finalize()

        self._parts = []
        if start.kind == "thinking":
            self.state = BlockState.THINKING
            self._signature = []
        elif start.kind == "text":
            self.state = BlockState.TEXT
            self._echo = self.display.text_echo() if self.display else None
        elif start.kind == "tool_use":
            self.state = BlockState.TOOL_USE
            self._tool_id = start.id
            self._tool_name = start.name
        else:
            logger.debug("Ignoring unknown content block", kind=start.kind)

    def apply_delta(self, delta: ContentBlockDelta) -> None:
        state = self.state
        if state == BlockState.THINKING and delta.kind == "thinking":
            self._parts.append(delta.value)
        elif state == BlockState.THINKING and delta.kind == "signature":
            self._signature.append(delta.value)
        elif state == BlockState.TEXT and delta.kind == "text":
            self._parts.append(delta.value)
            if self._echo is not None:
                self._echo.write(delta.value)
        elif state == BlockState.TOOL_USE and delta.kind == "input_json":
            self._parts.append(delta.value)

    def finalize(self) -> None:
        """Close the open accumulator and emit its block."""
        state, self.state = self.state, BlockState.IDLE
        text = "".join(self._parts)
        self._parts = []

        if state == BlockState.THINKING:
            if self.display:
                self.display.thinking_done(text)
            self.result.content.append(ThinkingBlock(text, "".join(self._signature)))
        elif state == BlockState.TEXT:
            self._finish_echo()
            self.result.content.append(TextBlock(text))
        elif state == BlockState.TOOL_USE:
            tool_input = self._parse_tool_input(text)
            if self.display:
                self.display.tool_call(self._tool_name, tool_input)
            self.result.content.append(ToolUseBlock(self._tool_id, self._tool_name, tool_input))

    def _parse_tool_input(self, raw: str) -> dict:
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Invalid tool input JSON", tool_name=self._tool_name, error=str(e))
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def _finish_echo(self) -> None:
        if self._echo is not None:
            self._echo.finish()
            self._echo = None

    def interrupt(self) -> None:
        """End the turn early, keeping only partially streamed text."""
        if self.state == BlockState.TEXT and self._parts:
            self._finish_echo()
            self.result.content.append(TextBlock("".join(self._parts)))
        self.state = BlockState.IDLE
        self._parts = []
        self.result.interrupted = True
        if self.display:
            self.display.line()
            self.display.notice("interrupted")


def reduce_stream(
    events: Iterable[Event],
    display: Display | None = None,
    cancel: CancelToken | None = None,
    show_timer: bool = True,
) -> StreamResult:
    """Consume ``events`` and return the assembled turn.

    The thinking timer runs until the first content block event arrives and
    is always stopped before this function returns.
    """
    reducer = StreamReducer(display)
    timer: ThinkingTimer | None = None
    if display is not None and show_timer:
        timer = display.thinking_timer().start()

    try:
        for event in events:
            if timer is not None and isinstance(event, (ContentBlockStart, ContentBlockDelta)):
                timer.stop()
            if reducer.feed(event):
                return reducer.result

        if timer is not None:
            timer.stop()
        if cancel is not None and cancel.is_set():
            reducer.interrupt()
        else:
            reducer.finalize()
        return reducer.result
    finally:
        if timer is not None:
            timer.stop()
