"""
Agent Core - the interactive turn loop.

One user turn may take several model requests: while the model stops for
tool use, the tool calls run and their results go back in the next request.
This module ties together:
- Streaming requests and the stream reducer
- Concurrent tool dispatch
- Compaction when the previous request filled the context
- Session persistence and slash-command input
"""

from enum import Enum

import structlog

from ..cancel import CancelToken, interrupt_handler
from ..config import Settings
from ..display import Display, ToolOutputLog
from ..errors import TapirError
from ..llm.anthropic import AnthropicTransport
from ..llm.base import (
    ContentBlock,
    Message,
    Request,
    StopReason,
    TextBlock,
    ThinkingBlock,
    ToolCall,
    Usage,
)
from ..prompts import SystemPrompt, display_path, load_system_prompt
from ..terminal import LineEditor
from ..tools.dispatcher import ToolDispatcher
from ..tools.registry import ToolRegistry
from .commands import InputHandler, InputResult
from .compaction import COMPACT_THRESHOLD, compact_conversation
from .session import Session, SessionStore
from .stream import reduce_stream

logger = structlog.get_logger()


class TurnOutcome(str, Enum):
    """How a single model request ended."""

    TOOL_USE = "tool_use"  # results were added; request again
    END_TURN = "end_turn"
    INTERRUPTED = "interrupted"
    TRUNCATED = "truncated"  # max_tokens reached; the session ends
    FAILED = "failed"


class Agent:
    """Runs sessions until the user quits."""

    def __init__(
        self,
        settings: Settings,
        transport: AnthropicTransport,
        registry: ToolRegistry,
        editor: LineEditor,
        display: Display | None = None,
        cancel: CancelToken | None = None,
        system_prompt: SystemPrompt | None = None,
    ):
        self.settings = settings
        self.transport = transport
        self.registry = registry
        self.display = display or Display()
        self.cancel = cancel or CancelToken()
        self.system_prompt = system_prompt or load_system_prompt(
            settings.agent_dir, settings.working_dir
        )
        self.tools = registry.get_definitions()
        self.store = SessionStore(settings.session_dir, self.display)
        self.input = InputHandler(settings, editor, self.display, self.cancel)
        self.dispatcher = ToolDispatcher(registry, settings.working_dir, self.cancel, self.display)
        self._last_input_tokens = 0

    def run(self) -> None:
        """Prompt, converse, and start over on ``/new`` until the user quits."""
        self.store.ensure_dir()
        for path in self.system_prompt.context_files:
            self.display.line(f"context: {display_path(path, self.settings.working_dir)}")

        while True:
            session = Session.create(self.store, self.settings.working_dir)
            self.display.line(f"cwd: {self.settings.working_dir}")
            self.display.line(f"session: {session.path}")

            result = self.input.read_input(session, ToolOutputLog(self.display), at_startup=True)
            if result == InputResult.QUIT:
                self.display.line("bye")
                return
            session.save_index()

            if self.run_session(session) != InputResult.NEW:
                return
            self.display.notice("starting new session")

    def run_session(self, session: Session) -> InputResult:
        """Alternate model turns and user input for one session.

        Returns QUIT or NEW, or QUIT after a truncated response.
        """
        tool_log = ToolOutputLog(self.display)
        self._last_input_tokens = 0

        while True:
            tool_log.clear()
            outcome = self.run_turn(session, tool_log)
            if outcome == TurnOutcome.TOOL_USE:
                continue
            if outcome == TurnOutcome.TRUNCATED:
                session.touch()
                return InputResult.QUIT
            if outcome in (TurnOutcome.END_TURN, TurnOutcome.INTERRUPTED):
                session.touch()

            result = self.input.read_input(session, tool_log)
            if result == InputResult.QUIT:
                self.display.line("bye")
                return result
            if result == InputResult.NEW:
                return result

    def run_turn(self, session: Session, tool_log: ToolOutputLog) -> TurnOutcome:
        """Send one request and act on its stop reason."""
        try:
            return self._run_turn(session, tool_log)
        except TapirError as e:
            logger.error("Turn failed", error=str(e), session_id=session.entry.session_id)
            self.display.error(str(e))
            return TurnOutcome.FAILED

    def _run_turn(self, session: Session, tool_log: ToolOutputLog) -> TurnOutcome:
        self.cancel.clear()
        with interrupt_handler(self.cancel):
            if self._last_input_tokens > COMPACT_THRESHOLD:
                self._compact(session)

            request = Request(
                model=self.settings.model,
                max_tokens=self.settings.max_tokens,
                system=self.system_prompt.prompt,
                messages=list(session.messages),
                tools=self.tools,
                thinking_budget=self.settings.thinking_budget,
            )
            with self.transport.stream(request, self.cancel) as events:
                result = reduce_stream(events, self.display, self.cancel)

        self._report_usage(session, result.usage)

        if result.interrupted:
            self._keep_reply(session, result.content)
            return TurnOutcome.INTERRUPTED

        if result.stop_reason == StopReason.TOOL_USE and result.tool_uses:
            session.push_message(Message.assistant(result.content))
            calls = [ToolCall(b.id, b.name, b.input) for b in result.tool_uses]
            with interrupt_handler(self.cancel):
                results = self.dispatcher.dispatch(calls, tool_log)
            self.cancel.clear()
            session.push_message(Message.user(list(results)))
            return TurnOutcome.TOOL_USE

        if result.tool_uses:
            logger.warning(
                "Dropping tool calls that will not run",
                stop_reason=result.stop_reason.value,
                count=len(result.tool_uses),
            )
        self._keep_reply(session, result.content)

        if result.stop_reason == StopReason.MAX_TOKENS:
            self.display.warning("response truncated (max_tokens reached)")
            return TurnOutcome.TRUNCATED

        return TurnOutcome.END_TURN

    def _compact(self, session: Session) -> None:
        messages, result = compact_conversation(
            self.transport,
            self.settings.model,
            session.messages,
            self._last_input_tokens,
            cancel=self.cancel,
            notify=self.display.notice,
        )
        if result is None:
            return
        session.messages = messages
        self._last_input_tokens = 0
        self.display.notice(f"compacted: {len(messages)} messages remaining")

    def _report_usage(self, session: Session, usage: Usage) -> None:
        self._last_input_tokens = usage.input_tokens
        pct = session.record_usage(
            usage.input_tokens, usage.output_tokens, self.settings.context_window
        )
        line = f"\n* tokens: in={usage.input_tokens} out={usage.output_tokens} ({pct}%)"
        if usage.cache_creation_input_tokens:
            line += f" cache_write={usage.cache_creation_input_tokens}"
        if usage.cache_read_input_tokens:
            line += f" cache_read={usage.cache_read_input_tokens}"
        self.display.line(line)

    def _keep_reply(self, session: Session, content: list[ContentBlock]) -> None:
        """Persist the thinking and text of a response whose tools will not run.

        Tool calls are dropped since no results will follow them. Nothing is
        kept without some text.
        """
        kept = [b for b in content if isinstance(b, (ThinkingBlock, TextBlock))]
        if any(isinstance(b, TextBlock) for b in kept):
            session.push_message(Message.assistant(kept))
