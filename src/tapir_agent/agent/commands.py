"""
User input handling: slash commands and shell escapes.

``!cmd`` runs a shell command and sends its output to the model;
``!!cmd`` runs it without sending anything.
"""

from enum import Enum

import structlog

from ..cancel import CancelToken, interrupt_handler
from ..config import DEFAULT_INPUT_COST_PER_M, DEFAULT_OUTPUT_COST_PER_M, Settings
from ..display import Display, ToolOutputLog
from ..errors import TapirError
from ..llm.base import Message
from ..terminal import LineEditor, styled_prompt
from ..text import truncate
from ..tools.shell_tool import run_bash
from .session import NO_PROMPT, Session

logger = structlog.get_logger()

SHELL_ESCAPE_TIMEOUT = 30
FIRST_PROMPT_CHARS = 100

HELP = """\
  /resume          Resume last session
  /new             Start a new session
  /model [name]    Show or switch model
  /name <name>     Set session display name
  /session         Show session info
  /expand          Toggle the last tool output
  /quit, /exit     Quit tapir
  /help            Show this help

  !cmd             Run cmd, send output to LLM
  !!cmd            Run cmd, don't send to LLM"""


class InputResult(str, Enum):
    """What happened after reading user input."""

    READY = "ready"  # a user message was added; call the model
    CONTINUE = "continue"  # a command was handled; prompt again
    QUIT = "quit"
    NEW = "new"
    RESUMED = "resumed"  # history loaded; keep prompting


class InputHandler:
    """Prompts for input until something is ready for the model."""

    def __init__(
        self,
        settings: Settings,
        editor: LineEditor,
        display: Display,
        cancel: CancelToken,
    ):
        self.settings = settings
        self.editor = editor
        self.display = display
        self.cancel = cancel

    def read_input(self, session: Session, tool_log: ToolOutputLog, at_startup: bool = False) -> InputResult:
        while True:
            self.display.line()
            line = self.editor.readline(styled_prompt(session.token_pct))
            if line is None:
                return InputResult.QUIT
            line = line.strip()
            if not line:
                continue

            if line == "?":
                self.display.line(HELP)
                continue

            if line.startswith("/"):
                result = self.handle_command(line, session, tool_log, at_startup)
                if result == InputResult.RESUMED:
                    at_startup = False
                    continue
                if result == InputResult.CONTINUE:
                    continue
                return result

            if line.startswith("!!"):
                self.display.line(self.run_shell(line[2:]))
                continue

            if line.startswith("!"):
                command = line[1:]
                output = self.run_shell(command)
                self.display.line(output)
                self._add_user_message(session, f"Shell command: {command}\nOutput:\n{output}", command)
                return InputResult.READY

            self._add_user_message(session, line, line)
            return InputResult.READY

    def _add_user_message(self, session: Session, text: str, first_prompt: str) -> None:
        if session.entry.first_prompt == NO_PROMPT:
            session.entry.first_prompt = truncate(first_prompt, FIRST_PROMPT_CHARS)
        session.push_message(Message.user(text))

    def run_shell(self, command: str) -> str:
        self.cancel.clear()
        try:
            with interrupt_handler(self.cancel):
                return run_bash(self.settings.working_dir, command, SHELL_ESCAPE_TIMEOUT, self.cancel)
        except (TapirError, OSError) as e:
            return f"error: {e}"
        finally:
            self.cancel.clear()

    def handle_command(
        self,
        line: str,
        session: Session,
        tool_log: ToolOutputLog,
        at_startup: bool,
    ) -> InputResult:
        cmd, _, arg = line.partition(" ")
        arg = arg.strip()

        if cmd == "/help":
            self.display.line(HELP)
        elif cmd in ("/quit", "/exit"):
            return InputResult.QUIT
        elif cmd == "/new":
            if not at_startup:
                return InputResult.NEW
            self.display.notice("already a new session")
        elif cmd == "/resume":
            return self.resume(session, at_startup)
        elif cmd == "/name":
            self.name_session(session, arg)
        elif cmd == "/session":
            self.print_session_info(session)
        elif cmd == "/model":
            if arg:
                self.switch_model(arg)
            else:
                self.print_models()
        elif cmd == "/expand":
            if not tool_log.toggle_last():
                self.display.notice("no tool output to expand")
        else:
            self.display.notice(f"unknown command: {cmd}")
            self.display.line(HELP)
        return InputResult.CONTINUE

    def resume(self, session: Session, at_startup: bool) -> InputResult:
        if not at_startup:
            self.display.notice("/resume only works before the first prompt")
            return InputResult.CONTINUE
        if not session.resume_latest():
            self.display.notice("no sessions found for this directory")
            return InputResult.CONTINUE
        logger.info("Resumed session", session_id=session.entry.session_id, messages=len(session.messages))
        self.display.line(f"session: {session.path} (resumed, {len(session.messages)} msgs)")
        return InputResult.RESUMED

    def name_session(self, session: Session, name: str) -> None:
        if not name:
            self.display.notice(session.entry.summary or "no name set")
            return
        session.entry.summary = name
        session.save_index()
        self.display.notice(f"name: {name}")

    def print_session_info(self, session: Session) -> None:
        info = self.settings.model_info
        in_cost = info.input_cost_per_m if info else DEFAULT_INPUT_COST_PER_M
        out_cost = info.output_cost_per_m if info else DEFAULT_OUTPUT_COST_PER_M
        cost = (
            session.total_input_tokens / 1_000_000 * in_cost
            + session.total_output_tokens / 1_000_000 * out_cost
        )
        entry = session.entry

        lines = [f"  path:     {session.path}", f"  id:       {entry.session_id}"]
        if entry.summary:
            lines.append(f"  name:     {entry.summary}")
        lines.append(f"  model:    {self.settings.model}")
        lines.append(f"  messages: {len(session.messages)}")
        if session.token_pct is not None:
            lines.append(f"  context:  {session.token_pct}%")
        lines.append(f"  tokens:   {session.total_input_tokens} in / {session.total_output_tokens} out")
        lines.append(f"  cost:     ${cost:.4f}")
        lines.append(f"  created:  {entry.created}")
        lines.append(f"  modified: {entry.modified}")
        if entry.git_branch:
            lines.append(f"  branch:   {entry.git_branch}")
        self.display.line("\n".join(lines))

    def print_models(self) -> None:
        lines = [f"  current: {self.settings.model}"]
        if not self.settings.models:
            lines.append("  (no models in config, set any model ID with /model <id>)")
        else:
            lines.append("")
            for name in sorted(self.settings.models):
                info = self.settings.models[name]
                marker = " *" if name == self.settings.model else ""
                lines.append(
                    f"  {name}{marker}  ${info.input_cost_per_m:g}/{info.output_cost_per_m:g}"
                    f"  ctx={info.context // 1000}K  out={info.max_output // 1000}K"
                )
                if info.notes:
                    lines.append(f"    {info.notes}")
        self.display.line("\n".join(lines))

    def switch_model(self, name: str) -> None:
        self.settings.model = name
        logger.info("Switched model", model=name)
        self.display.notice(f"model: {name}")
        if self.settings.model_info is None and self.settings.models:
            self.display.line("  (not in config, pricing unknown)")
