"""
Conversation Compaction - summarize old turns to stay within the context window.

When the previous turn's input tokens exceed COMPACT_THRESHOLD, the oldest
messages are replaced by a model-written summary. The cut always lands on
a plain-text user message, so a tool call is never separated from its
result and no assistant turn is split.
"""

import json
import math
from dataclasses import dataclass
from typing import Callable

import structlog

from ..cancel import CancelToken
from ..errors import CompactionError, TapirError
from ..llm.anthropic import AnthropicTransport
from ..llm.base import (
    Message,
    Request,
    Role,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from ..text import truncate
from .stream import reduce_stream

logger = structlog.get_logger()

COMPACT_THRESHOLD = 160_000
KEEP_RECENT_TOKENS = 40_000
MIN_KEEP_MESSAGES = 4
MIN_MESSAGES = 6
SUMMARY_MAX_TOKENS = 2048
TOOL_RESULT_PREVIEW_CHARS = 2000

SUMMARY_PROMPT = (
    "Summarize this coding session. Capture:\n"
    "1. The user's goal\n"
    "2. What was accomplished (files read, created, modified)\n"
    "3. Key decisions and reasoning\n"
    "4. Current state and next steps\n\n"
    "Be concise. Preserve critical context needed to continue the work."
)
ACKNOWLEDGEMENT = "Understood, continuing from where we left off."


@dataclass
class CompactionResult:
    """Result of a compaction operation."""

    original_message_count: int
    compacted_message_count: int
    cut: int
    summary: str


def find_cut_point(messages: list[Message], input_tokens: int) -> int:
    """Index of the first message to keep verbatim, or 0 to skip compaction."""
    if len(messages) < MIN_MESSAGES or input_tokens <= 0:
        return 0

    keep = math.ceil(len(messages) * KEEP_RECENT_TOKENS / input_tokens)
    keep = max(keep, MIN_KEEP_MESSAGES)
    if keep >= len(messages):
        return 0

    for i in range(len(messages) - keep, len(messages)):
        if messages[i].is_user_text:
            return i
    return 0


def serialize_for_summary(messages: list[Message]) -> str:
    """Flatten messages into role-tagged lines. Thinking blocks are left out."""
    lines = []
    for message in messages:
        role = "User" if message.role == Role.USER else "Assistant"
        if isinstance(message.content, str):
            lines.append(f"[{role}]: {message.content}")
            continue
        for block in message.content:
            if isinstance(block, ThinkingBlock):
                continue
            if isinstance(block, TextBlock):
                lines.append(f"[{role}]: {block.text}")
            elif isinstance(block, ToolUseBlock):
                lines.append(f"[Tool call]: {block.name}({json.dumps(block.input)})")
            elif isinstance(block, ToolResultBlock):
                tag = "Tool error" if block.is_error else "Tool result"
                lines.append(f"[{tag}]: {truncate(block.content, TOOL_RESULT_PREVIEW_CHARS)}")
    return "".join(line + "\n" for line in lines)


def generate_summary(
    transport: AnthropicTransport,
    model: str,
    conversation: str,
    cancel: CancelToken | None = None,
) -> str:
    """Ask the model for a summary; nothing is echoed to the terminal."""
    request = Request(
        model=model,
        max_tokens=SUMMARY_MAX_TOKENS,
        system=SUMMARY_PROMPT,
        messages=[Message.user(conversation)],
        cache_system=False,
    )
    try:
        with transport.stream(request, cancel) as events:
            result = reduce_stream(events, display=None, cancel=cancel)
    except TapirError as e:
        raise CompactionError(f"summary request failed: {e}") from e

    if result.interrupted:
        raise CompactionError("summary interrupted")
    summary = result.text.strip()
    if not summary:
        raise CompactionError("model returned an empty summary")
    return summary


def replace_prefix(messages: list[Message], cut: int, summary: str) -> list[Message]:
    """Swap ``messages[:cut]`` for a summary/acknowledgement pair."""
    return [
        Message.user(f"<context>\n{summary}\n</context>"),
        Message.assistant(ACKNOWLEDGEMENT),
        *messages[cut:],
    ]


def compact_conversation(
    transport: AnthropicTransport,
    model: str,
    messages: list[Message],
    input_tokens: int,
    cancel: CancelToken | None = None,
    notify: Callable[[str], None] | None = None,
) -> tuple[list[Message], CompactionResult | None]:
    """Compact ``messages`` if a safe cut point exists.

    Returns the (possibly unchanged) message list and a result, or None when
    compaction was skipped. Raises CompactionError if summarizing fails.
    """
    cut = find_cut_point(messages, input_tokens)
    if cut == 0:
        logger.debug("No safe cut point, skipping compaction", message_count=len(messages))
        return messages, None

    if notify is not None:
        notify(f"compacting ({cut} messages → summary)...")
    logger.info(
        "Starting conversation compaction",
        message_count=len(messages),
        cut=cut,
        input_tokens=input_tokens,
    )
    summary = generate_summary(transport, model, serialize_for_summary(messages[:cut]), cancel)
    compacted = replace_prefix(messages, cut, summary)
    logger.info("Conversation compacted", remaining=len(compacted))

    return compacted, CompactionResult(
        original_message_count=len(messages),
        compacted_message_count=len(compacted),
        cut=cut,
        summary=summary,
    )
