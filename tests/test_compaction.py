"""
Tests for conversation compaction.
"""

from contextlib import nullcontext
from unittest.mock import MagicMock

import pytest

from tapir_agent.agent.compaction import (
    ACKNOWLEDGEMENT,
    MIN_KEEP_MESSAGES,
    SUMMARY_MAX_TOKENS,
    SUMMARY_PROMPT,
    compact_conversation,
    find_cut_point,
    serialize_for_summary,
)
from tapir_agent.errors import CompactionError, TransportError
from tapir_agent.llm.base import Message, TextBlock, ThinkingBlock, ToolResultBlock, ToolUseBlock
from tapir_agent.llm.sse import ContentBlockDelta, ContentBlockStart, ContentBlockStop, MessageStop


def chat(n: int) -> list[Message]:
    """Alternating plain user/assistant messages."""
    return [Message.user(f"q{i}") if i % 2 == 0 else Message.assistant(f"a{i}") for i in range(n)]


def summary_events(text: str) -> list:
    return [
        ContentBlockStart(0, "text"),
        ContentBlockDelta(0, "text", text),
        ContentBlockStop(0),
        MessageStop(),
    ]


def fake_transport(text: str = "the summary") -> MagicMock:
    transport = MagicMock()
    transport.stream.side_effect = lambda request, cancel=None: nullcontext(summary_events(text))
    return transport


@pytest.mark.parametrize("n", range(6))
def test_short_history_never_cut(n):
    """Test that fewer than six messages are never compacted."""
    assert find_cut_point(chat(n), 1_000_000) == 0


def test_cut_keeps_recent_share():
    """Test the keep count computed from the token budget."""
    # keep = ceil(20 * 40k / 200k) = 4
    assert find_cut_point(chat(20), 200_000) == 16
    # keep = ceil(10 * 40k / 50k) = 8
    assert find_cut_point(chat(10), 50_000) == 2


def test_keep_count_has_a_floor():
    """Test that at least four messages are always kept."""
    messages = chat(20)
    cut = find_cut_point(messages, 100_000_000)
    assert len(messages) - cut >= MIN_KEEP_MESSAGES


def test_no_cut_when_everything_is_kept():
    """Test that a keep count covering the whole history skips compaction."""
    assert find_cut_point(chat(10), 30_000) == 0


def test_cut_moves_forward_to_user_text():
    """Test that the cut never separates a tool call from its result."""
    messages = chat(15) + [
        Message.assistant([ToolUseBlock("t1", "ls", {})]),
        Message.user([ToolResultBlock("t1", "a.txt")]),
        Message.assistant("done"),
        Message.user("next question"),
        Message.assistant("answer"),
    ]
    # keep = 4, so the candidate index 16 is the tool result
    cut = find_cut_point(messages, 200_000)

    assert cut == 18
    assert messages[cut].is_user_text


def test_no_boundary_skips():
    """Test that a tail without plain user text is not cut."""
    messages = chat(10) + [
        Message.assistant([ToolUseBlock(f"t{i}", "ls", {})]) if i % 2 == 0
        else Message.user([ToolResultBlock(f"t{i - 1}", "x")])
        for i in range(10)
    ]
    assert find_cut_point(messages, 400_000) == 0


def test_serialize_for_summary():
    """Test role tags, omitted thinking and truncated tool results."""
    messages = [
        Message.user("fix the bug"),
        Message.assistant([
            ThinkingBlock("secret reasoning"),
            TextBlock("Looking."),
            ToolUseBlock("t1", "read_file", {"path": "a.py"}),
        ]),
        Message.user([ToolResultBlock("t1", "x" * 3000), ToolResultBlock("t2", "nope", is_error=True)]),
    ]
    text = serialize_for_summary(messages)

    assert "secret reasoning" not in text
    assert text.startswith("[User]: fix the bug\n[Assistant]: Looking.\n")
    assert '[Tool call]: read_file({"path": "a.py"})\n' in text
    assert "(truncated, 3000 chars total)" in text
    assert text.endswith("[Tool error]: nope\n")


def test_compact_conversation_replaces_prefix():
    """Test the summary and acknowledgement replacing the cut prefix."""
    messages = chat(20)
    transport = fake_transport("goal: ship it")
    notices = []

    compacted, result = compact_conversation(
        transport, "claude-test", messages, 200_000, notify=notices.append
    )

    assert result.cut == 16
    assert result.original_message_count == 20
    assert result.compacted_message_count == 6
    assert compacted[0] == Message.user("<context>\ngoal: ship it\n</context>")
    assert compacted[1] == Message.assistant(ACKNOWLEDGEMENT)
    assert compacted[2:] == messages[16:]
    assert notices == ["compacting (16 messages → summary)..."]

    request = transport.stream.call_args[0][0]
    assert request.model == "claude-test"
    assert request.system == SUMMARY_PROMPT
    assert request.max_tokens == SUMMARY_MAX_TOKENS
    assert request.tools == []
    assert request.messages[0].content.startswith("[User]: q0\n[Assistant]: a1\n")


def test_compact_skipped_without_cut():
    """Test that no request is made when there is nothing to cut."""
    transport = fake_transport()
    messages = chat(4)

    compacted, result = compact_conversation(transport, "m", messages, 500_000)

    assert result is None
    assert compacted is messages
    transport.stream.assert_not_called()


def test_summary_failure_raises():
    """Test that a failed summary request is a compaction error."""
    transport = MagicMock()
    transport.stream.side_effect = TransportError("connection reset")

    with pytest.raises(CompactionError, match="connection reset"):
        compact_conversation(transport, "m", chat(20), 200_000)


def test_empty_summary_raises():
    """Test that an empty summary is rejected."""
    with pytest.raises(CompactionError, match="empty summary"):
        compact_conversation(fake_transport("   "), "m", chat(20), 200_000)
