"""
Agent module - the session engine.

Includes:
- Agent: The interactive turn loop over the model and the tools
- Session / SessionStore: Transcript, index and meta persistence
- InputHandler: Slash commands and shell escapes
- Compaction: Summarizing old turns to stay within the context window
- Stream reducer: Assembling content blocks from streamed events
"""

from .commands import InputHandler, InputResult
from .compaction import CompactionResult, compact_conversation, find_cut_point
from .core import Agent, TurnOutcome
from .session import Session, SessionEntry, SessionStore
from .stream import StreamReducer, StreamResult, reduce_stream

__all__ = [
    "Agent",
    "TurnOutcome",
    "InputHandler",
    "InputResult",
    "CompactionResult",
    "compact_conversation",
    "find_cut_point",
    "Session",
    "SessionEntry",
    "SessionStore",
    "StreamReducer",
    "StreamResult",
    "reduce_stream",
]
