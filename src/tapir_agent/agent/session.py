"""
Session persistence.

Each session is an append-only JSONL transcript, one message per line, plus
a ``.meta`` file holding the last context-fill percentage. A per-project
``sessions-index.json`` records metadata for every session. Persistence
failures are logged and reported as warnings; they never abort a turn.
"""

import json
import subprocess
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from ..display import Display
from ..errors import ProtocolError
from ..llm.base import Message

logger = structlog.get_logger()

INDEX_FILENAME = "sessions-index.json"
NO_PROMPT = "No prompt"


def iso_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def git_branch(working_dir: Path) -> str:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=working_dir,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return ""
    return result.stdout.strip() if result.returncode == 0 else ""


class SessionEntry(BaseModel):
    """Index metadata for one session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    full_path: str
    first_prompt: str = NO_PROMPT
    summary: str = ""
    message_count: int = 0
    created: str = ""
    modified: str = ""
    git_branch: str = ""
    project_path: str = ""


class SessionIndex(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: int = 1
    entries: list[SessionEntry] = []
    original_path: str = ""


class SessionStore:
    """Reads and writes the session files under one session directory."""

    def __init__(self, session_dir: Path, display: Display | None = None):
        self.session_dir = Path(session_dir)
        self.display = display

    def _warn(self, message: str, **kwargs) -> None:
        logger.warning(message, **kwargs)
        if self.display:
            details = kwargs.get("error")
            self.display.warning(f"{message.lower()}: {details}" if details else message.lower())

    @property
    def index_path(self) -> Path:
        return self.session_dir / INDEX_FILENAME

    def ensure_dir(self) -> None:
        try:
            self.session_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._warn("Cannot create session directory", error=str(e))

    def create_entry(self, working_dir: Path) -> SessionEntry:
        session_id = str(uuid.uuid4())
        now = iso_now()
        return SessionEntry(
            session_id=session_id,
            full_path=str(self.session_dir / f"{session_id}.jsonl"),
            created=now,
            modified=now,
            git_branch=git_branch(working_dir),
            project_path=str(working_dir),
        )

    def load_index(self) -> SessionIndex:
        try:
            text = self.index_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SessionIndex()
        except OSError as e:
            logger.warning("Cannot read session index", error=str(e))
            return SessionIndex()
        try:
            return SessionIndex.model_validate_json(text)
        except ValidationError as e:
            logger.warning("Invalid session index, starting fresh", error=str(e))
            return SessionIndex()

    def save_index(self, index: SessionIndex) -> None:
        try:
            self.index_path.write_text(
                json.dumps(index.model_dump(by_alias=True), indent=2), encoding="utf-8"
            )
        except OSError as e:
            self._warn("Cannot write session index", error=str(e))

    def update_entry(self, entry: SessionEntry) -> None:
        """Insert or replace ``entry`` in the index."""
        index = self.load_index()
        for i, existing in enumerate(index.entries):
            if existing.session_id == entry.session_id:
                index.entries[i] = entry.model_copy()
                break
        else:
            index.entries.append(entry.model_copy())
        if not index.original_path:
            index.original_path = entry.project_path
        self.save_index(index)

    def latest_entry(self) -> SessionEntry | None:
        entries = self.load_index().entries
        if not entries:
            return None
        return max(entries, key=lambda e: e.modified)

    def append_message(self, path: Path, message: Message) -> None:
        try:
            line = json.dumps(message.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            self._warn("Failed to serialize message", error=str(e))
            return
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            self._warn("Failed to write message", error=str(e))

    @staticmethod
    def load_transcript(path: Path) -> list[Message]:
        """Read every message of a transcript; raises on unreadable files."""
        messages = []
        with open(path, encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    messages.append(Message.from_dict(json.loads(line)))
        return messages

    @staticmethod
    def meta_path(transcript: Path) -> Path:
        return transcript.with_name(transcript.name + ".meta")

    def save_token_pct(self, transcript: Path, pct: int) -> None:
        try:
            self.meta_path(transcript).write_text(str(pct), encoding="utf-8")
        except OSError as e:
            self._warn("Cannot write session meta", error=str(e))

    def load_token_pct(self, transcript: Path) -> int | None:
        try:
            return int(self.meta_path(transcript).read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None


@dataclass
class Session:
    """One conversation: its index entry, transcript and running totals."""

    entry: SessionEntry
    store: SessionStore
    messages: list[Message] = field(default_factory=list)
    token_pct: int | None = None
    total_input_tokens: int = 0
    total_output_tokens: int = 0

    @classmethod
    def create(cls, store: SessionStore, working_dir: Path) -> "Session":
        return cls(entry=store.create_entry(working_dir), store=store)

    @property
    def path(self) -> Path:
        return Path(self.entry.full_path)

    def push_message(self, message: Message) -> None:
        """Persist ``message`` to the transcript, then add it to memory."""
        self.store.append_message(self.path, message)
        self.messages.append(message)

    def save_index(self) -> None:
        self.entry.message_count = len(self.messages)
        self.store.update_entry(self.entry)

    def touch(self) -> None:
        self.entry.modified = iso_now()
        self.save_index()

    def record_usage(self, input_tokens: int, output_tokens: int, context_window: int) -> int:
        """Add a turn's usage to the totals and persist the context-fill percentage."""
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
        pct = int(input_tokens / context_window * 100) if context_window else 0
        self.token_pct = pct
        self.store.save_token_pct(self.path, pct)
        return pct

    def resume_latest(self) -> bool:
        """Replace this session with the most recent one in the index."""
        latest = self.store.latest_entry()
        if latest is None:
            return False
        path = Path(latest.full_path)
        try:
            messages = self.store.load_transcript(path)
        except (OSError, ValueError, ProtocolError) as e:
            logger.warning("Cannot load session transcript", path=str(path), error=str(e))
            return False
        if not messages:
            return False
        self.entry = latest
        self.messages = messages
        self.token_pct = self.store.load_token_pct(path)
        return True
