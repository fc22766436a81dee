"""
Wire types for the Anthropic Messages API.

Messages are stored in the transcript exactly as they are sent on the wire,
so every type here knows how to turn itself into and back from plain JSON.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

import structlog

from ..errors import ProtocolError

logger = structlog.get_logger()

CACHE_EPHEMERAL = {"type": "ephemeral"}


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class StopReason(str, Enum):
    """Why the model ended its turn."""

    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    TOOL_USE = "tool_use"

    @classmethod
    def parse(cls, value: str | None) -> "StopReason":
        if value is None:
            return cls.END_TURN
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown stop reason, treating as end_turn", stop_reason=value)
            return cls.END_TURN


@dataclass
class ThinkingBlock:
    thinking: str
    signature: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "thinking", "thinking": self.thinking}
        if self.signature:
            data["signature"] = self.signature
        return data


@dataclass
class TextBlock:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ToolUseBlock:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    """The answer to a ToolUseBlock, sent back in the next user message."""

    tool_use_id: str
    content: str
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            data["is_error"] = True
        return data


ContentBlock = Union[ThinkingBlock, TextBlock, ToolUseBlock, ToolResultBlock]


def content_block_from_dict(data: dict[str, Any]) -> ContentBlock:
    """Parse one content block; raises ProtocolError on unknown shapes."""
    kind = data.get("type")
    try:
        if kind == "thinking":
            return ThinkingBlock(thinking=data["thinking"], signature=data.get("signature", ""))
        if kind == "text":
            return TextBlock(text=data["text"])
        if kind == "tool_use":
            return ToolUseBlock(id=data["id"], name=data["name"], input=data.get("input") or {})
        if kind == "tool_result":
            content = data.get("content", "")
            if isinstance(content, list):
                content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
            return ToolResultBlock(
                tool_use_id=data["tool_use_id"],
                content=content,
                is_error=bool(data.get("is_error", False)),
            )
    except KeyError as e:
        raise ProtocolError(f"content block {kind!r} missing field {e}") from e
    raise ProtocolError(f"unknown content block type: {kind!r}")


@dataclass
class Message:
    """A conversation message; content is plain text or a list of blocks."""

    role: Role
    content: str | list[ContentBlock]

    @classmethod
    def user(cls, content: str | list[ContentBlock]) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str | list[ContentBlock]) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    @property
    def is_user_text(self) -> bool:
        """True for a user message whose content is a plain string (a turn boundary)."""
        return self.role == Role.USER and isinstance(self.content, str)

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [block.to_dict() for block in self.content]
        return {"role": self.role.value, "content": content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        try:
            role = Role(data["role"])
            content = data["content"]
        except (KeyError, ValueError) as e:
            raise ProtocolError(f"invalid message: {e}") from e
        if isinstance(content, list):
            content = [content_block_from_dict(block) for block in content]
        return cls(role=role, content=content)


@dataclass
class Usage:
    """Token counts reported for one turn."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
        if self.cache:
            data["cache_control"] = dict(CACHE_EPHEMERAL)
        return data


@dataclass
class ToolCall:
    """A tool call made by the LLM."""

    id: str
    name: str
    input: dict[str, Any]


@dataclass
class Request:
    """One Messages API request."""

    model: str
    max_tokens: int
    system: str
    messages: list[Message]
    tools: list[ToolDefinition] = field(default_factory=list)
    thinking_budget: int = 0
    cache_system: bool = True

    def to_body(self) -> dict[str, Any]:
        system_block: dict[str, Any] = {"type": "text", "text": self.system}
        if self.cache_system:
            system_block["cache_control"] = dict(CACHE_EPHEMERAL)

        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
        }
        if self.thinking_budget > 0:
            body["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget}
        body["system"] = [system_block]
        body["messages"] = [m.to_dict() for m in self.messages]
        if self.tools:
            body["tools"] = [t.to_dict() for t in self.tools]
        body["stream"] = True
        return body
