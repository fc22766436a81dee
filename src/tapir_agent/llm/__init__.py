"""
LLM module: Anthropic Messages API wire types, streaming transport and
server-sent events decoder.
"""

from .base import (
    ContentBlock,
    Message,
    Request,
    Role,
    StopReason,
    TextBlock,
    ThinkingBlock,
    ToolCall,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from .anthropic import AnthropicTransport, is_retryable, retry_delay
from .sse import SSEDecoder

__all__ = [
    "ContentBlock",
    "Message",
    "Request",
    "Role",
    "StopReason",
    "TextBlock",
    "ThinkingBlock",
    "ToolCall",
    "ToolDefinition",
    "ToolResultBlock",
    "ToolUseBlock",
    "Usage",
    "AnthropicTransport",
    "is_retryable",
    "retry_delay",
    "SSEDecoder",
]
