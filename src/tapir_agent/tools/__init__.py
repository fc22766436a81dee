"""
Tools module: the file, shell and search tools the model can call, and the
dispatcher that runs a turn's tool calls concurrently.
"""

from .base import Tool, ToolParameter
from .dispatcher import ToolDispatcher
from .registry import ToolRegistry, create_default_registry

__all__ = [
    "Tool",
    "ToolParameter",
    "ToolDispatcher",
    "ToolRegistry",
    "create_default_registry",
]
