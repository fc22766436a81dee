"""
Tool registry for managing available tools.
"""

from pathlib import Path
from typing import Any

import structlog

from ..cancel import CancelToken
from ..errors import ToolError
from ..llm.base import ToolDefinition
from .base import Tool

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for managing tools.

    ``execute`` may be called from several dispatcher threads at once; the
    registry itself is read-only after setup.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Tool definitions for the request; the last one is cache-tagged."""
        tools = list(self._tools.values())
        return [tool.to_definition(cache=i == len(tools) - 1) for i, tool in enumerate(tools)]

    def execute(self, working_dir: Path, name: str, arguments: dict[str, Any]) -> str:
        """Execute a tool by name. Failures are raised to the caller."""
        tool = self.get(name)
        if tool is None:
            raise ToolError(name, "unknown tool")

        logger.info("Executing tool", tool_name=name, arguments=arguments)
        try:
            output = tool.execute(working_dir, arguments)
        except Exception as e:
            logger.info("Tool failed", tool_name=name, error=str(e))
            raise
        logger.info("Tool executed", tool_name=name, output_chars=len(output))
        return output


def create_default_registry(cancel: CancelToken | None = None) -> ToolRegistry:
    """Registry with the file, shell and search tools."""
    from .file_tool import create_file_tools
    from .search_tool import create_search_tools
    from .shell_tool import create_shell_tools

    registry = ToolRegistry()
    file_tools = {tool.name: tool for tool in create_file_tools()}
    for name in ("read_file", "write_file", "edit_file"):
        registry.register(file_tools[name])
    for tool in create_shell_tools(cancel):
        registry.register(tool)
    registry.register(file_tools["ls"])
    for tool in create_search_tools():
        registry.register(tool)
    return registry
