"""
Base classes for tools.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from ..errors import ToolError
from ..llm.base import ToolDefinition

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "boolean": (bool,),
}


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean
    description: str
    required: bool = True


@dataclass
class Tool:
    """
    A tool backed by a plain function.

    The handler is called as ``handler(working_dir, **arguments)`` and returns
    the text sent back to the model. Failures are raised, never returned.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., str]

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            properties[param.name] = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.required:
                required.append(param.name)

        schema: dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        return schema

    def to_definition(self, cache: bool = False) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.get_parameters_schema(),
            cache=cache,
        )

    def bind_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Pick the declared parameters out of ``arguments``.

        Missing required parameters raise ToolError. Optional parameters
        of the wrong type are dropped so the handler default applies.
        """
        bound: dict[str, Any] = {}
        for param in self.parameters:
            value = arguments.get(param.name)
            expected = _JSON_TYPES.get(param.param_type, (object,))
            valid = isinstance(value, expected) and not (
                param.param_type == "integer" and isinstance(value, bool)
            )
            if value is None or not valid:
                if param.required:
                    raise ToolError(self.name, f"missing {param.name}")
                continue
            bound[param.name] = value
        return bound

    def execute(self, working_dir: Path, arguments: dict[str, Any]) -> str:
        """Execute the tool handler."""
        return self.handler(working_dir, **self.bind_arguments(arguments))
