"""Tool registry for tool discovery and registration.

This module provides the ToolRegistry class that manages tool definitions
and their executor functions.
"""

from typing import Any, Callable

from agent_engine.telemetry import get_logger
from agent_engine.tools.types import ToolDefinition, ToolRole

log = get_logger(__name__)


def to_openai_tool(tool_def: ToolDefinition) -> dict[str, Any]:
    """Render one tool definition in OpenAI function calling format.

    Args:
        tool_def: Tool definition.

    Returns:
        {"type": "function", "function": {...}} dict.
    """
    properties: dict[str, Any] = {}
    for param in tool_def.parameters:
        if param.json_schema:
            properties[param.name] = param.json_schema
        else:
            properties[param.name] = {"type": param.type, "description": param.description}

    return {
        "type": "function",
        "function": {
            "name": tool_def.name,
            "description": tool_def.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": [param.name for param in tool_def.parameters if param.required],
                "additionalProperties": False,
            },
        },
    }


class ToolRegistry:
    """Central registry of available tools.

    The registry stores tool definitions along with their executor functions.
    Control and response tools are registered without an executor.
    """

    def __init__(self) -> None:
        """Initialize empty tool registry."""
        self._tools: dict[str, tuple[ToolDefinition, Callable[..., Any] | None]] = {}
        log.debug("tool_registry_initialized")

    def register(
        self, tool_def: ToolDefinition, executor: Callable[..., Any] | None = None
    ) -> None:
        """Register a tool with its definition and executor function.

        Args:
            tool_def: Tool definition with metadata.
            executor: Callable that executes the tool. Accepts the tool
                parameters as keyword arguments. Required for ACTION tools.

        Raises:
            ValueError: If tool name already registered, or an ACTION tool has no executor.
        """
        if tool_def.name in self._tools:
            raise ValueError(f"Tool '{tool_def.name}' is already registered")
        if tool_def.role == ToolRole.ACTION and executor is None:
            raise ValueError(f"Action tool '{tool_def.name}' needs an executor")

        self._tools[tool_def.name] = (tool_def, executor)
        log.debug("tool_registered", tool_name=tool_def.name, role=tool_def.role.value)

    def get_tool(self, name: str) -> tuple[ToolDefinition, Callable[..., Any] | None] | None:
        """Retrieve tool definition and executor.

        Args:
            name: Tool name to retrieve.

        Returns:
            Tuple of (ToolDefinition, executor) if found, None otherwise.
        """
        return self._tools.get(name)

    def get_definition(self, name: str) -> ToolDefinition | None:
        """Retrieve only the definition of a tool."""
        entry = self._tools.get(name)
        return entry[0] if entry else None

    def role_of(self, name: str) -> ToolRole | None:
        """Role of a registered tool, or None when unknown."""
        tool_def = self.get_definition(name)
        return tool_def.role if tool_def else None

    def list_tools(self, role: ToolRole | None = None) -> list[ToolDefinition]:
        """List registered tools.

        Args:
            role: Only return tools with this role. If None, returns all tools.

        Returns:
            List of tool definitions.
        """
        return [
            tool_def
            for tool_def, _ in self._tools.values()
            if role is None or tool_def.role == role
        ]

    def list_tool_names(self) -> list[str]:
        """List names of all registered tools.

        Returns:
            List of tool names.
        """
        return list(self._tools.keys())

    def get_tool_definitions_for_llm(
        self, role: ToolRole | None = None, names: list[str] | None = None
    ) -> list[dict[str, Any]]:
        """Get tool definitions in OpenAI function calling format.

        Args:
            role: Only include tools with this role.
            names: Only include these tools (in this order).

        Returns:
            List of tool definitions in OpenAI format.
        """
        if names is not None:
            tools = [self._tools[name][0] for name in names if name in self._tools]
            if role is not None:
                tools = [t for t in tools if t.role == role]
        else:
            tools = self.list_tools(role=role)
        return [to_openai_tool(tool_def) for tool_def in tools]
