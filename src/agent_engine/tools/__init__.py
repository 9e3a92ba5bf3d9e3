"""Tool definitions, registry and invoker.

This module provides:
- Tool registry for tool discovery and registration
- Tool invoker with timeouts and telemetry
- Control tools the model uses to steer the engine
"""

from agent_engine.tools.control import (
    ASK_HUMAN,
    BLOCK_TASK,
    CONTROL_TOOLS,
    CREATE_TASK,
    END_TASK,
    RESPONSE_TASK,
    register_control_tools,
)
from agent_engine.tools.invoker import ToolBatchTimeout, ToolExecutionError, ToolInvoker
from agent_engine.tools.registry import ToolRegistry
from agent_engine.tools.types import ToolDefinition, ToolParameter, ToolResult, ToolRole

__all__ = [
    # Core exports
    "ToolRegistry",
    "ToolInvoker",
    "ToolExecutionError",
    "ToolBatchTimeout",
    "ToolDefinition",
    "ToolParameter",
    "ToolResult",
    "ToolRole",
    # Control tools
    "CONTROL_TOOLS",
    "CREATE_TASK",
    "BLOCK_TASK",
    "END_TASK",
    "ASK_HUMAN",
    "RESPONSE_TASK",
    "register_control_tools",
]
