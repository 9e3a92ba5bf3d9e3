"""Type definitions for the tool invoker.

This module defines the Pydantic models for tool definitions, parameters,
and results used by the tool execution system.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class ToolRole(str, Enum):
    """What a tool call means to the executor.

    ACTION tools do work in the world and run through the invoker.
    RESPONSE tools carry the model's structured thought for the turn.
    CONTROL tools steer the engine (create/block/end a task, ask a human).
    """

    ACTION = "action"
    RESPONSE = "response"
    CONTROL = "control"


class ToolParameter(BaseModel):
    """Parameter definition for a tool."""

    name: str = Field(..., description="Parameter name")
    type: Literal["string", "number", "integer", "boolean", "object", "array"] = Field(
        ..., description="Parameter type"
    )
    description: str = Field(..., description="Parameter description for the model")
    required: bool = Field(True, description="Whether parameter is required")
    default: Any | None = Field(None, description="Default value if not required")
    # Full JSON Schema for complex types (array items, object properties, etc.)
    json_schema: dict[str, Any] | None = Field(
        None, description="Full JSON Schema for complex nested types"
    )


class ToolDefinition(BaseModel):
    """OpenAI-style tool definition for model function calling."""

    name: str = Field(..., description="Tool name (e.g., 'search_docs')")
    description: str = Field(..., description="Clear description for the model")
    parameters: list[ToolParameter] = Field(default_factory=list, description="Tool parameters")
    role: ToolRole = Field(ToolRole.ACTION, description="How the executor treats calls")
    timeout_seconds: float = Field(30, gt=0, description="Per-call execution timeout")


class ToolResult(BaseModel):
    """Result from tool execution."""

    tool_name: str = Field(..., description="Name of the executed tool")
    tool_call_id: str | None = Field(None, description="Call this result answers")
    success: bool = Field(..., description="Whether tool execution succeeded")
    output: Any = Field(..., description="Tool-specific output")
    error: str | None = Field(None, description="Error message if failed")
    latency_ms: float = Field(..., ge=0, description="Execution latency in milliseconds")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Extra context")
