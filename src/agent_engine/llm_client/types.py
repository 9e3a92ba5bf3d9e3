"""Type definitions for the model gateway.

This module defines the core types used by the gateway and its backends:
- ModelTier / Criticality: tier selection
- ToolCall / InvalidToolCall: function calling structures
- ModelResponse: normalized response from any backend
- Error classes: hierarchy of gateway errors
"""

from enum import Enum
from typing import Any

from typing_extensions import NotRequired, TypedDict


class ModelTier(str, Enum):
    """Model tiers the gateway can bind a call to.

    These map to configured models in config/models.yaml.
    """

    FAST = "fast"
    SMART = "smart"
    CHEAP = "cheap"

    @classmethod
    def from_str(cls, value: str) -> "ModelTier | None":
        """Convert string to ModelTier enum.

        Args:
            value: String representation (case-insensitive).

        Returns:
            ModelTier enum or None if invalid.
        """
        value_lower = value.lower()
        for tier in cls:
            if tier.value == value_lower:
                return tier
        return None


class Criticality(str, Enum):
    """How much a call matters; the gateway maps it onto a tier."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ToolCall(TypedDict):
    """Tool call structure for function calling.

    Attributes:
        id: Unique identifier for the tool call (may be empty from some backends).
        name: Name of the tool to call.
        args: Parsed tool arguments.
    """

    id: str
    name: str
    args: dict[str, Any]


class InvalidToolCall(TypedDict):
    """A tool call whose arguments could not be parsed.

    Attributes:
        id: Identifier reported by the backend, if any.
        name: Tool name reported by the backend, if any.
        args: The raw argument string.
        error: Why parsing failed.
    """

    id: str | None
    name: str | None
    args: str
    error: str


class TokenUsage(TypedDict):
    """Normalized token usage."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ModelResponse(TypedDict):
    """Normalized response from a model call.

    Attributes:
        role: Response role (typically "assistant").
        content: Natural language content from the model.
        tool_calls: Parsed tool calls.
        invalid_tool_calls: Tool calls whose arguments failed to parse.
        usage: Token usage, estimated when the provider omitted it.
        usage_estimated: True when usage was estimated locally.
        tier: Tier the call was bound to.
        model_id: Model identifier that served the call.
        parsed: Validated structured output, when a schema was requested.
        raw: Raw response from the backend for debugging.
    """

    role: str
    content: str
    tool_calls: list[ToolCall]
    invalid_tool_calls: list[InvalidToolCall]
    usage: TokenUsage
    usage_estimated: bool
    tier: str
    model_id: str
    parsed: NotRequired[Any]
    raw: dict[str, Any]


# Error hierarchy


class LLMClientError(Exception):
    """Base exception for all model gateway errors."""

    pass


class LLMTimeout(LLMClientError):
    """Raised when a model request times out."""

    pass


class LLMConnectionError(LLMClientError):
    """Raised when connection to the model server fails."""

    pass


class LLMRateLimit(LLMClientError):
    """Raised when the model server returns a rate limit error."""

    pass


class LLMServerError(LLMClientError):
    """Raised when the model server returns an error (5xx)."""

    pass


class LLMInvalidResponse(LLMClientError):
    """Raised when the model server returns an invalid or unexpected response."""

    pass


class TierUnavailableError(LLMClientError):
    """Raised when no model is configured for the requested tier."""

    pass


class StructuredOutputError(LLMClientError):
    """Raised when a response cannot be validated against the requested schema."""

    pass
