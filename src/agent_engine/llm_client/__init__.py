"""Model gateway module.

This module provides the ModelGateway for tier-based model access, the
HTTP backend for OpenAI-compatible servers, and the shared error types.
"""

from typing import TYPE_CHECKING

from agent_engine.llm_client.models import ModelConfig, TierDefinition
from agent_engine.llm_client.types import (
    Criticality,
    InvalidToolCall,
    LLMClientError,
    LLMConnectionError,
    LLMInvalidResponse,
    LLMRateLimit,
    LLMServerError,
    LLMTimeout,
    ModelResponse,
    ModelTier,
    StructuredOutputError,
    TierUnavailableError,
    TokenUsage,
    ToolCall,
)
from agent_engine.llm_client.usage import UsageTracker, estimate_tokens

if TYPE_CHECKING:
    from agent_engine.llm_client.client import ModelBackend, OpenAICompatibleBackend
    from agent_engine.llm_client.gateway import ModelGateway, ModelHandle
else:
    # Lazy: the gateway pulls in config, which itself imports llm_client.models
    def __getattr__(name: str):
        if name in ("ModelBackend", "OpenAICompatibleBackend"):
            from agent_engine.llm_client import client

            return getattr(client, name)
        if name in ("ModelGateway", "ModelHandle"):
            from agent_engine.llm_client import gateway

            return getattr(gateway, name)
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ModelGateway",
    "ModelHandle",
    "ModelBackend",
    "OpenAICompatibleBackend",
    "ModelConfig",
    "TierDefinition",
    "ModelTier",
    "Criticality",
    "ModelResponse",
    "ToolCall",
    "InvalidToolCall",
    "TokenUsage",
    "UsageTracker",
    "estimate_tokens",
    "LLMClientError",
    "LLMConnectionError",
    "LLMInvalidResponse",
    "LLMRateLimit",
    "LLMServerError",
    "LLMTimeout",
    "StructuredOutputError",
    "TierUnavailableError",
]
