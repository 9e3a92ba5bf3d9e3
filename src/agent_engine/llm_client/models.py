"""Pydantic models for model gateway configuration.

This module defines the schema for tier configuration loaded from config/models.yaml.
"""

from pydantic import BaseModel, Field, field_validator

from agent_engine.llm_client.types import ModelTier


class TierDefinition(BaseModel):
    """Configuration for the model bound to one tier.

    Attributes:
        id: Model identifier sent to the backend.
        endpoint: Optional base URL override for this model. If None, uses
            settings.llm_base_url.
        context_length: Maximum context length for this model.
        default_timeout: Default timeout in seconds for requests to this model.
        temperature: Default sampling temperature (None uses backend default).
        max_tokens: Default completion budget (None uses backend default).
        supports_function_calling: Whether the backend accepts OpenAI-style tools.
        supports_json_schema: Whether the backend accepts json_schema response formats.
    """

    id: str = Field(..., description="Model identifier")
    endpoint: str | None = Field(None, description="Optional base URL override")
    context_length: int = Field(32768, ge=1, description="Maximum context length")
    default_timeout: int = Field(60, ge=1, description="Default timeout in seconds")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    supports_function_calling: bool = Field(True, description="Native function calling")
    supports_json_schema: bool = Field(True, description="Structured output via json_schema")


class ModelConfig(BaseModel):
    """Complete tier configuration.

    Attributes:
        tiers: Mapping from tier name (fast, smart, cheap) to its model.
    """

    tiers: dict[ModelTier, TierDefinition] = Field(
        default_factory=dict, description="Model configurations by tier"
    )

    @field_validator("tiers", mode="before")
    @classmethod
    def normalize_tier_keys(cls, v: object) -> object:
        """Accept tier names in any case, as strings or ModelTier members."""
        if isinstance(v, dict):
            # str.lower works on the member's value; str() would give "ModelTier.FAST"
            return {k.lower() if isinstance(k, str) else k: val for k, val in v.items()}
        return v
