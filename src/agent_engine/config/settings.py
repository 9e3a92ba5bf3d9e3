"""Engine configuration settings.

This module provides the EngineConfig class and settings singleton.
"""

from enum import Enum
from pathlib import Path

import structlog
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_engine.config.env_loader import Environment, get_environment, load_env_files
from agent_engine.config.validators import (
    resolve_path,
    validate_log_format,
    validate_log_level,
    validate_threshold,
)

log = structlog.get_logger(__name__)


class AgentMode(str, Enum):
    """How much autonomy the agent has over its own objective."""

    INTERACTIVE = "interactive"
    AUTONOMOUS = "autonomous"
    HYBRID = "hybrid"

    @classmethod
    def from_str(cls, value: str) -> "AgentMode | None":
        """Convert string to AgentMode enum.

        Args:
            value: String representation (case-insensitive).

        Returns:
            AgentMode enum or None if invalid.
        """
        value_lower = value.lower()
        for mode in cls:
            if mode.value == value_lower:
                return mode
        return None


class ExecutionMode(str, Enum):
    """Whether a session plans ahead, reacts turn by turn, or lets the model decide."""

    REACTIVE = "reactive"
    PLANNING = "planning"
    AUTOMATIC = "automatic"


class EngineConfig(BaseSettings):
    """Unified engine configuration.

    Loads configuration from environment variables (AGENT_ prefix) and
    defaults. Validates all values using Pydantic.
    """

    model_config = SettingsConfigDict(
        # .env files are loaded by env_loader so that environment-specific
        # files can be layered in priority order.
        env_prefix="AGENT_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=(),  # model_config_path
    )

    # Environment
    environment: Environment = Field(
        default_factory=get_environment, description="Current environment"
    )
    debug: bool = Field(default=False, description="Debug mode flag")

    # Telemetry
    log_dir: Path = Field(default=Path("telemetry/logs"), description="Log directory path")
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(default="json", description="Log format (json or console)")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        return validate_log_level(v)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        return validate_log_format(v)

    @field_validator("log_dir", "model_config_path", mode="before")
    @classmethod
    def resolve_paths(cls, v: Path | str) -> Path:
        """Resolve relative paths to absolute."""
        return resolve_path(v)

    # Model gateway
    llm_base_url: str = Field(
        default="http://localhost:8000/v1", description="Default base URL for model backends"
    )
    llm_api_key: str | None = Field(default=None, description="Bearer token for model backends")
    llm_timeout_seconds: int = Field(default=120, ge=1, description="Request timeout")
    llm_max_retries: int = Field(default=3, ge=0, description="Maximum retry attempts")
    model_config_path: Path = Field(
        default=Path("config/models.yaml"), description="Path to model tier config file"
    )

    # Agent behaviour
    agent_mode: AgentMode = Field(default=AgentMode.INTERACTIVE, description="Agent autonomy mode")
    execution_mode: ExecutionMode = Field(
        default=ExecutionMode.AUTOMATIC,
        description="Initial execution mode for interactive sessions",
    )
    free_form_reasoning: bool = Field(
        default=False,
        description="Skip the response-tool requirement on reasoning turns",
    )
    default_user_id: str = Field(default="default_user", description="Owner of LTM records")

    # Budgets
    max_steps: int = Field(default=100, ge=1, description="Step budget checked by executor")
    max_iterations: int = Field(
        default=15, ge=1, description="Maximum reasoning steps recorded on one task"
    )
    max_retries: int = Field(default=3, ge=0, description="Retries before a terminal transition")
    max_graph_steps: int = Field(default=1000, ge=1, description="Hard cap on graph steps")
    max_total_tokens: int = Field(
        default=0, ge=0, description="Per-session token budget (0 disables the check)"
    )
    execution_timeout_ms: int = Field(
        default=120_000, ge=1, description="Timeout for one batch of tool invocations"
    )
    reasoning_timeout_ms: int = Field(
        default=120_000, ge=1, description="Timeout for one reasoning call"
    )

    # Memory
    stm_max_size: int = Field(default=5, ge=1, description="Short-term memory ring size")
    recent_memories_limit: int = Field(
        default=1, ge=1, description="STM items used to build the retrieval request"
    )
    limit_before_summarization: int = Field(
        default=5000, ge=1, description="Estimated tokens above which tool output is summarized"
    )
    content_preview_length: int = Field(
        default=300, ge=10, description="Characters kept when previewing tool args and results"
    )
    max_insert_episodic_size: int = Field(default=20, ge=0, description="Episodic items per task")
    max_insert_semantic_size: int = Field(default=20, ge=0, description="Semantic items per task")
    max_retrieve_memory_size: int = Field(default=20, ge=1, description="LTM results per search")
    similarity_threshold: float = Field(default=0.65, description="Minimum LTM search similarity")
    merge_threshold: float = Field(
        default=0.95, description="Similarity at which an upsert merges into an existing record"
    )
    verification_confidence_threshold: int = Field(
        default=70, ge=0, le=100, description="Confidence needed to accept a finished task"
    )

    @field_validator("similarity_threshold", "merge_threshold")
    @classmethod
    def validate_thresholds(cls, v: float) -> float:
        """Validate similarity thresholds."""
        return validate_threshold(v)

    @model_validator(mode="after")
    def validate_budgets(self) -> "EngineConfig":
        """Reject budgets that can never be satisfied together."""
        if self.max_steps > self.max_graph_steps:
            raise ValueError(
                f"max_steps ({self.max_steps}) cannot exceed max_graph_steps "
                f"({self.max_graph_steps})"
            )
        return self


_settings: EngineConfig | None = None


def load_app_config() -> EngineConfig:
    """Load and validate engine configuration.

    This function:
    1. Loads .env files in priority order (via env_loader)
    2. Creates EngineConfig instance (reads from environment variables)
    3. Validates all values using Pydantic

    Returns:
        Validated EngineConfig instance.

    Raises:
        ValidationError: If configuration validation fails.
    """
    log.info("loading_engine_config", environment=get_environment().value)

    load_env_files()

    try:
        config = EngineConfig()
        log.info(
            "engine_config_loaded",
            environment=config.environment.value,
            agent_mode=config.agent_mode.value,
            log_level=config.log_level,
            max_graph_steps=config.max_graph_steps,
        )
        return config
    except Exception as e:
        log.error("engine_config_load_failed", error=str(e), error_type=type(e).__name__)
        raise


def get_settings() -> EngineConfig:
    """Get the engine settings singleton.

    Returns:
        EngineConfig instance (singleton pattern).
    """
    global _settings
    if _settings is None:
        _settings = load_app_config()
    return _settings
