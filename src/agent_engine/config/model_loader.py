"""Load and validate model tier configuration from YAML file.

This module provides the main entry point for loading tier configuration:
- Loads config/models.yaml
- Validates against Pydantic schema
- Returns typed ModelConfig object
"""

from pathlib import Path

import structlog
from pydantic import ValidationError

from agent_engine.config.loader import ConfigLoadError, load_yaml_file
from agent_engine.llm_client.models import ModelConfig

log = structlog.get_logger(__name__)


class ModelConfigError(ConfigLoadError):
    """Raised when model configuration cannot be loaded or is invalid."""

    pass


def load_model_config(config_path: Path | str | None = None) -> ModelConfig:
    """Load and validate model tier configuration from YAML file.

    Args:
        config_path: Path to models.yaml file. If None, uses
            settings.model_config_path.

    Returns:
        Validated ModelConfig object.

    Raises:
        ModelConfigError: If configuration cannot be loaded, parsed, or validated.

    Example:
        >>> from agent_engine.config import load_model_config
        >>> config = load_model_config()
        >>> print(config.tiers[ModelTier.FAST].id)
        qwen3-8b
    """
    if config_path is None:
        from agent_engine.config.settings import get_settings  # noqa: PLC0415

        config_path = get_settings().model_config_path
        log.debug("using_model_config_path_from_settings", path=str(config_path))

    config_path = Path(config_path)

    if not config_path.exists():
        raise ModelConfigError(f"Model config file not found: {config_path}")

    if not config_path.is_file():
        raise ModelConfigError(f"Model config path is not a file: {config_path}")

    log.info("loading_model_config", config_path=str(config_path))

    content = load_yaml_file(config_path, error_class=ModelConfigError)
    if not content:
        log.warning("model_config_empty", config_path=str(config_path))
        return ModelConfig(tiers={})

    try:
        config = ModelConfig.model_validate(content)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            error_messages.append(f"{field_path}: {error['msg']}")

        error_summary = "\n".join(error_messages)
        raise ModelConfigError(f"Model configuration validation failed:\n{error_summary}") from None

    log.info(
        "model_config_loaded",
        tiers=[tier.value for tier in config.tiers],
        model_ids=[tier_def.id for tier_def in config.tiers.values()],
    )
    return config
