"""Unified configuration management for the agent engine.

This module is the single source of truth for configuration, combining
environment variables, .env files, YAML tier files and defaults.
"""

from agent_engine.config.env_loader import Environment, get_environment, load_env_files
from agent_engine.config.loader import ConfigLoadError, load_yaml_file
from agent_engine.config.model_loader import ModelConfigError, load_model_config
from agent_engine.config.settings import (
    AgentMode,
    EngineConfig,
    ExecutionMode,
    get_settings,
    load_app_config,
)

__all__ = [
    # Engine-level settings
    "EngineConfig",
    "AgentMode",
    "ExecutionMode",
    "get_settings",
    "load_app_config",
    "Environment",
    "get_environment",
    "load_env_files",
    # Configuration loaders
    "load_yaml_file",
    "load_model_config",
    # Exception classes
    "ConfigLoadError",
    "ModelConfigError",
]
