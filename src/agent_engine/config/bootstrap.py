"""Bootstrap configuration helpers (pre-settings).

Telemetry needs its log settings before the settings singleton can be built,
so this module reads them straight from the environment.

Keep this module free of telemetry imports to avoid circular imports.
"""

from __future__ import annotations

import os
from pathlib import Path

from agent_engine.config.validators import resolve_path, validate_log_format, validate_log_level


def get_bootstrap_log_dir() -> Path | None:
    """Get the JSONL log directory from environment without importing settings.

    AGENT_LOG_DIR set to an empty string or "none" disables file logging.

    Returns:
        Resolved log directory, or None when file logging is disabled.
    """
    value = os.getenv("AGENT_LOG_DIR", "telemetry/logs")
    if not value.strip() or value.strip().lower() == "none":
        return None
    return resolve_path(value)


def get_bootstrap_log_level(default: str = "INFO") -> str:
    """Get logging level from environment without importing settings.

    Args:
        default: Default log level if not set or invalid.

    Returns:
        Uppercased, validated log level string.
    """
    value = os.getenv("AGENT_LOG_LEVEL", default)
    try:
        return validate_log_level(value)
    except ValueError:
        return validate_log_level(default)


def get_bootstrap_log_format(default: str = "json") -> str:
    """Get the console log format ("json" or "console") from the environment."""
    value = os.getenv("AGENT_LOG_FORMAT", default)
    try:
        return validate_log_format(value)
    except ValueError:
        return default
