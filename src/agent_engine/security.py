"""Security utilities for preventing information disclosure."""

import re

# Checked in order; first match wins.
_ERROR_CATEGORIES: list[tuple[str, str, str]] = [
    ("Connection", "connection", "Unable to reach the model service. Please try again shortly."),
    ("Timeout", "timed out", "The run took too long to complete. Please try a smaller objective."),
    ("RateLimit", "rate limit", "Too many requests. Please wait a moment and try again."),
    ("Permission", "permission", "Permission denied. Please check your configuration."),
    ("Validation", "validation", "The model returned output in an unexpected format."),
    ("StructuredOutput", "schema", "The model returned output in an unexpected format."),
    ("Tier", "tier", "No model is configured for a required tier."),
    ("Configuration", "config", "Engine configuration error. Please check your settings."),
    ("NotFound", "not found", "The requested resource was not found."),
]


def sanitize_error_message(error: Exception | str) -> str:
    """Create a user-facing error message without exposing internal details.

    File paths, memory addresses and line numbers are stripped before the
    message is categorized.

    Args:
        error: The exception (or raw message) that occurred.

    Returns:
        A sanitized, user-friendly error message.
    """
    error_type = type(error).__name__ if isinstance(error, Exception) else ""
    error_str = str(error)

    error_str = re.sub(r"/[^\s]+", "[path]", error_str)
    error_str = re.sub(r"0x[0-9a-fA-F]+", "[address]", error_str)
    error_str = re.sub(r"line \d+", "[line]", error_str)

    lowered = error_str.lower()
    for type_marker, text_marker, message in _ERROR_CATEGORIES:
        if type_marker in error_type or text_marker in lowered:
            return message

    return "An error occurred while processing your request. Please try again."
