"""Telemetry module for structured logging and trace correlation.

This module provides:
- TraceContext for run correlation
- Structured logging via structlog
- Semantic event constants
"""

from agent_engine.telemetry.events import (
    BUDGET_EXHAUSTED,
    MODEL_CALL_COMPLETED,
    MODEL_CALL_ERROR,
    MODEL_CALL_STARTED,
    NODE_ERROR,
    NODE_STARTED,
    ORCHESTRATOR_FATAL_ERROR,
    REPLY_READY,
    ROUTING_DECISION,
    SESSION_CLOSED,
    SESSION_CREATED,
    STATE_TRANSITION,
    TOOL_CALL_COMPLETED,
    TOOL_CALL_FAILED,
    TOOL_CALL_STARTED,
    UNKNOWN_STATE,
)
from agent_engine.telemetry.logger import configure_logging, get_logger
from agent_engine.telemetry.trace import TraceContext

__all__ = [
    # Core exports
    "TraceContext",
    "get_logger",
    "configure_logging",
    # Event constants
    "BUDGET_EXHAUSTED",
    "MODEL_CALL_COMPLETED",
    "MODEL_CALL_ERROR",
    "MODEL_CALL_STARTED",
    "NODE_ERROR",
    "NODE_STARTED",
    "ORCHESTRATOR_FATAL_ERROR",
    "REPLY_READY",
    "ROUTING_DECISION",
    "SESSION_CLOSED",
    "SESSION_CREATED",
    "STATE_TRANSITION",
    "TOOL_CALL_COMPLETED",
    "TOOL_CALL_FAILED",
    "TOOL_CALL_STARTED",
    "UNKNOWN_STATE",
]
