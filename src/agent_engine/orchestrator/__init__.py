"""Orchestrator module: the plan, act and remember graph.

This module provides the top-level orchestrator that drives a session
through the planner, task manager, executor, verifier and memory
sub-graphs, plus the state, session and streaming types hosts work with.
"""

from agent_engine.orchestrator.orchestrator import ConfigurationError, Orchestrator
from agent_engine.orchestrator.session import Session, SessionStore
from agent_engine.orchestrator.streaming import ChunkKind, StreamChannel, StreamChunk
from agent_engine.orchestrator.types import (
    ExecutionState,
    GraphError,
    GraphErrorType,
    GraphNode,
    RunResult,
    Step,
    Task,
    TaskStatus,
    ToolCallRecord,
)

__all__ = [
    # Public API
    "Orchestrator",
    "ConfigurationError",
    # State
    "ExecutionState",
    "GraphError",
    "GraphErrorType",
    "GraphNode",
    "RunResult",
    "Task",
    "TaskStatus",
    "Step",
    "ToolCallRecord",
    # Streaming
    "ChunkKind",
    "StreamChannel",
    "StreamChunk",
    # Session management
    "Session",
    "SessionStore",
]
