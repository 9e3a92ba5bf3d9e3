"""Shared plumbing for graph nodes.

Every sub-graph is a dispatch table of node handlers driven by a router.
This module holds the pieces they share: the per-run node context, the
node-boundary error handler, and the driver loop.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from agent_engine.orchestrator.streaming import ChunkKind, StreamChannel, StreamChunk
from agent_engine.orchestrator.types import (
    ExecutionState,
    GraphError,
    GraphErrorType,
    GraphNode,
    SubgraphExit,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import NODE_ERROR, STATE_TRANSITION, UNKNOWN_STATE
from agent_engine.telemetry.trace import TraceContext

log = get_logger(__name__)

# Errors that are outcomes of a decision rather than failures
_EXPECTED_ERRORS = frozenset({GraphErrorType.BLOCKED_TASK, GraphErrorType.TASK_ABORTED})


@dataclass
class NodeContext:
    """Per-run context handed to every node.

    Attributes:
        trace_ctx: Trace context of the run.
        channel: Stream channel of the run, if the host asked for one.
    """

    trace_ctx: TraceContext
    channel: StreamChannel | None = None

    def emit(self, kind: ChunkKind, session_id: str, content: str = "", **data: Any) -> None:
        """Push a chunk to the host if a channel is attached."""
        if self.channel is not None:
            self.channel.push(
                StreamChunk(kind=kind, session_id=session_id, content=content, data=data)
            )


Handler = Callable[[ExecutionState, NodeContext], Awaitable[SubgraphExit | None]]


def handle_node_error(
    state: ExecutionState,
    error_type: GraphErrorType,
    error: Exception | str,
    source: str,
) -> GraphError:
    """Record a node failure in state.

    Advances the graph step and, for retryable types, bumps retry.

    Args:
        state: Execution state to update.
        error_type: Error category.
        error: Exception or message.
        source: Node that failed.

    Returns:
        The recorded GraphError.
    """
    message = error if isinstance(error, str) else str(error) or type(error).__name__
    graph_error = GraphError(type=error_type, message=message, source=source)
    state.error = graph_error
    state.current_graph_step += 1
    if graph_error.retryable:
        state.retry += 1

    log_method = log.warning if error_type in _EXPECTED_ERRORS else log.error
    log_method(
        NODE_ERROR,
        source=source,
        error=message,
        error_type=error_type.value,
        retry=state.retry,
        trace_id=state.trace_id,
        session_id=state.session_id,
    )
    return graph_error


def mark_success(state: ExecutionState, reset_retry: bool = True) -> None:
    """Record a state-advancing success: clear the error and advance the step."""
    state.error = None
    state.current_graph_step += 1
    if reset_retry:
        state.retry = 0


def hand_back(state: ExecutionState, node: GraphNode = GraphNode.END_GRAPH) -> SubgraphExit:
    """Reset per-task counters and ask the parent graph to jump to a node."""
    state.current_task_index = 0
    state.retry = 0
    state.handoff = node
    return SubgraphExit.HANDOFF


async def run_graph(
    graph: str,
    state: ExecutionState,
    ctx: NodeContext,
    handlers: Mapping[Enum, Handler],
    entry: Enum,
    next_node: Callable[[Enum], Enum],
    end: Enum,
) -> SubgraphExit:
    """Drive a sub-graph from its entry node until it ends.

    Args:
        graph: Sub-graph name for telemetry.
        state: Execution state.
        ctx: Node context.
        handlers: Dispatch table of node handlers.
        entry: First node.
        next_node: Chooses the node after the one that just ran.
        end: Pseudo-node that ends the sub-graph normally.

    Returns:
        How the sub-graph ended.

    Raises:
        ValueError: If the router picks a node with no handler.
    """
    node = entry
    while node != end:
        log.info(
            STATE_TRANSITION,
            graph=graph,
            node=node.value,
            from_node=state.last_node,
            graph_step=state.current_graph_step,
            trace_id=state.trace_id,
        )
        handler = handlers.get(node)
        if handler is None:
            log.error(UNKNOWN_STATE, graph=graph, node=node.value, trace_id=state.trace_id)
            raise ValueError(f"Unknown {graph} node: {node.value}")

        outcome = await handler(state, ctx)
        state.last_node = node.value
        if outcome is not None and outcome != SubgraphExit.NORMAL:
            return outcome
        node = next_node(node)
    return SubgraphExit.NORMAL
