"""Tests for shared graph plumbing."""

from enum import Enum

import pytest

from agent_engine.orchestrator.graph import (
    NodeContext,
    hand_back,
    handle_node_error,
    mark_success,
    run_graph,
)
from agent_engine.orchestrator.streaming import ChunkKind, StreamChannel
from agent_engine.orchestrator.types import (
    ExecutionState,
    GraphErrorType,
    GraphNode,
    SubgraphExit,
)
from agent_engine.telemetry.trace import TraceContext


class Node(str, Enum):
    A = "a"
    B = "b"
    C = "c"
    END = "end"


class TestNodeHelpers:
    """Test error and success bookkeeping."""

    def test_retryable_error_bumps_retry(self, state: ExecutionState) -> None:
        """Test a retryable error advances the step and the retry counter."""
        error = handle_node_error(
            state, GraphErrorType.TOOL_ERROR, RuntimeError("broke"), "tool_executor"
        )

        assert state.error is error
        assert error.message == "broke"
        assert error.source == "tool_executor"
        assert (state.current_graph_step, state.retry) == (1, 1)

    def test_terminal_error_keeps_retry(self, state: ExecutionState) -> None:
        """Test a non-retryable error does not count as a retry."""
        handle_node_error(state, GraphErrorType.BLOCKED_TASK, "refused", "create_task")

        assert state.error is not None
        assert state.error.has_error
        assert not state.error.retryable
        assert (state.current_graph_step, state.retry) == (1, 0)

    def test_exception_without_message(self, state: ExecutionState) -> None:
        """Test an exception with no message is named by its type."""
        error = handle_node_error(state, GraphErrorType.EXECUTION_ERROR, TimeoutError(), "x")

        assert error.message == "TimeoutError"

    def test_mark_success(self, state: ExecutionState) -> None:
        """Test success clears the error and optionally the retry counter."""
        handle_node_error(state, GraphErrorType.TOOL_ERROR, "x", "tool_executor")

        mark_success(state, reset_retry=False)
        assert state.error is None
        assert (state.current_graph_step, state.retry) == (2, 1)

        mark_success(state)
        assert (state.current_graph_step, state.retry) == (3, 0)

    def test_hand_back(self, state: ExecutionState) -> None:
        """Test a hand-back resets per-task counters and sets the handoff."""
        state.retry = 2
        state.current_task_index = 3

        assert hand_back(state) == SubgraphExit.HANDOFF
        assert state.handoff == GraphNode.END_GRAPH
        assert (state.retry, state.current_task_index) == (0, 0)


class TestRunGraph:
    """Test the sub-graph driver loop."""

    @pytest.mark.asyncio
    async def test_runs_until_end(self, state: ExecutionState, ctx: NodeContext) -> None:
        """Test nodes run in router order and last_node follows them."""
        visited: list[str] = []

        async def visit(s: ExecutionState, c: NodeContext) -> None:
            visited.append(s.last_node)

        order = {Node.A: Node.B, Node.B: Node.END}
        outcome = await run_graph(
            "test", state, ctx, {Node.A: visit, Node.B: visit}, Node.A, order.__getitem__, Node.END
        )

        assert outcome == SubgraphExit.NORMAL
        assert visited == ["start", "a"]
        assert state.last_node == "b"

    @pytest.mark.asyncio
    async def test_stops_on_interrupt(self, state: ExecutionState, ctx: NodeContext) -> None:
        """Test a handler outcome other than NORMAL stops the loop."""
        calls: list[Node] = []

        async def suspend(s: ExecutionState, c: NodeContext) -> SubgraphExit:
            calls.append(Node.A)
            return SubgraphExit.INTERRUPT

        outcome = await run_graph(
            "test", state, ctx, {Node.A: suspend}, Node.A, lambda _: Node.A, Node.END
        )

        assert outcome == SubgraphExit.INTERRUPT
        assert calls == [Node.A]
        assert state.last_node == "a"

    @pytest.mark.asyncio
    async def test_unknown_node(self, state: ExecutionState, ctx: NodeContext) -> None:
        """Test routing to a node without a handler fails loudly."""

        async def noop(s: ExecutionState, c: NodeContext) -> None:
            return None

        with pytest.raises(ValueError, match="Unknown test node: c"):
            await run_graph(
                "test", state, ctx, {Node.A: noop}, Node.A, lambda _: Node.C, Node.END
            )


def test_emit_without_channel() -> None:
    """Test emitting without a channel is a no-op."""
    NodeContext(trace_ctx=TraceContext.new_trace()).emit(ChunkKind.FINAL, "s", "done")


@pytest.mark.asyncio
async def test_emit_pushes_chunk() -> None:
    """Test emitted chunks carry the session and extra data."""
    channel = StreamChannel()
    NodeContext(trace_ctx=TraceContext.new_trace(), channel=channel).emit(
        ChunkKind.TOOL_START, "s1", "search", args={"q": "x"}
    )
    channel.close()

    chunks = [chunk async for chunk in channel]

    assert len(chunks) == 1
    assert chunks[0].kind == ChunkKind.TOOL_START
    assert chunks[0].session_id == "s1"
    assert chunks[0].data == {"args": {"q": "x"}}
