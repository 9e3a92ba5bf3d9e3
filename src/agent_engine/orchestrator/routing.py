"""Deterministic routers for the top-level graph and each sub-graph.

Routers are pure functions of (state, config): they read state and return
the next node, never mutate anything, and never call a model. Each rule
set is evaluated in order; the first match wins.
"""

from agent_engine.config.settings import AgentMode, EngineConfig, ExecutionMode
from agent_engine.memory import stm
from agent_engine.orchestrator.types import (
    ExecutionState,
    ExecutorNode,
    GraphErrorType,
    GraphNode,
    MemoryNode,
    PlannerNode,
    TaskManagerNode,
    TaskStatus,
    VerifierNode,
    node_in,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import BUDGET_EXHAUSTED, ROUTING_DECISION, ROUTING_FALLBACK
from agent_engine.tools.control import ASK_HUMAN

log = get_logger(__name__)

_EVOLVE_SOURCES = (ExecutorNode, MemoryNode, VerifierNode, TaskManagerNode)


def component_of(node_value: str) -> GraphNode:
    """Top-level node owning a (sub-graph or top-level) node value.

    Unknown values map to the executor, the component that runs by default.
    """
    for node in GraphNode:
        if node.value == node_value:
            return node
    if node_in(PlannerNode, node_value):
        return GraphNode.PLANNING_ORCHESTRATOR
    if node_in(TaskManagerNode, node_value):
        return GraphNode.TASK_MANAGER
    if node_in(VerifierNode, node_value):
        return GraphNode.TASK_VERIFIER
    if node_in(MemoryNode, node_value):
        return GraphNode.MEMORY_ORCHESTRATOR
    return GraphNode.AGENT_EXECUTOR


def start_router(state: ExecutionState, config: EngineConfig) -> GraphNode:
    """Pick the first sub-graph of a run.

    Interactive reactive sessions skip planning and go straight to the task
    manager; every other combination starts in the planner.
    """
    if state.agent_mode == AgentMode.INTERACTIVE and state.execution_mode == ExecutionMode.REACTIVE:
        return GraphNode.TASK_MANAGER
    return GraphNode.PLANNING_ORCHESTRATOR


def planning_router(state: ExecutionState, config: EngineConfig) -> PlannerNode:
    """Choose the next planner node.

    The interactive rules only apply when entering the planner or right
    after the activation decision; once a plan has been produced the
    validator rules take over.

    Args:
        state: Current execution state.
        config: Engine configuration.

    Returns:
        Next planner node.
    """
    if state.current_graph_step >= config.max_graph_steps:
        log.warning(
            BUDGET_EXHAUSTED,
            router="planner",
            current_graph_step=state.current_graph_step,
            max_graph_steps=config.max_graph_steps,
            trace_id=state.trace_id,
        )
        return PlannerNode.END_PLANNER_GRAPH

    # A planner node that failed with a retryable error runs again
    error = state.error
    if error is not None and error.retryable and node_in(PlannerNode, error.source):
        if state.retry > config.max_retries:
            return PlannerNode.END_PLANNER_GRAPH
        return PlannerNode(error.source)

    last_node = state.last_node
    entering = (
        not node_in(PlannerNode, last_node) or last_node == PlannerNode.GET_PLANNER_STATUS.value
    )
    if state.agent_mode == AgentMode.INTERACTIVE and entering:
        if state.execution_mode == ExecutionMode.REACTIVE:
            return PlannerNode.CREATE_INITIAL_HISTORY
        if state.execution_mode == ExecutionMode.AUTOMATIC:
            return PlannerNode.GET_PLANNER_STATUS
        if state.execution_mode == ExecutionMode.PLANNING:
            return PlannerNode.CREATE_INITIAL_PLAN

    if not last_node or last_node == GraphNode.START.value:
        return PlannerNode.CREATE_INITIAL_PLAN

    if last_node == PlannerNode.PLANNER_VALIDATOR.value:
        message = state.last_message()
        if message is not None and message.get("metadata", {}).get("success"):
            return PlannerNode.END
        if state.retry >= config.max_retries:
            log.info(
                ROUTING_DECISION,
                router="planner",
                reason="plan_revision_retries_exhausted",
                retry=state.retry,
                trace_id=state.trace_id,
            )
            return PlannerNode.END_PLANNER_GRAPH
        return PlannerNode.PLAN_REVISION

    if state.agent_mode in (AgentMode.AUTONOMOUS, AgentMode.HYBRID) and any(
        node_in(node_set, last_node) for node_set in _EVOLVE_SOURCES
    ):
        return PlannerNode.EVOLVE_FROM_HISTORY

    log.warning(ROUTING_FALLBACK, router="planner", last_node=last_node, trace_id=state.trace_id)
    return PlannerNode.END_PLANNER_GRAPH


def orchestration_router(
    state: ExecutionState, config: EngineConfig, tokens_used: int = 0
) -> GraphNode:
    """Choose the next top-level node after a sub-graph returns.

    Args:
        state: Current execution state.
        config: Engine configuration.
        tokens_used: Tokens consumed by the session so far.

    Returns:
        Next top-level node.
    """
    if state.handoff is not None:
        return state.handoff

    if state.current_graph_step >= config.max_graph_steps or (
        config.max_total_tokens and tokens_used >= config.max_total_tokens
    ):
        log.warning(
            BUDGET_EXHAUSTED,
            router="orchestration",
            current_graph_step=state.current_graph_step,
            max_graph_steps=config.max_graph_steps,
            tokens_used=tokens_used,
            max_total_tokens=config.max_total_tokens,
            trace_id=state.trace_id,
        )
        return GraphNode.END_GRAPH

    error = state.error
    if error is not None:
        if error.type == GraphErrorType.BLOCKED_TASK:
            return GraphNode.PLANNING_ORCHESTRATOR
        if error.retryable:
            if state.retry > config.max_retries:
                return GraphNode.END_GRAPH
            return component_of(error.source)
        return GraphNode.END_GRAPH

    last_node = state.last_node
    task = state.current_task()

    if node_in(PlannerNode, last_node):
        if state.execution_mode == ExecutionMode.PLANNING:
            return GraphNode.MEMORY_ORCHESTRATOR
        return GraphNode.TASK_MANAGER

    if node_in(TaskManagerNode, last_node):
        return GraphNode.MEMORY_ORCHESTRATOR

    if node_in(ExecutorNode, last_node):
        if task is not None and task.status == TaskStatus.WAITING_VALIDATION:
            return GraphNode.TASK_VERIFIER
        return GraphNode.MEMORY_ORCHESTRATOR

    if node_in(VerifierNode, last_node):
        return GraphNode.MEMORY_ORCHESTRATOR

    if node_in(MemoryNode, last_node):
        if task is None or task.status in (TaskStatus.COMPLETED, TaskStatus.BLOCKED):
            return GraphNode.PLANNING_ORCHESTRATOR
        return GraphNode.AGENT_EXECUTOR

    return GraphNode.AGENT_EXECUTOR


def executor_entry(state: ExecutionState) -> ExecutorNode:
    """First executor node: finish outstanding action calls, else reason."""
    task = state.current_task()
    step = task.last_step if task is not None else None
    if step is not None and any(call.name != ASK_HUMAN for call in step.pending_calls()):
        return ExecutorNode.TOOL_EXECUTOR
    return ExecutorNode.REASONING_EXECUTOR


def should_continue(state: ExecutionState, config: EngineConfig) -> ExecutorNode:
    """Choose the next executor node.

    Args:
        state: Current execution state.
        config: Engine configuration.

    Returns:
        Next executor node; END leaves the sub-graph normally while
        END_EXECUTOR_GRAPH also ends the run.
    """
    if state.retry > config.max_retries:
        return ExecutorNode.END_EXECUTOR_GRAPH

    last_node = state.last_node
    task = state.current_task()
    step = task.last_step if task is not None else None

    if last_node == ExecutorNode.REASONING_EXECUTOR.value:
        error = state.error
        if error is not None:
            if error.type == GraphErrorType.WRONG_NUMBER_OF_TOOLS:
                return ExecutorNode.REASONING_EXECUTOR
            return ExecutorNode.END
        if step is not None and step.pending_calls():
            return ExecutorNode.TOOL_EXECUTOR
        return ExecutorNode.END

    if last_node == ExecutorNode.TOOL_EXECUTOR.value:
        if state.error is not None:
            return ExecutorNode.END
        if config.max_steps <= state.current_graph_step:
            return ExecutorNode.END_EXECUTOR_GRAPH
        if step is not None and any(call.name == ASK_HUMAN for call in step.pending_calls()):
            return ExecutorNode.HUMAN
        if (
            task is not None
            and task.status == TaskStatus.PENDING
            and len(task.steps) >= config.max_iterations
        ):
            log.warning(
                BUDGET_EXHAUSTED,
                router="executor",
                task_id=task.id,
                steps=len(task.steps),
                max_iterations=config.max_iterations,
                trace_id=state.trace_id,
            )
            return ExecutorNode.END_EXECUTOR_GRAPH
        return ExecutorNode.END

    if last_node == ExecutorNode.HUMAN.value:
        return ExecutorNode.END

    return executor_entry(state)


def memory_router(state: ExecutionState, config: EngineConfig) -> MemoryNode:
    """Choose the next memory node.

    Finished tasks coming from the verifier are consolidated into long-term
    memory before retrieval; everything else only retrieves.
    """
    if not stm.validate(state.memories.stm) or state.current_graph_step >= config.max_graph_steps:
        return MemoryNode.END_MEMORY_GRAPH

    last_node = state.last_node
    if last_node == MemoryNode.LTM_MANAGER.value:
        return MemoryNode.RETRIEVE_MEMORY
    if last_node == MemoryNode.RETRIEVE_MEMORY.value:
        return MemoryNode.END
    if node_in(VerifierNode, last_node):
        return MemoryNode.LTM_MANAGER
    return MemoryNode.RETRIEVE_MEMORY
