"""Planner sub-graph.

The planner decides whether an objective needs a plan, produces the next
task (initially, after a rejected plan, or from history once earlier tasks
have finished) and has each proposed task validated before execution.
"""

from agent_engine.config.settings import EngineConfig, ExecutionMode
from agent_engine.llm_client.gateway import ModelGateway
from agent_engine.llm_client.types import LLMClientError, ModelTier, TierUnavailableError
from agent_engine.orchestrator.graph import (
    Handler,
    NodeContext,
    hand_back,
    handle_node_error,
    mark_success,
    run_graph,
)
from agent_engine.orchestrator.prompts import (
    PLAN_EVOLUTION_PROMPT,
    PLAN_REVISION_PROMPT,
    build_activation_messages,
    build_planner_messages,
    build_validation_messages,
)
from agent_engine.orchestrator.results import DecisionError, parse_decision
from agent_engine.orchestrator.routing import planning_router
from agent_engine.orchestrator.schemas import PlannerActivation, PlanValidation
from agent_engine.orchestrator.types import (
    ExecutionState,
    GraphErrorType,
    PlannerNode,
    SubgraphExit,
    TaskStatus,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import (
    PLAN_CREATED,
    PLAN_VALIDATED,
    PLANNER_ACTIVATION_DECIDED,
    PLANNER_ACTIVATION_FAILED,
    TASK_ENDED,
)
from agent_engine.tools.control import DECISION_TOOL_NAMES
from agent_engine.tools.registry import ToolRegistry

log = get_logger(__name__)

# Nodes that produce a task and therefore hand over to the validator
_PLAN_PRODUCERS = frozenset(
    {
        PlannerNode.CREATE_INITIAL_PLAN,
        PlannerNode.PLAN_REVISION,
        PlannerNode.EVOLVE_FROM_HISTORY,
    }
)


class Planner:
    """Runs the planner sub-graph.

    Attributes:
        gateway: Model gateway.
        registry: Tool registry (decision tools and listed capabilities).
        config: Engine configuration.
    """

    def __init__(self, gateway: ModelGateway, registry: ToolRegistry, config: EngineConfig) -> None:
        """Initialize the planner.

        Args:
            gateway: Model gateway.
            registry: Tool registry with the control tools registered.
            config: Engine configuration.
        """
        self.gateway = gateway
        self.registry = registry
        self.config = config
        self._handlers: dict[PlannerNode, Handler] = {
            PlannerNode.GET_PLANNER_STATUS: self.decide_planning_needed,
            PlannerNode.CREATE_INITIAL_HISTORY: self.create_initial_history,
            PlannerNode.CREATE_INITIAL_PLAN: self.create_initial_plan,
            PlannerNode.PLAN_REVISION: self.revise_plan,
            PlannerNode.EVOLVE_FROM_HISTORY: self.evolve_from_history,
            PlannerNode.PLANNER_VALIDATOR: self.validate_plan,
            PlannerNode.END_PLANNER_GRAPH: self.end_planner_graph,
        }

    async def run(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit:
        """Run the planner sub-graph until it ends or hands back."""

        def next_node(node: PlannerNode) -> PlannerNode:
            if state.error is not None or node == PlannerNode.CREATE_INITIAL_HISTORY:
                return PlannerNode.END
            if node in _PLAN_PRODUCERS:
                return PlannerNode.PLANNER_VALIDATOR
            return planning_router(state, self.config)

        return await run_graph(
            "planner",
            state,
            ctx,
            self._handlers,
            entry=planning_router(state, self.config),
            next_node=next_node,
            end=PlannerNode.END,
        )

    async def decide_planning_needed(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Ask the cheap tier whether the objective needs a plan.

        Any gateway failure falls back to reactive execution. The graph
        step always advances by one.
        """
        try:
            activation = await self.gateway.invoke_structured(
                ModelTier.CHEAP,
                build_activation_messages(state.objective),
                PlannerActivation,
                usage_key=state.session_id,
                trace_ctx=ctx.trace_ctx,
            )
            state.execution_mode = (
                ExecutionMode.PLANNING if activation.planner_activated else ExecutionMode.REACTIVE
            )
            log.info(
                PLANNER_ACTIVATION_DECIDED,
                planner_activated=activation.planner_activated,
                reason=activation.reason,
                trace_id=state.trace_id,
            )
        except TierUnavailableError:
            raise
        except LLMClientError as e:
            state.execution_mode = ExecutionMode.REACTIVE
            log.warning(
                PLANNER_ACTIVATION_FAILED,
                error=str(e),
                error_type=type(e).__name__,
                fallback=ExecutionMode.REACTIVE.value,
                trace_id=state.trace_id,
            )
        state.current_graph_step += 1
        return None

    async def create_initial_history(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Switch the session to reactive execution (tasks come from the task manager)."""
        state.execution_mode = ExecutionMode.REACTIVE
        state.current_task_index = 0
        state.retry = 0
        state.current_graph_step += 1
        return None

    async def create_initial_plan(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Produce the first task for the objective."""
        return await self._plan(state, ctx, PlannerNode.CREATE_INITIAL_PLAN)

    async def revise_plan(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit | None:
        """Produce a replacement for a task the validator rejected."""
        state.retry += 1
        message = state.last_message()
        reason = (message or {}).get("content") or "no reason given"
        return await self._plan(
            state,
            ctx,
            PlannerNode.PLAN_REVISION,
            instruction=PLAN_REVISION_PROMPT.format(reason=reason),
            reset_retry=False,
        )

    async def evolve_from_history(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Produce the next task from what earlier tasks achieved."""
        return await self._plan(
            state, ctx, PlannerNode.EVOLVE_FROM_HISTORY, instruction=PLAN_EVOLUTION_PROMPT
        )

    async def _plan(
        self,
        state: ExecutionState,
        ctx: NodeContext,
        node: PlannerNode,
        instruction: str | None = None,
        reset_retry: bool = True,
    ) -> SubgraphExit | None:
        handle = self.gateway.select_tier(ModelTier.FAST)
        messages = build_planner_messages(
            state, self.registry, instruction, self.config.content_preview_length
        )
        try:
            response = await self.gateway.invoke(
                handle,
                messages,
                tools=self.registry.get_tool_definitions_for_llm(names=list(DECISION_TOOL_NAMES)),
                tool_choice="required",
                usage_key=state.session_id,
                trace_ctx=ctx.trace_ctx,
            )
            decision = parse_decision(response, state.trace_id)
        except TierUnavailableError:
            raise
        except LLMClientError as e:
            handle_node_error(state, GraphErrorType.EXECUTION_ERROR, e, node.value)
            return None
        except DecisionError as e:
            handle_node_error(state, e.error_type, e.message, node.value)
            return None

        if decision.action == "block":
            handle_node_error(state, GraphErrorType.TASK_ABORTED, decision.reason, node.value)
            return None

        if decision.action == "end":
            log.info(TASK_ENDED, source=node.value, reason=decision.reason, trace_id=state.trace_id)
            state.add_message("assistant", decision.reason, from_node=node.value, final=True)
            mark_success(state)
            return hand_back(state)

        task = decision.task
        if task is None:
            handle_node_error(
                state, GraphErrorType.TOOL_ERROR, "create_task produced no task", node.value
            )
            return None
        state.tasks.append(task)
        state.current_task_index = len(state.tasks) - 1
        state.execution_mode = ExecutionMode.PLANNING
        state.add_message("assistant", f"Planned task: {task.text}", from_node=node.value)
        mark_success(state, reset_retry=reset_retry)
        log.info(
            PLAN_CREATED,
            source=node.value,
            task_id=task.id,
            directive=task.text,
            trace_id=state.trace_id,
        )
        return None

    async def validate_plan(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit | None:
        """Have the cheap tier accept or reject the proposed task.

        The verdict is appended as an assistant message whose metadata
        carries ``success``; the planning router reads it. A rejected task
        is marked blocked so the revision starts from a clean slate. When
        the validator itself is unavailable the plan is accepted.
        """
        task = state.current_task()
        if task is None:
            handle_node_error(
                state,
                GraphErrorType.EXECUTION_ERROR,
                "No task to validate",
                PlannerNode.PLANNER_VALIDATOR.value,
            )
            return None

        try:
            verdict = await self.gateway.invoke_structured(
                ModelTier.CHEAP,
                build_validation_messages(state.objective, task),
                PlanValidation,
                usage_key=state.session_id,
                trace_ctx=ctx.trace_ctx,
            )
        except TierUnavailableError:
            raise
        except LLMClientError as e:
            log.warning(
                PLAN_VALIDATED,
                success=True,
                skipped=True,
                error=str(e),
                error_type=type(e).__name__,
                trace_id=state.trace_id,
            )
            verdict = PlanValidation(success=True, reason="validation skipped")

        state.add_message(
            "assistant",
            verdict.reason,
            from_node=PlannerNode.PLANNER_VALIDATOR.value,
            success=verdict.success,
        )
        if verdict.success:
            state.retry = 0
        else:
            task.status = TaskStatus.BLOCKED
            task.verification = f"Plan rejected: {verdict.reason}"
        state.current_graph_step += 1
        log.info(
            PLAN_VALIDATED,
            success=verdict.success,
            reason=verdict.reason,
            task_id=task.id,
            trace_id=state.trace_id,
        )
        return None

    async def end_planner_graph(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Close the planner and end the run."""
        return hand_back(state)
