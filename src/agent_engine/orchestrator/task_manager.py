"""Task manager sub-graph: turns the objective into the next task.

Used by reactive sessions, where no up-front plan exists. Each run makes
exactly one decision (create, block or end) and never retries internally;
failed attempts are retried by the top-level router.
"""

from agent_engine.config.settings import EngineConfig
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
from agent_engine.orchestrator.prompts import build_task_manager_messages
from agent_engine.orchestrator.results import DecisionError, parse_decision
from agent_engine.orchestrator.types import (
    ExecutionState,
    GraphErrorType,
    SubgraphExit,
    TaskManagerNode,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import (
    BUDGET_EXHAUSTED,
    TASK_CREATED,
    TASK_ENDED,
    WRONG_NUMBER_OF_TOOLS,
)
from agent_engine.tools.control import DECISION_TOOL_NAMES
from agent_engine.tools.registry import ToolRegistry

log = get_logger(__name__)


class TaskManager:
    """Runs the task manager sub-graph.

    Attributes:
        gateway: Model gateway.
        registry: Tool registry.
        config: Engine configuration.
    """

    def __init__(self, gateway: ModelGateway, registry: ToolRegistry, config: EngineConfig) -> None:
        self.gateway = gateway
        self.registry = registry
        self.config = config
        self._handlers: dict[TaskManagerNode, Handler] = {
            TaskManagerNode.CREATE_TASK: self.create_task,
            TaskManagerNode.END_TASK_MANAGER_GRAPH: self.end_task_manager_graph,
        }

    async def run(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit:
        """Make one task decision, or end the run when the step budget is spent."""
        if state.current_graph_step >= self.config.max_steps:
            log.warning(
                BUDGET_EXHAUSTED,
                router="task_manager",
                current_graph_step=state.current_graph_step,
                max_steps=self.config.max_steps,
                trace_id=state.trace_id,
            )
            entry = TaskManagerNode.END_TASK_MANAGER_GRAPH
        else:
            entry = TaskManagerNode.CREATE_TASK

        return await run_graph(
            "task_manager",
            state,
            ctx,
            self._handlers,
            entry=entry,
            next_node=lambda node: TaskManagerNode.END,
            end=TaskManagerNode.END,
        )

    async def create_task(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit | None:
        """Ask the model for exactly one decision and apply it.

        Returns:
            HANDOFF when the model ends the objective, otherwise None.
        """
        source = TaskManagerNode.CREATE_TASK.value
        handle = self.gateway.select_tier(ModelTier.FAST)
        messages = build_task_manager_messages(
            state, self.registry, self.config.content_preview_length
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
            handle_node_error(state, GraphErrorType.EXECUTION_ERROR, e, source)
            return None
        except DecisionError as e:
            if e.error_type == GraphErrorType.WRONG_NUMBER_OF_TOOLS:
                log.warning(WRONG_NUMBER_OF_TOOLS, source=source, trace_id=state.trace_id)
            handle_node_error(state, e.error_type, e.message, source)
            return None

        if decision.action == "block":
            handle_node_error(state, GraphErrorType.TASK_ABORTED, decision.reason, source)
            return None

        if decision.action == "end":
            log.info(TASK_ENDED, source=source, reason=decision.reason, trace_id=state.trace_id)
            state.add_message("assistant", decision.reason, from_node=source, final=True)
            mark_success(state)
            return hand_back(state)

        task = decision.task
        if task is None:
            handle_node_error(
                state, GraphErrorType.TOOL_ERROR, "create_task produced no task", source
            )
            return None
        state.tasks.append(task)
        state.current_task_index = len(state.tasks) - 1
        state.add_message("assistant", f"Created task: {task.text}", from_node=source)
        mark_success(state)
        log.info(TASK_CREATED, task_id=task.id, directive=task.text, trace_id=state.trace_id)
        return None

    async def end_task_manager_graph(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Close the task manager and end the run."""
        return hand_back(state)
