"""Memory sub-graph: consolidates finished tasks and refreshes recall."""

from agent_engine.config.settings import EngineConfig
from agent_engine.memory import stm
from agent_engine.memory.consolidator import MemoryConsolidator
from agent_engine.orchestrator.graph import (
    Handler,
    NodeContext,
    hand_back,
    handle_node_error,
    run_graph,
)
from agent_engine.orchestrator.routing import memory_router
from agent_engine.orchestrator.types import (
    ExecutionState,
    GraphErrorType,
    MemoryNode,
    SubgraphExit,
    TaskStatus,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import MEMORY_RETRIEVED

log = get_logger(__name__)


class MemoryGraph:
    """Runs the memory sub-graph.

    Attributes:
        consolidator: Moves task outcomes into long-term memory and back.
        config: Engine configuration.
    """

    def __init__(self, consolidator: MemoryConsolidator, config: EngineConfig) -> None:
        self.consolidator = consolidator
        self.config = config
        self._handlers: dict[MemoryNode, Handler] = {
            MemoryNode.LTM_MANAGER: self.ltm_manager,
            MemoryNode.RETRIEVE_MEMORY: self.retrieve_memory,
            MemoryNode.END_MEMORY_GRAPH: self.end_memory_graph,
        }

    async def run(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit:
        """Run the memory sub-graph until it ends or hands back."""
        return await run_graph(
            "memory",
            state,
            ctx,
            self._handlers,
            entry=memory_router(state, self.config),
            next_node=lambda node: memory_router(state, self.config),
            end=MemoryNode.END,
        )

    async def ltm_manager(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit | None:
        """Consolidate the active task into long-term memory once it is completed."""
        task = state.current_task()
        if task is not None and task.status == TaskStatus.COMPLETED:
            await self.consolidator.consolidate(
                task, state.session_id, state.objective, trace_ctx=ctx.trace_ctx
            )
        state.current_graph_step += 1
        return None

    async def retrieve_memory(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Load long-term memories relevant to what the agent is doing now.

        The request is the reasoning of the active task's last step, falling
        back to the objective. A retrieval failure is recorded on the
        session's memories and does not stop the cycle.
        """
        task = state.current_task()
        step = task.last_step if task is not None else None
        request = ""
        if step is not None and step.thought is not None:
            request = step.thought.reasoning
        request = request or state.objective

        state.memories = state.memories.model_copy(update={"is_processing": True})
        memories = await self.consolidator.retrieve(state.memories, request, ctx.trace_ctx)
        state.memories = memories.model_copy(update={"is_processing": False})
        if memories.last_error is not None:
            log.warning(
                MEMORY_RETRIEVED,
                success=False,
                error=memories.last_error,
                trace_id=state.trace_id,
            )
        state.current_graph_step += 1
        return None

    async def end_memory_graph(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Close the memory graph and end the run."""
        if not stm.validate(state.memories.stm):
            handle_node_error(
                state,
                GraphErrorType.MEMORY_ERROR,
                "Short-term memory is in an invalid state",
                MemoryNode.END_MEMORY_GRAPH.value,
            )
        return hand_back(state)
