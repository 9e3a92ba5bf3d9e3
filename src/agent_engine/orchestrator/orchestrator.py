"""High-level orchestrator API.

The orchestrator drives one session through the top-level graph:

    start -> planning_orchestrator | task_manager
          -> agent_executor -> task_verifier -> memory_orchestrator -> ...
          -> end_graph

Each top-level node runs one sub-graph. Between sub-graphs the
orchestration router picks the next node from the state alone.
"""

import uuid
from collections.abc import Awaitable, Callable

from agent_engine.config.loader import ConfigLoadError
from agent_engine.config.settings import AgentMode, EngineConfig, ExecutionMode, get_settings
from agent_engine.llm_client.gateway import ModelGateway
from agent_engine.llm_client.types import ModelTier, TierUnavailableError
from agent_engine.memory import stm
from agent_engine.memory.consolidator import MemoryConsolidator
from agent_engine.memory.embeddings import HashingEmbedder
from agent_engine.memory.ltm import InMemoryMemoryStore, LongTermMemory
from agent_engine.memory.models import Memories
from agent_engine.orchestrator.executor import Executor
from agent_engine.orchestrator.graph import NodeContext
from agent_engine.orchestrator.memory_graph import MemoryGraph
from agent_engine.orchestrator.planner import Planner
from agent_engine.orchestrator.routing import orchestration_router, start_router
from agent_engine.orchestrator.session import SessionStore
from agent_engine.orchestrator.streaming import ChunkKind, StreamChannel
from agent_engine.orchestrator.task_manager import TaskManager
from agent_engine.orchestrator.types import (
    ExecutionState,
    GraphErrorType,
    GraphNode,
    RunResult,
    SubgraphExit,
    TaskStatus,
)
from agent_engine.orchestrator.verifier import TaskVerifier
from agent_engine.security import sanitize_error_message
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import (
    ORCHESTRATOR_FATAL_ERROR,
    REPLY_READY,
    ROUTING_DECISION,
    RUN_ABORTED,
    RUN_COMPLETED,
    RUN_INTERRUPTED,
    RUN_RESUMED,
    RUN_STARTED,
    STATE_TRANSITION,
    UNKNOWN_STATE,
)
from agent_engine.telemetry.trace import TraceContext
from agent_engine.tools.control import register_control_tools
from agent_engine.tools.invoker import ToolInvoker
from agent_engine.tools.registry import ToolRegistry

log = get_logger(__name__)

# Tiers every run needs: planning and execution use FAST, checks use CHEAP
REQUIRED_TIERS = (ModelTier.FAST, ModelTier.CHEAP)


class ConfigurationError(Exception):
    """Raised when the engine cannot run with its configuration.

    Misconfiguration is never turned into a node error: a missing tier or
    an unreadable config file stops the run immediately.
    """


SubgraphRunner = Callable[[ExecutionState, NodeContext], Awaitable[SubgraphExit]]


class Orchestrator:
    """Main entry point for running objectives.

    Attributes:
        config: Engine configuration.
        gateway: Model gateway shared by every component.
        registry: Tool registry (action tools plus the control tools).
        sessions: Store of running and suspended sessions.
    """

    def __init__(
        self,
        gateway: ModelGateway | None = None,
        registry: ToolRegistry | None = None,
        ltm: LongTermMemory | None = None,
        config: EngineConfig | None = None,
        session_store: SessionStore | None = None,
    ) -> None:
        """Initialize the orchestrator and its components.

        Args:
            gateway: Model gateway. If None, one is built from the model config file.
            registry: Tool registry. If None, an empty one is created. Control
                tools are registered on it either way.
            ltm: Long-term memory. If None, an in-process store is used.
            config: Engine configuration. If None, uses the settings singleton.
            session_store: Session store. If None, creates a new one.

        Raises:
            ConfigurationError: If the model config cannot be loaded or a
                required tier has no model.
        """
        self.config = config or get_settings()
        try:
            self.gateway = gateway or ModelGateway()
        except ConfigLoadError as e:
            raise ConfigurationError(str(e)) from e
        for tier in REQUIRED_TIERS:
            try:
                self.gateway.select_tier(tier)
            except TierUnavailableError as e:
                raise ConfigurationError(str(e)) from e

        self.registry = registry or ToolRegistry()
        register_control_tools(self.registry)
        ltm = ltm or LongTermMemory(
            HashingEmbedder(), InMemoryMemoryStore(merge_threshold=self.config.merge_threshold)
        )
        self.sessions = session_store or SessionStore()

        self.planner = Planner(self.gateway, self.registry, self.config)
        self.task_manager = TaskManager(self.gateway, self.registry, self.config)
        self.executor = Executor(
            self.gateway, self.registry, ToolInvoker(self.registry), self.config
        )
        self.verifier = TaskVerifier(self.gateway, self.config)
        self.memory = MemoryGraph(MemoryConsolidator(self.gateway, ltm, self.config), self.config)

        self._handlers: dict[GraphNode, SubgraphRunner] = {
            GraphNode.PLANNING_ORCHESTRATOR: self.planner.run,
            GraphNode.TASK_MANAGER: self.task_manager.run,
            GraphNode.AGENT_EXECUTOR: self.executor.run,
            GraphNode.TASK_VERIFIER: self.verifier.run,
            GraphNode.MEMORY_ORCHESTRATOR: self.memory.run,
        }
        self._running: set[str] = set()
        self._aborted: set[str] = set()

    def new_state(self, objective: str, session_id: str | None = None) -> ExecutionState:
        """Build the initial state of a session.

        Interactive sessions start in the configured execution mode; the
        autonomous modes always plan.

        Args:
            objective: What the agent should achieve.
            session_id: Session identifier. If None, one is generated.

        Returns:
            Fresh execution state.

        Raises:
            ConfigurationError: If the short-term memory size is invalid.
        """
        created = stm.create_empty(self.config.stm_max_size)
        if not created.success or created.data is None:
            raise ConfigurationError(created.error or "cannot create short-term memory")

        session_id = session_id or str(uuid.uuid4())
        agent_mode = self.config.agent_mode
        if agent_mode == AgentMode.INTERACTIVE:
            execution_mode = self.config.execution_mode
        else:
            execution_mode = ExecutionMode.PLANNING
        return ExecutionState(
            session_id=session_id,
            objective=objective,
            agent_mode=agent_mode,
            execution_mode=execution_mode,
            memories=Memories(stm=created.data),
            trace_id=TraceContext.new_trace(session_id).trace_id,
        )

    async def run(
        self,
        objective: str,
        session_id: str | None = None,
        channel: StreamChannel | None = None,
    ) -> RunResult:
        """Run an objective until it completes, fails or needs human input.

        Args:
            objective: What the agent should achieve.
            session_id: Session identifier. If None, one is generated.
            channel: Optional stream channel; closed when the run returns.

        Returns:
            RunResult describing how the run ended.

        Raises:
            ConfigurationError: If the engine is misconfigured.
            ValueError: If the session already exists.
        """
        state = self.new_state(objective, session_id)
        self.sessions.create(state)
        log.info(
            RUN_STARTED,
            session_id=state.session_id,
            agent_mode=state.agent_mode.value,
            execution_mode=state.execution_mode.value,
            objective=objective,
            trace_id=state.trace_id,
        )
        state.add_message("user", objective, from_node=GraphNode.START.value)
        return await self._drive(state, start_router(state, self.config), channel)

    async def resume(
        self,
        session_id: str,
        reply: str,
        channel: StreamChannel | None = None,
    ) -> RunResult:
        """Resume a session suspended on a human-input request.

        Args:
            session_id: Suspended session.
            reply: Human reply to the pending question.
            channel: Optional new stream channel for the resumed run.

        Returns:
            RunResult describing how the resumed run ended.

        Raises:
            ValueError: If the session is unknown, running, or not waiting
                for input.
        """
        session = self.sessions.get(session_id)
        if session is None:
            raise ValueError(f"Session {session_id} not found")
        if session_id in self._running:
            raise ValueError(f"Session {session_id} is already running")

        state = session.state
        self.executor.resume_human(state, reply)
        log.info(
            RUN_RESUMED,
            session_id=session_id,
            resume_node=session.resume_node.value,
            trace_id=state.trace_id,
        )
        return await self._drive(state, session.resume_node, channel)

    def abort(self, session_id: str) -> None:
        """Abort a session.

        A running session stops at the next node boundary; a suspended one
        is discarded right away.

        Args:
            session_id: Session to abort.

        Raises:
            ValueError: If the session is unknown.
        """
        if session_id in self._running:
            self._aborted.add(session_id)
            return
        session = self.sessions.get(session_id)
        if session is None:
            raise ValueError(f"Session {session_id} not found")
        self.sessions.delete(session_id)
        log.info(RUN_ABORTED, session_id=session_id, trace_id=session.state.trace_id)

    async def run_safe(
        self,
        objective: str,
        session_id: str | None = None,
        channel: StreamChannel | None = None,
    ) -> RunResult:
        """Run an objective without ever raising.

        Any exception is logged and returned as a failed RunResult with a
        sanitized message.
        """
        try:
            return await self.run(objective, session_id, channel)
        except Exception as e:
            log.critical(
                ORCHESTRATOR_FATAL_ERROR,
                session_id=session_id,
                error_type=type(e).__name__,
                exc_info=True,
            )
            if channel is not None:
                channel.close()
            return {
                "session_id": session_id or "",
                "status": "failed",
                "reply": "",
                "interrupt": None,
                "error": sanitize_error_message(e),
                "state": None,
            }

    async def _drive(
        self,
        state: ExecutionState,
        node: GraphNode,
        channel: StreamChannel | None,
    ) -> RunResult:
        """Run top-level nodes from `node` until the run ends or suspends."""
        session_id = state.session_id
        ctx = NodeContext(
            trace_ctx=TraceContext(trace_id=state.trace_id, session_id=session_id),
            channel=channel,
        )
        self._running.add(session_id)
        try:
            while node != GraphNode.END_GRAPH:
                if session_id in self._aborted:
                    return self._abort_run(state, ctx)

                log.info(
                    STATE_TRANSITION,
                    graph="orchestration",
                    node=node.value,
                    from_node=state.last_node,
                    graph_step=state.current_graph_step,
                    trace_id=state.trace_id,
                )
                handler = self._handlers.get(node)
                if handler is None:
                    log.error(UNKNOWN_STATE, graph="orchestration", node=node.value)
                    raise ValueError(f"Unknown orchestration node: {node.value}")

                outcome = await handler(state, ctx)
                if outcome == SubgraphExit.INTERRUPT:
                    return self._suspend(state, ctx)
                node = self._route(state)

            return self._end_graph(state, ctx)
        except (TierUnavailableError, ConfigLoadError) as e:
            self._discard(session_id)
            raise ConfigurationError(str(e)) from e
        except Exception:
            self._discard(session_id)
            raise
        finally:
            self._running.discard(session_id)
            self._aborted.discard(session_id)
            if channel is not None:
                channel.close()

    def _route(self, state: ExecutionState) -> GraphNode:
        tokens_used = self.gateway.usage.total_for(state.session_id)
        node = orchestration_router(state, self.config, tokens_used)
        state.handoff = None

        error = state.error
        if (
            error is not None
            and error.type == GraphErrorType.BLOCKED_TASK
            and node == GraphNode.PLANNING_ORCHESTRATOR
        ):
            # The blocked task ends here; the session carries on
            task = state.current_task()
            if task is not None:
                task.status = TaskStatus.BLOCKED
                task.verification = task.verification or error.message
            state.error = None

        log.debug(
            ROUTING_DECISION,
            router="orchestration",
            from_node=state.last_node,
            next_node=node.value,
            trace_id=state.trace_id,
        )
        return node

    def _suspend(self, state: ExecutionState, ctx: NodeContext) -> RunResult:
        self.sessions.update(
            state.session_id, state=state, resume_node=GraphNode.AGENT_EXECUTOR
        )
        interrupt = state.pending_interrupt or {}
        log.info(
            RUN_INTERRUPTED,
            session_id=state.session_id,
            tool_call_id=interrupt.get("tool_call_id"),
            trace_id=state.trace_id,
        )
        return {
            "session_id": state.session_id,
            "status": "interrupted",
            "reply": str(interrupt.get("prompt", "")),
            "interrupt": interrupt,
            "error": None,
            "state": state,
        }

    def _abort_run(self, state: ExecutionState, ctx: NodeContext) -> RunResult:
        ctx.emit(ChunkKind.ERROR, state.session_id, "Run aborted", aborted=True)
        self._discard(state.session_id)
        log.info(
            RUN_ABORTED,
            session_id=state.session_id,
            graph_steps=state.current_graph_step,
            trace_id=state.trace_id,
        )
        return {
            "session_id": state.session_id,
            "status": "aborted",
            "reply": "",
            "interrupt": None,
            "error": None,
            "state": state,
        }

    def _end_graph(self, state: ExecutionState, ctx: NodeContext) -> RunResult:
        """Close the run and build its result."""
        state.current_task_index = 0
        state.retry = 0
        state.last_node = GraphNode.END_GRAPH.value

        reply = final_reply(state)
        error = sanitize_error_message(state.error.message) if state.error else None
        if state.error is not None:
            ctx.emit(
                ChunkKind.ERROR,
                state.session_id,
                error or "",
                error_type=state.error.type.value,
            )
        else:
            ctx.emit(ChunkKind.FINAL, state.session_id, reply)

        self._discard(state.session_id)
        status = "failed" if state.error is not None else "completed"
        log.info(
            RUN_COMPLETED,
            session_id=state.session_id,
            status=status,
            graph_steps=state.current_graph_step,
            tasks=len(state.tasks),
            tokens_used=self.gateway.usage.total_for(state.session_id),
            error_type=state.error.type.value if state.error else None,
            trace_id=state.trace_id,
        )
        log.info(
            REPLY_READY,
            session_id=state.session_id,
            reply_length=len(reply),
            trace_id=state.trace_id,
        )
        return {
            "session_id": state.session_id,
            "status": status,
            "reply": reply,
            "interrupt": None,
            "error": error,
            "state": state,
        }

    def _discard(self, session_id: str) -> None:
        if session_id in self.sessions:
            self.sessions.delete(session_id)


def final_reply(state: ExecutionState) -> str:
    """User-facing text of a finished run.

    An explicit end decision wins; otherwise the most recent ``speak`` of a
    reasoning turn, and finally the last assistant message.
    """
    for message in reversed(state.messages):
        if message.get("metadata", {}).get("final") and message.get("content"):
            return str(message["content"])

    for task in reversed(state.tasks):
        for step in reversed(task.steps):
            if step.thought is not None and step.thought.speak:
                return step.thought.speak

    for message in reversed(state.messages):
        if message.get("role") == "assistant" and message.get("content"):
            return str(message["content"])
    return ""
