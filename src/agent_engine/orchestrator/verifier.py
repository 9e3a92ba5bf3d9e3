"""Task verifier sub-graph.

Checks a task the executor declared finished against its success check,
using only the recorded steps. Accepted tasks are completed; rejected tasks
go back to pending with the verifier's findings attached.
"""

from agent_engine.config.settings import EngineConfig
from agent_engine.llm_client.gateway import ModelGateway
from agent_engine.llm_client.types import LLMClientError, ModelTier, TierUnavailableError
from agent_engine.memory.consolidator import format_task_steps
from agent_engine.orchestrator.graph import Handler, NodeContext, handle_node_error, run_graph
from agent_engine.orchestrator.prompts import build_verifier_messages
from agent_engine.orchestrator.schemas import TaskVerification
from agent_engine.orchestrator.types import (
    REJECTION_PREFIX,
    ExecutionState,
    GraphErrorType,
    SubgraphExit,
    TaskStatus,
    VerifierNode,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import TASK_REJECTED, TASK_VERIFIED

log = get_logger(__name__)


def format_verdict(verdict: TaskVerification) -> str:
    """Render a verdict as the text stored on the task."""
    lines = [f"{verdict.reasoning} (confidence {verdict.confidence_score})"]
    if verdict.missing_elements:
        lines.append("Missing: " + "; ".join(verdict.missing_elements))
    if verdict.next_actions:
        lines.append("Next: " + "; ".join(verdict.next_actions))
    return "\n".join(lines)


class TaskVerifier:
    """Runs the task verifier sub-graph.

    Attributes:
        gateway: Model gateway.
        config: Engine configuration.
    """

    def __init__(self, gateway: ModelGateway, config: EngineConfig) -> None:
        self.gateway = gateway
        self.config = config
        self._handlers: dict[VerifierNode, Handler] = {
            VerifierNode.VERIFY_TASK: self.verify_task,
            VerifierNode.TASK_SUCCESS_HANDLER: self.task_success_handler,
            VerifierNode.TASK_FAILURE_HANDLER: self.task_failure_handler,
        }

    async def run(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit:
        """Verify the active task and apply the verdict."""

        def next_node(node: VerifierNode) -> VerifierNode:
            if node != VerifierNode.VERIFY_TASK or state.error is not None:
                return VerifierNode.END
            message = state.last_message() or {}
            if message.get("metadata", {}).get("success"):
                return VerifierNode.TASK_SUCCESS_HANDLER
            return VerifierNode.TASK_FAILURE_HANDLER

        return await run_graph(
            "verifier",
            state,
            ctx,
            self._handlers,
            entry=VerifierNode.VERIFY_TASK,
            next_node=next_node,
            end=VerifierNode.END,
        )

    async def verify_task(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit | None:
        """Ask the cheap tier whether the active task is really complete.

        The verdict is appended as an assistant message whose ``success``
        metadata tells the router which handler runs next. A task counts as
        complete only when the model says so with enough confidence.
        """
        source = VerifierNode.VERIFY_TASK.value
        task = state.current_task()
        if task is None:
            handle_node_error(state, GraphErrorType.EXECUTION_ERROR, "No task to verify", source)
            return None

        steps_text = format_task_steps(task, self.config.content_preview_length)
        try:
            verdict = await self.gateway.invoke_structured(
                ModelTier.CHEAP,
                build_verifier_messages(task, steps_text),
                TaskVerification,
                usage_key=state.session_id,
                trace_ctx=ctx.trace_ctx,
            )
        except TierUnavailableError:
            raise
        except LLMClientError as e:
            handle_node_error(state, GraphErrorType.EXECUTION_ERROR, e, source)
            return None

        success = (
            verdict.task_completed
            and verdict.confidence_score >= self.config.verification_confidence_threshold
        )
        state.add_message("assistant", format_verdict(verdict), from_node=source, success=success)
        state.error = None
        state.current_graph_step += 1
        log.info(
            TASK_VERIFIED if success else TASK_REJECTED,
            task_id=task.id,
            task_completed=verdict.task_completed,
            confidence_score=verdict.confidence_score,
            trace_id=state.trace_id,
        )
        return None

    async def task_success_handler(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Complete the task with the verifier's findings."""
        task = state.current_task()
        if task is not None:
            task.status = TaskStatus.COMPLETED
            task.verification = (state.last_message() or {}).get("content") or ""
        state.retry = 0
        return None

    async def task_failure_handler(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Send the task back to the executor with the verifier's findings.

        The rejection is kept on the task only; the session error stays clear.
        """
        task = state.current_task()
        if task is not None:
            task.status = TaskStatus.PENDING
            findings = (state.last_message() or {}).get("content") or ""
            task.verification = f"{REJECTION_PREFIX} {findings}"
        state.retry += 1
        return None
