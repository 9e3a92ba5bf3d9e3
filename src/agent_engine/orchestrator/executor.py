"""Executor sub-graph: works on the active task.

The executor alternates model reasoning with tool execution:

    reasoning_executor -> tool_executor -> (human) -> end

Each reasoning turn appends exactly one Step to the active task; the tool
executor completes that step's calls. Routing between nodes is done by
``should_continue``.
"""

import asyncio
from typing import Any

import orjson

from agent_engine.config.settings import EngineConfig
from agent_engine.llm_client.adapters import to_openai_tool_calls
from agent_engine.llm_client.gateway import ModelGateway
from agent_engine.llm_client.types import (
    LLMClientError,
    ModelTier,
    TierUnavailableError,
    ToolCall,
)
from agent_engine.llm_client.usage import estimate_tokens
from agent_engine.memory import stm
from agent_engine.orchestrator.graph import (
    Handler,
    NodeContext,
    hand_back,
    handle_node_error,
    mark_success,
    run_graph,
)
from agent_engine.orchestrator.prompts import (
    build_executor_messages,
    build_summarization_messages,
)
from agent_engine.orchestrator.results import (
    DecisionError,
    InterruptResult,
    ReasoningResult,
    ToolBatchResult,
    parse_reasoning,
)
from agent_engine.orchestrator.routing import executor_entry, should_continue
from agent_engine.orchestrator.streaming import ChunkKind
from agent_engine.orchestrator.types import (
    ExecutionState,
    ExecutorNode,
    GraphErrorType,
    Step,
    SubgraphExit,
    Task,
    TaskStatus,
    ToolCallRecord,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import (
    STEP_APPENDED,
    STM_ITEM_ADDED,
    STM_OPERATION_FAILED,
    TASK_BLOCKED,
    TASK_ENDED,
    TOOL_RESULT_SUMMARIZED,
    WRONG_NUMBER_OF_TOOLS,
)
from agent_engine.tools.control import (
    ASK_HUMAN,
    BLOCK_TASK,
    END_TASK,
    EXECUTOR_CONTROL_TOOL_NAMES,
)
from agent_engine.tools.invoker import ToolBatchTimeout, ToolInvoker
from agent_engine.tools.registry import ToolRegistry
from agent_engine.tools.types import ToolResult, ToolRole

log = get_logger(__name__)

_TRUNCATION_MARKER = "\n... [truncated]"


def _control_ack(call: ToolCallRecord) -> str:
    """Local result for a control call."""
    if call.name == END_TASK:
        return "Task marked for verification."
    if call.name == BLOCK_TASK:
        return "Task blocked."
    return "Acknowledged."


def _result_text(result: ToolResult) -> str:
    """Text form of a tool result as the model will see it."""
    if not result.success:
        return f"Error: {result.error or 'tool failed'}"
    if isinstance(result.output, str):
        return result.output
    return orjson.dumps(result.output, default=str).decode("utf-8")


class Executor:
    """Runs the executor sub-graph.

    Attributes:
        gateway: Model gateway.
        registry: Tool registry.
        invoker: Tool invoker for action calls.
        config: Engine configuration.
        reasoning_tier: Tier used for reasoning turns.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        invoker: ToolInvoker,
        config: EngineConfig,
        reasoning_tier: ModelTier = ModelTier.FAST,
    ) -> None:
        self.gateway = gateway
        self.registry = registry
        self.invoker = invoker
        self.config = config
        self.reasoning_tier = reasoning_tier
        self._handlers: dict[ExecutorNode, Handler] = {
            ExecutorNode.REASONING_EXECUTOR: self.reasoning_step,
            ExecutorNode.TOOL_EXECUTOR: self.tool_step,
            ExecutorNode.HUMAN: self.human_step,
            ExecutorNode.END_EXECUTOR_GRAPH: self.end_executor_graph,
        }

    async def run(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit:
        """Run the executor sub-graph until it ends, hands back or suspends."""
        if state.retry > self.config.max_retries:
            entry = ExecutorNode.END_EXECUTOR_GRAPH
        else:
            entry = executor_entry(state)
        return await run_graph(
            "executor",
            state,
            ctx,
            self._handlers,
            entry=entry,
            next_node=lambda node: should_continue(state, self.config),
            end=ExecutorNode.END,
        )

    def _reasoning_tools(self) -> list[dict[str, Any]]:
        names = [tool.name for tool in self.registry.list_tools(role=ToolRole.ACTION)]
        names.extend(EXECUTOR_CONTROL_TOOL_NAMES)
        return self.registry.get_tool_definitions_for_llm(names=names)

    def _record_stm_failure(self, state: ExecutionState, operation: str, error: str | None) -> None:
        log.error(
            STM_OPERATION_FAILED, operation=operation, error=error, trace_id=state.trace_id
        )
        state.memories = state.memories.model_copy(update={"last_error": error})
        handle_node_error(
            state,
            GraphErrorType.MEMORY_ERROR,
            f"Short-term memory {operation} failed: {error}",
            state.last_node,
        )

    # ------------------------------------------------------------------
    # Reasoning
    # ------------------------------------------------------------------

    async def reasoning_step(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit | None:
        """Run one reasoning turn on the active task.

        A valid turn appends exactly one Step. An invalid turn (wrong tool
        roles, gateway failure or timeout) records an error and appends
        nothing.
        """
        source = ExecutorNode.REASONING_EXECUTOR.value
        task = state.current_task()
        if task is None:
            handle_node_error(state, GraphErrorType.EXECUTION_ERROR, "No active task", source)
            return None

        free_form = self.config.free_form_reasoning
        handle = self.gateway.select_tier(self.reasoning_tier)
        messages = build_executor_messages(
            state, task, free_form, self.config.content_preview_length
        )
        timeout_s = self.config.reasoning_timeout_ms / 1000
        try:
            response = await asyncio.wait_for(
                self.gateway.invoke(
                    handle,
                    messages,
                    tools=self._reasoning_tools(),
                    tool_choice="auto" if free_form else "required",
                    usage_key=state.session_id,
                    trace_ctx=ctx.trace_ctx,
                ),
                timeout=timeout_s,
            )
            result = parse_reasoning(response, self.registry, free_form, state.trace_id)
        except TierUnavailableError:
            raise
        except asyncio.TimeoutError:
            handle_node_error(
                state,
                GraphErrorType.EXECUTION_ERROR,
                f"Reasoning timed out after {timeout_s}s",
                source,
            )
            return None
        except LLMClientError as e:
            handle_node_error(state, GraphErrorType.EXECUTION_ERROR, e, source)
            return None
        except DecisionError as e:
            if e.error_type == GraphErrorType.WRONG_NUMBER_OF_TOOLS:
                log.warning(
                    WRONG_NUMBER_OF_TOOLS,
                    source=source,
                    message=e.message,
                    retry=state.retry + 1,
                    trace_id=state.trace_id,
                )
            handle_node_error(state, e.error_type, e.message, source)
            return None

        self._apply_reasoning(state, task, result, ctx)
        return None

    def _apply_reasoning(
        self, state: ExecutionState, task: Task, result: ReasoningResult, ctx: NodeContext
    ) -> None:
        source = ExecutorNode.REASONING_EXECUTOR.value
        step = Step(thought=result.thought, tool_calls=result.tool_calls)
        task.append_step(step)

        speak = result.thought.speak if result.thought else ""
        message = state.add_message(
            "assistant",
            result.content or speak,
            from_node=source,
            tool_calls=to_openai_tool_calls(
                [ToolCall(id=c.tool_call_id, name=c.name, args=c.args) for c in step.tool_calls]
            ),
        )
        added = stm.add(state.memories.stm, [message], owner_id=task.id, step_id=step.id)
        if not added.success or added.data is None:
            self._record_stm_failure(state, "add", added.error)
            return
        state.memories = state.memories.model_copy(update={"stm": added.data})
        log.debug(STM_ITEM_ADDED, task_id=task.id, step_id=step.id, size=added.data.size)
        log.info(
            STEP_APPENDED,
            task_id=task.id,
            step_id=step.id,
            steps=len(task.steps),
            tool_calls=[c.name for c in step.tool_calls],
            trace_id=state.trace_id,
        )
        if result.thought is not None:
            ctx.emit(
                ChunkKind.REASONING,
                state.session_id,
                speak or result.thought.text,
                task_id=task.id,
                step_id=step.id,
            )

        if result.blocked_reason is not None:
            # A blocked step leaves no pending calls
            for call in step.pending_calls():
                call.complete(
                    _control_ack(call) if call.name == BLOCK_TASK else "Not executed: task blocked."
                )
            log.info(
                TASK_BLOCKED, task_id=task.id, reason=result.blocked_reason, trace_id=state.trace_id
            )
            handle_node_error(state, GraphErrorType.BLOCKED_TASK, result.blocked_reason, source)
            return

        if result.ends_task:
            task.status = TaskStatus.WAITING_VALIDATION
            log.info(TASK_ENDED, task_id=task.id, source=source, trace_id=state.trace_id)

        # Rejected tasks keep their retry count so repeated rejections end the run
        mark_success(state, reset_retry=not task.rejected)

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def tool_step(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit | None:
        """Complete the pending calls of the active task's last step.

        Action calls run through the invoker under one batch timeout;
        control calls complete locally; ask_human stays pending for the
        human node. Oversized results are summarized before they reach
        short-term memory.
        """
        source = ExecutorNode.TOOL_EXECUTOR.value
        task = state.current_task()
        step = task.last_step if task is not None else None
        if task is None or step is None:
            handle_node_error(state, GraphErrorType.EXECUTION_ERROR, "No step to execute", source)
            return None

        pending = [call for call in step.pending_calls() if call.name != ASK_HUMAN]
        local = [
            call
            for call in pending
            if self.registry.role_of(call.name) in (ToolRole.CONTROL, ToolRole.RESPONSE)
        ]
        actions = [call for call in pending if call not in local]

        for call in actions:
            ctx.emit(
                ChunkKind.TOOL_START,
                state.session_id,
                call.name,
                tool_call_id=call.tool_call_id,
                args=call.args,
            )
        try:
            results = await self.invoker.execute_batch(
                [{"id": c.tool_call_id, "name": c.name, "args": c.args} for c in actions],
                timeout_s=self.config.execution_timeout_ms / 1000,
                trace_ctx=ctx.trace_ctx,
            )
        except ToolBatchTimeout as e:
            handle_node_error(state, GraphErrorType.TIMEOUT_ERROR, e, source)
            return None

        batch = ToolBatchResult(results=results)
        tool_messages: list[dict[str, Any]] = []
        for call in local:
            call.complete(_control_ack(call))
            tool_messages.append(self._tool_message(state, call))

        for call, tool_result in zip(actions, batch.results):
            content = _result_text(tool_result)
            if estimate_tokens(content) >= self.config.limit_before_summarization:
                content = await self._summarize(state, ctx, call.name, content)
                batch.summarized.append(call.tool_call_id)
            call.complete(content)
            tool_messages.append(self._tool_message(state, call))
            ctx.emit(
                ChunkKind.TOOL_RESULT,
                state.session_id,
                content,
                tool_call_id=call.tool_call_id,
                tool_name=call.name,
                success=tool_result.success,
            )

        if tool_messages:
            updated = stm.update_last(state.memories.stm, tool_messages)
            if not updated.success or updated.data is None:
                self._record_stm_failure(state, "update_last", updated.error)
                return None
            state.memories = state.memories.model_copy(update={"stm": updated.data})

        mark_success(state, reset_retry=not task.rejected)
        return None

    @staticmethod
    def _tool_message(state: ExecutionState, call: ToolCallRecord) -> dict[str, Any]:
        return state.add_message(
            "tool",
            call.result or "",
            from_node=ExecutorNode.TOOL_EXECUTOR.value,
            tool_call_id=call.tool_call_id,
            name=call.name,
        )

    async def _summarize(
        self, state: ExecutionState, ctx: NodeContext, tool_name: str, content: str
    ) -> str:
        """Shorten an oversized tool result; falls back to truncation, never empty."""
        summary = ""
        try:
            handle = self.gateway.select_tier(ModelTier.CHEAP)
            response = await self.gateway.invoke(
                handle,
                build_summarization_messages(tool_name, content),
                usage_key=state.session_id,
                trace_ctx=ctx.trace_ctx,
            )
            summary = (response["content"] or "").strip()
        except TierUnavailableError:
            raise
        except LLMClientError as e:
            log.warning(
                TOOL_RESULT_SUMMARIZED,
                tool_name=tool_name,
                method="truncate",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=state.trace_id,
            )

        method = "model"
        if not summary or len(summary) >= len(content):
            summary = content[: self.config.limit_before_summarization] + _TRUNCATION_MARKER
            method = "truncate"
        log.info(
            TOOL_RESULT_SUMMARIZED,
            tool_name=tool_name,
            method=method,
            original_chars=len(content),
            summary_chars=len(summary),
            trace_id=state.trace_id,
        )
        return summary

    # ------------------------------------------------------------------
    # Human input
    # ------------------------------------------------------------------

    async def human_step(self, state: ExecutionState, ctx: NodeContext) -> SubgraphExit | None:
        """Suspend the run on a pending ask_human call."""
        task = state.current_task()
        step = task.last_step if task is not None else None
        call = None
        if step is not None:
            call = next((c for c in step.pending_calls() if c.name == ASK_HUMAN), None)
        if task is None or step is None or call is None:
            handle_node_error(
                state,
                GraphErrorType.EXECUTION_ERROR,
                "No pending human request",
                ExecutorNode.HUMAN.value,
            )
            return None

        interrupt = InterruptResult(
            prompt=str(call.args.get("question") or "Please advise."),
            tool_call_id=call.tool_call_id,
            task_id=task.id,
            step_id=step.id,
        )
        state.pending_interrupt = interrupt.model_dump()
        ctx.emit(
            ChunkKind.HUMAN_REQUEST,
            state.session_id,
            interrupt.prompt,
            tool_call_id=interrupt.tool_call_id,
            task_id=interrupt.task_id,
        )
        return SubgraphExit.INTERRUPT

    def resume_human(self, state: ExecutionState, reply: str) -> None:
        """Complete the suspended ask_human call with the human's reply.

        Args:
            state: Suspended execution state.
            reply: Human reply.

        Raises:
            ValueError: If the state has no pending request or it no longer
                matches a pending call.
        """
        if state.pending_interrupt is None:
            raise ValueError(f"Session {state.session_id} is not waiting for human input")
        interrupt = InterruptResult.model_validate(state.pending_interrupt)

        task = next((t for t in state.tasks if t.id == interrupt.task_id), None)
        step = None
        call = None
        if task is not None:
            step = next((s for s in task.steps if s.id == interrupt.step_id), None)
        if step is not None:
            call = next(
                (c for c in step.pending_calls() if c.tool_call_id == interrupt.tool_call_id),
                None,
            )
        if task is None or step is None or call is None:
            raise ValueError(f"Pending human request of session {state.session_id} is stale")

        call.complete(reply)
        message = state.add_message("assistant", reply, from_node=ExecutorNode.HUMAN.value)
        added = stm.add(state.memories.stm, [message], owner_id=task.id, step_id=step.id)
        if added.success and added.data is not None:
            state.memories = state.memories.model_copy(update={"stm": added.data})
        else:
            log.warning(STM_OPERATION_FAILED, operation="add", error=added.error)

        state.pending_interrupt = None
        state.last_node = ExecutorNode.HUMAN.value
        mark_success(state, reset_retry=not task.rejected)

    async def end_executor_graph(
        self, state: ExecutionState, ctx: NodeContext
    ) -> SubgraphExit | None:
        """Close the executor and end the run."""
        return hand_back(state)
