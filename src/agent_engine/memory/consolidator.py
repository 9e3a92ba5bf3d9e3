"""Memory consolidation and retrieval.

The consolidator turns a finished task into long-term memories and loads
relevant long-term memories back into a session. Both operations are
best-effort: failures are logged and recorded on the session's memories,
never raised into the cycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import orjson

from agent_engine.llm_client.types import (
    LLMClientError,
    ModelTier,
    TierUnavailableError,
)
from agent_engine.memory import stm
from agent_engine.memory.ltm import LongTermMemory, update_context
from agent_engine.memory.models import Memories, MemoryScope, UpsertResult
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import (
    LTM_UPSERT_FAILED,
    MEMORY_CONSOLIDATED,
    MEMORY_RETRIEVED,
    STM_OPERATION_FAILED,
)
from agent_engine.tools.control import RESPONSE_TASK

if TYPE_CHECKING:
    from agent_engine.config.settings import EngineConfig
    from agent_engine.llm_client.gateway import ModelGateway
    from agent_engine.orchestrator.types import Task
    from agent_engine.telemetry.trace import TraceContext

log = get_logger(__name__)

EXTRACTION_SYSTEM_PROMPT = (
    "You extract memories from a finished task. Return JSON with two lists: "
    '"episodic" (objects with "content" describing what happened and "sources" '
    'naming the tools or inputs involved) and "semantic" (objects with "fact" '
    'stating a durable fact and "category"). Only keep information that would '
    "help with future tasks. Return empty lists when nothing is worth keeping."
)


def _preview(value: object, limit: int) -> str:
    if isinstance(value, str):
        text = value
    else:
        text = orjson.dumps(value, default=str).decode("utf-8")
    return text if len(text) <= limit else text[:limit] + "..."


def format_task_steps(task: Task, preview_length: int = 300) -> str:
    """Render a task and its steps as compact text.

    Each step renders as ``n.[text|reasoning];`` followed by one
    ``-tool(args) → status:result`` line per tool call. Calls to the
    response tool only carry the thought, so they are left out.

    Args:
        task: Task to render.
        preview_length: Characters kept from each argument object and result.

    Returns:
        Rendered text.
    """
    lines = [f"Task: {task.text}"]
    if task.directive is not None and task.directive.success_check:
        lines.append(f"Success check: {task.directive.success_check}")

    for index, step in enumerate(task.steps, start=1):
        text = step.thought.text if step.thought else ""
        reasoning = step.thought.reasoning if step.thought else ""
        lines.append(f"{index}.[{text}|{reasoning}];")
        for call in step.tool_calls:
            if call.name == RESPONSE_TASK:
                continue
            result = _preview(call.result, preview_length) if call.result is not None else ""
            lines.append(
                f"-{call.name}({_preview(call.args, preview_length)}) → "
                f"{call.status.value}:{result}"
            )
    return "\n".join(lines)


class MemoryConsolidator:
    """Moves task outcomes into long-term memory and back.

    Attributes:
        gateway: Model gateway used for memory extraction.
        ltm: Long-term memory service.
        config: Engine configuration (sizes, thresholds, default user).
    """

    def __init__(
        self,
        gateway: ModelGateway,
        ltm: LongTermMemory,
        config: EngineConfig | None = None,
    ) -> None:
        """Initialize the consolidator.

        Args:
            gateway: Model gateway.
            ltm: Long-term memory service.
            config: Engine configuration. If None, uses the settings singleton.
        """
        if config is None:
            from agent_engine.config.settings import get_settings  # noqa: PLC0415

            config = get_settings()
        self.gateway = gateway
        self.ltm = ltm
        self.config = config

    def format_task_steps(self, task: Task) -> str:
        """Render a task and its steps for memory extraction."""
        return format_task_steps(task, self.config.content_preview_length)

    async def consolidate(
        self,
        task: Task,
        session_id: str,
        objective: str,
        trace_ctx: TraceContext | None = None,
    ) -> UpsertResult | None:
        """Extract memories from a completed task and upsert them.

        Args:
            task: Completed task.
            session_id: Session the task ran in (stored as run_id).
            objective: Session objective, given to the model as context.
            trace_ctx: Trace context for telemetry.

        Returns:
            Upsert counts, or None when extraction or storage failed.

        Raises:
            TierUnavailableError: If no model is configured for the cheap tier.
        """
        from agent_engine.orchestrator.schemas import MemoryExtraction  # noqa: PLC0415

        trace_id = trace_ctx.trace_id if trace_ctx else None
        messages = [
            {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Objective: {objective}\n\n{self.format_task_steps(task)}",
            },
        ]
        try:
            extraction = await self.gateway.invoke_structured(
                ModelTier.CHEAP,
                messages,
                MemoryExtraction,
                usage_key=session_id,
                trace_ctx=trace_ctx,
            )
        except TierUnavailableError:
            raise
        except LLMClientError as e:
            log.warning(
                LTM_UPSERT_FAILED,
                stage="extraction",
                task_id=task.id,
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id,
            )
            return None

        scope = MemoryScope(
            user_id=self.config.default_user_id,
            run_id=session_id,
            task_id=task.id,
            step_id=task.last_step.id if task.last_step else None,
        )
        episodic = extraction.episodic[: self.config.max_insert_episodic_size]
        semantic = extraction.semantic[: self.config.max_insert_semantic_size]
        try:
            result = await self.ltm.upsert(scope, episodic, semantic)
        except Exception as e:
            # Embedder or host store; a failed write never fails the cycle
            log.warning(
                LTM_UPSERT_FAILED,
                stage="upsert",
                task_id=task.id,
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id,
            )
            return None

        log.info(
            MEMORY_CONSOLIDATED,
            task_id=task.id,
            session_id=session_id,
            episodic=len(episodic),
            semantic=len(semantic),
            inserted=result.inserted,
            merged=result.merged,
            trace_id=trace_id,
        )
        return result

    async def retrieve(
        self,
        memories: Memories,
        request: str,
        trace_ctx: TraceContext | None = None,
    ) -> Memories:
        """Load long-term memories relevant to a request.

        Results already represented in the recent short-term window (same
        step or same task) are dropped. Calling this twice with unchanged
        memories yields the same context.

        Args:
            memories: Current session memories.
            request: Text to search for.
            trace_ctx: Trace context for telemetry.

        Returns:
            Memories with a refreshed long-term context, or with last_error
            set when retrieval failed.
        """
        trace_id = trace_ctx.trace_id if trace_ctx else None
        recent = stm.get_recent(memories.stm, self.config.recent_memories_limit)
        if not recent.success or recent.data is None:
            log.warning(STM_OPERATION_FAILED, operation="get_recent", error=recent.error)
            return memories.model_copy(update={"last_error": recent.error})

        known_ids: set[str] = set()
        for item in recent.data:
            known_ids.add(item.memories_id)
            if item.step_id:
                known_ids.add(item.step_id)

        try:
            results = await self.ltm.search(
                request,
                user_id=self.config.default_user_id,
                top_k=self.config.max_retrieve_memory_size,
                min_similarity=self.config.similarity_threshold,
            )
        except Exception as e:
            log.warning(
                MEMORY_RETRIEVED,
                success=False,
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id,
            )
            return memories.model_copy(update={"last_error": str(e)})

        fresh = [
            item
            for item in results
            if item.step_id not in known_ids and item.task_id not in known_ids
        ]
        updated = update_context(memories.ltm, fresh)
        if not updated.success or updated.data is None:
            return memories.model_copy(update={"last_error": updated.error})

        log.info(
            MEMORY_RETRIEVED,
            success=True,
            found=len(results),
            kept=len(fresh),
            trace_id=trace_id,
        )
        return memories.model_copy(update={"ltm": updated.data, "last_error": None})
