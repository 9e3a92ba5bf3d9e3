"""Tests for the task verifier sub-graph."""

import pytest

from agent_engine.config.settings import EngineConfig
from agent_engine.llm_client.gateway import ModelGateway
from agent_engine.llm_client.types import LLMTimeout, ModelTier
from agent_engine.orchestrator.graph import NodeContext
from agent_engine.orchestrator.schemas import TaskVerification
from agent_engine.orchestrator.types import (
    REJECTION_PREFIX,
    ExecutionState,
    GraphErrorType,
    Step,
    SubgraphExit,
    Task,
    TaskDirective,
    TaskStatus,
    Thought,
    ToolCallRecord,
)
from agent_engine.orchestrator.verifier import TaskVerifier, format_verdict

from conftest import ScriptedBackend


@pytest.fixture
def verifier(gateway: ModelGateway, config: EngineConfig) -> TaskVerifier:
    """Verifier wired to the scripted gateway."""
    return TaskVerifier(gateway, config)


@pytest.fixture
def task(state: ExecutionState) -> Task:
    """A task the executor declared finished."""
    search = ToolCallRecord(tool_call_id="c1", name="search", args={"query": "paris"})
    search.complete("sunny, 21C")
    task = Task(
        directive=TaskDirective(directive="Find the weather", success_check="A forecast"),
        steps=[Step(thought=Thought(text="Search", reasoning="Need data"), tool_calls=[search])],
        status=TaskStatus.WAITING_VALIDATION,
    )
    state.tasks.append(task)
    return task


def test_format_verdict() -> None:
    """Test findings are rendered line by line."""
    verdict = TaskVerification(
        task_completed=False,
        confidence_score=40,
        reasoning="No forecast shown",
        missing_elements=["temperature", "source"],
        next_actions=["search again"],
    )

    assert format_verdict(verdict).splitlines() == [
        "No forecast shown (confidence 40)",
        "Missing: temperature; source",
        "Next: search again",
    ]


class TestTaskVerifier:
    """Test accepting and rejecting finished tasks."""

    @pytest.mark.asyncio
    async def test_accepts(
        self,
        verifier: TaskVerifier,
        backend: ScriptedBackend,
        state: ExecutionState,
        task: Task,
        ctx: NodeContext,
    ) -> None:
        """Test a confident verdict completes the task."""
        state.retry = 1
        backend.add(ModelTier.CHEAP, backend.verdict(completed=True, score=90))

        outcome = await verifier.run(state, ctx)

        assert outcome == SubgraphExit.NORMAL
        assert task.status == TaskStatus.COMPLETED
        assert task.verification == "Looks done (confidence 90)"
        assert state.retry == 0
        assert state.last_node == "task_success_handler"
        prompt = backend.calls_for(ModelTier.CHEAP)[0]["messages"][1]["content"]
        assert "Success check: A forecast" in prompt
        assert "search" in prompt and "sunny, 21C" in prompt

    @pytest.mark.asyncio
    async def test_low_confidence_rejects(
        self,
        verifier: TaskVerifier,
        backend: ScriptedBackend,
        state: ExecutionState,
        task: Task,
        ctx: NodeContext,
    ) -> None:
        """Test a completed verdict below the threshold still sends the task back."""
        backend.add(ModelTier.CHEAP, backend.verdict(completed=True, score=50))

        await verifier.run(state, ctx)

        assert task.status == TaskStatus.PENDING
        assert task.rejected
        assert state.retry == 1

    @pytest.mark.asyncio
    async def test_rejects_with_findings(
        self,
        verifier: TaskVerifier,
        backend: ScriptedBackend,
        state: ExecutionState,
        task: Task,
        ctx: NodeContext,
    ) -> None:
        """Test a rejection keeps the findings on the task and leaves no session error."""
        backend.add(ModelTier.CHEAP, backend.verdict(completed=False, score=80))

        outcome = await verifier.run(state, ctx)

        assert outcome == SubgraphExit.NORMAL
        assert task.status == TaskStatus.PENDING
        assert task.verification is not None
        assert task.verification.startswith(REJECTION_PREFIX)
        assert "Missing: the answer" in task.verification
        assert state.error is None
        assert state.last_node == "task_failure_handler"

    @pytest.mark.asyncio
    async def test_model_failure(
        self,
        verifier: TaskVerifier,
        backend: ScriptedBackend,
        state: ExecutionState,
        task: Task,
        ctx: NodeContext,
    ) -> None:
        """Test a gateway failure leaves the task waiting and records a retryable error."""
        backend.add(ModelTier.CHEAP, LLMTimeout("slow"))

        await verifier.run(state, ctx)

        assert task.status == TaskStatus.WAITING_VALIDATION
        assert state.error is not None
        assert state.error.type == GraphErrorType.EXECUTION_ERROR
        assert state.last_node == "verify_task"
