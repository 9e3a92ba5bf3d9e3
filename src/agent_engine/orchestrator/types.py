"""Core types for the orchestrator.

This module defines the data structures shared by every graph:
- Node identifiers for the top-level graph and each sub-graph
- Task / Step / ToolCallRecord: the append-only work log
- GraphError: the closed error taxonomy carried in state
- ExecutionState: mutable state container passed through every node
- RunResult: what the host gets back from a run
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator
from typing_extensions import TypedDict

from agent_engine.config.settings import AgentMode, ExecutionMode
from agent_engine.memory.models import Memories


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GraphNode(str, Enum):
    """Top-level graph nodes."""

    START = "start"
    PLANNING_ORCHESTRATOR = "planning_orchestrator"
    TASK_MANAGER = "task_manager"
    AGENT_EXECUTOR = "agent_executor"
    TASK_VERIFIER = "task_verifier"
    MEMORY_ORCHESTRATOR = "memory_orchestrator"
    END_GRAPH = "end_graph"


class PlannerNode(str, Enum):
    """Planner sub-graph nodes."""

    GET_PLANNER_STATUS = "get_planner_status"
    CREATE_INITIAL_HISTORY = "create_initial_history"
    CREATE_INITIAL_PLAN = "create_initial_plan"
    PLAN_REVISION = "plan_revision"
    EVOLVE_FROM_HISTORY = "evolve_from_history"
    PLANNER_VALIDATOR = "planner_validator"
    END_PLANNER_GRAPH = "end_planner_graph"
    END = "planner_end"


class TaskManagerNode(str, Enum):
    """Task manager sub-graph nodes."""

    CREATE_TASK = "create_task"
    END_TASK_MANAGER_GRAPH = "end_task_manager_graph"
    END = "task_manager_end"


class ExecutorNode(str, Enum):
    """Executor sub-graph nodes."""

    REASONING_EXECUTOR = "reasoning_executor"
    TOOL_EXECUTOR = "tool_executor"
    HUMAN = "human"
    END_EXECUTOR_GRAPH = "end_executor_graph"
    END = "executor_end"


class VerifierNode(str, Enum):
    """Task verifier sub-graph nodes."""

    VERIFY_TASK = "verify_task"
    TASK_SUCCESS_HANDLER = "task_success_handler"
    TASK_FAILURE_HANDLER = "task_failure_handler"
    END = "verifier_end"


class MemoryNode(str, Enum):
    """Memory sub-graph nodes."""

    LTM_MANAGER = "ltm_manager"
    RETRIEVE_MEMORY = "retrieve_memory"
    END_MEMORY_GRAPH = "end_memory_graph"
    END = "memory_end"


def node_in(node_enum: type[Enum], value: str | None) -> bool:
    """Whether a node name belongs to a node enum."""
    if not value:
        return False
    return any(member.value == value for member in node_enum)


# Prefix of the verification text of a task the verifier sent back
REJECTION_PREFIX = "[validation_error]"


class TaskStatus(str, Enum):
    """Lifecycle of a task."""

    PENDING = "pending"
    WAITING_VALIDATION = "waiting_validation"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class ToolCallStatus(str, Enum):
    """Lifecycle of a recorded tool call."""

    PENDING = "pending"
    COMPLETED = "completed"


class GraphErrorType(str, Enum):
    """Closed set of errors a node can leave in state."""

    WRONG_NUMBER_OF_TOOLS = "wrong_number_of_tools"
    BLOCKED_TASK = "blocked_task"
    EXECUTION_ERROR = "execution_error"
    TIMEOUT_ERROR = "timeout_error"
    TOOL_ERROR = "tool_error"
    TASK_ABORTED = "task_aborted"
    VALIDATION_ERROR = "validation_error"
    MEMORY_ERROR = "memory_error"


RETRYABLE_ERRORS: frozenset[GraphErrorType] = frozenset(
    {
        GraphErrorType.WRONG_NUMBER_OF_TOOLS,
        GraphErrorType.EXECUTION_ERROR,
        GraphErrorType.TIMEOUT_ERROR,
        GraphErrorType.TOOL_ERROR,
    }
)


@dataclass(frozen=True)
class GraphError:
    """Error recorded in state by the node that hit it.

    Attributes:
        type: Error category.
        message: Human-readable message.
        source: Node that produced the error.
        timestamp: When it happened (UTC).
        has_error: Always True; kept for hosts that check the flag.
    """

    type: GraphErrorType
    message: str
    source: str
    timestamp: datetime = field(default_factory=_utcnow)
    has_error: bool = True

    @property
    def retryable(self) -> bool:
        """Whether the failing node may be re-run."""
        return self.type in RETRYABLE_ERRORS


class Thought(BaseModel):
    """The model's stated thinking for a decision or turn."""

    text: str = ""
    reasoning: str = ""
    plan: str = ""
    criticism: str = ""
    speak: str = ""


class TaskDirective(BaseModel):
    """What a task must achieve and how to tell it is done."""

    directive: str = Field(..., min_length=1)
    success_check: str = ""


class ToolCallRecord(BaseModel):
    """A tool call made during a step.

    Only status and result change after creation, and only through complete().
    """

    tool_call_id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: str | None = None

    @model_validator(mode="after")
    def result_requires_completion(self) -> "ToolCallRecord":
        """A pending call cannot carry a result."""
        if self.result is not None and self.status != ToolCallStatus.COMPLETED:
            raise ValueError("result is only set on completed tool calls")
        return self

    def complete(self, result: str) -> None:
        """Mark the call completed with its result."""
        self.status = ToolCallStatus.COMPLETED
        self.result = result


class Step(BaseModel):
    """One reasoning turn of a task."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    thought: Thought | None = None
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    def pending_calls(self) -> list[ToolCallRecord]:
        """Tool calls still waiting for a result."""
        return [tc for tc in self.tool_calls if tc.status == ToolCallStatus.PENDING]


class Task(BaseModel):
    """A unit of work derived from the objective."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    thought: Thought | None = None
    directive: TaskDirective | None = None
    steps: list[Step] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    verification: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def needs_description(self) -> "Task":
        """A task must say what it is about."""
        if self.thought is None and self.directive is None:
            raise ValueError("a task needs a thought or a directive")
        return self

    @property
    def text(self) -> str:
        """Short description of the task."""
        if self.directive is not None:
            return self.directive.directive
        return self.thought.text if self.thought else ""

    @property
    def rejected(self) -> bool:
        """Whether the verifier sent the task back for more work."""
        return (self.verification or "").startswith(REJECTION_PREFIX)

    @property
    def last_step(self) -> Step | None:
        """Most recent step, if any."""
        return self.steps[-1] if self.steps else None

    def append_step(self, step: Step) -> None:
        """Record a step. Steps are never removed."""
        self.steps.append(step)


class SubgraphExit(str, Enum):
    """How a sub-graph run ended."""

    NORMAL = "normal"
    HANDOFF = "handoff"
    INTERRUPT = "interrupt"


@dataclass
class ExecutionState:
    """Mutable state container passed through every node.

    One instance per session. Nodes mutate it in place; a node that fails
    records a GraphError instead of raising.

    Attributes:
        session_id: Unique identifier for the session.
        objective: What the agent was asked to achieve.
        agent_mode: Autonomy mode of the run.
        execution_mode: Reactive, planning, or automatic (decided by the planner).
        memories: Short- and long-term memory for the session.
        trace_id: Trace identifier for telemetry correlation.
        messages: OpenAI-style messages, each with a "metadata" dict.
        tasks: Tasks in creation order (append-only).
        last_node: Value of the most recently executed node.
        current_graph_step: Number of graph steps taken so far.
        current_task_index: Index of the active task.
        retry: Consecutive failures of the current component.
        error: Last error left by a node, if any.
        handoff: Node a sub-graph asked the parent to jump to.
        pending_interrupt: Outstanding human-input request, if suspended.
    """

    session_id: str
    objective: str
    agent_mode: AgentMode
    execution_mode: ExecutionMode
    memories: Memories
    trace_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    messages: list[dict[str, Any]] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    last_node: str = GraphNode.START.value
    current_graph_step: int = 0
    current_task_index: int = 0
    retry: int = 0
    error: GraphError | None = None
    handoff: GraphNode | None = None
    pending_interrupt: dict[str, Any] | None = None

    def current_task(self) -> Task | None:
        """The active task: the most recently created one."""
        return self.tasks[-1] if self.tasks else None

    def add_message(
        self,
        role: str,
        content: str,
        from_node: str,
        final: bool = False,
        success: bool | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        """Append a message tagged with engine metadata.

        Args:
            role: Message role.
            content: Message content.
            from_node: Node that produced the message.
            final: Whether this message closes the run.
            success: Outcome flag read by validators' routers.
            **extra: Extra OpenAI fields (tool_calls, tool_call_id, name).

        Returns:
            The appended message.
        """
        metadata: dict[str, Any] = {"from": from_node, "final": final}
        if success is not None:
            metadata["success"] = success
        message = {"role": role, "content": content, **extra, "metadata": metadata}
        self.messages.append(message)
        return message

    def last_message(self) -> dict[str, Any] | None:
        """Most recent message, if any."""
        return self.messages[-1] if self.messages else None


class RunResult(TypedDict):
    """What a run hands back to the host.

    Fields:
        session_id: Session the run belongs to.
        status: completed, interrupted, aborted or failed.
        reply: Final user-facing text.
        interrupt: Human-input request payload when interrupted.
        error: Sanitized error message when failed.
        state: Final execution state, or None when the run crashed.
    """

    session_id: str
    status: str
    reply: str
    interrupt: dict[str, Any] | None
    error: str | None
    state: ExecutionState | None
