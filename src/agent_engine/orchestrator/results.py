"""Tagged results produced at the gateway boundary.

Raw model responses are turned into one of these variants as soon as they
come back, so nodes branch on a typed value rather than on message content.
Parsing failures raise DecisionError carrying the GraphErrorType that the
calling node should record.
"""

import re
import uuid
from typing import Any, Literal

import orjson
from pydantic import BaseModel, Field, ValidationError

from agent_engine.llm_client.types import ModelResponse, ToolCall
from agent_engine.orchestrator.types import (
    GraphErrorType,
    Task,
    TaskDirective,
    Thought,
    ToolCallRecord,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import INVALID_TOOL_CALLS_RECOVERED
from agent_engine.tools.control import (
    ASK_HUMAN,
    BLOCK_TASK,
    CREATE_TASK,
    DECISION_TOOL_NAMES,
    END_TASK,
    NO_PARAMS_KEY,
    RESPONSE_TASK,
)
from agent_engine.tools.registry import ToolRegistry
from agent_engine.tools.types import ToolResult, ToolRole

log = get_logger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


class DecisionError(Exception):
    """A model response that cannot be turned into a result variant."""

    def __init__(self, error_type: GraphErrorType, message: str) -> None:
        """Initialize with the error category to record.

        Args:
            error_type: GraphErrorType the node should record.
            message: Human-readable message.
        """
        super().__init__(message)
        self.error_type = error_type
        self.message = message


class ReasoningResult(BaseModel):
    """One executor reasoning turn."""

    kind: Literal["reasoning"] = "reasoning"
    content: str = ""
    thought: Thought | None = None
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    blocked_reason: str | None = None
    ends_task: bool = False
    human_question: str | None = None


class DecisionResult(BaseModel):
    """A planner or task manager decision."""

    kind: Literal["decision"] = "decision"
    action: Literal["create", "block", "end"]
    task: Task | None = None
    reason: str = ""
    tool_call_id: str = ""


class ToolBatchResult(BaseModel):
    """Outcome of one tool execution node."""

    kind: Literal["tool_batch"] = "tool_batch"
    results: list[ToolResult] = Field(default_factory=list)
    summarized: list[str] = Field(default_factory=list)


class InterruptResult(BaseModel):
    """A pending request for human input."""

    kind: Literal["interrupt"] = "interrupt"
    prompt: str
    tool_call_id: str
    task_id: str
    step_id: str


def _lenient_args(raw: str) -> dict[str, Any]:
    text = _CODE_FENCE.sub("", raw.strip())
    text = _TRAILING_COMMA.sub(r"\1", text)
    try:
        parsed = orjson.loads(text) if text else {}
    except orjson.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def effective_tool_calls(response: ModelResponse, trace_id: str | None = None) -> list[ToolCall]:
    """Tool calls of a response, recovered from invalid calls when there are none.

    Args:
        response: Normalized model response.
        trace_id: Trace identifier for telemetry.

    Returns:
        Parsed tool calls, possibly synthesized from invalid ones.
    """
    if response["tool_calls"] or not response["invalid_tool_calls"]:
        return list(response["tool_calls"])

    recovered = [
        ToolCall(
            id=invalid.get("id") or "",
            name=invalid["name"],
            args=_lenient_args(invalid["args"]),
        )
        for invalid in response["invalid_tool_calls"]
        if invalid.get("name")
    ]
    log.warning(
        INVALID_TOOL_CALLS_RECOVERED,
        count=len(recovered),
        names=[call["name"] for call in recovered],
        trace_id=trace_id,
    )
    return recovered


def normalize_call(call: ToolCall) -> ToolCallRecord:
    """Give a call an id and a non-empty argument object."""
    return ToolCallRecord(
        tool_call_id=call["id"] or str(uuid.uuid4()),
        name=call["name"],
        args=call["args"] if call["args"] else {NO_PARAMS_KEY: {}},
    )


def _reason_from(args: dict[str, Any], default: str) -> str:
    reason = args.get("reason") or args.get("reasoning") or args.get("summary")
    return str(reason) if reason else default


def parse_decision(response: ModelResponse, trace_id: str | None = None) -> DecisionResult:
    """Turn a planner or task manager response into a decision.

    Exactly one of create_task, block_task or end_task must be called.

    Args:
        response: Normalized model response.
        trace_id: Trace identifier for telemetry.

    Returns:
        The decision.

    Raises:
        DecisionError: WRONG_NUMBER_OF_TOOLS when not exactly one call is made,
            TOOL_ERROR for an unknown name or unusable create_task arguments.
    """
    calls = effective_tool_calls(response, trace_id)
    if len(calls) != 1:
        raise DecisionError(
            GraphErrorType.WRONG_NUMBER_OF_TOOLS,
            f"Expected exactly one of {list(DECISION_TOOL_NAMES)}, got {len(calls)} tool calls",
        )

    call = calls[0]
    name, args = call["name"], call["args"]
    call_id = call["id"] or str(uuid.uuid4())
    if name not in DECISION_TOOL_NAMES:
        raise DecisionError(GraphErrorType.TOOL_ERROR, f"Unknown decision tool '{name}'")

    if name == BLOCK_TASK:
        return DecisionResult(
            action="block", reason=_reason_from(args, "no reason given"), tool_call_id=call_id
        )
    if name == END_TASK:
        return DecisionResult(
            action="end", reason=_reason_from(args, "objective complete"), tool_call_id=call_id
        )

    # create_task
    try:
        thought = Thought.model_validate(args["thought"]) if args.get("thought") else None
        directive = (
            TaskDirective(
                directive=str(args["directive"]),
                success_check=str(args.get("success_check") or ""),
            )
            if args.get("directive")
            else None
        )
        task = Task(thought=thought, directive=directive)
    except (ValidationError, TypeError) as e:
        raise DecisionError(
            GraphErrorType.TOOL_ERROR, f"Invalid {CREATE_TASK} arguments: {e}"
        ) from e
    return DecisionResult(action="create", task=task, reason=task.text, tool_call_id=call_id)


def parse_reasoning(
    response: ModelResponse,
    registry: ToolRegistry,
    free_form: bool = False,
    trace_id: str | None = None,
) -> ReasoningResult:
    """Turn an executor response into a reasoning result.

    Unless free_form is set, the turn must call the response tool plus at
    least one other tool.

    Args:
        response: Normalized model response.
        registry: Registry used to classify tools by role.
        free_form: Skip the role requirement.
        trace_id: Trace identifier for telemetry.

    Returns:
        The reasoning result, with ids assigned and empty args normalized.

    Raises:
        DecisionError: WRONG_NUMBER_OF_TOOLS when the role requirement is not met.
    """
    calls = [normalize_call(call) for call in effective_tool_calls(response, trace_id)]

    response_calls = [c for c in calls if registry.role_of(c.name) == ToolRole.RESPONSE]
    other_calls = [c for c in calls if registry.role_of(c.name) != ToolRole.RESPONSE]
    if not free_form and (not response_calls or not other_calls):
        raise DecisionError(
            GraphErrorType.WRONG_NUMBER_OF_TOOLS,
            f"Expected {RESPONSE_TASK} plus at least one other tool, got "
            f"{[c.name for c in calls] or 'no tool calls'}",
        )

    thought: Thought | None = None
    if response_calls:
        thought_args = {
            k: v for k, v in response_calls[0].args.items() if k in Thought.model_fields
        }
        thought = Thought.model_validate({k: str(v) for k, v in thought_args.items()})

    blocked_reason: str | None = None
    human_question: str | None = None
    ends_task = False
    for call in calls:
        if call.name == BLOCK_TASK and blocked_reason is None:
            blocked_reason = _reason_from(call.args, "no reason given")
        elif call.name == END_TASK:
            ends_task = True
        elif call.name == ASK_HUMAN and human_question is None:
            human_question = str(call.args.get("question") or "").strip() or "Please advise."

    return ReasoningResult(
        content=response["content"],
        thought=thought,
        tool_calls=calls,
        blocked_reason=blocked_reason,
        ends_task=ends_task,
        human_question=human_question,
    )
