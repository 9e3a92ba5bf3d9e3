"""Prompts and prompt builders for the planner, task manager, executor and verifier.

Builders return OpenAI-style message lists. Context blocks (task history,
short-term memory, long-term memory, tool list) are formatted here so every
component renders them the same way.
"""

from typing import Any
from xml.sax.saxutils import escape, quoteattr

import orjson

from agent_engine.memory import stm
from agent_engine.memory.ltm import format_ltm_context
from agent_engine.orchestrator.types import ExecutionState, Task
from agent_engine.tools.control import ASK_HUMAN
from agent_engine.tools.registry import ToolRegistry
from agent_engine.tools.types import ToolDefinition, ToolRole

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}

# ============================================================================
# System prompts
# ============================================================================

PLANNER_ACTIVATION_PROMPT = """You decide whether an objective needs an explicit plan.

Answer with JSON: {"planner_activated": true|false, "reason": "one sentence"}.

Activate the planner when the objective has several dependent parts, needs
tools in a specific order, or is ambiguous enough that a plan avoids wasted work.
Do not activate it for greetings, single questions or one-step actions."""

PLANNER_SYSTEM_PROMPT = """You are the planner of an autonomous agent.

Turn the objective into the next task the agent should work on. Call exactly
one tool:
- create_task: the next task, with a precise directive and a success check
- block_task: the objective cannot or must not be pursued (give the reason)
- end_task: the objective is already achieved

Use the task history to avoid repeating finished or blocked work. Prefer
small tasks that can be verified."""

PLAN_REVISION_PROMPT = """The previous plan was rejected by the validator.

Rejection reason: {reason}

Produce a corrected next task following the same rules."""

PLAN_EVOLUTION_PROMPT = """Earlier tasks have finished. Decide the next task from what
has been learned so far, or end the objective if it is achieved."""

PLAN_VALIDATOR_PROMPT = """You validate a task proposed for an objective.

Answer with JSON: {"success": true|false, "reason": "one sentence"}.

A valid task moves the objective forward, is concrete enough to act on, can
be checked for completion, and does not repeat finished work."""

TASK_MANAGER_SYSTEM_PROMPT = """You are the task manager of an AI agent.

Break the objective down into the next concrete task. Call exactly one tool:
- create_task: the next task, with a directive and a success check
- block_task: the objective cannot or must not be pursued (give the reason)
- end_task: every part of the objective is done

Available tools the executor can use for the task:
{tools}"""

EXECUTOR_SYSTEM_PROMPT = """You are an AI agent working on one task at a time.

On every turn call response_task with your thought (text, reasoning, plan,
criticism, speak) together with at least one other tool:
- the action tools you need for the task
- end_task once the success check is met
- block_task if the task cannot or must not be done (give the reason)
- ask_human if you need information only the user has"""

EXECUTOR_FREE_FORM_PROMPT = """You are an AI agent working on one task at a time.

Use the action tools you need. Call end_task once the success check is met,
block_task if the task cannot or must not be done, and ask_human if you need
information only the user has."""

VERIFIER_SYSTEM_PROMPT = """You verify whether an agent really finished a task.

Answer with JSON: {"task_completed": true|false, "confidence_score": 0-100,
"reasoning": "...", "missing_elements": [...], "next_actions": [...]}.

Judge against the success check using the recorded steps and tool results
only. Do not give credit for work that is claimed but not shown."""

SUMMARIZATION_PROMPT = """Summarize the following tool output so an agent can keep
working with it. Keep every identifier, number, error and fact that could
matter; drop repetition and formatting noise."""


# ============================================================================
# Context formatting
# ============================================================================


def _xml(text: str) -> str:
    return escape(text, _XML_ENTITIES)


def _human_exchange(task: Task) -> tuple[str, str] | None:
    """Last answered ask_human request of a task, as (question, answer)."""
    for step in reversed(task.steps):
        for call in reversed(step.tool_calls):
            if call.name == ASK_HUMAN and call.result is not None:
                return str(call.args.get("question", "")), call.result
    return None


def format_tasks_history(tasks: list[Task]) -> str:
    """Render tasks as an XML-escaped ``<tasks-history>`` block.

    Args:
        tasks: Tasks in creation order.

    Returns:
        The rendered block (with a placeholder comment when there are no tasks).
    """
    if not tasks:
        return "<tasks-history>\n  <!-- No tasks available -->\n</tasks-history>"

    lines = ["<tasks-history>"]
    for task in tasks:
        lines.append(f"  <task name={quoteattr(task.text)} id={quoteattr(task.id)}>")
        lines.append(f"    <status>{_xml(task.status.value)}</status>")
        if task.verification:
            lines.append(
                f"    <verification_result>{_xml(task.verification)}</verification_result>"
            )
        else:
            exchange = _human_exchange(task)
            if exchange is not None:
                lines.append(f"    <ai_request>{_xml(exchange[0])}</ai_request>")
                lines.append(f"    <human_response>{_xml(exchange[1])}</human_response>")
        lines.append("  </task>")
    lines.append("</tasks-history>")
    return "\n".join(lines)


def format_tools_for_prompt(tools: list[ToolDefinition]) -> str:
    """Render tool definitions as indented JSON for a prompt."""
    entries: list[dict[str, Any]] = [
        {
            "index": index,
            "name": tool.name,
            "description": tool.description,
            "properties": {
                param.name: {"type": param.type, "description": param.description}
                for param in tool.parameters
            },
        }
        for index, tool in enumerate(tools)
    ]
    return orjson.dumps(entries, option=orjson.OPT_INDENT_2).decode("utf-8")


def format_context(state: ExecutionState, max_chars_per_message: int | None = None) -> str:
    """Render the session's task history and memories."""
    sections = [format_tasks_history(state.tasks)]
    stm_text = stm.format_for_history(state.memories.stm, max_chars_per_message)
    if stm_text:
        sections.append(f"<short-term-memory>\n{stm_text}\n</short-term-memory>")
    ltm_text = format_ltm_context(state.memories.ltm)
    if ltm_text:
        sections.append(f"<long-term-memory>\n{ltm_text}\n</long-term-memory>")
    return "\n\n".join(sections)


def format_task(task: Task) -> str:
    """Render the active task's directive and success check."""
    lines = [f"Task: {task.text}"]
    if task.directive is not None and task.directive.success_check:
        lines.append(f"Success check: {task.directive.success_check}")
    if task.thought is not None and task.thought.plan:
        lines.append(f"Plan: {task.thought.plan}")
    return "\n".join(lines)


# ============================================================================
# Message builders
# ============================================================================


def build_activation_messages(objective: str) -> list[dict[str, Any]]:
    """Messages asking whether the objective needs a plan."""
    return [
        {"role": "system", "content": PLANNER_ACTIVATION_PROMPT},
        {"role": "user", "content": f"Objective: {objective}"},
    ]


def build_planner_messages(
    state: ExecutionState,
    registry: ToolRegistry,
    instruction: str | None = None,
    max_chars_per_message: int | None = None,
) -> list[dict[str, Any]]:
    """Messages for creating, revising or evolving a plan.

    Args:
        state: Current execution state.
        registry: Registry whose action tools are listed as capabilities.
        instruction: Extra instruction (revision reason or evolution note).
        max_chars_per_message: Truncation for short-term memory messages.

    Returns:
        Message list.
    """
    tools = format_tools_for_prompt(registry.list_tools(role=ToolRole.ACTION))
    user = [
        f"Objective: {state.objective}",
        f"Tools the agent can use:\n{tools}",
        format_context(state, max_chars_per_message),
    ]
    if instruction:
        user.append(instruction)
    return [
        {"role": "system", "content": PLANNER_SYSTEM_PROMPT},
        {"role": "user", "content": "\n\n".join(user)},
    ]


def build_validation_messages(objective: str, task: Task) -> list[dict[str, Any]]:
    """Messages asking whether a proposed task is a valid plan."""
    return [
        {"role": "system", "content": PLAN_VALIDATOR_PROMPT},
        {"role": "user", "content": f"Objective: {objective}\n\n{format_task(task)}"},
    ]


def build_task_manager_messages(
    state: ExecutionState,
    registry: ToolRegistry,
    max_chars_per_message: int | None = None,
) -> list[dict[str, Any]]:
    """Messages for the task manager's next decision."""
    tools = format_tools_for_prompt(registry.list_tools(role=ToolRole.ACTION))
    user = [f"Objective: {state.objective}", format_context(state, max_chars_per_message)]
    if state.error is not None:
        user.append(f"The previous attempt failed due to: {state.error.message}")
    return [
        {"role": "system", "content": TASK_MANAGER_SYSTEM_PROMPT.format(tools=tools)},
        {"role": "user", "content": "\n\n".join(user)},
    ]


def build_executor_messages(
    state: ExecutionState,
    task: Task,
    free_form: bool = False,
    max_chars_per_message: int | None = None,
) -> list[dict[str, Any]]:
    """Messages for one reasoning turn on the active task."""
    user = [
        f"Objective: {state.objective}",
        format_task(task),
        format_context(state, max_chars_per_message),
    ]
    if state.error is not None:
        user.append(f"Your previous turn was rejected: {state.error.message}")
    if task.rejected:
        user.append(f"The task was sent back after review:\n{task.verification}")
    return [
        {
            "role": "system",
            "content": EXECUTOR_FREE_FORM_PROMPT if free_form else EXECUTOR_SYSTEM_PROMPT,
        },
        {"role": "user", "content": "\n\n".join(user)},
    ]


def build_verifier_messages(task: Task, steps_text: str) -> list[dict[str, Any]]:
    """Messages asking whether a task is really complete."""
    return [
        {"role": "system", "content": VERIFIER_SYSTEM_PROMPT},
        {"role": "user", "content": f"{format_task(task)}\n\nRecorded steps:\n{steps_text}"},
    ]


def build_summarization_messages(tool_name: str, content: str) -> list[dict[str, Any]]:
    """Messages asking for a summary of an oversized tool result."""
    return [
        {"role": "system", "content": SUMMARIZATION_PROMPT},
        {"role": "user", "content": f"Output of {tool_name}:\n\n{content}"},
    ]
