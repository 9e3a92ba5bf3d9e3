"""Control and response tools.

These tools never run through the invoker. The model calls them to tell the
engine what it decided: open a task, refuse one, declare one finished, ask
the human something, or describe its own thought for the turn.
"""

from agent_engine.tools.registry import ToolRegistry
from agent_engine.tools.types import ToolDefinition, ToolParameter, ToolRole

CREATE_TASK = "create_task"
BLOCK_TASK = "block_task"
END_TASK = "end_task"
ASK_HUMAN = "ask_human"
RESPONSE_TASK = "response_task"

# Empty tool arguments are replaced by this so every call carries an object
NO_PARAMS_KEY = "noParams"

_THOUGHT_SCHEMA = {
    "type": "object",
    "description": "Your reasoning for this decision",
    "properties": {
        "text": {"type": "string", "description": "One-line statement of the thought"},
        "reasoning": {"type": "string", "description": "Why this is the right move"},
        "plan": {"type": "string", "description": "Short bulleted plan"},
        "criticism": {"type": "string", "description": "Constructive self-criticism"},
        "speak": {"type": "string", "description": "Summary to show the user"},
    },
    "required": ["text", "reasoning"],
}

create_task_tool = ToolDefinition(
    name=CREATE_TASK,
    description="Create the next task needed to reach the objective.",
    role=ToolRole.CONTROL,
    parameters=[
        ToolParameter(
            name="directive",
            type="string",
            description="What the task must accomplish, as an instruction",
        ),
        ToolParameter(
            name="success_check",
            type="string",
            description="How to tell the task is done",
        ),
        ToolParameter(
            name="thought",
            type="object",
            description="Your reasoning for creating this task",
            required=False,
            json_schema=_THOUGHT_SCHEMA,
        ),
    ],
)

block_task_tool = ToolDefinition(
    name=BLOCK_TASK,
    description="Refuse or stop the current task because it cannot or must not be done.",
    role=ToolRole.CONTROL,
    parameters=[
        ToolParameter(name="reason", type="string", description="Why the task is blocked"),
    ],
)

end_task_tool = ToolDefinition(
    name=END_TASK,
    description="Declare the current task (or, while planning, the whole objective) finished.",
    role=ToolRole.CONTROL,
    parameters=[
        ToolParameter(
            name="summary",
            type="string",
            description="What was achieved",
            required=False,
        ),
    ],
)

ask_human_tool = ToolDefinition(
    name=ASK_HUMAN,
    description="Ask the human operator a question and wait for the answer.",
    role=ToolRole.CONTROL,
    parameters=[
        ToolParameter(name="question", type="string", description="The question to ask"),
    ],
)

response_task_tool = ToolDefinition(
    name=RESPONSE_TASK,
    description="Describe your thought for this turn. Call it alongside exactly the tools you use.",
    role=ToolRole.RESPONSE,
    parameters=[
        ToolParameter(name="text", type="string", description="One-line statement of the thought"),
        ToolParameter(name="reasoning", type="string", description="Why you act this way"),
        ToolParameter(name="plan", type="string", description="Short plan", required=False),
        ToolParameter(
            name="criticism", type="string", description="Self-criticism", required=False
        ),
        ToolParameter(
            name="speak", type="string", description="Summary to show the user", required=False
        ),
    ],
)

CONTROL_TOOLS: dict[str, ToolDefinition] = {
    tool.name: tool
    for tool in (
        create_task_tool,
        block_task_tool,
        end_task_tool,
        ask_human_tool,
        response_task_tool,
    )
}

# Decisions the planner and task manager choose between
DECISION_TOOL_NAMES: tuple[str, ...] = (CREATE_TASK, BLOCK_TASK, END_TASK)

# Control tools offered on every reasoning turn
EXECUTOR_CONTROL_TOOL_NAMES: tuple[str, ...] = (RESPONSE_TASK, END_TASK, BLOCK_TASK, ASK_HUMAN)


def register_control_tools(registry: ToolRegistry) -> None:
    """Register every control tool that the registry does not know yet.

    Args:
        registry: Registry to extend.
    """
    for tool_def in CONTROL_TOOLS.values():
        if registry.get_tool(tool_def.name) is None:
            registry.register(tool_def)
