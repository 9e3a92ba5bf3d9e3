"""Fixtures for orchestrator tests: a scripted model backend and engine wiring."""

import itertools
from typing import Any

import orjson
import pytest

from agent_engine.config.settings import AgentMode, EngineConfig, ExecutionMode
from agent_engine.llm_client.gateway import ModelGateway
from agent_engine.llm_client.models import ModelConfig, TierDefinition
from agent_engine.llm_client.types import ModelResponse, ModelTier, TokenUsage, ToolCall
from agent_engine.memory import stm
from agent_engine.memory.models import Memories
from agent_engine.orchestrator.graph import NodeContext
from agent_engine.orchestrator.streaming import StreamChannel
from agent_engine.orchestrator.types import ExecutionState
from agent_engine.telemetry.trace import TraceContext
from agent_engine.tools.control import register_control_tools
from agent_engine.tools.registry import ToolRegistry
from agent_engine.tools.types import ToolDefinition, ToolParameter

# Content string, (tool name, args) calls, JSON object, or an exception to raise
Reply = str | list[tuple[str, dict[str, Any]]] | dict[str, Any] | Exception


class ScriptedBackend:
    """Model backend replaying scripted replies per tier.

    Queued replies are consumed in order; once a tier's queue is empty its
    default reply (if any) is returned for every further call.
    """

    def __init__(self) -> None:
        self.queues: dict[ModelTier, list[Reply]] = {tier: [] for tier in ModelTier}
        self.defaults: dict[ModelTier, Reply] = {}
        self.calls: list[dict[str, Any]] = []
        self._ids = itertools.count(1)

    def add(self, tier: ModelTier, *replies: Reply) -> "ScriptedBackend":
        """Queue replies for a tier."""
        self.queues[tier].extend(replies)
        return self

    def default(self, tier: ModelTier, reply: Reply) -> "ScriptedBackend":
        """Set the reply used once a tier's queue is empty."""
        self.defaults[tier] = reply
        return self

    def calls_for(self, tier: ModelTier) -> list[dict[str, Any]]:
        """Recorded calls served by a tier."""
        return [call for call in self.calls if call["tier"] == tier]

    @staticmethod
    def thought(
        text: str = "Working on it", reasoning: str = "It is needed", speak: str = ""
    ) -> tuple[str, dict[str, Any]]:
        """A response_task call carrying a thought."""
        return ("response_task", {"text": text, "reasoning": reasoning, "speak": speak})

    @staticmethod
    def create_task(directive: str, success_check: str = "It is done") -> list[tuple[str, Any]]:
        """A single create_task decision."""
        return [("create_task", {"directive": directive, "success_check": success_check})]

    @staticmethod
    def verdict(completed: bool = True, score: int = 90, reasoning: str = "Looks done") -> dict:
        """A verifier verdict."""
        return {
            "task_completed": completed,
            "confidence_score": score,
            "reasoning": reasoning,
            "missing_elements": [] if completed else ["the answer"],
            "next_actions": [] if completed else ["search again"],
        }

    async def complete(
        self,
        tier: ModelTier,
        tier_def: TierDefinition,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
        response_format: dict[str, Any] | None = None,
        trace_ctx: TraceContext | None = None,
    ) -> ModelResponse:
        self.calls.append(
            {
                "tier": tier,
                "messages": messages,
                "tools": [tool["function"]["name"] for tool in tools or []],
                "tool_choice": tool_choice,
                "response_format": response_format,
            }
        )
        if self.queues[tier]:
            reply = self.queues[tier].pop(0)
        elif tier in self.defaults:
            reply = self.defaults[tier]
        else:
            raise AssertionError(f"No scripted reply for tier {tier.value}")

        if isinstance(reply, Exception):
            raise reply
        content = ""
        tool_calls: list[ToolCall] = []
        if isinstance(reply, str):
            content = reply
        elif isinstance(reply, dict):
            content = orjson.dumps(reply).decode("utf-8")
        else:
            tool_calls = [
                ToolCall(id=f"call_{next(self._ids)}", name=name, args=dict(args))
                for name, args in reply
            ]
        return ModelResponse(
            role="assistant",
            content=content,
            tool_calls=tool_calls,
            invalid_tool_calls=[],
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            usage_estimated=False,
            tier=tier.value,
            model_id=tier_def.id,
            raw={},
        )


@pytest.fixture
def config() -> EngineConfig:
    """Engine config with small budgets."""
    return EngineConfig(
        agent_mode=AgentMode.INTERACTIVE,
        execution_mode=ExecutionMode.REACTIVE,
        max_retries=2,
        max_steps=40,
        max_graph_steps=60,
        max_iterations=5,
        limit_before_summarization=200,
        similarity_threshold=0.1,
        default_user_id="tester",
    )


@pytest.fixture
def model_config() -> ModelConfig:
    """All three tiers bound to test models."""
    return ModelConfig(
        tiers={
            ModelTier.FAST: TierDefinition(id="test-fast"),
            ModelTier.SMART: TierDefinition(id="test-smart"),
            ModelTier.CHEAP: TierDefinition(id="test-cheap"),
        }
    )


@pytest.fixture
def backend() -> ScriptedBackend:
    """Scripted backend with nothing queued."""
    return ScriptedBackend()


@pytest.fixture
def gateway(model_config: ModelConfig, backend: ScriptedBackend) -> ModelGateway:
    """Gateway serving every tier from the scripted backend."""
    return ModelGateway(model_config, backend)


@pytest.fixture
def registry() -> ToolRegistry:
    """Registry with a search tool, a verbose fetch tool and the control tools."""
    reg = ToolRegistry()

    async def search(query: str) -> str:
        return f"results for {query}"

    def fetch_page(url: str) -> str:
        return f"<html>{url}</html> " + "lorem ipsum dolor sit amet " * 200

    reg.register(
        ToolDefinition(
            name="search",
            description="Search the web",
            parameters=[ToolParameter(name="query", type="string", description="Query")],
        ),
        search,
    )
    reg.register(
        ToolDefinition(
            name="fetch_page",
            description="Fetch a web page",
            parameters=[ToolParameter(name="url", type="string", description="URL")],
        ),
        fetch_page,
    )
    register_control_tools(reg)
    return reg


@pytest.fixture
def state(config: EngineConfig) -> ExecutionState:
    """Fresh reactive interactive session state."""
    ring = stm.create_empty(config.stm_max_size).data
    assert ring is not None
    return ExecutionState(
        session_id="session-1",
        objective="Find the weather in Paris",
        agent_mode=AgentMode.INTERACTIVE,
        execution_mode=ExecutionMode.REACTIVE,
        memories=Memories(stm=ring),
    )


@pytest.fixture
def channel() -> StreamChannel:
    """Open stream channel."""
    return StreamChannel()


@pytest.fixture
def ctx(channel: StreamChannel) -> NodeContext:
    """Node context streaming into the channel fixture."""
    return NodeContext(trace_ctx=TraceContext.new_trace("session-1"), channel=channel)
