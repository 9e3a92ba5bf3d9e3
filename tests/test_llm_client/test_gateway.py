"""Tests for ModelGateway."""

from typing import Any

import pytest
from pydantic import BaseModel

from agent_engine.llm_client.adapters import adapt_chat_completions_response
from agent_engine.llm_client.gateway import (
    ModelGateway,
    parse_structured,
    schema_response_format,
)
from agent_engine.llm_client.models import ModelConfig, TierDefinition
from agent_engine.llm_client.types import (
    Criticality,
    ModelResponse,
    ModelTier,
    StructuredOutputError,
    TierUnavailableError,
)
from agent_engine.llm_client.usage import UsageTracker


class Verdict(BaseModel):
    ok: bool
    score: int


class RecordingBackend:
    """Backend returning canned content and remembering each call."""

    def __init__(self, content: str = "done", usage: dict[str, int] | None = None) -> None:
        self.content = content
        self.usage = usage
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        tier: ModelTier,
        tier_def: TierDefinition,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
        response_format: dict[str, Any] | None = None,
        trace_ctx: Any = None,
    ) -> ModelResponse:
        self.calls.append(
            {"tier": tier, "model": tier_def.id, "tools": tools, "response_format": response_format}
        )
        payload: dict[str, Any] = {"choices": [{"message": {"content": self.content}}]}
        if self.usage is not None:
            payload["usage"] = self.usage
        return adapt_chat_completions_response(payload, tier=tier.value, model_id=tier_def.id)


def _config(*tiers: ModelTier) -> ModelConfig:
    return ModelConfig(tiers={tier: TierDefinition(id=f"model-{tier.value}") for tier in tiers})


class TestSelectTier:
    """Test tier resolution."""

    @pytest.mark.parametrize(
        ("selector", "expected"),
        [
            (ModelTier.SMART, ModelTier.SMART),
            (Criticality.LOW, ModelTier.CHEAP),
            (Criticality.NORMAL, ModelTier.FAST),
            (Criticality.HIGH, ModelTier.SMART),
            ("FAST", ModelTier.FAST),
            ("low", ModelTier.CHEAP),
        ],
    )
    def test_selectors(self, selector: Any, expected: ModelTier) -> None:
        """Test tiers, criticalities and their names all resolve."""
        gateway = ModelGateway(
            _config(ModelTier.FAST, ModelTier.SMART, ModelTier.CHEAP), RecordingBackend()
        )

        handle = gateway.select_tier(selector)

        assert handle.tier == expected
        assert handle.model_id == f"model-{expected.value}"

    def test_missing_tier(self) -> None:
        """Test an unconfigured tier raises TierUnavailableError."""
        gateway = ModelGateway(_config(ModelTier.FAST), RecordingBackend())

        with pytest.raises(TierUnavailableError, match="smart"):
            gateway.select_tier(ModelTier.SMART)

    def test_fallback(self) -> None:
        """Test fallback picks the first configured tier in fallback order."""
        gateway = ModelGateway(_config(ModelTier.FAST, ModelTier.SMART), RecordingBackend())

        handle = gateway.select_tier(ModelTier.CHEAP, allow_fallback=True)

        assert handle.tier == ModelTier.FAST

    def test_fallback_with_nothing_configured(self) -> None:
        """Test fallback still fails when no tier is configured."""
        gateway = ModelGateway(_config(), RecordingBackend())

        with pytest.raises(TierUnavailableError):
            gateway.select_tier(ModelTier.FAST, allow_fallback=True)

    def test_unknown_selector(self) -> None:
        """Test a name that is neither a tier nor a criticality."""
        gateway = ModelGateway(_config(ModelTier.FAST), RecordingBackend())

        with pytest.raises(TierUnavailableError, match="Unknown"):
            gateway.select_tier("turbo")

    def test_available_tiers(self) -> None:
        """Test available_tiers lists configured tiers."""
        gateway = ModelGateway(_config(ModelTier.FAST, ModelTier.CHEAP), RecordingBackend())

        assert set(gateway.available_tiers()) == {ModelTier.FAST, ModelTier.CHEAP}


class TestInvoke:
    """Test invocation and usage accounting."""

    @pytest.mark.asyncio
    async def test_reported_usage_is_recorded(self) -> None:
        """Test provider usage is recorded under the tier and key."""
        usage = {"prompt_tokens": 8, "completion_tokens": 2, "total_tokens": 10}
        tracker = UsageTracker()
        gateway = ModelGateway(_config(ModelTier.FAST), RecordingBackend(usage=usage), tracker)

        response = await gateway.invoke(
            gateway.select_tier(ModelTier.FAST),
            [{"role": "user", "content": "hi"}],
            usage_key="session-1",
        )

        assert response["usage"]["total_tokens"] == 10
        assert response["usage_estimated"] is False
        assert tracker.total_for("session-1") == 10
        assert tracker.by_tier()["fast"]["total_tokens"] == 10
        assert tracker.estimated_calls == 0

    @pytest.mark.asyncio
    async def test_missing_usage_is_estimated(self) -> None:
        """Test usage is estimated when the provider reports none."""
        tracker = UsageTracker()
        gateway = ModelGateway(
            _config(ModelTier.CHEAP), RecordingBackend(content="a short answer"), tracker
        )

        response = await gateway.invoke(
            gateway.select_tier(ModelTier.CHEAP),
            [{"role": "user", "content": "tell me something"}],
            usage_key="s",
        )

        assert response["usage_estimated"] is True
        assert response["usage"]["total_tokens"] > 0
        assert tracker.total_for("s") == response["usage"]["total_tokens"]
        assert tracker.estimated_calls == 1

    @pytest.mark.asyncio
    async def test_schema_is_parsed(self) -> None:
        """Test a schema request sends a json_schema format and parses the output."""
        backend = RecordingBackend(content='{"ok": true, "score": 90}')
        gateway = ModelGateway(_config(ModelTier.CHEAP), backend)

        response = await gateway.invoke(
            gateway.select_tier(ModelTier.CHEAP), [], schema=Verdict
        )

        assert response["parsed"] == Verdict(ok=True, score=90)
        assert backend.calls[0]["response_format"]["type"] == "json_schema"

    @pytest.mark.asyncio
    async def test_schema_mismatch_raises(self) -> None:
        """Test output that does not match the schema raises StructuredOutputError."""
        gateway = ModelGateway(_config(ModelTier.CHEAP), RecordingBackend(content="nope"))

        with pytest.raises(StructuredOutputError):
            await gateway.invoke(gateway.select_tier(ModelTier.CHEAP), [], schema=Verdict)

    @pytest.mark.asyncio
    async def test_invoke_structured(self) -> None:
        """Test invoke_structured selects by criticality and returns the model."""
        backend = RecordingBackend(content='```json\n{"ok": false, "score": 10}\n```')
        gateway = ModelGateway(_config(ModelTier.CHEAP), backend)

        verdict = await gateway.invoke_structured(Criticality.LOW, [], Verdict)

        assert verdict == Verdict(ok=False, score=10)
        assert backend.calls[0]["tier"] == ModelTier.CHEAP


class TestParseStructured:
    """Test structured output parsing."""

    def test_bare_json(self) -> None:
        """Test bare JSON validates."""
        assert parse_structured('{"ok": true, "score": 1}', Verdict).score == 1

    def test_json_in_prose(self) -> None:
        """Test JSON embedded in prose is found."""
        content = 'Here you go: {"ok": true, "score": 5} hope that helps'
        assert parse_structured(content, Verdict).score == 5

    def test_empty_content(self) -> None:
        """Test empty content is an error."""
        with pytest.raises(StructuredOutputError, match="empty content"):
            parse_structured("   ", Verdict)

    def test_wrong_shape(self) -> None:
        """Test JSON of the wrong shape is an error."""
        with pytest.raises(StructuredOutputError, match="Verdict"):
            parse_structured('{"ok": "maybe"}', Verdict)


def test_schema_response_format() -> None:
    """Test the json_schema format names the model and carries its schema."""
    fmt = schema_response_format(Verdict)

    assert fmt["json_schema"]["name"] == "Verdict"
    assert set(fmt["json_schema"]["schema"]["properties"]) == {"ok", "score"}
