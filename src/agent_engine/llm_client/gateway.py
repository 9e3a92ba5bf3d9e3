"""Model gateway: tier selection, invocation and usage accounting.

The gateway is the only way engine components talk to models. It maps a
criticality or tier onto a configured model, delegates the call to a
backend, validates structured output and records token usage. One gateway
is shared by every concurrent session.
"""

import re
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from agent_engine.llm_client.adapters import estimate_usage
from agent_engine.llm_client.client import ModelBackend, OpenAICompatibleBackend
from agent_engine.llm_client.models import ModelConfig, TierDefinition
from agent_engine.llm_client.types import (
    Criticality,
    ModelResponse,
    ModelTier,
    StructuredOutputError,
    TierUnavailableError,
)
from agent_engine.llm_client.usage import UsageTracker
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import STRUCTURED_OUTPUT_INVALID, USAGE_ESTIMATED
from agent_engine.telemetry.trace import TraceContext

log = get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

CRITICALITY_TIERS: dict[Criticality, ModelTier] = {
    Criticality.LOW: ModelTier.CHEAP,
    Criticality.NORMAL: ModelTier.FAST,
    Criticality.HIGH: ModelTier.SMART,
}

# Order in which tiers stand in for a missing one
_FALLBACK_ORDER: list[ModelTier] = [ModelTier.CHEAP, ModelTier.FAST, ModelTier.SMART]

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class ModelHandle:
    """A tier bound to its configured model."""

    tier: ModelTier
    definition: TierDefinition

    @property
    def model_id(self) -> str:
        """Identifier of the bound model."""
        return self.definition.id


def schema_response_format(schema: type[BaseModel]) -> dict[str, Any]:
    """Build an OpenAI json_schema response_format for a pydantic model.

    Args:
        schema: Pydantic model class describing the expected output.

    Returns:
        response_format payload.
    """
    return {
        "type": "json_schema",
        "json_schema": {
            "name": schema.__name__,
            "schema": schema.model_json_schema(),
        },
    }


def parse_structured(content: str, schema: type[SchemaT]) -> SchemaT:
    """Validate model output text against a schema.

    Accepts bare JSON or JSON wrapped in prose or code fences.

    Args:
        content: Model output text.
        schema: Pydantic model class.

    Returns:
        Validated instance.

    Raises:
        StructuredOutputError: If no valid JSON object matching the schema is found.
    """
    candidates = [content.strip()]
    match = _JSON_BLOCK.search(content)
    if match and match.group(0) != candidates[0]:
        candidates.append(match.group(0))

    last_error: Exception | None = None
    for candidate in candidates:
        if not candidate:
            continue
        try:
            return schema.model_validate_json(candidate)
        except ValidationError as e:
            last_error = e
    raise StructuredOutputError(
        f"Response does not match schema {schema.__name__}: {last_error or 'empty content'}"
    )


class ModelGateway:
    """Single entry point for model calls.

    Attributes:
        model_config: Tier configuration.
        backend: Backend serving the calls.
        usage: Shared usage tracker.
    """

    def __init__(
        self,
        model_config: ModelConfig | None = None,
        backend: ModelBackend | None = None,
        usage_tracker: UsageTracker | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            model_config: Tier configuration. If None, loads config/models.yaml.
            backend: Backend to use. If None, uses OpenAICompatibleBackend.
            usage_tracker: Tracker to record into. If None, creates one.

        Raises:
            ModelConfigError: If model_config is None and the config file cannot be loaded.
        """
        if model_config is None:
            from agent_engine.config.model_loader import load_model_config  # noqa: PLC0415

            model_config = load_model_config()
        self.model_config = model_config
        self.backend: ModelBackend = backend or OpenAICompatibleBackend()
        self.usage = usage_tracker or UsageTracker()

    def available_tiers(self) -> list[ModelTier]:
        """Tiers with a configured model."""
        return list(self.model_config.tiers)

    def select_tier(
        self, selector: Criticality | ModelTier | str, allow_fallback: bool = False
    ) -> ModelHandle:
        """Resolve a criticality or tier name to a model handle.

        Args:
            selector: Criticality, tier, or the string value of either.
            allow_fallback: Use another configured tier when the requested one is missing.

        Returns:
            Handle bound to the tier's model.

        Raises:
            TierUnavailableError: If nothing is configured for the tier (and no
                fallback is allowed or available).
        """
        tier = self._resolve_tier(selector)
        definition = self.model_config.tiers.get(tier)
        if definition is not None:
            return ModelHandle(tier=tier, definition=definition)

        if allow_fallback:
            for candidate in _FALLBACK_ORDER:
                fallback_def = self.model_config.tiers.get(candidate)
                if fallback_def is not None:
                    log.warning("tier_fallback_used", requested=tier.value, used=candidate.value)
                    return ModelHandle(tier=candidate, definition=fallback_def)

        raise TierUnavailableError(f"No model configured for tier '{tier.value}'")

    @staticmethod
    def _resolve_tier(selector: Criticality | ModelTier | str) -> ModelTier:
        if isinstance(selector, ModelTier):
            return selector
        if isinstance(selector, Criticality):
            return CRITICALITY_TIERS[selector]
        tier = ModelTier.from_str(selector)
        if tier is not None:
            return tier
        try:
            return CRITICALITY_TIERS[Criticality(selector.lower())]
        except ValueError:
            raise TierUnavailableError(f"Unknown tier or criticality '{selector}'") from None

    async def invoke(
        self,
        handle: ModelHandle,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
        schema: type[BaseModel] | None = None,
        usage_key: str | None = None,
        trace_ctx: TraceContext | None = None,
    ) -> ModelResponse:
        """Invoke the model behind a handle.

        Args:
            handle: Handle returned by select_tier.
            messages: Chat messages (engine metadata is stripped).
            tools: Optional OpenAI-format tool definitions.
            tool_choice: Optional tool choice ("auto", "required", ...).
            schema: Optional pydantic model; the validated result is put in "parsed".
            usage_key: Key to record usage under (typically the session id).
            trace_ctx: Trace context for telemetry.

        Returns:
            Normalized response with usage always populated.

        Raises:
            LLMClientError: On backend failures.
            StructuredOutputError: If schema is given and the output does not match.
        """
        response = await self.backend.complete(
            handle.tier,
            handle.definition,
            messages,
            tools=tools,
            tool_choice=tool_choice,
            response_format=schema_response_format(schema) if schema is not None else None,
            trace_ctx=trace_ctx,
        )

        if response["usage_estimated"] or response["usage"]["total_tokens"] == 0:
            response["usage"] = estimate_usage(messages, response)
            response["usage_estimated"] = True
            log.debug(
                USAGE_ESTIMATED,
                tier=handle.tier.value,
                total_tokens=response["usage"]["total_tokens"],
                trace_id=trace_ctx.trace_id if trace_ctx else None,
            )

        self.usage.record(
            handle.tier.value,
            response["usage"],
            key=usage_key,
            estimated=response["usage_estimated"],
        )

        if schema is not None:
            try:
                response["parsed"] = parse_structured(response["content"], schema)
            except StructuredOutputError as e:
                log.warning(
                    STRUCTURED_OUTPUT_INVALID,
                    tier=handle.tier.value,
                    schema=schema.__name__,
                    error=str(e),
                    trace_id=trace_ctx.trace_id if trace_ctx else None,
                )
                raise

        return response

    async def invoke_structured(
        self,
        selector: Criticality | ModelTier | str,
        messages: list[dict[str, Any]],
        schema: type[SchemaT],
        usage_key: str | None = None,
        trace_ctx: TraceContext | None = None,
    ) -> SchemaT:
        """Select a tier, invoke it, and return validated structured output.

        Args:
            selector: Criticality or tier.
            messages: Chat messages.
            schema: Pydantic model class for the output.
            usage_key: Key to record usage under.
            trace_ctx: Trace context for telemetry.

        Returns:
            Validated schema instance.
        """
        handle = self.select_tier(selector)
        response = await self.invoke(
            handle, messages, schema=schema, usage_key=usage_key, trace_ctx=trace_ctx
        )
        parsed: SchemaT = response["parsed"]
        return parsed
