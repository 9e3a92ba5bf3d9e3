"""HTTP backend for OpenAI-compatible model servers.

This module provides the OpenAICompatibleBackend used by the gateway to
reach local or hosted chat_completions endpoints, with retries, error
classification and telemetry.
"""

import asyncio
import time
from typing import Any, Protocol

import httpx

from agent_engine.llm_client.adapters import (
    adapt_chat_completions_response,
    build_chat_completions_request,
)
from agent_engine.llm_client.models import TierDefinition
from agent_engine.llm_client.types import (
    LLMClientError,
    LLMConnectionError,
    LLMInvalidResponse,
    LLMRateLimit,
    LLMServerError,
    LLMTimeout,
    ModelResponse,
    ModelTier,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import (
    MODEL_CALL_COMPLETED,
    MODEL_CALL_ERROR,
    MODEL_CALL_RETRY,
    MODEL_CALL_STARTED,
)
from agent_engine.telemetry.trace import TraceContext

log = get_logger(__name__)


class ModelBackend(Protocol):
    """Anything that can serve a chat call for a tier."""

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
        """Run one chat call and return a normalized response."""
        ...


class OpenAICompatibleBackend:
    """Backend for servers speaking the OpenAI /v1/chat/completions protocol.

    Attributes:
        base_url: Default base URL, used when a tier has no endpoint override.
        api_key: Optional bearer token.
        max_retries: Maximum number of retry attempts.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        max_retries: int | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            base_url: Base URL for the API. If None, uses settings.llm_base_url.
            api_key: Bearer token. If None, uses settings.llm_api_key.
            max_retries: Maximum retry attempts. If None, uses settings.llm_max_retries.
        """
        from agent_engine.config.settings import get_settings  # noqa: PLC0415

        settings = get_settings()
        self.base_url = base_url or settings.llm_base_url
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.max_retries = settings.llm_max_retries if max_retries is None else max_retries

    def _endpoint_for(self, tier_def: TierDefinition) -> str:
        base = (tier_def.endpoint or self.base_url).rstrip("/")
        if base.endswith("/v1"):
            return f"{base}/chat/completions"
        return f"{base}/v1/chat/completions"

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
        """Make a single chat call for the model bound to a tier.

        Args:
            tier: Tier being served.
            tier_def: Model configuration for the tier.
            messages: List of message dicts with role and content.
            tools: Optional list of tool definitions for function calling.
            tool_choice: Tool choice parameter.
            response_format: Optional structured output constraints.
            trace_ctx: Trace context for telemetry correlation.

        Returns:
            Normalized ModelResponse (usage may still be zeroed).

        Raises:
            LLMTimeout: If request times out.
            LLMConnectionError: If connection fails.
            LLMRateLimit: If the server keeps rate limiting after retries.
            LLMServerError: If server returns a 5xx after retries.
            LLMInvalidResponse: If response format is invalid.
        """
        endpoint = self._endpoint_for(tier_def)

        if tools and not tier_def.supports_function_calling:
            log.warning(
                "tools_filtered_no_function_calling",
                model_id=tier_def.id,
                tier=tier.value,
                tools_count=len(tools),
            )
            tools = None
            tool_choice = None

        if response_format is not None and not tier_def.supports_json_schema:
            response_format = {"type": "json_object"}

        timeout_s = float(tier_def.default_timeout)
        if trace_ctx is None:
            trace_ctx = TraceContext.new_trace()

        payload = build_chat_completions_request(
            messages=messages,
            model=tier_def.id,
            tools=tools,
            tool_choice=tool_choice,
            max_tokens=tier_def.max_tokens,
            temperature=tier_def.temperature,
            response_format=response_format,
        )
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        start_time = time.time()
        _, span_id = trace_ctx.new_span()
        log.info(
            MODEL_CALL_STARTED,
            tier=tier.value,
            model_id=tier_def.id,
            endpoint=endpoint,
            trace_id=trace_ctx.trace_id,
            span_id=span_id,
        )

        last_error: Exception | None = None
        attempt = 0
        while attempt <= self.max_retries:
            try:
                timeout_config = httpx.Timeout(connect=10.0, read=timeout_s, write=10.0, pool=10.0)
                async with httpx.AsyncClient(timeout=timeout_config) as client:
                    response = await client.post(endpoint, json=payload, headers=headers)
                    response.raise_for_status()
                    response_data = response.json()

                # Some servers return 200 with an error object
                if isinstance(response_data, dict) and response_data.get("error") is not None:
                    error_obj = response_data["error"]
                    error_msg = (
                        error_obj.get("message", str(error_obj))
                        if isinstance(error_obj, dict)
                        else str(error_obj)
                    )
                    raise LLMClientError(f"API returned error: {error_msg}")

                model_response = adapt_chat_completions_response(
                    response_data, tier=tier.value, model_id=tier_def.id
                )

                log.info(
                    MODEL_CALL_COMPLETED,
                    tier=tier.value,
                    model_id=tier_def.id,
                    latency_ms=int((time.time() - start_time) * 1000),
                    tool_calls=len(model_response["tool_calls"]),
                    trace_id=trace_ctx.trace_id,
                    span_id=span_id,
                )
                return model_response

            except httpx.TimeoutException:
                last_error = LLMTimeout(f"Request to {endpoint} timed out after {timeout_s}s")
                if attempt < self.max_retries:
                    await self._backoff(attempt, trace_ctx)
                    attempt += 1
                    continue
                break

            except httpx.ConnectError as e:
                # Server is likely down; retrying will not help
                last_error = LLMConnectionError(f"Failed to connect to {endpoint}: {e}")
                break

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429:
                    last_error = LLMRateLimit(f"Rate limit exceeded: {e}")
                elif status >= 500:
                    last_error = LLMServerError(f"Server error {status}: {e}")
                else:
                    last_error = LLMClientError(f"HTTP error {status}: {e}")
                    break
                if attempt < self.max_retries:
                    await self._backoff(attempt, trace_ctx)
                    attempt += 1
                    continue
                break

            except httpx.RequestError as e:
                last_error = LLMConnectionError(f"Request error: {e}")
                break

            except LLMClientError as e:
                last_error = e
                break

            except (ValueError, KeyError, TypeError) as e:
                last_error = LLMInvalidResponse(f"Invalid response format: {e}")
                break

        log.error(
            MODEL_CALL_ERROR,
            tier=tier.value,
            model_id=tier_def.id,
            endpoint=endpoint,
            error_type=type(last_error).__name__ if last_error else "UnknownError",
            error=str(last_error) if last_error else "Unknown error",
            latency_ms=int((time.time() - start_time) * 1000),
            trace_id=trace_ctx.trace_id,
            span_id=span_id,
        )

        if last_error:
            raise last_error
        raise LLMClientError("Request failed with unknown error")

    async def _backoff(self, attempt: int, trace_ctx: TraceContext) -> None:
        wait_time = 2**attempt
        log.warning(
            MODEL_CALL_RETRY,
            attempt=attempt + 1,
            wait_time=wait_time,
            trace_id=trace_ctx.trace_id,
        )
        await asyncio.sleep(wait_time)
