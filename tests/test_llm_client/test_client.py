"""Tests for OpenAICompatibleBackend."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from agent_engine.llm_client.client import OpenAICompatibleBackend
from agent_engine.llm_client.models import TierDefinition
from agent_engine.llm_client.types import (
    LLMClientError,
    LLMConnectionError,
    LLMRateLimit,
    LLMServerError,
    LLMTimeout,
    ModelTier,
)
from agent_engine.telemetry.trace import TraceContext

MESSAGES = [{"role": "user", "content": "Hello"}]


def _ok_response(payload: Any) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


def _status_error(status: int) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.raise_for_status.side_effect = httpx.HTTPStatusError(
        f"status {status}", request=MagicMock(), response=response
    )
    return response


def _chat_payload(content: str = "Hi there", **message: Any) -> dict[str, Any]:
    return {
        "model": "test-fast",
        "choices": [{"message": {"role": "assistant", "content": content, **message}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 3, "total_tokens": 13},
    }


class TestOpenAICompatibleBackend:
    """Test OpenAICompatibleBackend.complete."""

    @pytest.fixture
    def backend(self) -> OpenAICompatibleBackend:
        """Backend with explicit settings and two retries."""
        return OpenAICompatibleBackend(
            base_url="http://localhost:1234/v1", api_key="secret", max_retries=2
        )

    @pytest.fixture
    def tier_def(self) -> TierDefinition:
        """A tier definition that supports tools and schemas."""
        return TierDefinition(id="test-fast", default_timeout=5, temperature=0.1)

    @pytest.mark.asyncio
    async def test_complete_success(
        self, backend: OpenAICompatibleBackend, tier_def: TierDefinition
    ) -> None:
        """Test a plain chat completion is normalized."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=_ok_response(_chat_payload()))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            response = await backend.complete(
                ModelTier.FAST, tier_def, MESSAGES, trace_ctx=TraceContext.new_trace()
            )

        assert response["content"] == "Hi there"
        assert response["tier"] == "fast"
        assert response["model_id"] == "test-fast"
        assert response["usage"]["total_tokens"] == 13
        assert response["usage_estimated"] is False

        url = mock_client.post.call_args[0][0]
        kwargs = mock_client.post.call_args[1]
        assert url == "http://localhost:1234/v1/chat/completions"
        assert kwargs["headers"] == {"Authorization": "Bearer secret"}
        assert kwargs["json"]["model"] == "test-fast"
        assert kwargs["json"]["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_complete_with_tool_calls(
        self, backend: OpenAICompatibleBackend, tier_def: TierDefinition
    ) -> None:
        """Test tool calls are parsed and tools are forwarded."""
        payload = _chat_payload(
            content="",
            tool_calls=[
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "read_file", "arguments": '{"path": "/tmp/a"}'},
                }
            ],
        )
        tools = [{"type": "function", "function": {"name": "read_file", "parameters": {}}}]

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=_ok_response(payload))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            response = await backend.complete(
                ModelTier.FAST, tier_def, MESSAGES, tools=tools, tool_choice="required"
            )

        assert response["tool_calls"] == [
            {"id": "call_1", "name": "read_file", "args": {"path": "/tmp/a"}}
        ]
        sent = mock_client.post.call_args[1]["json"]
        assert sent["tools"] == tools
        assert sent["tool_choice"] == "required"

    @pytest.mark.asyncio
    async def test_tools_dropped_without_function_calling(
        self, backend: OpenAICompatibleBackend
    ) -> None:
        """Test tools are not sent to a model that cannot call functions."""
        tier_def = TierDefinition(id="plain", supports_function_calling=False)
        tools = [{"type": "function", "function": {"name": "read_file", "parameters": {}}}]

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=_ok_response(_chat_payload()))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            await backend.complete(ModelTier.CHEAP, tier_def, MESSAGES, tools=tools)

        sent = mock_client.post.call_args[1]["json"]
        assert "tools" not in sent
        assert "tool_choice" not in sent

    @pytest.mark.asyncio
    async def test_endpoint_override(self, backend: OpenAICompatibleBackend) -> None:
        """Test a tier endpoint replaces the default base URL."""
        tier_def = TierDefinition(id="remote", endpoint="http://gpu-box:8000")

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=_ok_response(_chat_payload()))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            await backend.complete(ModelTier.SMART, tier_def, MESSAGES)

        assert mock_client.post.call_args[0][0] == "http://gpu-box:8000/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_json_object_fallback(self, backend: OpenAICompatibleBackend) -> None:
        """Test a schema request degrades to json_object when schemas are unsupported."""
        tier_def = TierDefinition(id="plain", supports_json_schema=False)

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=_ok_response(_chat_payload()))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            await backend.complete(
                ModelTier.CHEAP,
                tier_def,
                MESSAGES,
                response_format={"type": "json_schema", "json_schema": {"name": "X"}},
            )

        assert mock_client.post.call_args[1]["json"]["response_format"] == {
            "type": "json_object"
        }

    @pytest.mark.asyncio
    async def test_timeout_is_retried(
        self, backend: OpenAICompatibleBackend, tier_def: TierDefinition
    ) -> None:
        """Test the backend retries after a timeout."""
        with (
            patch("httpx.AsyncClient") as mock_client_class,
            patch("asyncio.sleep") as mock_sleep,
        ):
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(
                side_effect=[
                    httpx.TimeoutException("Timeout"),
                    _ok_response(_chat_payload("Success")),
                ]
            )
            mock_client_class.return_value.__aenter__.return_value = mock_client

            response = await backend.complete(ModelTier.FAST, tier_def, MESSAGES)

        assert response["content"] == "Success"
        assert mock_client.post.call_count == 2
        assert mock_sleep.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout_exhausts_retries(
        self, backend: OpenAICompatibleBackend, tier_def: TierDefinition
    ) -> None:
        """Test LLMTimeout is raised once every attempt timed out."""
        with (
            patch("httpx.AsyncClient") as mock_client_class,
            patch("asyncio.sleep") as mock_sleep,
        ):
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(side_effect=httpx.TimeoutException("Timeout"))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            with pytest.raises(LLMTimeout):
                await backend.complete(ModelTier.FAST, tier_def, MESSAGES)

        assert mock_client.post.call_count == 3
        assert mock_sleep.call_count == 2

    @pytest.mark.asyncio
    async def test_connection_error_not_retried(
        self, backend: OpenAICompatibleBackend, tier_def: TierDefinition
    ) -> None:
        """Test connection failures raise immediately."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            with pytest.raises(LLMConnectionError):
                await backend.complete(ModelTier.FAST, tier_def, MESSAGES)

        assert mock_client.post.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit(
        self, backend: OpenAICompatibleBackend, tier_def: TierDefinition
    ) -> None:
        """Test a persistent 429 raises LLMRateLimit after retrying."""
        with (
            patch("httpx.AsyncClient") as mock_client_class,
            patch("asyncio.sleep"),
        ):
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=_status_error(429))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            with pytest.raises(LLMRateLimit):
                await backend.complete(ModelTier.FAST, tier_def, MESSAGES)

        assert mock_client.post.call_count == 3

    @pytest.mark.asyncio
    async def test_server_error(
        self, backend: OpenAICompatibleBackend, tier_def: TierDefinition
    ) -> None:
        """Test a persistent 5xx raises LLMServerError."""
        with (
            patch("httpx.AsyncClient") as mock_client_class,
            patch("asyncio.sleep"),
        ):
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=_status_error(503))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            with pytest.raises(LLMServerError):
                await backend.complete(ModelTier.FAST, tier_def, MESSAGES)

    @pytest.mark.asyncio
    async def test_client_error_not_retried(
        self, backend: OpenAICompatibleBackend, tier_def: TierDefinition
    ) -> None:
        """Test a 4xx other than 429 fails without retrying."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=_status_error(400))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            with pytest.raises(LLMClientError, match="400"):
                await backend.complete(ModelTier.FAST, tier_def, MESSAGES)

        assert mock_client.post.call_count == 1

    @pytest.mark.asyncio
    async def test_error_object_in_ok_response(
        self, backend: OpenAICompatibleBackend, tier_def: TierDefinition
    ) -> None:
        """Test a 200 carrying an error object is raised as LLMClientError."""
        payload = {"error": {"message": "model not loaded"}}

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=_ok_response(payload))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            with pytest.raises(LLMClientError, match="model not loaded"):
                await backend.complete(ModelTier.FAST, tier_def, MESSAGES)
