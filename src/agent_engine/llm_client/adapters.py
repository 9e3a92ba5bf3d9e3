"""Adapters between backend wire formats and ModelResponse.

Different providers report the same things in different shapes. This module
normalizes chat_completions payloads, tool calls and token usage so the
rest of the engine sees a single structure.
"""

from typing import Any

import orjson

from agent_engine.llm_client.types import (
    InvalidToolCall,
    LLMInvalidResponse,
    ModelResponse,
    TokenUsage,
    ToolCall,
)
from agent_engine.llm_client.usage import estimate_messages_tokens, estimate_tokens

# (prompt key, completion key, total key) per provider family
_USAGE_SHAPES: list[tuple[str, str, str | None]] = [
    ("prompt_tokens", "completion_tokens", "total_tokens"),  # OpenAI-compatible
    ("input_tokens", "output_tokens", None),  # Anthropic
    ("promptTokenCount", "candidatesTokenCount", "totalTokenCount"),  # Gemini
]


def normalize_usage(raw_usage: dict[str, Any] | None) -> TokenUsage | None:
    """Normalize a provider usage block.

    Args:
        raw_usage: Usage block as reported by the provider.

    Returns:
        Normalized usage, or None when the block is missing or carries no counts.
    """
    if not raw_usage or not isinstance(raw_usage, dict):
        return None

    for prompt_key, completion_key, total_key in _USAGE_SHAPES:
        if prompt_key in raw_usage or completion_key in raw_usage:
            prompt = int(raw_usage.get(prompt_key) or 0)
            completion = int(raw_usage.get(completion_key) or 0)
            total = int(raw_usage.get(total_key) or 0) if total_key else 0
            if not total:
                total = prompt + completion
            if prompt == 0 and completion == 0 and total == 0:
                return None
            return TokenUsage(
                prompt_tokens=prompt, completion_tokens=completion, total_tokens=total
            )
    return None


def estimate_usage(messages: list[dict[str, Any]], response: ModelResponse) -> TokenUsage:
    """Estimate usage for a call whose provider reported none.

    Deterministic: the same messages and response always give the same counts.

    Args:
        messages: Messages sent to the backend.
        response: The normalized response.

    Returns:
        Estimated usage.
    """
    prompt = estimate_messages_tokens(messages)
    completion = estimate_tokens(response["content"])
    for tool_call in response["tool_calls"]:
        completion += estimate_tokens(tool_call["name"]) + estimate_tokens(
            orjson.dumps(tool_call["args"]).decode()
        )
    return TokenUsage(
        prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion
    )


def parse_tool_arguments(arguments: Any) -> dict[str, Any]:
    """Parse tool-call arguments into a dict.

    Args:
        arguments: JSON string or already-decoded mapping.

    Returns:
        Parsed arguments.

    Raises:
        ValueError: If the arguments are not a JSON object.
    """
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, (str, bytes)):
        parsed = orjson.loads(arguments)
        if not isinstance(parsed, dict):
            raise ValueError(f"tool arguments must be a JSON object, got {type(parsed).__name__}")
        return parsed
    raise ValueError(f"unsupported tool argument type {type(arguments).__name__}")


def adapt_chat_completions_response(
    response_data: dict[str, Any], tier: str = "", model_id: str = ""
) -> ModelResponse:
    """Adapt an OpenAI-style chat_completions response to ModelResponse.

    Usage is left zeroed when the provider omitted it; the gateway fills in
    an estimate afterwards.

    Args:
        response_data: Raw response from the chat_completions API.
        tier: Tier that served the call.
        model_id: Model identifier that served the call.

    Returns:
        Normalized ModelResponse.

    Raises:
        LLMInvalidResponse: If the response format is invalid or unexpected.
    """
    try:
        choices = response_data.get("choices", [])
        if not choices:
            raise LLMInvalidResponse("Response has no choices")

        message = choices[0].get("message", {}) or {}
        content = message.get("content", "") or ""

        tool_calls: list[ToolCall] = []
        invalid_tool_calls: list[InvalidToolCall] = []
        for tc in message.get("tool_calls") or []:
            if not isinstance(tc, dict):
                continue
            function = tc.get("function", {}) or {}
            raw_args = function.get("arguments", "{}")
            try:
                args = parse_tool_arguments(raw_args)
            except (ValueError, orjson.JSONDecodeError) as e:
                invalid_tool_calls.append(
                    InvalidToolCall(
                        id=tc.get("id"),
                        name=function.get("name"),
                        args=raw_args if isinstance(raw_args, str) else str(raw_args),
                        error=str(e),
                    )
                )
                continue
            tool_calls.append(
                ToolCall(id=tc.get("id") or "", name=function.get("name", ""), args=args)
            )

        usage = normalize_usage(response_data.get("usage"))

        return ModelResponse(
            role=message.get("role", "assistant"),
            content=content,
            tool_calls=tool_calls,
            invalid_tool_calls=invalid_tool_calls,
            usage=usage
            or TokenUsage(prompt_tokens=0, completion_tokens=0, total_tokens=0),
            usage_estimated=usage is None,
            tier=tier,
            model_id=model_id or response_data.get("model", ""),
            raw=response_data,
        )
    except LLMInvalidResponse:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise LLMInvalidResponse(f"Invalid response format: {e}") from e


def strip_message_metadata(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop engine-only keys before messages reach a backend.

    Args:
        messages: Engine messages, which may carry a "metadata" key.

    Returns:
        Copies of the messages without engine-only keys.
    """
    return [{k: v for k, v in msg.items() if k != "metadata"} for msg in messages]


def build_chat_completions_request(
    messages: list[dict[str, Any]],
    model: str,
    tools: list[dict[str, Any]] | None = None,
    tool_choice: str | dict[str, Any] | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
    response_format: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a chat_completions API request payload.

    Args:
        messages: List of message dicts with role and content.
        model: Model identifier.
        tools: Optional list of tool definitions for function calling.
        tool_choice: Tool choice parameter ("auto", "none", "required" or a specific tool).
        max_tokens: Maximum tokens to generate.
        temperature: Sampling temperature.
        response_format: Optional structured output constraints (OpenAI-compatible).

    Returns:
        Request payload dictionary.
    """
    normalized_messages: list[dict[str, Any]] = []
    for msg in strip_message_metadata(messages):
        if msg.get("role") == "assistant" and isinstance(msg.get("tool_calls"), list):
            normalized_tool_calls = []
            for idx, tc in enumerate(msg["tool_calls"]):
                tc_copy = dict(tc) if isinstance(tc, dict) else {}
                # Some backends require index on replayed tool calls
                tc_copy.setdefault("index", idx)
                normalized_tool_calls.append(tc_copy)
            msg["tool_calls"] = normalized_tool_calls
        normalized_messages.append(msg)

    payload: dict[str, Any] = {"model": model, "messages": normalized_messages}

    if tools:
        payload["tools"] = tools
        payload["tool_choice"] = tool_choice or "auto"

    if max_tokens is not None:
        payload["max_tokens"] = max_tokens

    if temperature is not None:
        payload["temperature"] = temperature

    if response_format is not None:
        payload["response_format"] = response_format

    return payload


def to_openai_tool_calls(tool_calls: list[ToolCall]) -> list[dict[str, Any]]:
    """Convert engine tool calls back into the OpenAI assistant-message shape.

    Args:
        tool_calls: Tool calls as returned in ModelResponse.

    Returns:
        List of {"id", "type", "function": {"name", "arguments"}} dicts.
    """
    return [
        {
            "id": tc["id"],
            "type": "function",
            "function": {"name": tc["name"], "arguments": orjson.dumps(tc["args"]).decode()},
        }
        for tc in tool_calls
    ]
