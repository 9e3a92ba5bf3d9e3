"""Token estimation and usage accounting.

Counts only; pricing is out of scope.
"""

import math
import threading
from collections import defaultdict
from typing import Any

from agent_engine.llm_client.types import TokenUsage


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a piece of text.

    Averages a characters/4 estimate with a word count, which tracks BPE
    tokenizers closely enough for budgeting.

    Args:
        text: Text to measure.

    Returns:
        Estimated token count (0 for empty text).
    """
    if not text:
        return 0
    char_estimate = len(text) / 4
    word_estimate = len(text.split())
    return math.ceil((char_estimate + word_estimate) / 2)


def estimate_messages_tokens(messages: list[dict[str, Any]]) -> int:
    """Estimate token count for a list of chat messages.

    Args:
        messages: OpenAI-style message list.

    Returns:
        Estimated token count across message contents and tool-call arguments.
    """
    total = 0
    for message in messages:
        content = message.get("content") or ""
        if not isinstance(content, str):
            content = str(content)
        total += estimate_tokens(content)
        for tool_call in message.get("tool_calls") or []:
            total += estimate_tokens(str(tool_call))
    return total


def empty_usage() -> TokenUsage:
    """Return a zeroed usage record."""
    return TokenUsage(prompt_tokens=0, completion_tokens=0, total_tokens=0)


class UsageTracker:
    """Accumulates token usage per tier and per usage key (typically a session id).

    Safe to share between concurrent sessions.
    """

    def __init__(self) -> None:
        """Initialize empty counters."""
        self._lock = threading.Lock()
        self._by_tier: dict[str, TokenUsage] = defaultdict(empty_usage)
        self._by_key: dict[str, TokenUsage] = defaultdict(empty_usage)
        self._estimated_calls = 0

    def record(
        self, tier: str, usage: TokenUsage, key: str | None = None, estimated: bool = False
    ) -> None:
        """Add one call's usage.

        Args:
            tier: Tier that served the call.
            usage: Normalized usage of the call.
            key: Optional grouping key (session id).
            estimated: Whether usage was estimated locally.
        """
        with self._lock:
            buckets = [self._by_tier[tier]]
            if key is not None:
                buckets.append(self._by_key[key])
            for bucket in buckets:
                bucket["prompt_tokens"] += usage["prompt_tokens"]
                bucket["completion_tokens"] += usage["completion_tokens"]
                bucket["total_tokens"] += usage["total_tokens"]
            if estimated:
                self._estimated_calls += 1

    def total_for(self, key: str) -> int:
        """Total tokens recorded under a key."""
        with self._lock:
            usage = self._by_key.get(key)
            return usage["total_tokens"] if usage else 0

    def by_tier(self) -> dict[str, TokenUsage]:
        """Snapshot of per-tier usage."""
        with self._lock:
            return {tier: TokenUsage(**usage) for tier, usage in self._by_tier.items()}

    @property
    def estimated_calls(self) -> int:
        """Number of calls whose usage had to be estimated."""
        return self._estimated_calls

    def reset(self, key: str | None = None) -> None:
        """Forget usage for one key, or everything when key is None."""
        with self._lock:
            if key is None:
                self._by_tier.clear()
                self._by_key.clear()
                self._estimated_calls = 0
            else:
                self._by_key.pop(key, None)
