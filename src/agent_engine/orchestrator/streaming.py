"""Streaming of intermediate results to the host.

A StreamChannel is a finite, single-use channel: the orchestrator pushes
chunks while a run progresses and closes the channel when the run ends or
suspends; the host consumes it with ``async for``.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import STREAM_CHUNK_DROPPED

log = get_logger(__name__)


class ChunkKind(str, Enum):
    """What a stream chunk carries."""

    REASONING = "reasoning"
    TOOL_START = "tool_start"
    TOOL_RESULT = "tool_result"
    HUMAN_REQUEST = "human_request"
    FINAL = "final"
    ERROR = "error"


class StreamChunk(BaseModel):
    """One unit of streamed output."""

    kind: ChunkKind
    session_id: str
    content: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


_CLOSED = object()


class StreamChannel:
    """Queue-backed channel of StreamChunks.

    Pushing never blocks. Once closed, further pushes are dropped, and once
    the host has drained the channel it cannot be iterated again.
    """

    def __init__(self) -> None:
        """Initialize an open, empty channel."""
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def push(self, chunk: StreamChunk) -> bool:
        """Queue a chunk for the host.

        Args:
            chunk: Chunk to deliver.

        Returns:
            True if queued, False if the channel was already closed.
        """
        if self._closed:
            log.warning(
                STREAM_CHUNK_DROPPED, kind=chunk.kind.value, session_id=chunk.session_id
            )
            return False
        self._queue.put_nowait(chunk)
        return True

    def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "StreamChannel":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._drained:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._drained = True
            raise StopAsyncIteration
        chunk: StreamChunk = item
        return chunk
