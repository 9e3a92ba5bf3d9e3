"""Tests for the stream channel."""

import pytest

from agent_engine.orchestrator.streaming import ChunkKind, StreamChannel, StreamChunk


def _chunk(content: str) -> StreamChunk:
    return StreamChunk(kind=ChunkKind.REASONING, session_id="s", content=content)


class TestStreamChannel:
    """Test the single-use stream channel."""

    @pytest.mark.asyncio
    async def test_delivers_in_order(self) -> None:
        """Test chunks pushed before close are delivered in order."""
        channel = StreamChannel()
        assert channel.push(_chunk("a"))
        assert channel.push(_chunk("b"))
        channel.close()

        assert [chunk.content async for chunk in channel] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_push_after_close_is_dropped(self) -> None:
        """Test a closed channel refuses new chunks."""
        channel = StreamChannel()
        channel.close()
        channel.close()

        assert channel.closed
        assert not channel.push(_chunk("late"))
        assert [chunk async for chunk in channel] == []

    @pytest.mark.asyncio
    async def test_single_use(self) -> None:
        """Test a drained channel yields nothing on a second pass."""
        channel = StreamChannel()
        channel.push(_chunk("a"))
        channel.close()

        first = [chunk async for chunk in channel]
        second = [chunk async for chunk in channel]

        assert len(first) == 1
        assert second == []
