"""Tests for embedders."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from agent_engine.memory.embeddings import (
    EmbeddingError,
    HashingEmbedder,
    HttpEmbedder,
    cosine_similarity,
)


class TestCosineSimilarity:
    """Test cosine similarity."""

    def test_identical(self) -> None:
        """Test identical vectors score 1."""
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self) -> None:
        """Test orthogonal vectors score 0."""
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    @pytest.mark.parametrize(
        ("a", "b"), [([], []), ([1.0], [1.0, 2.0]), ([0.0, 0.0], [1.0, 1.0])]
    )
    def test_degenerate(self, a: list[float], b: list[float]) -> None:
        """Test empty, mismatched and zero vectors score 0."""
        assert cosine_similarity(a, b) == 0.0


class TestHashingEmbedder:
    """Test the feature-hashing embedder."""

    @pytest.mark.asyncio
    async def test_deterministic_and_normalized(self) -> None:
        """Test the same text always embeds to the same unit vector."""
        embedder = HashingEmbedder(dimension=64)

        [a], [b] = await embedder.embed(["The cat sat"]), await embedder.embed(["the CAT sat"])

        assert a == b
        assert len(a) == 64
        assert sum(v * v for v in a) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_similar_texts_are_closer(self) -> None:
        """Test overlapping texts score higher than unrelated ones."""
        embedder = HashingEmbedder()

        base, near, far = await embedder.embed(
            [
                "the capital of france is paris",
                "paris is the capital of france",
                "quarterly revenue grew sharply",
            ]
        )

        assert cosine_similarity(base, near) > cosine_similarity(base, far)

    @pytest.mark.asyncio
    async def test_empty_text(self) -> None:
        """Test text without tokens embeds to the zero vector."""
        [vector] = await HashingEmbedder(dimension=8).embed(["!!!"])

        assert vector == [0.0] * 8

    def test_dimension_too_small(self) -> None:
        """Test tiny dimensions are refused."""
        with pytest.raises(ValueError, match="at least 8"):
            HashingEmbedder(dimension=4)


class TestHttpEmbedder:
    """Test the HTTP embedder."""

    @pytest.fixture
    def embedder(self) -> HttpEmbedder:
        """Embedder with explicit settings."""
        return HttpEmbedder(model="embed-small", base_url="http://localhost:1234/v1", api_key="")

    def test_endpoint(self) -> None:
        """Test the endpoint is built with or without a /v1 suffix."""
        assert (
            HttpEmbedder(model="m", base_url="http://host:1/v1/", api_key="").endpoint
            == "http://host:1/v1/embeddings"
        )
        assert (
            HttpEmbedder(model="m", base_url="http://host:1", api_key="").endpoint
            == "http://host:1/v1/embeddings"
        )

    @pytest.mark.asyncio
    async def test_embed_orders_by_index(self, embedder: HttpEmbedder) -> None:
        """Test rows are returned in input order."""
        payload = {
            "data": [
                {"index": 1, "embedding": [0.0, 1.0]},
                {"index": 0, "embedding": [1.0, 0.0]},
            ]
        }
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_response = MagicMock()
            mock_response.json.return_value = payload
            mock_response.raise_for_status = MagicMock()
            mock_client.post = AsyncMock(return_value=mock_response)
            mock_client_class.return_value.__aenter__.return_value = mock_client

            vectors = await embedder.embed(["a", "b"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        sent = mock_client.post.call_args[1]["json"]
        assert sent == {"model": "embed-small", "input": ["a", "b"]}
        assert mock_client.post.call_args[1]["headers"] == {}

    @pytest.mark.asyncio
    async def test_embed_nothing(self, embedder: HttpEmbedder) -> None:
        """Test an empty batch makes no request."""
        with patch("httpx.AsyncClient") as mock_client_class:
            assert await embedder.embed([]) == []
            mock_client_class.assert_not_called()

    @pytest.mark.asyncio
    async def test_http_failure(self, embedder: HttpEmbedder) -> None:
        """Test transport errors become EmbeddingError."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
            mock_client_class.return_value.__aenter__.return_value = mock_client

            with pytest.raises(EmbeddingError, match="failed"):
                await embedder.embed(["a"])

    @pytest.mark.asyncio
    async def test_count_mismatch(self, embedder: HttpEmbedder) -> None:
        """Test a response with the wrong number of rows is rejected."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_response = MagicMock()
            mock_response.json.return_value = {"data": [{"index": 0, "embedding": [1.0]}]}
            mock_response.raise_for_status = MagicMock()
            mock_client.post = AsyncMock(return_value=mock_response)
            mock_client_class.return_value.__aenter__.return_value = mock_client

            with pytest.raises(EmbeddingError, match="Expected 2"):
                await embedder.embed(["a", "b"])

    @pytest.mark.asyncio
    async def test_malformed_response(self, embedder: HttpEmbedder) -> None:
        """Test a response without data is rejected."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_response = MagicMock()
            mock_response.json.return_value = {"oops": True}
            mock_response.raise_for_status = MagicMock()
            mock_client.post = AsyncMock(return_value=mock_response)
            mock_client_class.return_value.__aenter__.return_value = mock_client

            with pytest.raises(EmbeddingError, match="Invalid"):
                await embedder.embed(["a"])
