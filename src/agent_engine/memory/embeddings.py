"""Text embedders used by long-term memory."""

import hashlib
import math
import re
from typing import Protocol

import httpx

from agent_engine.telemetry import get_logger

log = get_logger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")


class EmbeddingError(Exception):
    """Raised when text cannot be embedded."""

    pass


class Embedder(Protocol):
    """Turns texts into vectors of a fixed dimension."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, one vector per text."""
        ...


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors (0.0 when either is zero or sizes differ)."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


class HashingEmbedder:
    """Deterministic bag-of-words embedder using feature hashing.

    Needs no model server, so it backs tests and offline runs. Similar texts
    share tokens and therefore land close together.
    """

    def __init__(self, dimension: int = 256) -> None:
        """Initialize the embedder.

        Args:
            dimension: Vector size.
        """
        if dimension < 8:
            raise ValueError(f"dimension must be at least 8, got {dimension}")
        self.dimension = dimension

    def _embed_one(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector] if norm else vector

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts."""
        return [self._embed_one(text) for text in texts]


class HttpEmbedder:
    """Embedder calling an OpenAI-compatible /v1/embeddings endpoint."""

    def __init__(
        self,
        model: str,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        """Initialize the embedder.

        Args:
            model: Embedding model identifier.
            base_url: Base URL. If None, uses settings.llm_base_url.
            api_key: Bearer token. If None, uses settings.llm_api_key.
            timeout_seconds: Request timeout.
        """
        from agent_engine.config.settings import get_settings  # noqa: PLC0415

        settings = get_settings()
        self.model = model
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.timeout_seconds = timeout_seconds

    @property
    def endpoint(self) -> str:
        """Full embeddings URL."""
        if self.base_url.endswith("/v1"):
            return f"{self.base_url}/embeddings"
        return f"{self.base_url}/v1/embeddings"

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts.

        Raises:
            EmbeddingError: If the request fails or the response is malformed.
        """
        if not texts:
            return []
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    self.endpoint, json={"model": self.model, "input": texts}, headers=headers
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            log.error("embedding_request_failed", error=str(e), error_type=type(e).__name__)
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        try:
            rows = sorted(data["data"], key=lambda row: row.get("index", 0))
            vectors = [list(map(float, row["embedding"])) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingError(f"Invalid embeddings response: {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors
