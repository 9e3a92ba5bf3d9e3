"""Long-term memory: store interface, in-memory store and service.

Records are keyed by content identity (user, kind and normalized text), so
repeating an upsert, or running upserts from concurrent sessions in any
order, converges on the same set of records.
"""

import asyncio
import hashlib
import re
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, Field

from agent_engine.memory.embeddings import Embedder, cosine_similarity
from agent_engine.memory.models import (
    EpisodicMemory,
    LTMContext,
    MemoryKind,
    MemoryResult,
    MemoryScope,
    MemorySearchResult,
    SemanticMemory,
    UpsertResult,
)
from agent_engine.telemetry import get_logger
from agent_engine.telemetry.events import LTM_SEARCH_COMPLETED, LTM_UPSERT_COMPLETED

log = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse whitespace and case so trivially different texts share an identity."""
    return _WHITESPACE.sub(" ", text).strip().lower()


def content_key(user_id: str, kind: MemoryKind, text: str) -> str:
    """Content-identity key of a memory."""
    raw = f"{user_id}\x1f{kind.value}\x1f{normalize_text(text)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class LtmRecord(BaseModel):
    """One stored long-term memory."""

    id: str
    kind: MemoryKind
    content: str
    embedding: list[float]
    user_id: str
    run_id: str | None = None
    task_id: str | None = None
    step_id: str | None = None
    occurrences: int = 1
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_search_result(self, similarity: float) -> MemorySearchResult:
        """Project the record into a search result."""
        return MemorySearchResult(
            id=self.id,
            kind=self.kind,
            content=self.content,
            similarity=similarity,
            user_id=self.user_id,
            run_id=self.run_id,
            task_id=self.task_id,
            step_id=self.step_id,
            occurrences=self.occurrences,
            metadata=dict(self.metadata),
        )


class MemoryStore(Protocol):
    """Persistence for long-term memory records."""

    async def upsert(self, records: list[LtmRecord]) -> UpsertResult:
        """Insert records, merging those that already exist."""
        ...

    async def search(
        self, embedding: list[float], user_id: str, top_k: int, min_similarity: float
    ) -> list[MemorySearchResult]:
        """Return the user's records most similar to an embedding, best first."""
        ...


class InMemoryMemoryStore:
    """Process-local MemoryStore.

    Attributes:
        merge_threshold: Similarity at which a new record merges into an existing
            record of the same user and kind.
    """

    def __init__(self, merge_threshold: float = 0.95) -> None:
        """Initialize an empty store.

        Args:
            merge_threshold: Similarity at which records merge.
        """
        self.merge_threshold = merge_threshold
        self._records: dict[str, LtmRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> list[LtmRecord]:
        """Snapshot of stored records."""
        return list(self._records.values())

    async def upsert(self, records: list[LtmRecord]) -> UpsertResult:
        """Insert records, merging exact and near duplicates.

        Args:
            records: Records to store. Their id must be the content key.

        Returns:
            How many records were inserted and merged.
        """
        result = UpsertResult()
        async with self._lock:
            for record in records:
                existing = self._records.get(record.id) or self._nearest_duplicate(record)
                if existing is None:
                    self._records[record.id] = record.model_copy(deep=True)
                    result.inserted += 1
                    continue
                self._records[existing.id] = existing.model_copy(
                    update={
                        "occurrences": existing.occurrences + record.occurrences,
                        "updated_at": max(existing.updated_at, record.updated_at),
                    }
                )
                result.merged += 1
        return result

    def _nearest_duplicate(self, record: LtmRecord) -> LtmRecord | None:
        matches = [
            (cosine_similarity(candidate.embedding, record.embedding), candidate)
            for candidate in self._records.values()
            if candidate.user_id == record.user_id and candidate.kind == record.kind
        ]
        matches = [(score, c) for score, c in matches if score >= self.merge_threshold]
        if not matches:
            return None
        # Ties break on id so the choice does not depend on insertion order
        return min(matches, key=lambda pair: (-pair[0], pair[1].id))[1]

    async def search(
        self, embedding: list[float], user_id: str, top_k: int, min_similarity: float
    ) -> list[MemorySearchResult]:
        """Return the user's most similar records, best first (ties broken by id)."""
        async with self._lock:
            scored = [
                (cosine_similarity(record.embedding, embedding), record)
                for record in self._records.values()
                if record.user_id == user_id
            ]
        scored = [(score, record) for score, record in scored if score >= min_similarity]
        scored.sort(key=lambda pair: (-pair[0], pair[1].id))
        return [record.to_search_result(score) for score, record in scored[:top_k]]


def update_context(ltm: LTMContext, items: list[MemorySearchResult]) -> MemoryResult[LTMContext]:
    """Replace the loaded long-term items and recount them.

    Args:
        ltm: Current long-term context.
        items: Fresh search results.

    Returns:
        Result holding the refreshed context.
    """
    episodic = sum(1 for item in items if item.kind == MemoryKind.EPISODIC)
    semantic = sum(1 for item in items if item.kind == MemoryKind.SEMANTIC)
    return MemoryResult.ok(
        ltm.model_copy(
            update={
                "items": list(items),
                "episodic_size": episodic,
                "semantic_size": semantic,
                "merge_size": episodic + semantic,
            }
        )
    )


def format_ltm_context(ltm: LTMContext) -> str:
    """Render loaded long-term memories as prompt text."""
    if not ltm.items:
        return ""
    lines = []
    for item in ltm.items:
        label = "event" if item.kind == MemoryKind.EPISODIC else "fact"
        lines.append(f"- ({label}, similarity {item.similarity:.2f}) {item.content}")
    return "\n".join(lines)


class LongTermMemory:
    """Embeds, stores and searches long-term memories."""

    def __init__(self, embedder: Embedder, store: MemoryStore) -> None:
        """Initialize the service.

        Args:
            embedder: Embedder for memory texts and queries.
            store: Backing store.
        """
        self.embedder = embedder
        self.store = store

    async def upsert(
        self,
        scope: MemoryScope,
        episodic: list[EpisodicMemory],
        semantic: list[SemanticMemory],
    ) -> UpsertResult:
        """Embed and store extracted memories.

        Args:
            scope: Provenance shared by every memory.
            episodic: Episodic memories.
            semantic: Semantic memories.

        Returns:
            Upsert counts.

        Raises:
            EmbeddingError: If embedding fails.
        """
        entries: list[tuple[MemoryKind, str, dict[str, Any]]] = [
            (MemoryKind.EPISODIC, m.content, {"sources": list(m.sources)}) for m in episodic
        ] + [(MemoryKind.SEMANTIC, m.fact, {"category": m.category}) for m in semantic]
        if not entries:
            return UpsertResult()

        vectors = await self.embedder.embed([text for _, text, _ in entries])
        records = [
            LtmRecord(
                id=content_key(scope.user_id, kind, text),
                kind=kind,
                content=text,
                embedding=vector,
                user_id=scope.user_id,
                run_id=scope.run_id,
                task_id=scope.task_id,
                step_id=scope.step_id,
                metadata=metadata,
            )
            for (kind, text, metadata), vector in zip(entries, vectors)
        ]
        result = await self.store.upsert(records)
        log.info(
            LTM_UPSERT_COMPLETED,
            user_id=scope.user_id,
            run_id=scope.run_id,
            task_id=scope.task_id,
            inserted=result.inserted,
            merged=result.merged,
        )
        return result

    async def search(
        self, query: str, user_id: str, top_k: int, min_similarity: float
    ) -> list[MemorySearchResult]:
        """Search the user's memories for a query text.

        Raises:
            EmbeddingError: If embedding fails.
        """
        if not query.strip():
            return []
        [vector] = await self.embedder.embed([query])
        results = await self.store.search(vector, user_id, top_k, min_similarity)
        log.debug(LTM_SEARCH_COMPLETED, user_id=user_id, results=len(results))
        return results
