"""Tests for long-term memory."""

import asyncio
import itertools

import pytest

from agent_engine.memory.embeddings import HashingEmbedder
from agent_engine.memory.ltm import (
    InMemoryMemoryStore,
    LongTermMemory,
    LtmRecord,
    content_key,
    format_ltm_context,
    normalize_text,
    update_context,
)
from agent_engine.memory.models import (
    EpisodicMemory,
    LTMContext,
    MemoryKind,
    MemoryScope,
    MemorySearchResult,
    SemanticMemory,
)


def _record(text: str, vector: list[float], user_id: str = "u1") -> LtmRecord:
    return LtmRecord(
        id=content_key(user_id, MemoryKind.SEMANTIC, text),
        kind=MemoryKind.SEMANTIC,
        content=text,
        embedding=vector,
        user_id=user_id,
    )


def _result(kind: MemoryKind, content: str, similarity: float = 0.9) -> MemorySearchResult:
    return MemorySearchResult(
        id=content, kind=kind, content=content, similarity=similarity, user_id="u1"
    )


@pytest.fixture
def ltm() -> LongTermMemory:
    """Service backed by the hashing embedder and an in-memory store."""
    return LongTermMemory(HashingEmbedder(), InMemoryMemoryStore(merge_threshold=0.95))


class TestContentKey:
    """Test content identity."""

    def test_normalization(self) -> None:
        """Test case and whitespace do not change identity."""
        assert normalize_text("  Paris\tis   the CAPITAL ") == "paris is the capital"
        assert content_key("u", MemoryKind.SEMANTIC, "Paris is nice") == content_key(
            "u", MemoryKind.SEMANTIC, "paris  is nice"
        )

    def test_kind_and_user_matter(self) -> None:
        """Test the same text under another kind or user is a different memory."""
        key = content_key("u", MemoryKind.SEMANTIC, "x")
        assert key != content_key("u", MemoryKind.EPISODIC, "x")
        assert key != content_key("v", MemoryKind.SEMANTIC, "x")


class TestInMemoryMemoryStore:
    """Test the in-memory store."""

    @pytest.mark.asyncio
    async def test_exact_duplicate_merges(self) -> None:
        """Test re-inserting a record increments its occurrences."""
        store = InMemoryMemoryStore()
        record = _record("fact", [1.0, 0.0])

        first = await store.upsert([record])
        second = await store.upsert([record])

        assert (first.inserted, first.merged) == (1, 0)
        assert (second.inserted, second.merged) == (0, 1)
        assert len(store) == 1
        assert store.records()[0].occurrences == 2

    @pytest.mark.asyncio
    async def test_near_duplicate_merges(self) -> None:
        """Test a near-identical embedding merges into the existing record."""
        store = InMemoryMemoryStore(merge_threshold=0.95)
        await store.upsert([_record("a", [1.0, 0.0])])

        result = await store.upsert([_record("b", [0.999, 0.01])])

        assert result.merged == 1
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_other_users_never_merge(self) -> None:
        """Test records of different users stay apart."""
        store = InMemoryMemoryStore()
        await store.upsert([_record("a", [1.0, 0.0], user_id="u1")])

        result = await store.upsert([_record("a", [1.0, 0.0], user_id="u2")])

        assert result.inserted == 1
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_upsert_order_does_not_matter(self) -> None:
        """Test any upsert order converges on the same records."""
        batches = [
            [_record("alpha", [1.0, 0.0, 0.0])],
            [_record("beta", [0.0, 1.0, 0.0])],
            [_record("alpha", [1.0, 0.0, 0.0]), _record("gamma", [0.0, 0.0, 1.0])],
        ]

        outcomes = set()
        for order in itertools.permutations(batches):
            store = InMemoryMemoryStore()
            await asyncio.gather(*(store.upsert(batch) for batch in order))
            outcomes.add(
                tuple(sorted((r.id, r.content, r.occurrences) for r in store.records()))
            )

        assert len(outcomes) == 1

    @pytest.mark.asyncio
    async def test_search_ranks_and_filters(self) -> None:
        """Test search keeps the user's records above the threshold, best first."""
        store = InMemoryMemoryStore()
        await store.upsert(
            [
                _record("exact", [1.0, 0.0]),
                _record("close", [0.8, 0.6]),
                _record("far", [0.0, 1.0]),
                _record("other user", [1.0, 0.0], user_id="u2"),
            ]
        )

        results = await store.search([1.0, 0.0], "u1", top_k=5, min_similarity=0.5)

        assert [r.content for r in results] == ["exact", "close"]
        assert results[0].similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_search_top_k(self) -> None:
        """Test top_k caps the number of results."""
        store = InMemoryMemoryStore(merge_threshold=1.0)
        await store.upsert([_record(f"r{i}", [1.0, i / 100]) for i in range(5)])

        results = await store.search([1.0, 0.0], "u1", top_k=2, min_similarity=0.0)

        assert len(results) == 2


class TestLongTermMemory:
    """Test the long-term memory service."""

    @pytest.mark.asyncio
    async def test_upsert_and_search(self, ltm: LongTermMemory) -> None:
        """Test stored memories are found by a related query."""
        scope = MemoryScope(user_id="u1", run_id="run-1", task_id="task-1", step_id="step-1")

        result = await ltm.upsert(
            scope,
            [EpisodicMemory(content="searched the web for paris weather", sources=["search"])],
            [SemanticMemory(fact="paris weather is mild in spring")],
        )
        found = await ltm.search("paris weather", "u1", top_k=5, min_similarity=0.1)

        assert result.inserted == 2
        assert {r.kind for r in found} == {MemoryKind.EPISODIC, MemoryKind.SEMANTIC}
        assert all(r.run_id == "run-1" and r.task_id == "task-1" for r in found)
        episodic = next(r for r in found if r.kind == MemoryKind.EPISODIC)
        assert episodic.metadata == {"sources": ["search"]}

    @pytest.mark.asyncio
    async def test_repeated_upsert_is_idempotent_in_content(self, ltm: LongTermMemory) -> None:
        """Test repeating an upsert merges instead of duplicating."""
        scope = MemoryScope(user_id="u1")
        facts = [SemanticMemory(fact="the sky is blue")]

        await ltm.upsert(scope, [], facts)
        second = await ltm.upsert(scope, [], facts)

        assert (second.inserted, second.merged) == (0, 1)

    @pytest.mark.asyncio
    async def test_nothing_to_upsert(self, ltm: LongTermMemory) -> None:
        """Test an empty upsert is a no-op."""
        result = await ltm.upsert(MemoryScope(user_id="u1"), [], [])

        assert (result.inserted, result.merged) == (0, 0)

    @pytest.mark.asyncio
    async def test_blank_query(self, ltm: LongTermMemory) -> None:
        """Test a blank query finds nothing."""
        assert await ltm.search("   ", "u1", top_k=5, min_similarity=0.0) == []


def test_update_context_counts_kinds() -> None:
    """Test the loaded items and their counts are replaced."""
    items = [
        _result(MemoryKind.EPISODIC, "e1"),
        _result(MemoryKind.SEMANTIC, "s1"),
        _result(MemoryKind.SEMANTIC, "s2"),
    ]

    updated = update_context(LTMContext(), items).data

    assert updated is not None
    assert updated.items == items
    assert (updated.episodic_size, updated.semantic_size, updated.merge_size) == (1, 2, 3)


def test_format_ltm_context() -> None:
    """Test loaded memories render one per line."""
    ltm = LTMContext(items=[_result(MemoryKind.EPISODIC, "did x", 0.876)])

    assert format_ltm_context(ltm) == "- (event, similarity 0.88) did x"
    assert format_ltm_context(LTMContext()) == ""
