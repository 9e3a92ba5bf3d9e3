"""Short- and long-term memory.

This module provides:
- The short-term memory ring (pure functions in ``stm``)
- Long-term memory store, embedders and service
- The consolidator that moves task outcomes between the two
"""

from agent_engine.memory import stm
from agent_engine.memory.consolidator import MemoryConsolidator
from agent_engine.memory.embeddings import (
    Embedder,
    EmbeddingError,
    HashingEmbedder,
    HttpEmbedder,
    cosine_similarity,
)
from agent_engine.memory.ltm import (
    InMemoryMemoryStore,
    LongTermMemory,
    LtmRecord,
    MemoryStore,
    format_ltm_context,
    update_context,
)
from agent_engine.memory.models import (
    EpisodicMemory,
    LTMContext,
    Memories,
    MemoryItem,
    MemoryKind,
    MemoryResult,
    MemoryScope,
    MemorySearchResult,
    SemanticMemory,
    STMContext,
    UpsertResult,
)

__all__ = [
    # Short-term memory
    "stm",
    "STMContext",
    "MemoryItem",
    "MemoryResult",
    # Long-term memory
    "LongTermMemory",
    "MemoryStore",
    "InMemoryMemoryStore",
    "LtmRecord",
    "LTMContext",
    "MemoryKind",
    "MemoryScope",
    "MemorySearchResult",
    "EpisodicMemory",
    "SemanticMemory",
    "UpsertResult",
    "update_context",
    "format_ltm_context",
    # Embeddings
    "Embedder",
    "EmbeddingError",
    "HashingEmbedder",
    "HttpEmbedder",
    "cosine_similarity",
    # Session memories
    "Memories",
    "MemoryConsolidator",
]
