"""Data models for short- and long-term memory."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryResult(BaseModel, Generic[T]):
    """Outcome of a memory operation. Memory functions return this instead of raising."""

    success: bool
    data: T | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def ok(cls, data: T) -> "MemoryResult[T]":
        """Successful result carrying data."""
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "MemoryResult[T]":
        """Failed result carrying an error message."""
        return cls(success=False, error=error)


class MemoryItem(BaseModel):
    """One slot of short-term memory."""

    model_config = ConfigDict(frozen=True)

    messages: list[dict[str, Any]]
    memories_id: str  # owning task
    step_id: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class STMContext(BaseModel):
    """Fixed-size ring of recent memory items.

    Invariant: size == min(total_inserted, max_size).
    """

    items: list[MemoryItem | None]
    max_size: int = Field(..., ge=1)
    head: int = 0
    size: int = 0
    total_inserted: int = 0


class MemoryKind(str, Enum):
    """Kind of long-term memory."""

    EPISODIC = "episodic"
    SEMANTIC = "semantic"


class EpisodicMemory(BaseModel):
    """Something that happened while working on a task."""

    content: str = Field(..., min_length=1)
    sources: list[str] = Field(default_factory=list)


class SemanticMemory(BaseModel):
    """A durable fact learned while working on a task."""

    fact: str = Field(..., min_length=1)
    category: str = "fact"


class MemoryScope(BaseModel):
    """Where a memory came from."""

    user_id: str
    run_id: str | None = None
    task_id: str | None = None
    step_id: str | None = None


class MemorySearchResult(BaseModel):
    """One long-term memory returned by a similarity search."""

    id: str
    kind: MemoryKind
    content: str
    similarity: float
    user_id: str
    run_id: str | None = None
    task_id: str | None = None
    step_id: str | None = None
    occurrences: int = 1
    metadata: dict[str, Any] = Field(default_factory=dict)


class LTMContext(BaseModel):
    """Long-term memory currently loaded into a session."""

    items: list[MemorySearchResult] = Field(default_factory=list)
    episodic_size: int = 0
    semantic_size: int = 0
    merge_size: int = 0


class Memories(BaseModel):
    """Everything a session remembers."""

    stm: STMContext
    ltm: LTMContext = Field(default_factory=LTMContext)
    is_processing: bool = False
    last_error: str | None = None


class UpsertResult(BaseModel):
    """Counts from one long-term upsert."""

    inserted: int = 0
    merged: int = 0
