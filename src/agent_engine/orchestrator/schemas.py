"""Structured outputs requested from the model gateway."""

from pydantic import BaseModel, Field

from agent_engine.memory.models import EpisodicMemory, SemanticMemory


class PlannerActivation(BaseModel):
    """Whether an objective needs an explicit plan."""

    planner_activated: bool
    reason: str = ""


class PlanValidation(BaseModel):
    """Verdict on a freshly created or revised plan."""

    success: bool
    reason: str = ""


class TaskVerification(BaseModel):
    """Verdict on a task the executor declared finished."""

    task_completed: bool
    confidence_score: int = Field(..., ge=0, le=100)
    reasoning: str = ""
    missing_elements: list[str] = Field(default_factory=list)
    next_actions: list[str] = Field(default_factory=list)


class MemoryExtraction(BaseModel):
    """Memories worth keeping from a finished task."""

    episodic: list[EpisodicMemory] = Field(default_factory=list)
    semantic: list[SemanticMemory] = Field(default_factory=list)
