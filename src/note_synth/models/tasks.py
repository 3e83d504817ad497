"""Core task, outcome and reflection models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RelationshipType(Enum):
    """Directed relationship between two tasks."""

    PREREQUISITE = "prerequisite"  # source must finish before target
    BLOCKS = "blocks"
    RELATED = "related"


@dataclass
class Task:
    """A task extracted from a document or authored manually."""

    id: str
    text: str
    created_at: datetime | None = None
    embedding: list[float] | None = None
    document_id: str | None = None
    is_manual: bool = False

    def __post_init__(self) -> None:
        """Validate task data."""
        if not self.id:
            raise ValueError("Task id cannot be empty")
        if not self.text or not self.text.strip():
            raise ValueError(f"Task {self.id} text cannot be empty")


@dataclass
class TaskRelationship:
    """An edge in the task dependency graph."""

    source_task_id: str
    target_task_id: str
    relationship_type: RelationshipType
    confidence: float = 1.0

    def __post_init__(self) -> None:
        """Validate relationship data."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0.0 and 1.0, got {self.confidence}")
        if self.source_task_id == self.target_task_id:
            raise ValueError(f"Task {self.source_task_id} cannot relate to itself")


@dataclass
class Outcome:
    """The user's active goal that tasks are prioritized against."""

    id: str
    text: str
    is_active: bool = True
    embedding: list[float] | None = None
    state_preference: str | None = None
    daily_capacity_hours: float | None = None


@dataclass
class Reflection:
    """A short piece of user context that nudges prioritization."""

    id: str
    text: str
    created_at: datetime
    is_active: bool = True


@dataclass
class PlanTask:
    """A task inside an ordered plan, carrying its explicit dependencies."""

    id: str
    text: str
    estimated_hours: float
    depends_on: list[str] = field(default_factory=list)


@dataclass
class BridgingTaskInput:
    """A task proposed to fill the gap between two plan tasks."""

    text: str
    estimated_hours: float


@dataclass
class Gap:
    """A pair of adjacent plan tasks between which work is missing.

    A predecessor id of "000" means the gap sits before the first task.
    """

    predecessor_id: str
    successor_id: str


@dataclass
class InsertionResult:
    """Outcome of inserting bridging tasks into a plan."""

    success: bool
    inserted_ids: list[str] = field(default_factory=list)
    error: str | None = None
    updated_plan: list[PlanTask] | None = None
