"""Manual task placement models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ManualTaskStatus(Enum):
    """Lifecycle state of a user-authored task."""

    ANALYZING = "analyzing"
    PRIORITIZED = "prioritized"
    NOT_RELEVANT = "not_relevant"
    CONFLICT = "conflict"


@dataclass
class ConflictDetails:
    """Why a manual task was flagged as a duplicate."""

    duplicate_task_id: str
    similarity_score: float
    existing_task_text: str


@dataclass
class ManualTaskAnalysis:
    """Result of placing a manual task against the active outcome."""

    status: ManualTaskStatus
    rank: int | None = None
    placement_reason: str | None = None
    exclusion_reason: str | None = None
    conflict_details: ConflictDetails | None = None

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        data: dict = {"status": self.status.value}
        if self.rank is not None:
            data["rank"] = self.rank
        if self.placement_reason:
            data["placement_reason"] = self.placement_reason
        if self.exclusion_reason:
            data["exclusion_reason"] = self.exclusion_reason
        if self.conflict_details:
            data["conflict_details"] = {
                "duplicate_task_id": self.conflict_details.duplicate_task_id,
                "similarity_score": self.conflict_details.similarity_score,
                "existing_task_text": self.conflict_details.existing_task_text,
            }
        return data


@dataclass
class ManualTask:
    """A task the user typed in rather than one extracted from a document."""

    task_id: str
    text: str
    outcome_id: str | None = None
    status: ManualTaskStatus = ManualTaskStatus.ANALYZING
    agent_rank: int | None = None
    placement_reason: str | None = None
    exclusion_reason: str | None = None
    duplicate_task_id: str | None = None
    similarity_score: float | None = None
    deleted_at: datetime | None = None

    def apply(self, analysis: ManualTaskAnalysis) -> None:
        """Copy an analysis result onto this task."""
        self.status = analysis.status
        self.agent_rank = analysis.rank
        self.placement_reason = analysis.placement_reason
        self.exclusion_reason = analysis.exclusion_reason
        if analysis.conflict_details:
            self.duplicate_task_id = analysis.conflict_details.duplicate_task_id
            self.similarity_score = analysis.conflict_details.similarity_score
        else:
            self.duplicate_task_id = None
            self.similarity_score = None
