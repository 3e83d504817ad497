"""Models for Markdown review documents, lint results and digests."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Severity(Enum):
    """Severity levels used in review documents, most severe first.

    - CRITICAL: must fix before merge; requires a File/Line/Fix triplet.
    - HIGH: should fix before merge.
    - MEDIUM: fix soon.
    - LOW: optional polish.
    """

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> float:
        """Ranking weight for this severity."""
        return {
            Severity.CRITICAL: 1.0,
            Severity.HIGH: 0.6,
            Severity.MEDIUM: 0.3,
            Severity.LOW: 0.1,
        }[self]


class ReviewStatus(Enum):
    """Overall verdict of a review pass."""

    PASS = "pass"
    PASS_WITH_NOTES = "pass_with_notes"
    FAIL = "fail"
    UNKNOWN = "unknown"


@dataclass
class ReviewIssue:
    """One issue listed in a review document."""

    severity: Severity
    title: str
    heading_line: int
    file_path: str | None = None
    line_start: int | None = None
    line_end: int | None = None
    line_text: str | None = None
    fix: str | None = None
    body: str = ""

    @property
    def has_triplet(self) -> bool:
        """Whether File, Line and Fix are all present."""
        return bool(self.file_path) and bool(self.line_text) and bool(self.fix)

    @property
    def location(self) -> str:
        """Human-readable file:line reference."""
        if not self.file_path:
            return "(no file)"
        if self.line_start is None:
            return self.file_path
        if self.line_end and self.line_end != self.line_start:
            return f"{self.file_path}:{self.line_start}-{self.line_end}"
        return f"{self.file_path}:{self.line_start}"


@dataclass
class ReviewDocument:
    """A parsed Markdown review pass over a feature branch."""

    title: str | None
    status: ReviewStatus
    issues: list[ReviewIssue] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    branch: str | None = None
    date: str | None = None
    source: str | None = None

    def issues_by_severity(self, severity: Severity) -> list[ReviewIssue]:
        """Issues with the given severity, in document order."""
        return [i for i in self.issues if i.severity == severity]

    @property
    def critical_count(self) -> int:
        """Number of CRITICAL issues."""
        return len(self.issues_by_severity(Severity.CRITICAL))


class LintLevel(Enum):
    """How serious a lint violation is."""

    ERROR = "error"
    WARNING = "warning"


@dataclass
class LintViolation:
    """A rule a review document breaks."""

    rule: str
    level: LintLevel
    message: str
    line: int | None = None
    source: str | None = None

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "rule": self.rule,
            "level": self.level.value,
            "message": self.message,
            "line": self.line,
            "source": self.source,
        }


@dataclass
class ConsolidatedIssue:
    """An issue merged across several review passes."""

    id: str
    severity: Severity
    title: str
    file_path: str | None
    line_start: int | None
    fix: str | None
    recurrence: int
    sources: list[str]
    original_issues: list[ReviewIssue] = field(default_factory=list)

    @property
    def priority_score(self) -> float:
        """Severity weight scaled by how often the issue recurs."""
        return self.severity.weight * self.recurrence


@dataclass
class ReviewDigest:
    """Consolidated view over a set of review documents."""

    id: str
    created_at: datetime
    document_count: int
    issues: list[ConsolidatedIssue]
    summary: str
    failing_documents: list[str] = field(default_factory=list)

    @property
    def has_blocking_issues(self) -> bool:
        """Whether any consolidated issue is CRITICAL."""
        return any(i.severity == Severity.CRITICAL for i in self.issues)
