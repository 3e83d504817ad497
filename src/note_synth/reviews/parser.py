"""Parser for Markdown review documents."""

import logging
import re
from pathlib import Path

from note_synth.models.reviews import ReviewDocument, ReviewIssue, ReviewStatus, Severity

logger = logging.getLogger(__name__)

TITLE_PATTERN = re.compile(r"^#\s+(?:Code Review:\s*)?(?P<title>.+?)\s*$", re.IGNORECASE)
SECTION_PATTERN = re.compile(r"^##\s+(?P<name>.+?)\s*$")
FIELD_PATTERN = re.compile(
    r"^\s*(?:[-*]\s+)?\*\*(?P<name>[A-Za-z ]+?):?\*\*\s*:?\s*(?P<value>.*)$"
)
LINE_VALUE_PATTERN = re.compile(r"^L?(?P<start>\d+)(?:\s*[-–]\s*L?(?P<end>\d+))?$")
BULLET_PATTERN = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+(?P<text>.+?)\s*$")

_SEVERITIES = "CRITICAL|HIGH|MEDIUM|LOW"
ISSUE_PATTERNS = [
    re.compile(rf"^###\s+(?P<severity>{_SEVERITIES})\s*:\s*(?P<title>.*?)\s*$", re.IGNORECASE),
    re.compile(rf"^###\s+\[(?P<severity>{_SEVERITIES})\]\s*(?P<title>.*?)\s*$", re.IGNORECASE),
    re.compile(
        rf"^\s*[-*]\s+\*\*(?P<severity>{_SEVERITIES})\*\*\s*:?\s*(?P<title>.*?)\s*$",
        re.IGNORECASE,
    ),
]

# Checked in order; "pass with notes" must win over plain "pass".
STATUS_KEYWORDS = [
    ("pass with notes", ReviewStatus.PASS_WITH_NOTES),
    ("pass_with_notes", ReviewStatus.PASS_WITH_NOTES),
    ("fail", ReviewStatus.FAIL),
    ("pass", ReviewStatus.PASS),
]


def parse_status(value: str) -> ReviewStatus:
    """Map a free-form status value such as "✅ PASS" to a ReviewStatus."""
    normalized = re.sub(r"[^a-z_ ]", " ", value.lower())
    normalized = " ".join(normalized.split())
    for keyword, status in STATUS_KEYWORDS:
        if keyword in normalized:
            return status
    return ReviewStatus.UNKNOWN


def parse_line_reference(value: str) -> tuple[int | None, int | None]:
    """Parse "42" or "42-57" into a (start, end) pair.

    Returns (None, None) when the value is not a line reference.
    """
    match = LINE_VALUE_PATTERN.match(value.strip().strip("`"))
    if not match:
        return None, None
    start = int(match.group("start"))
    end = int(match.group("end")) if match.group("end") else start
    return start, end


def _match_issue(line: str) -> tuple[Severity, str] | None:
    for pattern in ISSUE_PATTERNS:
        match = pattern.match(line)
        if match:
            return Severity(match.group("severity").lower()), match.group("title").strip()
    return None


def _apply_field(issue: ReviewIssue, name: str, value: str) -> bool:
    """Set a File/Line/Fix field on an issue; False for unrelated bold text."""
    key = name.strip().lower()
    value = value.strip()
    if key in ("file", "path"):
        issue.file_path = value.strip("`") or None
    elif key in ("line", "lines"):
        issue.line_text = value or None
        issue.line_start, issue.line_end = parse_line_reference(value) if value else (None, None)
    elif key in ("fix", "suggested fix", "resolution"):
        issue.fix = value or None
    else:
        return False
    return True


def parse_review(text: str, source: str | None = None) -> ReviewDocument:
    """Parse a Markdown review document.

    Issue headings are recognized inside the "Issues Found" section, or
    anywhere outside "Recommendations" when the document has no such section.

    Args:
        text: Markdown content
        source: Where the document came from, kept for reporting

    Returns:
        Parsed review document
    """
    lines = text.splitlines()
    has_issue_section = any(
        "issues found" in match.group("name").lower()
        for match in map(SECTION_PATTERN.match, lines)
        if match
    )

    title: str | None = None
    status = ReviewStatus.UNKNOWN
    status_seen = False
    branch: str | None = None
    review_date: str | None = None
    issues: list[ReviewIssue] = []
    recommendations: list[str] = []

    section: str | None = None
    current: ReviewIssue | None = None

    for number, line in enumerate(lines, start=1):
        section_match = SECTION_PATTERN.match(line)
        if section_match and not line.startswith("###"):
            section = section_match.group("name").lower()
            current = None
            continue

        if title is None and section is None:
            title_match = TITLE_PATTERN.match(line)
            if title_match and not line.startswith("##"):
                title = title_match.group("title")
                continue

        in_recommendations = section is not None and "recommendation" in section
        in_issues = (
            section is not None and "issues found" in section
            if has_issue_section
            else not in_recommendations
        )

        if in_issues:
            matched = _match_issue(line)
            if matched:
                severity, issue_title = matched
                current = ReviewIssue(severity=severity, title=issue_title, heading_line=number)
                issues.append(current)
                continue
            if line.startswith("###"):
                current = None
                continue

        field_match = FIELD_PATTERN.match(line)
        if field_match:
            name = field_match.group("name").strip().lower()
            value = field_match.group("value").strip()
            if current is not None and _apply_field(current, name, value):
                continue
            if current is None and section is None:
                if name == "status" and not status_seen:
                    status = parse_status(value)
                    status_seen = True
                    continue
                if name == "branch":
                    branch = value.strip("`") or None
                    continue
                if name == "date":
                    review_date = value or None
                    continue

        if in_recommendations:
            bullet = BULLET_PATTERN.match(line)
            if bullet:
                recommendations.append(bullet.group("text"))
            continue

        if current is not None and line.strip():
            current.body = f"{current.body}\n{line.strip()}" if current.body else line.strip()

    if not status_seen:
        logger.debug(f"No status line found in review {source or '<text>'}")

    return ReviewDocument(
        title=title,
        status=status,
        issues=issues,
        recommendations=recommendations,
        branch=branch,
        date=review_date,
        source=source,
    )


def parse_review_file(path: Path | str) -> ReviewDocument:
    """Read and parse a review document from disk.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    return parse_review(path.read_text(encoding="utf-8"), source=str(path))
