"""Lint rules for review documents."""

import logging
from collections.abc import Callable, Iterable

from note_synth.models.reviews import (
    LintLevel,
    LintViolation,
    ReviewDocument,
    ReviewStatus,
    Severity,
)
from note_synth.reviews.parser import parse_line_reference

logger = logging.getLogger(__name__)

PASSING_STATUSES = {ReviewStatus.PASS, ReviewStatus.PASS_WITH_NOTES}


def check_critical_triplet(document: ReviewDocument) -> list[LintViolation]:
    """Every CRITICAL issue must carry a File/Line/Fix triplet."""
    violations = []
    for issue in document.issues_by_severity(Severity.CRITICAL):
        missing = [
            name
            for name, value in (("File", issue.file_path), ("Line", issue.line_text), ("Fix", issue.fix))
            if not value
        ]
        if missing:
            violations.append(
                LintViolation(
                    rule="critical-triplet",
                    level=LintLevel.ERROR,
                    message=f"CRITICAL issue '{issue.title}' is missing {', '.join(missing)}",
                    line=issue.heading_line,
                )
            )
    return violations


def check_missing_status(document: ReviewDocument) -> list[LintViolation]:
    if document.status is not ReviewStatus.UNKNOWN:
        return []
    return [
        LintViolation(
            rule="missing-status",
            level=LintLevel.ERROR,
            message="Document has no recognizable **Status** (PASS, FAIL or PASS WITH NOTES)",
        )
    ]


def check_status_consistency(document: ReviewDocument) -> list[LintViolation]:
    """A passing review cannot list CRITICAL issues."""
    if document.status not in PASSING_STATUSES or not document.critical_count:
        return []
    return [
        LintViolation(
            rule="status-consistency",
            level=LintLevel.ERROR,
            message=(
                f"Status is {document.status.value.upper()} but "
                f"{document.critical_count} CRITICAL issue(s) are listed"
            ),
        )
    ]


def check_high_file_reference(document: ReviewDocument) -> list[LintViolation]:
    return [
        LintViolation(
            rule="high-file-reference",
            level=LintLevel.WARNING,
            message=f"HIGH issue '{issue.title}' does not name a File",
            line=issue.heading_line,
        )
        for issue in document.issues_by_severity(Severity.HIGH)
        if not issue.file_path
    ]


def check_line_format(document: ReviewDocument) -> list[LintViolation]:
    """Line references must be ``N`` or ``N-M`` with N <= M."""
    violations = []
    for issue in document.issues:
        if not issue.line_text:
            continue
        start, end = parse_line_reference(issue.line_text)
        if start is None or (end is not None and end < start):
            violations.append(
                LintViolation(
                    rule="line-format",
                    level=LintLevel.WARNING,
                    message=f"Issue '{issue.title}' has malformed Line value '{issue.line_text}'",
                    line=issue.heading_line,
                )
            )
    return violations


def check_missing_title(document: ReviewDocument) -> list[LintViolation]:
    if document.title:
        return []
    return [
        LintViolation(
            rule="missing-title",
            level=LintLevel.WARNING,
            message="Document has no '# Code Review: <title>' heading",
        )
    ]


RULES: dict[str, Callable[[ReviewDocument], list[LintViolation]]] = {
    "critical-triplet": check_critical_triplet,
    "missing-status": check_missing_status,
    "status-consistency": check_status_consistency,
    "high-file-reference": check_high_file_reference,
    "line-format": check_line_format,
    "missing-title": check_missing_title,
}


def lint_review(
    document: ReviewDocument, disabled_rules: Iterable[str] | None = None
) -> list[LintViolation]:
    """Run every enabled lint rule against a review document.

    Args:
        document: Parsed review document
        disabled_rules: Rule names to skip

    Returns:
        Violations ordered by rule, then by line
    """
    disabled = set(disabled_rules or ())
    unknown = disabled - RULES.keys()
    if unknown:
        logger.warning(f"Ignoring unknown lint rules: {', '.join(sorted(unknown))}")

    violations: list[LintViolation] = []
    for name, rule in RULES.items():
        if name in disabled:
            continue
        for violation in rule(document):
            violation.source = document.source
            violations.append(violation)
    return violations


def has_errors(violations: Iterable[LintViolation], fail_on_warnings: bool = False) -> bool:
    """Whether the violations should fail a lint run."""
    return any(
        v.level is LintLevel.ERROR or (fail_on_warnings and v.level is LintLevel.WARNING)
        for v in violations
    )
