"""Markdown and JSON rendering of lint reports and review digests."""

from typing import Any

from note_synth.models.reviews import LintLevel, LintViolation, ReviewDigest, Severity
from note_synth.reviews.aggregator import SEVERITY_ICONS

LEVEL_ICONS = {LintLevel.ERROR: "❌", LintLevel.WARNING: "⚠️"}


def lint_report_as_json(results: dict[str, list[LintViolation]]) -> dict[str, Any]:
    """Lint results keyed by document source."""
    errors = sum(1 for vs in results.values() for v in vs if v.level is LintLevel.ERROR)
    warnings = sum(1 for vs in results.values() for v in vs if v.level is LintLevel.WARNING)
    return {
        "documents": {source: [v.to_dict() for v in vs] for source, vs in results.items()},
        "error_count": errors,
        "warning_count": warnings,
        "passed": errors == 0,
    }


def format_lint_report(results: dict[str, list[LintViolation]]) -> str:
    """Render lint results as Markdown."""
    lines = ["## Review Document Lint", ""]
    for source, violations in results.items():
        if not violations:
            lines.append(f"✅ `{source}`: no problems")
            continue
        lines.append(f"### `{source}`")
        lines.append("")
        for v in violations:
            where = f" (line {v.line})" if v.line else ""
            lines.append(f"- {LEVEL_ICONS[v.level]} **{v.rule}**{where}: {v.message}")
        lines.append("")

    report = lint_report_as_json(results)
    lines.append("")
    lines.append(f"**{report['error_count']} errors, {report['warning_count']} warnings**")
    return "\n".join(lines).rstrip() + "\n"


def digest_as_json(digest: ReviewDigest) -> dict[str, Any]:
    """Serialize a digest to a JSON-friendly dict."""
    return {
        "id": digest.id,
        "created_at": digest.created_at.isoformat(),
        "document_count": digest.document_count,
        "summary": digest.summary,
        "has_blocking_issues": digest.has_blocking_issues,
        "failing_documents": digest.failing_documents,
        "issues": [
            {
                "id": issue.id,
                "severity": issue.severity.value,
                "title": issue.title,
                "file_path": issue.file_path,
                "line_start": issue.line_start,
                "fix": issue.fix,
                "recurrence": issue.recurrence,
                "priority_score": round(issue.priority_score, 2),
                "sources": issue.sources,
            }
            for issue in digest.issues
        ],
    }


def format_digest(digest: ReviewDigest) -> str:
    """Render a digest as Markdown grouped by severity."""
    lines = ["## Review Digest", "", digest.summary, ""]

    if digest.failing_documents:
        lines.append(f"**Failing reviews:** {', '.join(digest.failing_documents)}")
        lines.append("")

    for severity in Severity:
        group = [i for i in digest.issues if i.severity is severity]
        if not group:
            continue
        lines.append(f"### {SEVERITY_ICONS[severity]} {severity.value.capitalize()} ({len(group)})")
        lines.append("")
        for issue in group:
            location = issue.file_path or "(no file)"
            if issue.file_path and issue.line_start is not None:
                location = f"{issue.file_path}:{issue.line_start}"
            recurrence = f" ×{issue.recurrence}" if issue.recurrence > 1 else ""
            lines.append(f"- **{issue.title}**{recurrence} `{location}`")
            if issue.fix:
                lines.append(f"  - Fix: {issue.fix}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
