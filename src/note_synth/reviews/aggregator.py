"""Aggregator combining issues from several review passes."""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from difflib import SequenceMatcher

from note_synth.models.reviews import (
    ConsolidatedIssue,
    ReviewDigest,
    ReviewDocument,
    ReviewIssue,
    ReviewStatus,
    Severity,
)

logger = logging.getLogger(__name__)

SEVERITY_ICONS = {
    Severity.CRITICAL: "🔴",
    Severity.HIGH: "🟠",
    Severity.MEDIUM: "🟡",
    Severity.LOW: "🔵",
}


@dataclass
class AggregatorConfig:
    """Configuration for the aggregator."""

    similarity_threshold: float = 0.8


def _normalize_path(path: str | None) -> str:
    if not path:
        return ""
    return path.strip().strip("`").replace("\\", "/").removeprefix("./")


class ReviewAggregator:
    """Merges recurring issues across review passes into a digest."""

    def __init__(self, config: AggregatorConfig | None = None) -> None:
        """Initialize the aggregator.

        Args:
            config: Optional configuration
        """
        self.config = config or AggregatorConfig()

    def aggregate(self, documents: list[ReviewDocument]) -> ReviewDigest:
        """Consolidate the issues of several review documents.

        Algorithm:
        1. Tag every issue with the document it came from
        2. Cluster issues on the same file with similar titles
        3. Keep the most severe severity per cluster, count recurrence
        4. Rank by severity weight x recurrence

        Args:
            documents: Parsed review documents, typically one per pass

        Returns:
            Digest of consolidated issues
        """
        failing = [
            self._source_name(doc, i)
            for i, doc in enumerate(documents)
            if doc.status is ReviewStatus.FAIL
        ]

        tagged = [
            (self._source_name(doc, i), issue)
            for i, doc in enumerate(documents)
            for issue in doc.issues
        ]

        clusters = self._cluster_issues(tagged)
        consolidated = [self._merge_cluster(cluster) for cluster in clusters]
        consolidated.sort(
            key=lambda c: (c.priority_score, -list(Severity).index(c.severity)),
            reverse=True,
        )

        logger.info(
            f"Aggregated {len(tagged)} issues from {len(documents)} documents "
            f"into {len(consolidated)} unique issues"
        )

        return ReviewDigest(
            id=f"digest-{uuid.uuid4().hex[:8]}",
            created_at=datetime.now(),
            document_count=len(documents),
            issues=consolidated,
            summary=self._generate_summary(consolidated, len(documents)),
            failing_documents=failing,
        )

    @staticmethod
    def _source_name(document: ReviewDocument, index: int) -> str:
        return document.source or document.title or f"document-{index + 1}"

    def _cluster_issues(
        self, tagged: list[tuple[str, ReviewIssue]]
    ) -> list[list[tuple[str, ReviewIssue]]]:
        """Greedy single-pass clustering around the first unclustered issue."""
        clusters: list[list[tuple[str, ReviewIssue]]] = []
        used: set[int] = set()

        for i, (source_i, issue_i) in enumerate(tagged):
            if i in used:
                continue
            cluster = [(source_i, issue_i)]
            used.add(i)

            for j in range(i + 1, len(tagged)):
                if j in used:
                    continue
                if self._are_similar(issue_i, tagged[j][1]):
                    cluster.append(tagged[j])
                    used.add(j)

            clusters.append(cluster)

        return clusters

    def _are_similar(self, a: ReviewIssue, b: ReviewIssue) -> bool:
        if _normalize_path(a.file_path) != _normalize_path(b.file_path):
            return False
        return self._text_similarity(a.title, b.title) >= self.config.similarity_threshold

    def _text_similarity(self, text1: str, text2: str) -> float:
        """Compute text similarity using SequenceMatcher."""
        return SequenceMatcher(None, text1.lower(), text2.lower()).ratio()

    def _merge_cluster(self, cluster: list[tuple[str, ReviewIssue]]) -> ConsolidatedIssue:
        sources = list(dict.fromkeys(source for source, _ in cluster))
        issues = [issue for _, issue in cluster]

        # Severity enum is ordered most severe first
        base = min(issues, key=lambda i: list(Severity).index(i.severity))
        fix = base.fix or next((i.fix for i in issues if i.fix), None)
        line_start = base.line_start
        if line_start is None:
            line_start = next((i.line_start for i in issues if i.line_start is not None), None)

        key = f"{_normalize_path(base.file_path)}:{base.title.lower()}"
        return ConsolidatedIssue(
            id=f"issue-{hashlib.md5(key.encode()).hexdigest()[:8]}",
            severity=base.severity,
            title=base.title,
            file_path=base.file_path,
            line_start=line_start,
            fix=fix,
            recurrence=len(sources),
            sources=sources,
            original_issues=issues,
        )

    def _generate_summary(self, issues: list[ConsolidatedIssue], document_count: int) -> str:
        if not issues:
            return f"✅ No issues found across {document_count} review documents."

        counts: dict[Severity, int] = {}
        for issue in issues:
            counts[issue.severity] = counts.get(issue.severity, 0) + 1

        parts = [
            f"{SEVERITY_ICONS[severity]} {counts[severity]} {severity.value}"
            for severity in Severity
            if severity in counts
        ]
        recurring = sum(1 for i in issues if i.recurrence > 1)
        summary = (
            f"Found {', '.join(parts)} across {len(issues)} unique issues "
            f"in {document_count} review documents."
        )
        if recurring:
            summary += f" ♻️ {recurring} recurring."
        return summary
