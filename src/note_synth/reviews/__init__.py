"""Review document parsing, linting and aggregation."""

from note_synth.reviews.aggregator import AggregatorConfig, ReviewAggregator
from note_synth.reviews.formatter import (
    digest_as_json,
    format_digest,
    format_lint_report,
    lint_report_as_json,
)
from note_synth.reviews.linter import has_errors, lint_review
from note_synth.reviews.parser import parse_review, parse_review_file

__all__ = [
    "AggregatorConfig",
    "ReviewAggregator",
    "digest_as_json",
    "format_digest",
    "format_lint_report",
    "has_errors",
    "lint_report_as_json",
    "lint_review",
    "parse_review",
    "parse_review_file",
]
