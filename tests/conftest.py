"""Pytest configuration and shared fixtures."""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

# Sample review documents for testing
SAMPLE_FAILING_REVIEW = """\
# Code Review: Payment retries

**Status:** ❌ FAIL
**Branch:** `feature/payment-retries`
**Date:** 2024-05-02

## Summary

Retry logic added around the payment gateway.

## Issues Found

### CRITICAL: Missing idempotency key on retry
- **File:** `src/payments/gateway.py`
- **Line:** 42-57
- **Fix:** Pass the original request id as the idempotency key

Retrying without a key can double-charge customers.

### HIGH: Unbounded retry loop
- **File:** `src/payments/retry.py`
- **Line:** 12
- **Fix:** Cap attempts at 3

### MEDIUM: Missing log context
The retry log lines omit the order id.

## Recommendations

- Add an integration test for double submission
- Document the retry policy
"""

SAMPLE_PASSING_REVIEW = """\
# Code Review: Payment retries (second pass)

**Status:** ✅ PASS WITH NOTES

## Issues Found

### [HIGH] Unbounded retry loops
- **File:** `./src/payments/retry.py`
- **Line:** 14

### [LOW] Inconsistent button casing
- **File:** `web/checkout.tsx`
- **Line:** 88

## Recommendations

1. Align copy with the style guide
"""

SAMPLE_BROKEN_REVIEW = """\
**Status:** PASS

## Issues Found

### CRITICAL: SQL built with string formatting
- **File:** `db/query.py`

### HIGH: Token logged in plaintext

- **CRITICAL** Secrets in config
- **File:** config.yaml
- **Line:** 20-10
- **Fix:** Move secrets to environment variables
"""

SAMPLE_TASK_FILE = """\
outcome: "Increase trial-to-paid conversion by 20%"
tasks:
  - id: "001"
    text: "Design pricing page wireframes"
    created_at: 2024-05-01
    estimated_hours: 8
  - id: "002"
    text: "Implement Stripe checkout integration"
    created_at: 2024-05-02
    estimated_hours: 16
    depends_on: ["001"]
  - id: "003"
    text: "Launch pricing page to production"
    created_at: 2024-05-20
    estimated_hours: 4
    depends_on: ["002"]
relationships:
  - source: "001"
    target: "002"
    type: prerequisite
reflections:
  - id: r1
    text: "Focus on payments this week"
    created_at: 2024-05-03
"""

SAMPLE_CYCLIC_TASK_FILE = """\
tasks:
  - id: "001"
    text: "Write API contract"
    depends_on: ["002"]
  - id: "002"
    text: "Build API client"
    depends_on: ["001"]
"""


@pytest.fixture
def sample_failing_review() -> str:
    """A FAIL review with a complete CRITICAL issue."""
    return SAMPLE_FAILING_REVIEW


@pytest.fixture
def sample_passing_review() -> str:
    """A PASS WITH NOTES review that repeats one earlier issue."""
    return SAMPLE_PASSING_REVIEW


@pytest.fixture
def sample_broken_review() -> str:
    """A review that breaks most lint rules."""
    return SAMPLE_BROKEN_REVIEW


@pytest.fixture
def review_dir(tmp_path, sample_failing_review, sample_passing_review):
    """A directory holding two review passes."""
    directory = tmp_path / "reviews"
    directory.mkdir()
    (directory / "pass-1.md").write_text(sample_failing_review, encoding="utf-8")
    (directory / "pass-2.md").write_text(sample_passing_review, encoding="utf-8")
    return directory


@pytest.fixture
def task_file(tmp_path):
    """A YAML task file with an outcome, three tasks and a reflection."""
    path = tmp_path / "tasks.yaml"
    path.write_text(SAMPLE_TASK_FILE, encoding="utf-8")
    return path


@pytest.fixture
def cyclic_task_file(tmp_path):
    """A YAML task file whose dependencies form a cycle."""
    path = tmp_path / "cyclic.yaml"
    path.write_text(SAMPLE_CYCLIC_TASK_FILE, encoding="utf-8")
    return path


@pytest.fixture
def sample_tasks():
    """Tasks matching the sample task file."""
    from note_synth.models.tasks import Task

    return [
        Task(id="001", text="Design pricing page wireframes", created_at=datetime(2024, 5, 1)),
        Task(id="002", text="Implement Stripe checkout integration", created_at=datetime(2024, 5, 2)),
        Task(id="003", text="Launch pricing page to production", created_at=datetime(2024, 5, 20)),
    ]


@pytest.fixture
def mock_llm_client():
    """LLM client double with async completion and embedding methods."""
    client = MagicMock()
    client.complete = AsyncMock(return_value="")
    client.complete_json = AsyncMock(return_value={})
    client.embed = AsyncMock(return_value=[1.0, 0.0, 0.0])
    client.embed_many = AsyncMock(
        side_effect=lambda texts: [[1.0, 0.0, 0.0] for _ in texts]
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def offline_config():
    """Configuration without an API key or signing secret."""
    from note_synth.config import Config, LLMSettings, ServerSettings

    return Config(llm=LLMSettings(api_key=""), server=ServerSettings(signing_secret=None))


@pytest.fixture
def generator_payload() -> dict:
    """A valid generator response for tasks 001-003."""
    return {
        "thoughts": {
            "outcome_analysis": "Conversion depends on a working checkout.",
            "filtering_rationale": "All three tasks feed the pricing funnel.",
            "prioritization_strategy": "Unblock checkout first.",
            "self_check_notes": "",
        },
        "included_tasks": [
            {"task_id": "002", "inclusion_reason": "Enables paid conversion", "alignment_score": 9},
            {"task_id": "001", "inclusion_reason": "Needed before launch", "alignment_score": 7},
        ],
        "excluded_tasks": [
            {"task_id": "003", "exclusion_reason": "Blocked until checkout ships", "alignment_score": 4},
        ],
        "ordered_task_ids": ["002", "001"],
        "per_task_scores": {
            "002": {
                "task_id": "002",
                "impact": 9,
                "effort": 16,
                "confidence": 0.9,
                "reasoning": "Direct revenue path",
                "brief_reasoning": "Enables payment feature",
                "dependencies": ["001"],
            },
            "001": {
                "task_id": "001",
                "impact": 6,
                "effort": 8,
                "confidence": 0.8,
                "reasoning": "Design input for checkout",
                "brief_reasoning": "Unblocks #002",
            },
        },
        "confidence": 0.9,
        "critical_path_reasoning": "001 then 002",
        "corrections_made": "",
    }
