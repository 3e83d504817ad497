"""Configuration loading and validation for note-synth."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_LLM_BASE_URL = "https://api.openai.com/v1"


@dataclass
class LLMSettings:
    """Chat completion endpoint configuration."""

    api_key: str
    base_url: str = DEFAULT_LLM_BASE_URL
    chat_model: str = "gpt-4o-mini"
    timeout_seconds: int = 60


@dataclass
class EmbeddingSettings:
    """Embedding model configuration."""

    model: str = "text-embedding-3-small"
    dimension: int = 1536


@dataclass
class ScoringSettings:
    """Thresholds used by the task intelligence services."""

    coverage_threshold: int = 70
    draft_duplicate_threshold: float = 0.85
    manual_duplicate_threshold: float = 0.9
    max_concurrency: int = 10
    quality_batch_size: int = 10
    quality_batch_delay_seconds: float = 0.5


@dataclass
class PrioritizationSettings:
    """Hybrid generator/evaluator loop configuration."""

    max_iterations: int = 3
    generator_timeout_seconds: int = 60
    evaluator_timeout_seconds: int = 30
    manual_task_timeout_seconds: int = 10
    evaluator_models: list[str] = field(default_factory=list)


@dataclass
class ReviewSettings:
    """Review document linting configuration."""

    similarity_threshold: float = 0.8
    fail_on_warnings: bool = False
    disabled_rules: list[str] = field(default_factory=list)


@dataclass
class ServerSettings:
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    health_check_path: str = "/health"
    signing_secret: str | None = None


@dataclass
class Config:
    """Complete application configuration."""

    llm: LLMSettings
    embeddings: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    scoring: ScoringSettings = field(default_factory=ScoringSettings)
    prioritization: PrioritizationSettings = field(default_factory=PrioritizationSettings)
    reviews: ReviewSettings = field(default_factory=ReviewSettings)
    server: ServerSettings = field(default_factory=ServerSettings)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Path to config file (default: config.yaml)

    Returns:
        Loaded configuration
    """
    if config_path is None:
        config_path = Path("config.yaml")
        if not config_path.exists():
            config_path = Path("config.example.yaml")

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}

    raw_config = _expand_env_vars(raw_config)

    return _parse_config(raw_config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} references in config values."""
    if isinstance(obj, str):
        if obj.startswith("${") and obj.endswith("}"):
            return os.environ.get(obj[2:-1], "")
        return obj
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw config dict into Config object."""
    llm_raw = raw.get("llm", {})
    llm = LLMSettings(
        api_key=llm_raw.get("api_key") or os.environ.get("OPENAI_API_KEY", ""),
        base_url=llm_raw.get("base_url") or os.environ.get("OPENAI_BASE_URL", DEFAULT_LLM_BASE_URL),
        chat_model=llm_raw.get("chat_model", "gpt-4o-mini"),
        timeout_seconds=llm_raw.get("timeout_seconds", 60),
    )

    emb_raw = raw.get("embeddings", {})
    embeddings = EmbeddingSettings(
        model=emb_raw.get("model", "text-embedding-3-small"),
        dimension=emb_raw.get("dimension", 1536),
    )

    scoring_raw = raw.get("scoring", {})
    scoring = ScoringSettings(
        coverage_threshold=scoring_raw.get("coverage_threshold", 70),
        draft_duplicate_threshold=scoring_raw.get("draft_duplicate_threshold", 0.85),
        manual_duplicate_threshold=scoring_raw.get("manual_duplicate_threshold", 0.9),
        max_concurrency=scoring_raw.get("max_concurrency", 10),
        quality_batch_size=scoring_raw.get("quality_batch_size", 10),
        quality_batch_delay_seconds=scoring_raw.get("quality_batch_delay_seconds", 0.5),
    )

    prio_raw = raw.get("prioritization", {})
    prioritization = PrioritizationSettings(
        max_iterations=prio_raw.get("max_iterations", 3),
        generator_timeout_seconds=prio_raw.get("generator_timeout_seconds", 60),
        evaluator_timeout_seconds=prio_raw.get("evaluator_timeout_seconds", 30),
        manual_task_timeout_seconds=prio_raw.get("manual_task_timeout_seconds", 10),
        evaluator_models=prio_raw.get("evaluator_models") or [],
    )

    reviews_raw = raw.get("reviews", {})
    reviews = ReviewSettings(
        similarity_threshold=reviews_raw.get("similarity_threshold", 0.8),
        fail_on_warnings=reviews_raw.get("fail_on_warnings", False),
        disabled_rules=reviews_raw.get("disabled_rules", []),
    )

    server_raw = raw.get("server", {})
    server = ServerSettings(
        host=server_raw.get("host", "0.0.0.0"),
        port=server_raw.get("port", 8080),
        health_check_path=server_raw.get("health_check_path", "/health"),
        signing_secret=server_raw.get("signing_secret") or os.environ.get("NOTE_SYNTH_SIGNING_SECRET"),
    )

    return Config(
        llm=llm,
        embeddings=embeddings,
        scoring=scoring,
        prioritization=prioritization,
        reviews=reviews,
        server=server,
    )


def validate_config(config: Config, require_llm: bool = True) -> list[str]:
    """Validate configuration and return list of errors.

    Args:
        config: Configuration to validate
        require_llm: Whether a missing API key counts as an error

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if require_llm and not config.llm.api_key:
        errors.append("Missing LLM API key (set OPENAI_API_KEY or llm.api_key)")

    if config.embeddings.dimension <= 0:
        errors.append(f"embeddings.dimension must be positive, got {config.embeddings.dimension}")

    if not 0 <= config.scoring.coverage_threshold <= 100:
        errors.append(
            f"scoring.coverage_threshold must be within 0-100, got {config.scoring.coverage_threshold}"
        )

    for name in ("draft_duplicate_threshold", "manual_duplicate_threshold"):
        value = getattr(config.scoring, name)
        if not 0.0 <= value <= 1.0:
            errors.append(f"scoring.{name} must be within 0.0-1.0, got {value}")

    if not 1 <= config.prioritization.max_iterations <= 3:
        errors.append(
            f"prioritization.max_iterations ({config.prioritization.max_iterations}) "
            "must be between 1 and 3"
        )

    if not 0.0 < config.reviews.similarity_threshold <= 1.0:
        errors.append(
            f"reviews.similarity_threshold must be within (0.0, 1.0], "
            f"got {config.reviews.similarity_threshold}"
        )

    return errors
