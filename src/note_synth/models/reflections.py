"""Reflection effect and intent models."""

from dataclasses import dataclass, field
from enum import Enum


class EffectType(Enum):
    """How a reflection changes a task's standing."""

    BLOCKED = "blocked"
    DEMOTED = "demoted"
    BOOSTED = "boosted"
    UNCHANGED = "unchanged"


@dataclass
class ReflectionEffect:
    """The effect of one reflection on one task."""

    reflection_id: str
    task_id: str
    effect: EffectType
    magnitude: float
    reason: str


class IntentType(Enum):
    """Top-level reflection category."""

    CONSTRAINT = "constraint"
    OPPORTUNITY = "opportunity"
    CAPACITY = "capacity"
    SEQUENCING = "sequencing"
    INFORMATION = "information"


class IntentSubtype(Enum):
    """Fine-grained reflection category."""

    BLOCKER = "blocker"
    SOFT_BLOCK = "soft-block"
    BOOST = "boost"
    ENERGY_LEVEL = "energy-level"
    DEPENDENCY = "dependency"
    CONTEXT_ONLY = "context-only"


class IntentStrength(Enum):
    """Whether a reflection is a hard rule or a preference."""

    HARD = "hard"
    SOFT = "soft"


@dataclass
class ReflectionIntent:
    """Structured interpretation of a free-text reflection."""

    type: IntentType
    subtype: IntentSubtype
    summary: str
    strength: IntentStrength = IntentStrength.SOFT
    keywords: list[str] = field(default_factory=list)
    duration_days: int | None = None

    def __post_init__(self) -> None:
        """Validate intent data."""
        if len(self.summary) > 500:
            raise ValueError(f"summary must be at most 500 characters, got {len(self.summary)}")

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "type": self.type.value,
            "subtype": self.subtype.value,
            "summary": self.summary,
            "strength": self.strength.value,
            "keywords": list(self.keywords),
            "duration_days": self.duration_days,
        }
