"""Domain models shared by every engine component."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_of_week(value: datetime) -> int:
    """Day of week with Sunday = 0 ... Saturday = 6."""
    return value.isoweekday() % 7


DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class FragmentType(str, Enum):
    """Kind of reusable context."""

    PROFILE = "profile"
    PROJECT = "project"
    TASK = "task"
    SNIPPET = "snippet"
    ADHOC = "adhoc"


class RelationType(str, Enum):
    """Typed, directed relationship between two fragments."""

    DEPENDS_ON = "depends_on"
    EXTENDS = "extends"
    CONFLICTS = "conflicts"
    USES = "uses"


# Edge types whose target must be present when the source is selected
DEPENDENCY_RELATIONS = {RelationType.DEPENDS_ON, RelationType.EXTENDS}


class Fragment(BaseModel):
    """A reusable piece of context text owned by one user."""

    id: str
    owner_id: str
    name: str = ""
    description: str = ""
    type: FragmentType = FragmentType.ADHOC
    text: str = ""
    token_count: int = Field(default=0, ge=0)
    tags: list[str] = Field(default_factory=list)
    priority: int = Field(default=0, ge=0, le=10)
    usage_count: int = Field(default=0, ge=0)
    last_used_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    is_active: bool = True

    @property
    def tokens(self) -> int:
        """Declared token count, or an estimate from the text."""
        if self.token_count:
            return self.token_count
        return TokenEstimator.estimate(self.text)

    @property
    def label(self) -> str:
        return self.name or self.id


class RelationshipEdge(BaseModel):
    """A directed edge from the Relationship Store."""

    source_id: str
    target_id: str
    type: RelationType
    metadata: dict[str, Any] = Field(default_factory=dict)


class UsageEvent(BaseModel):
    """One append-only record of a fragment being used."""

    user_id: str
    fragment_id: str
    activity_type: str | None = "general"
    timestamp: datetime = Field(default_factory=utcnow)
    success: bool = True
    duration_s: float | None = None
    related_fragment_ids: list[str] = Field(default_factory=list)


class TokenEstimator:
    """Estimate token counts for fragment text."""

    # Rough heuristic: 1 token ≈ 4 characters of prose
    CHARS_PER_TOKEN = 4.0

    @classmethod
    def estimate(cls, text: str) -> int:
        """Estimate token count for a string."""
        return max(1, int(len(text) / cls.CHARS_PER_TOKEN))


class SuggestionSource(str, Enum):
    """Which strategy produced a suggestion."""

    TIME = "time"
    ACTIVITY = "activity"
    SEQUENTIAL = "sequential"
    FREQUENCY = "frequency"
    SIMILARITY = "similarity"


class Suggestion(BaseModel):
    """A fragment proposed without an explicit composition request."""

    fragment_id: str
    name: str = ""
    type: FragmentType = FragmentType.ADHOC
    tags: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    reason: str = ""
    source: SuggestionSource
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def for_fragment(
        cls,
        fragment: Fragment,
        confidence: float,
        reason: str,
        source: SuggestionSource,
        **metadata: Any,
    ) -> Suggestion:
        return cls(
            fragment_id=fragment.id,
            name=fragment.label,
            type=fragment.type,
            tags=list(fragment.tags),
            confidence=confidence,
            reason=reason,
            source=source,
            metadata=metadata,
        )
