"""Data models for usage prediction and pattern analytics."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ctxforge.models import Suggestion


class PredictionResult(BaseModel):
    """Merged, deduplicated suggestions plus per-strategy attribution."""

    predictions: list[Suggestion] = Field(default_factory=list)
    sources: dict[str, int] = Field(default_factory=dict)  # raw outputs per strategy
    omitted: list[str] = Field(default_factory=list)  # strategies that failed or timed out

    @property
    def total(self) -> int:
        return len(self.predictions)


class PatternBucket(BaseModel):
    key: str
    label: str = ""
    usage_count: int = 0
    unique_fragments: int = 0
    success_rate: float = 0.0
    avg_duration_s: float | None = None


class Combination(BaseModel):
    """Fragments used together within the same minute."""

    fragment_ids: list[str]
    frequency: int
    success_rate: float


class TopFragment(BaseModel):
    fragment_id: str
    name: str = ""
    usage_count: int = 0
    success_rate: float = 0.0
    last_used: datetime | None = None


class UsagePatterns(BaseModel):
    days_back: int
    group_by: str
    buckets: list[PatternBucket] = Field(default_factory=list)
    successful_combinations: list[Combination] = Field(default_factory=list)
    top_fragments: list[TopFragment] = Field(default_factory=list)
