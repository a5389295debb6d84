"""Multi-factor relevance scoring.

  composite(v) = similarity(v, q) * w_sim
               + recency(v)              step function of last use
               + min(usage(v) / 100, cap)
               + priority(v) / 50
               + diversity(v)            best match of its fragment type

Candidates are ordered by composite score, then similarity, then id, so the
ranking is a pure function of the inputs and the injected clock.
"""

from __future__ import annotations

from datetime import datetime

from ctxforge.config import ScoringConfig
from ctxforge.context.models import ScoredCandidate
from ctxforge.models import Fragment, as_utc


class RelevanceScorer:
    """Combines semantic similarity with recency, usage and priority."""

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()
        self._bands = sorted(self.config.recency_bands, key=lambda b: b.max_age_days)

    def recency_score(self, last_used_at: datetime | None, now: datetime) -> float:
        if last_used_at is None:
            return 0.0
        age_days = (as_utc(now) - as_utc(last_used_at)).total_seconds() / 86400
        for band in self._bands:
            if age_days <= band.max_age_days:
                return band.score
        return 0.0

    def usage_score(self, usage_count: int) -> float:
        return min(usage_count / self.config.usage_divisor, self.config.usage_cap)

    def priority_score(self, priority: int) -> float:
        return priority / self.config.priority_divisor

    def score(
        self,
        fragments: list[Fragment],
        similarities: dict[str, float],
        now: datetime,
        diversity: bool = True,
    ) -> list[ScoredCandidate]:
        """Score every fragment that has a similarity and rank them.

        Args:
            fragments: Candidate pool (already owner-scoped and thresholded).
            similarities: fragment id -> similarity to the query.
            now: Reference time for recency.
            diversity: Give the best match of each fragment type a bonus.

        Returns:
            Candidates sorted by composite score, descending.
        """
        scored: list[ScoredCandidate] = []
        for fragment in fragments:
            sim = similarities.get(fragment.id)
            if sim is None:
                continue
            scored.append(
                ScoredCandidate(
                    fragment_id=fragment.id,
                    name=fragment.label,
                    type=fragment.type,
                    token_count=fragment.tokens,
                    priority=fragment.priority,
                    similarity=sim,
                    recency_score=self.recency_score(fragment.last_used_at, now),
                    usage_score=self.usage_score(fragment.usage_count),
                    priority_score=self.priority_score(fragment.priority),
                )
            )

        if diversity:
            self._apply_diversity(scored)

        for cand in scored:
            cand.composite_score = (
                cand.similarity * self.config.similarity_weight
                + cand.recency_score
                + cand.usage_score
                + cand.priority_score
                + cand.diversity_bonus
            )
            cand.reason = selection_reason(cand)

        return rank(scored)

    def _apply_diversity(self, scored: list[ScoredCandidate]) -> None:
        """Bonus for the highest-similarity candidate of each fragment type."""
        best: dict[str, ScoredCandidate] = {}
        for cand in scored:
            current = best.get(cand.type.value)
            if current is None or (-cand.similarity, cand.fragment_id) < (
                -current.similarity, current.fragment_id
            ):
                best[cand.type.value] = cand
        for cand in best.values():
            cand.diversity_bonus = self.config.diversity_bonus


def rank(candidates: list[ScoredCandidate]) -> list[ScoredCandidate]:
    return sorted(
        candidates,
        key=lambda c: (-c.composite_score, -c.similarity, c.fragment_id),
    )


def selection_reason(cand: ScoredCandidate) -> str:
    """One-line explanation of why a candidate ranks where it does."""
    if cand.similarity > 0.8:
        return f"Highly relevant to your goal ({cand.similarity * 100:.0f}% match)"
    if cand.similarity > 0.7:
        return f"Good semantic match ({cand.similarity * 100:.0f}% match)"
    if cand.priority > 7:
        return "High priority fragment"
    if cand.recency_score >= 0.2:
        return "Recently used fragment"
    if cand.usage_score > 0.1:
        return "Frequently used fragment"
    return "Related to your goal"
