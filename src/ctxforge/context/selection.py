"""Greedy budget-constrained selection.

For each candidate v in score order:
  if tokens(X) + c(v) <= B * overflow and |X| < max_items:
    select v
  stop once tokens(X) >= B * cutoff

A candidate larger than B * overflow on its own is skipped, never forced.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ctxforge.context.models import ScoredCandidate


@dataclass
class Selection:
    """Result of one greedy pass."""

    selected: list[ScoredCandidate] = field(default_factory=list)
    skipped: list[ScoredCandidate] = field(default_factory=list)  # did not fit
    total_tokens: int = 0

    @property
    def fragment_ids(self) -> list[str]:
        return [c.fragment_id for c in self.selected]


class BudgetSelector:
    def __init__(self, overflow_ratio: float = 1.10, cutoff_ratio: float = 0.90) -> None:
        self.overflow_ratio = overflow_ratio
        self.cutoff_ratio = cutoff_ratio

    def select(
        self,
        candidates: list[ScoredCandidate],
        token_budget: int,
        max_items: int,
    ) -> Selection:
        result = Selection()
        ceiling = token_budget * self.overflow_ratio
        cutoff = token_budget * self.cutoff_ratio

        for cand in candidates:
            if len(result.selected) >= max_items:
                break
            if result.total_tokens + cand.token_count > ceiling:
                result.skipped.append(cand)
                continue

            result.selected.append(cand)
            result.total_tokens += cand.token_count

            # Close enough to the budget: further items add little value
            if result.total_tokens >= cutoff:
                break

        return result


def quality_score(selected: list[ScoredCandidate], total_tokens: int, token_budget: int) -> float:
    """Blend of average similarity (40%), budget use (30%) and type diversity (30%)."""
    if not selected:
        return 0.0
    avg_similarity = sum(c.similarity for c in selected) / len(selected)
    budget_utilization = min(total_tokens / max(token_budget, 1), 1.0)
    diversity = min(len({c.type for c in selected}) / 4, 1.0)
    return avg_similarity * 0.4 + budget_utilization * 0.3 + diversity * 0.3


def describe_strategy(total_tokens: int, token_budget: int) -> str:
    usage = total_tokens / max(token_budget, 1) * 100
    if usage > 90:
        return "Maximized context within budget"
    if usage > 70:
        return "Balanced selection for quality and coverage"
    return "Focused selection of most relevant fragments"


def optimization_notes(
    selected: list[ScoredCandidate],
    total_candidates: int,
    total_tokens: int,
    token_budget: int,
    skipped: int = 0,
) -> list[str]:
    notes: list[str] = []
    if total_candidates > len(selected) * 2:
        notes.append(
            f"Filtered {total_candidates} candidates down to {len(selected)} fragments"
        )
    if skipped:
        notes.append(f"Skipped {skipped} candidate(s) too large for the remaining budget")
    usage = total_tokens / max(token_budget, 1) * 100
    if usage > 90:
        notes.append(f"Token budget {usage:.0f}% utilized")
    types = {c.type for c in selected}
    if len(types) > 1:
        notes.append(f"Diverse selection across {len(types)} fragment types")
    return notes
