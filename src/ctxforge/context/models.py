"""Data models for scoring and budgeted composition."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ctxforge.models import FragmentType, RelationType


class ScoredCandidate(BaseModel):
    """One fragment's relevance breakdown for a single query."""

    fragment_id: str
    name: str = ""
    type: FragmentType = FragmentType.ADHOC
    token_count: int = 0
    priority: int = 0
    similarity: float = 0.0
    recency_score: float = 0.0
    usage_score: float = 0.0
    priority_score: float = 0.0
    diversity_bonus: float = 0.0
    composite_score: float = 0.0
    reason: str = ""  # Why this was ranked where it is


class DependencyRef(BaseModel):
    """A required fragment reported for a selected one."""

    source_id: str
    target_id: str
    type: RelationType
    target_name: str = ""
    satisfied: bool = False  # target is already part of the selection


class ConflictRef(BaseModel):
    """Two selected fragments that should not be used together."""

    source_id: str
    target_id: str
    reason: str = ""


class Composition(BaseModel):
    """Budget-constrained selection of fragments for a goal.

    An empty selection is a valid result; `reason` then says why.
    """

    goal_text: str = ""
    source_fragment_id: str | None = None
    selected_fragment_ids: list[str] = Field(default_factory=list)
    candidates: list[ScoredCandidate] = Field(default_factory=list)  # the selected ones, in order
    total_tokens: int = 0
    token_budget: int = 0
    dependencies: list[DependencyRef] = Field(default_factory=list)
    conflicts: list[ConflictRef] = Field(default_factory=list)
    quality_score: float = 0.0
    reason: str = ""
    strategy: str = ""
    notes: list[str] = Field(default_factory=list)
    total_candidates: int = 0
    composed_text: str = ""
    assembly_time_ms: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.selected_fragment_ids

    @property
    def budget_used_pct(self) -> float:
        return round(self.total_tokens / max(self.token_budget, 1) * 100, 1)

    def summary(self) -> str:
        """Human-readable summary of the composition."""
        query = self.goal_text or f"fragment {self.source_fragment_id}"
        lines = [
            f"Composition for: {query}",
            f"Tokens: {self.total_tokens:,} / {self.token_budget:,} ({self.budget_used_pct:.0f}%)",
            f"Fragments: {len(self.selected_fragment_ids)} selected, "
            f"{self.total_candidates} candidates",
            f"Quality: {self.quality_score:.2f}",
        ]
        if self.reason:
            lines.append(f"Note: {self.reason}")
        if self.candidates:
            lines.append("")
            lines.append("Selected fragments:")
        for cand in self.candidates:
            lines.append(
                f"  > {cand.name or cand.fragment_id} ({cand.type.value}) "
                f"score={cand.composite_score:.2f} sim={cand.similarity:.2f} "
                f"~{cand.token_count}tok"
            )
            if cand.reason:
                lines.append(f"    reason: {cand.reason}")
        for dep in self.dependencies:
            marker = "ok" if dep.satisfied else "missing"
            lines.append(f"  requires {dep.target_name or dep.target_id} ({marker})")
        for conflict in self.conflicts:
            lines.append(
                f"  conflict {conflict.source_id} <-> {conflict.target_id}"
                + (f": {conflict.reason}" if conflict.reason else "")
            )
        return "\n".join(lines)
