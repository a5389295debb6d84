"""Tests for greedy budget-constrained selection."""

from __future__ import annotations

import pytest

from ctxforge.context.models import ScoredCandidate
from ctxforge.context.selection import (
    BudgetSelector,
    describe_strategy,
    optimization_notes,
    quality_score,
)
from ctxforge.models import FragmentType


def cand(fid: str, tokens: int, score: float = 0.5, sim: float = 0.8,
         type: FragmentType = FragmentType.TASK) -> ScoredCandidate:
    return ScoredCandidate(
        fragment_id=fid, token_count=tokens, composite_score=score, similarity=sim, type=type
    )


class TestBudgetSelector:
    def test_selects_in_score_order_within_budget(self):
        result = BudgetSelector().select(
            [cand("a", 400), cand("b", 400), cand("c", 400)], token_budget=1000, max_items=10
        )
        assert result.fragment_ids == ["a", "b"]
        assert result.total_tokens == 800
        assert [c.fragment_id for c in result.skipped] == ["c"]

    def test_overflow_tolerance(self):
        result = BudgetSelector().select(
            [cand("a", 600), cand("b", 480)], token_budget=1000, max_items=10
        )
        assert result.fragment_ids == ["a", "b"]
        assert result.total_tokens == 1080

    def test_stops_at_cutoff(self):
        result = BudgetSelector().select(
            [cand("a", 950), cand("b", 50)], token_budget=1000, max_items=10
        )
        assert result.fragment_ids == ["a"]

    def test_oversized_candidate_is_skipped_not_forced(self):
        result = BudgetSelector().select(
            [cand("big", 1200), cand("small", 300)], token_budget=1000, max_items=10
        )
        assert result.fragment_ids == ["small"]
        assert [c.fragment_id for c in result.skipped] == ["big"]

    def test_lone_oversized_candidate_yields_empty_selection(self):
        result = BudgetSelector().select([cand("big", 5000)], token_budget=1000, max_items=10)
        assert result.selected == []
        assert result.total_tokens == 0

    def test_max_items_cap(self):
        result = BudgetSelector().select(
            [cand(f"c{i}", 10) for i in range(5)], token_budget=1000, max_items=3
        )
        assert result.fragment_ids == ["c0", "c1", "c2"]

    def test_budget_invariant(self):
        candidates = [cand(f"c{i}", tokens) for i, tokens in enumerate(
            [900, 130, 40, 700, 260, 55, 1500, 320, 75, 410]
        )]
        for budget in (50, 100, 333, 800, 1000, 2500, 10000):
            result = BudgetSelector().select(candidates, token_budget=budget, max_items=10)
            assert result.total_tokens <= budget * 1.10

    def test_deterministic(self):
        candidates = [cand(f"c{i}", 100 + i * 30) for i in range(10)]
        first = BudgetSelector().select(candidates, 900, 5)
        second = BudgetSelector().select(candidates, 900, 5)
        assert first.fragment_ids == second.fragment_ids

    def test_custom_ratios(self):
        selector = BudgetSelector(overflow_ratio=1.0, cutoff_ratio=1.0)
        result = selector.select([cand("a", 600), cand("b", 480)], 1000, 10)
        assert result.fragment_ids == ["a"]


class TestCompositionSummary:
    def test_quality_score(self):
        selected = [
            cand("a", 250, sim=0.9, type=FragmentType.TASK),
            cand("b", 250, sim=0.7, type=FragmentType.SNIPPET),
        ]
        # 0.8 * 0.4 + 0.5 * 0.3 + 0.5 * 0.3
        assert quality_score(selected, 500, 1000) == pytest.approx(0.62)

    def test_quality_score_empty(self):
        assert quality_score([], 0, 1000) == 0.0

    def test_describe_strategy(self):
        assert describe_strategy(950, 1000) == "Maximized context within budget"
        assert describe_strategy(800, 1000) == "Balanced selection for quality and coverage"
        assert describe_strategy(100, 1000) == "Focused selection of most relevant fragments"

    def test_optimization_notes(self):
        selected = [cand("a", 500, type=FragmentType.TASK), cand("b", 450, type=FragmentType.PROFILE)]
        notes = optimization_notes(selected, total_candidates=10, total_tokens=950, token_budget=1000)
        assert "Filtered 10 candidates down to 2 fragments" in notes
        assert "Token budget 95% utilized" in notes
        assert "Diverse selection across 2 fragment types" in notes

    def test_optimization_notes_report_skipped(self):
        selected = [cand("a", 500)]
        notes = optimization_notes(
            selected, total_candidates=2, total_tokens=500, token_budget=1000, skipped=1
        )
        assert "Skipped 1 candidate(s) too large for the remaining budget" in notes
        assert not any(n.startswith("Skipped") for n in optimization_notes(selected, 2, 500, 1000))
