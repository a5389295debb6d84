"""Tests for multi-factor relevance scoring."""

from __future__ import annotations

from datetime import timedelta

import pytest

from helpers import FIXED_NOW, make_fragment
from ctxforge.config import RecencyBand, ScoringConfig
from ctxforge.context.models import ScoredCandidate
from ctxforge.context.scoring import RelevanceScorer, rank, selection_reason
from ctxforge.models import FragmentType


class TestSignals:
    def test_recency_bands(self):
        scorer = RelevanceScorer()
        assert scorer.recency_score(FIXED_NOW - timedelta(hours=12), FIXED_NOW) == 0.2
        assert scorer.recency_score(FIXED_NOW - timedelta(days=3), FIXED_NOW) == 0.1
        assert scorer.recency_score(FIXED_NOW - timedelta(days=30), FIXED_NOW) == 0.0
        assert scorer.recency_score(None, FIXED_NOW) == 0.0

    def test_recency_accepts_naive_timestamps(self):
        scorer = RelevanceScorer()
        naive = (FIXED_NOW - timedelta(hours=2)).replace(tzinfo=None)
        assert scorer.recency_score(naive, FIXED_NOW) == 0.2

    def test_custom_recency_bands(self):
        config = ScoringConfig(recency_bands=[RecencyBand(max_age_days=30, score=0.05)])
        scorer = RelevanceScorer(config)
        assert scorer.recency_score(FIXED_NOW - timedelta(days=20), FIXED_NOW) == 0.05

    def test_usage_score_is_capped(self):
        scorer = RelevanceScorer()
        assert scorer.usage_score(10) == pytest.approx(0.1)
        assert scorer.usage_score(500) == pytest.approx(0.2)
        assert scorer.usage_score(0) == 0.0

    def test_priority_score(self):
        scorer = RelevanceScorer()
        assert scorer.priority_score(5) == pytest.approx(0.1)
        assert scorer.priority_score(10) == pytest.approx(0.2)


class TestComposite:
    def test_composite_formula(self):
        fragment = make_fragment(
            "a",
            usage_count=10,
            priority=5,
            last_used_at=FIXED_NOW - timedelta(hours=1),
        )
        [cand] = RelevanceScorer().score([fragment], {"a": 0.8}, FIXED_NOW, diversity=False)
        # 0.8 * 0.5 + 0.2 + 0.1 + 0.1
        assert cand.composite_score == pytest.approx(0.8)
        assert cand.diversity_bonus == 0.0

    def test_diversity_bonus_once_per_type(self):
        fragments = [
            make_fragment("a", type=FragmentType.TASK),
            make_fragment("b", type=FragmentType.TASK),
            make_fragment("c", type=FragmentType.SNIPPET),
        ]
        ranked = RelevanceScorer().score(fragments, {"a": 0.9, "b": 0.85, "c": 0.7}, FIXED_NOW)
        bonus = {c.fragment_id: c.diversity_bonus for c in ranked}
        assert bonus == {"a": 0.1, "b": 0.0, "c": 0.1}

    def test_diversity_can_be_disabled(self):
        fragments = [make_fragment("a"), make_fragment("b", type=FragmentType.PROFILE)]
        ranked = RelevanceScorer().score(
            fragments, {"a": 0.9, "b": 0.8}, FIXED_NOW, diversity=False
        )
        assert all(c.diversity_bonus == 0.0 for c in ranked)

    def test_fragments_without_similarity_are_skipped(self):
        fragments = [make_fragment("a"), make_fragment("b")]
        ranked = RelevanceScorer().score(fragments, {"a": 0.9}, FIXED_NOW)
        assert [c.fragment_id for c in ranked] == ["a"]

    def test_token_count_estimated_from_text(self):
        fragment = make_fragment("a", text="x" * 400, token_count=0)
        [cand] = RelevanceScorer().score([fragment], {"a": 0.9}, FIXED_NOW)
        assert cand.token_count == 100


class TestRanking:
    def test_ranking_is_monotonic(self):
        fragments = [
            make_fragment(f"f{i}", usage_count=i * 7, priority=i % 4)
            for i in range(12)
        ]
        sims = {f.id: 0.5 + (i * 37 % 50) / 100 for i, f in enumerate(fragments)}
        ranked = RelevanceScorer().score(fragments, sims, FIXED_NOW)
        scores = [c.composite_score for c in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_ties_broken_by_similarity_then_id(self):
        candidates = [
            ScoredCandidate(fragment_id="b", similarity=0.7, composite_score=0.5),
            ScoredCandidate(fragment_id="a", similarity=0.7, composite_score=0.5),
            ScoredCandidate(fragment_id="c", similarity=0.9, composite_score=0.5),
        ]
        assert [c.fragment_id for c in rank(candidates)] == ["c", "a", "b"]

    def test_scoring_is_deterministic(self):
        fragments = [make_fragment(f"d{i}", type=list(FragmentType)[i % 5]) for i in range(8)]
        sims = {f.id: 0.7 + i * 0.01 for i, f in enumerate(fragments)}
        scorer = RelevanceScorer()
        first = [c.model_dump() for c in scorer.score(fragments, sims, FIXED_NOW)]
        second = [c.model_dump() for c in scorer.score(list(reversed(fragments)), sims, FIXED_NOW)]
        assert first == second


class TestSelectionReason:
    def test_reasons(self):
        assert "Highly relevant" in selection_reason(ScoredCandidate(fragment_id="a", similarity=0.85))
        assert "Good semantic match" in selection_reason(ScoredCandidate(fragment_id="a", similarity=0.75))
        assert selection_reason(
            ScoredCandidate(fragment_id="a", similarity=0.6, priority=9)
        ) == "High priority fragment"
        assert selection_reason(
            ScoredCandidate(fragment_id="a", similarity=0.6, usage_score=0.15)
        ) == "Frequently used fragment"
        assert selection_reason(ScoredCandidate(fragment_id="a", similarity=0.6)) == "Related to your goal"
