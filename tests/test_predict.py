"""Tests for usage-based predictions, deduplication and pattern analytics."""

from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from helpers import FIXED_NOW, ScriptedSimilarity, StubEmbedder, make_event, make_fragment
from ctxforge.config import PredictionConfig
from ctxforge.exceptions import CollaboratorError, ValidationError
from ctxforge.models import Suggestion, SuggestionSource, day_of_week
from ctxforge.predict import strategies
from ctxforge.predict.engine import PredictiveEngine
from ctxforge.predict.patterns import group_events, successful_combinations
from ctxforge.predict.ranking import deduplicate_and_rank
from ctxforge.providers.memory import InMemoryEventLog, InMemoryFragmentStore

WEEK = timedelta(days=7)


@pytest.fixture
def fragments():
    return {fid: make_fragment(fid) for fid in ("a", "b", "c", "d")}


def suggestion(fid: str, confidence: float, source=SuggestionSource.TIME) -> Suggestion:
    return Suggestion(fragment_id=fid, confidence=confidence, source=source)


def engine(fragments, events, clock, similarity=None, embedder=None, **config):
    return PredictiveEngine(
        InMemoryFragmentStore(list(fragments.values())),
        InMemoryEventLog(list(events)),
        similarity or ScriptedSimilarity(),
        embedder or StubEmbedder(),
        PredictionConfig(**config),
        clock,
    )


class TestTimeStrategy:
    def test_matches_hour_and_day(self, fragments):
        events = [
            make_event("a", FIXED_NOW - WEEK),
            make_event("a", FIXED_NOW - 2 * WEEK),
            make_event("b", FIXED_NOW - WEEK, success=False),
            make_event("c", FIXED_NOW - timedelta(days=1)),  # Tuesday
        ]
        found = strategies.time_based(events, fragments, hour=10, dow=3, limit=5)
        assert [s.fragment_id for s in found] == ["a", "b"]
        assert found[0].confidence == pytest.approx(0.7)
        assert found[1].confidence == pytest.approx(0.1)
        assert found[0].source == SuggestionSource.TIME
        assert "Wednesday" in found[0].reason

    def test_confidence_capped(self, fragments):
        events = [make_event("a", FIXED_NOW - timedelta(minutes=i)) for i in range(20)]
        [found] = strategies.time_based(events, fragments, hour=10, dow=3, limit=5)
        assert found.confidence == 0.95

    def test_unknown_fragments_ignored(self, fragments):
        events = [make_event("gone", FIXED_NOW - WEEK)]
        assert strategies.time_based(events, fragments, hour=10, dow=3, limit=5) == []


class TestActivityStrategy:
    def test_similarity_and_success_blend(self, fragments):
        events = [
            make_event("a", FIXED_NOW - timedelta(days=2)),
            make_event("b", FIXED_NOW - timedelta(days=2)),
            make_event("b", FIXED_NOW - timedelta(days=3), success=False),
        ]
        candidates = strategies.activity_candidates(events, fragments, limit=3)
        found = strategies.activity_based(
            candidates, fragments, {"a": 0.9}, "writing docs", limit=3
        )
        by_id = {s.fragment_id: s for s in found}
        assert by_id["a"].confidence == pytest.approx(0.94)
        # No vector for b: neutral similarity 0.5, success rate 0.5
        assert by_id["b"].confidence == pytest.approx(0.5)
        assert found[0].fragment_id == "a"
        assert found[0].source == SuggestionSource.ACTIVITY

    def test_untagged_events_are_not_candidates(self, fragments):
        events = [make_event("a", FIXED_NOW - timedelta(days=1), activity=None)]
        assert strategies.activity_candidates(events, fragments, limit=3) == []


class TestSequentialStrategy:
    def test_same_minute_followers(self, fragments):
        minute = FIXED_NOW - timedelta(days=1)
        events = [
            make_event("a", minute),
            make_event("b", minute + timedelta(seconds=20)),
            make_event("c", minute + timedelta(minutes=5)),
        ]
        found = strategies.sequential(events, fragments, ["a"], limit=5)
        assert [s.fragment_id for s in found] == ["b"]
        assert found[0].confidence == pytest.approx(0.7)
        assert found[0].metadata["follow_count"] == 1

    def test_recent_fragments_not_suggested(self, fragments):
        minute = FIXED_NOW - timedelta(days=1)
        events = [make_event("a", minute), make_event("b", minute)]
        found = strategies.sequential(events, fragments, ["a", "b"], limit=5)
        assert found == []

    def test_no_history_for_recent(self, fragments):
        events = [make_event("b", FIXED_NOW - timedelta(days=1))]
        assert strategies.sequential(events, fragments, ["a"], limit=5) == []


class TestFrequencyStrategy:
    def test_most_used_first(self, fragments):
        events = [make_event("a", FIXED_NOW - timedelta(hours=h)) for h in range(1, 4)]
        events.append(make_event("b", FIXED_NOW - timedelta(hours=5)))
        found = strategies.frequency(events, fragments, limit=5)
        assert [s.fragment_id for s in found] == ["a", "b"]
        assert found[0].confidence == pytest.approx(0.15)
        assert found[0].source == SuggestionSource.FREQUENCY

    def test_empty_history(self, fragments):
        assert strategies.frequency([], fragments, limit=5) == []


class TestDeduplicateAndRank:
    def test_keeps_highest_confidence(self):
        merged = [
            suggestion("a", 0.5),
            suggestion("b", 0.6, SuggestionSource.SEQUENTIAL),
            suggestion("a", 0.8, SuggestionSource.ACTIVITY),
        ]
        ranked = deduplicate_and_rank(merged, limit=10)
        assert [(s.fragment_id, s.confidence) for s in ranked] == [("a", 0.8), ("b", 0.6)]
        assert ranked[0].source == SuggestionSource.ACTIVITY

    def test_truncates(self):
        merged = [suggestion(f"f{i}", 1 - i / 10) for i in range(6)]
        assert len(deduplicate_and_rank(merged, limit=3)) == 3

    def test_no_duplicates_and_dominance(self):
        merged = [suggestion(fid, conf) for fid, conf in [
            ("a", 0.3), ("b", 0.9), ("a", 0.7), ("c", 0.2), ("b", 0.1), ("c", 0.4),
        ]]
        ranked = deduplicate_and_rank(merged, limit=10)
        ids = [s.fragment_id for s in ranked]
        assert len(ids) == len(set(ids))
        for kept in ranked:
            assert all(kept.confidence >= s.confidence for s in merged if s.fragment_id == kept.fragment_id)
        confidences = [s.confidence for s in ranked]
        assert confidences == sorted(confidences, reverse=True)


class TestPredictiveEngine:
    @pytest.mark.asyncio
    async def test_no_history_returns_empty(self, fragments, clock):
        result = await engine(fragments, [], clock).predict("alice")
        assert result.predictions == []
        assert result.omitted == []

    @pytest.mark.asyncio
    async def test_time_strategy_uses_clock(self, fragments, clock):
        events = [make_event("a", FIXED_NOW - WEEK)]
        result = await engine(fragments, events, clock).predict("alice")
        assert [s.fragment_id for s in result.predictions] == ["a"]
        assert result.predictions[0].source == SuggestionSource.TIME
        assert result.sources["time"] == 1

    @pytest.mark.asyncio
    async def test_explicit_hour_and_day(self, fragments, clock):
        friday_evening = FIXED_NOW + timedelta(days=2, hours=8)
        events = [make_event("b", friday_evening - WEEK)]
        result = await engine(fragments, events, clock).predict(
            "alice", hour=18, day=day_of_week(friday_evening)
        )
        assert [s.fragment_id for s in result.predictions] == ["b"]

    @pytest.mark.asyncio
    async def test_frequency_fallback(self, fragments, clock):
        # Used recently, but never on a Wednesday at 10:00
        events = [make_event("c", FIXED_NOW - timedelta(days=1, hours=3))]
        result = await engine(fragments, events, clock).predict("alice")
        assert [s.source for s in result.predictions] == [SuggestionSource.FREQUENCY]
        assert result.sources["frequency"] == 1

    @pytest.mark.asyncio
    async def test_activity_strategy(self, fragments, clock):
        events = [make_event("a", FIXED_NOW - timedelta(days=2)), make_event("b", FIXED_NOW - timedelta(days=2))]
        similarity = ScriptedSimilarity(scores={"a": 0.9, "b": 0.2})
        embedder = StubEmbedder()
        result = await engine(fragments, events, clock, similarity, embedder).predict(
            "alice", current_activity="writing docs"
        )
        assert embedder.calls == ["writing docs"]
        assert [s.fragment_id for s in result.predictions] == ["a", "b"]
        assert all(s.source == SuggestionSource.ACTIVITY for s in result.predictions)
        assert similarity.search_calls[0]["candidate_ids"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failing_strategy_is_omitted(self, fragments, clock, caplog):
        minute = FIXED_NOW - timedelta(days=1)
        events = [make_event("a", minute), make_event("b", minute)]
        embedder = StubEmbedder(error=RuntimeError("embedding service down"))
        with caplog.at_level(logging.WARNING, logger="ctxforge.predict"):
            result = await engine(fragments, events, clock, embedder=embedder).predict(
                "alice", current_activity="coding", recent_fragment_ids=["a"]
            )
        assert result.omitted == ["activity"]
        assert [s.fragment_id for s in result.predictions] == ["b"]
        assert result.predictions[0].source == SuggestionSource.SEQUENTIAL
        assert "activity" in caplog.text

    @pytest.mark.asyncio
    async def test_slow_strategy_times_out(self, fragments, clock):
        minute = FIXED_NOW - timedelta(days=1)
        events = [make_event("a", minute), make_event("b", minute)]
        embedder = StubEmbedder(delay=5.0)
        result = await engine(
            fragments, events, clock, embedder=embedder, strategy_timeout_s=0.05
        ).predict("alice", current_activity="coding", recent_fragment_ids=["a"])
        assert result.omitted == ["activity"]
        assert [s.fragment_id for s in result.predictions] == ["b"]

    @pytest.mark.asyncio
    async def test_merged_output_deduplicated(self, fragments, clock):
        minute = FIXED_NOW - WEEK
        events = [make_event("a", minute), make_event("b", minute + timedelta(seconds=5))]
        result = await engine(fragments, events, clock).predict(
            "alice", recent_fragment_ids=["a"], hour=10, day=3
        )
        ids = [s.fragment_id for s in result.predictions]
        assert len(ids) == len(set(ids))
        assert result.sources["time"] == 2
        assert result.sources["sequential"] == 1
        # b came from both; the sequential score (0.7) beats the time score (0.6)
        b = next(s for s in result.predictions if s.fragment_id == "b")
        assert b.source == SuggestionSource.SEQUENTIAL

    @pytest.mark.asyncio
    async def test_per_strategy_limit(self, clock):
        fragments = {f"f{i}": make_fragment(f"f{i}") for i in range(10)}
        events = [make_event(fid, FIXED_NOW - WEEK) for fid in fragments]
        result = await engine(fragments, events, clock).predict("alice", limit=6)
        assert len(result.predictions) == 2

    @pytest.mark.asyncio
    async def test_other_owners_history_ignored(self, fragments, clock):
        events = [make_event("a", FIXED_NOW - WEEK, user="bob")]
        result = await engine(fragments, events, clock).predict("alice")
        assert result.predictions == []

    @pytest.mark.asyncio
    async def test_validation(self, fragments, clock):
        e = engine(fragments, [], clock)
        with pytest.raises(ValidationError) as exc:
            await e.predict("alice", limit=0)
        assert exc.value.field == "limit"
        with pytest.raises(ValidationError):
            await e.predict("alice", hour=24)
        with pytest.raises(ValidationError):
            await e.predict("alice", day=7)

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, clock):
        class BrokenStore(InMemoryFragmentStore):
            async def get_fragments(self, *args, **kwargs):
                raise OSError("disk gone")

        predictor = PredictiveEngine(
            BrokenStore(), InMemoryEventLog(), ScriptedSimilarity(), StubEmbedder(), clock=clock
        )
        with pytest.raises(CollaboratorError):
            await predictor.predict("alice")


class TestUsagePatterns:
    def test_group_by_hour(self):
        events = [
            make_event("a", FIXED_NOW - timedelta(days=1), duration=30),
            make_event("b", FIXED_NOW - timedelta(days=2), success=False, duration=10),
            make_event("a", FIXED_NOW - timedelta(hours=3)),
        ]
        buckets = group_events(events, "hour")
        assert [(b.label, b.usage_count) for b in buckets] == [("07:00", 1), ("10:00", 2)]
        ten = buckets[1]
        assert ten.unique_fragments == 2
        assert ten.success_rate == pytest.approx(0.5)
        assert ten.avg_duration_s == pytest.approx(20)

    def test_group_by_day_and_activity(self):
        events = [
            make_event("a", FIXED_NOW, activity="review"),
            make_event("b", FIXED_NOW - timedelta(days=3), activity="coding"),
            make_event("c", FIXED_NOW - timedelta(days=10), activity="coding"),
            make_event("d", FIXED_NOW, activity=None),
        ]
        days = group_events(events, "day_of_week")
        assert [b.label for b in days] == ["Sunday", "Wednesday"]
        activities = group_events(events, "activity")
        assert [(b.key, b.usage_count) for b in activities] == [("coding", 2), ("review", 1)]

    def test_unknown_grouping(self):
        with pytest.raises(ValueError):
            group_events([make_event("a", FIXED_NOW)], "month")

    def test_successful_combinations(self):
        minute = FIXED_NOW - timedelta(days=1)
        events = [
            make_event("a", minute),
            make_event("b", minute + timedelta(seconds=10)),
            make_event("a", minute + timedelta(hours=1)),
            make_event("b", minute + timedelta(hours=1, seconds=5)),
            make_event("c", minute + timedelta(hours=2)),
            make_event("d", minute + timedelta(hours=2), success=False),
        ]
        [combo] = successful_combinations(events)
        assert combo.fragment_ids == ["a", "b"]
        assert combo.frequency == 2
        assert combo.success_rate == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_engine_patterns(self, fragments, clock):
        events = [
            make_event("a", FIXED_NOW - timedelta(days=1)),
            make_event("a", FIXED_NOW - timedelta(days=2)),
            make_event("b", FIXED_NOW - timedelta(days=40)),
        ]
        patterns = await engine(fragments, events, clock).usage_patterns("alice", days_back=30)
        assert patterns.group_by == "activity"
        assert [t.fragment_id for t in patterns.top_fragments] == ["a"]
        assert patterns.top_fragments[0].usage_count == 2

    @pytest.mark.asyncio
    async def test_engine_patterns_validation(self, fragments, clock):
        e = engine(fragments, [], clock)
        with pytest.raises(ValidationError):
            await e.usage_patterns("alice", group_by="month")
        with pytest.raises(ValidationError):
            await e.usage_patterns("alice", days_back=0)
