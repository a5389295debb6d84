"""Predictive usage engine.

Runs the time, activity and sequential strategies concurrently, each under
its own timeout. A strategy that fails or times out is logged and left out
of the merge; it never blocks or fails the others. When nothing comes back
the frequency strategy is tried as a fallback.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from ctxforge.config import PredictionConfig
from ctxforge.exceptions import ValidationError
from ctxforge.models import Fragment, Suggestion, UsageEvent, as_utc, day_of_week, utcnow
from ctxforge.predict import patterns, strategies
from ctxforge.predict.models import PredictionResult, UsagePatterns
from ctxforge.predict.ranking import deduplicate_and_rank
from ctxforge.providers.base import (
    EmbeddingProvider,
    EventLog,
    FragmentStore,
    SimilarityProvider,
)
from ctxforge.providers.calls import guarded
from ctxforge.validation import (
    require_id,
    require_int_range,
    require_optional_text,
    require_positive_int,
)

logger = logging.getLogger("ctxforge.predict")


class PredictiveEngine:
    """Proactive fragment suggestions mined from an owner's usage history."""

    def __init__(
        self,
        fragments: FragmentStore,
        events: EventLog,
        similarity: SimilarityProvider,
        embedder: EmbeddingProvider,
        config: PredictionConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.fragments = fragments
        self.events = events
        self.similarity = similarity
        self.embedder = embedder
        self.config = config or PredictionConfig()
        self.clock = clock

    async def predict(
        self,
        owner_id: str,
        current_activity: str | None = None,
        recent_fragment_ids: list[str] | None = None,
        limit: int | None = None,
        hour: int | None = None,
        day: int | None = None,
    ) -> PredictionResult:
        """Suggest fragments without an explicit query.

        Args:
            owner_id: Owner whose history is mined.
            current_activity: Free text describing what the user is doing.
            recent_fragment_ids: Fragments used moments ago.
            limit: Maximum suggestions to return.
            hour: Hour of day (UTC) to predict for; defaults to now.
            day: Day of week (Sunday = 0) to predict for; defaults to today.

        Returns:
            Deduplicated suggestions ordered by confidence.
        """
        limit = require_positive_int("limit", self.config.limit if limit is None else limit)
        if hour is not None:
            require_int_range("hour", hour, 0, 23)
        if day is not None:
            require_int_range("day", day, 0, 6)
        activity = require_optional_text("current_activity", current_activity).strip()
        recent = [
            require_id("recent_fragment_ids", fid)
            for fid in (recent_fragment_ids or [])
            if fid is not None and fid != ""
        ]

        now = as_utc(self.clock())
        per_strategy = math.ceil(limit / 3)
        fragments = await self._owner_fragments(owner_id)

        runs: list[tuple[str, Awaitable[list[Suggestion]]]] = []
        if hour is not None or day is not None or not activity:
            runs.append((
                "time",
                self._time(
                    owner_id, fragments, now,
                    now.hour if hour is None else hour,
                    day_of_week(now) if day is None else day,
                    per_strategy,
                ),
            ))
        if activity:
            runs.append(("activity", self._activity(owner_id, fragments, now, activity, per_strategy)))
        if recent:
            runs.append(("sequential", self._sequential(owner_id, fragments, now, recent, per_strategy)))

        outcomes = await asyncio.gather(*(self._isolated(name, run) for name, run in runs))

        collected: list[Suggestion] = []
        omitted: list[str] = []
        for (name, _), outcome in zip(runs, outcomes):
            if outcome is None:
                omitted.append(name)
            else:
                collected.extend(outcome)

        if not collected:
            fallback = await self._isolated(
                "frequency", self._frequency(owner_id, fragments, now, limit)
            )
            if fallback is None:
                omitted.append("frequency")
            else:
                collected.extend(fallback)

        sources = {"time": 0, "activity": 0, "sequential": 0, "frequency": 0}
        for suggestion in collected:
            sources[suggestion.source.value] = sources.get(suggestion.source.value, 0) + 1

        return PredictionResult(
            predictions=deduplicate_and_rank(collected, limit),
            sources=sources,
            omitted=omitted,
        )

    async def usage_patterns(
        self, owner_id: str, days_back: int = 30, group_by: str = "activity"
    ) -> UsagePatterns:
        """Grouped usage analytics for the trailing `days_back` days."""
        days_back = require_positive_int("days_back", days_back)
        if group_by not in patterns.GROUPINGS:
            raise ValidationError("group_by", f"must be one of {', '.join(patterns.GROUPINGS)}")
        now = as_utc(self.clock())
        fragments = await self._owner_fragments(owner_id, active_only=False)
        events = await guarded(
            "event log",
            self.events.get_usage_events(owner_id, since=now - timedelta(days=days_back), until=now),
        )
        return patterns.analyze(events, fragments, days_back, group_by)

    # -------------------------------------------------------------------
    # Strategy runners
    # -------------------------------------------------------------------

    async def _isolated(
        self, name: str, run: Awaitable[list[Suggestion]]
    ) -> list[Suggestion] | None:
        """Await one strategy under its timeout; None means it was omitted."""
        try:
            return await asyncio.wait_for(run, timeout=self.config.strategy_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(
                "Prediction strategy '%s' timed out after %.1fs",
                name, self.config.strategy_timeout_s,
            )
        except Exception as e:
            logger.warning("Prediction strategy '%s' failed: %s", name, e)
        return None

    async def _owner_fragments(self, owner_id: str, active_only: bool = True) -> dict[str, Fragment]:
        fragments = await guarded(
            "fragment store", self.fragments.get_fragments(owner_id, active_only=active_only)
        )
        return {f.id: f for f in fragments}

    async def _window(self, owner_id: str, now: datetime, days: int) -> list[UsageEvent]:
        return await guarded(
            "event log",
            self.events.get_usage_events(owner_id, since=now - timedelta(days=days), until=now),
        )

    async def _time(
        self,
        owner_id: str,
        fragments: dict[str, Fragment],
        now: datetime,
        hour: int,
        dow: int,
        limit: int,
    ) -> list[Suggestion]:
        events = await self._window(owner_id, now, self.config.time_window_days)
        return strategies.time_based(events, fragments, hour, dow, limit)

    async def _activity(
        self,
        owner_id: str,
        fragments: dict[str, Fragment],
        now: datetime,
        activity: str,
        limit: int,
    ) -> list[Suggestion]:
        events = await self._window(owner_id, now, self.config.activity_window_days)
        candidates = strategies.activity_candidates(events, fragments, limit)
        if not candidates:
            return []

        vector = await guarded("embedding provider", self.embedder.embed(activity))
        hits = await guarded(
            "similarity provider",
            self.similarity.similarity_search(
                vector,
                candidate_ids=[fid for fid, _ in candidates],
                k=len(candidates),
                min_similarity=0.0,
            ),
        )
        return strategies.activity_based(candidates, fragments, dict(hits), activity, limit)

    async def _sequential(
        self,
        owner_id: str,
        fragments: dict[str, Fragment],
        now: datetime,
        recent: list[str],
        limit: int,
    ) -> list[Suggestion]:
        events = await self._window(owner_id, now, self.config.sequence_window_days)
        return strategies.sequential(events, fragments, recent, limit)

    async def _frequency(
        self,
        owner_id: str,
        fragments: dict[str, Fragment],
        now: datetime,
        limit: int,
    ) -> list[Suggestion]:
        events = await self._window(owner_id, now, self.config.frequency_window_days)
        return strategies.frequency(events, fragments, limit)
