"""Suggestion strategies mined from usage history.

Each strategy is a pure function of already-fetched events and the owner's
fragments. Events for fragments outside `fragments` (deleted, inactive or
foreign) are ignored.

  time        min(0.95, count/10 + success_rate/2)    same (hour, day of week)
  activity    similarity*0.6 + success_rate*0.4        activity text vs fragment
  sequential  min(0.9, follow/5 + success_rate/2)      same-minute co-usage
  frequency   min(0.85, recent_uses/20)                fallback
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from ctxforge.models import (
    DAY_NAMES,
    Fragment,
    Suggestion,
    SuggestionSource,
    UsageEvent,
    as_utc,
    day_of_week,
)

# Similarity assumed for a fragment with no embedding
DEFAULT_ACTIVITY_SIMILARITY = 0.5


@dataclass
class UsageStats:
    count: int = 0
    successes: int = 0
    last_used: datetime | None = None

    @property
    def success_rate(self) -> float:
        return self.successes / self.count if self.count else 0.0

    def add(self, event: UsageEvent) -> None:
        self.count += 1
        if event.success:
            self.successes += 1
        ts = as_utc(event.timestamp)
        if self.last_used is None or ts > self.last_used:
            self.last_used = ts


def aggregate(events: Iterable[UsageEvent], fragments: dict[str, Fragment]) -> dict[str, UsageStats]:
    stats: dict[str, UsageStats] = {}
    for event in events:
        if event.fragment_id not in fragments:
            continue
        stats.setdefault(event.fragment_id, UsageStats()).add(event)
    return stats


def _ranked(stats: dict[str, UsageStats]) -> list[tuple[str, UsageStats]]:
    """Most used first, then most successful, then id."""
    return sorted(stats.items(), key=lambda kv: (-kv[1].count, -kv[1].success_rate, kv[0]))


def minute_bucket(ts: datetime) -> datetime:
    return as_utc(ts).replace(second=0, microsecond=0)


def time_based(
    events: list[UsageEvent],
    fragments: dict[str, Fragment],
    hour: int,
    dow: int,
    limit: int,
) -> list[Suggestion]:
    """Fragments habitually used at this hour on this day of the week."""
    matching = [
        e for e in events
        if as_utc(e.timestamp).hour == hour and day_of_week(as_utc(e.timestamp)) == dow
    ]
    results = []
    for fid, st in _ranked(aggregate(matching, fragments))[:limit]:
        results.append(
            Suggestion.for_fragment(
                fragments[fid],
                confidence=min(0.95, st.count / 10 + st.success_rate / 2),
                reason=f"Often used on {DAY_NAMES[dow]} around {hour}:00",
                source=SuggestionSource.TIME,
                usage_count=st.count,
                success_rate=st.success_rate,
            )
        )
    return results


def activity_candidates(
    events: list[UsageEvent],
    fragments: dict[str, Fragment],
    limit: int,
) -> list[tuple[str, UsageStats]]:
    """Historically used fragments worth comparing against an activity (2x limit)."""
    tagged = [e for e in events if e.activity_type]
    return _ranked(aggregate(tagged, fragments))[: limit * 2]


def activity_based(
    candidates: list[tuple[str, UsageStats]],
    fragments: dict[str, Fragment],
    similarities: dict[str, float],
    activity: str,
    limit: int,
) -> list[Suggestion]:
    """Score used fragments by similarity to the activity and past success."""
    results = []
    for fid, st in candidates:
        sim = similarities.get(fid, DEFAULT_ACTIVITY_SIMILARITY)
        results.append(
            Suggestion.for_fragment(
                fragments[fid],
                confidence=sim * 0.6 + st.success_rate * 0.4,
                reason=f'Relevant for "{activity}" based on past usage',
                source=SuggestionSource.ACTIVITY,
                usage_count=st.count,
                success_rate=st.success_rate,
                similarity=sim,
            )
        )
    results.sort(key=lambda s: (-s.confidence, s.fragment_id))
    return results[:limit]


def sequential(
    events: list[UsageEvent],
    fragments: dict[str, Fragment],
    recent_ids: list[str],
    limit: int,
) -> list[Suggestion]:
    """Fragments used in the same minute as any of the recent ones."""
    recent = set(recent_ids)
    sessions = {minute_bucket(e.timestamp) for e in events if e.fragment_id in recent}
    if not sessions:
        return []

    followers = [
        e for e in events
        if e.fragment_id not in recent and minute_bucket(e.timestamp) in sessions
    ]
    results = []
    for fid, st in _ranked(aggregate(followers, fragments))[:limit]:
        results.append(
            Suggestion.for_fragment(
                fragments[fid],
                confidence=min(0.9, st.count / 5 + st.success_rate / 2),
                reason="Often used alongside your recent fragments",
                source=SuggestionSource.SEQUENTIAL,
                follow_count=st.count,
                success_rate=st.success_rate,
            )
        )
    return results


def frequency(
    events: list[UsageEvent],
    fragments: dict[str, Fragment],
    limit: int,
) -> list[Suggestion]:
    """Most-used fragments in the window; empty when there is no history."""
    stats = aggregate(events, fragments)
    ranked = sorted(
        stats.items(),
        key=lambda kv: (-kv[1].count, -fragments[kv[0]].usage_count, kv[0]),
    )
    results = []
    for fid, st in ranked[:limit]:
        fragment = fragments[fid]
        results.append(
            Suggestion.for_fragment(
                fragment,
                confidence=min(0.85, st.count / 20),
                reason="Frequently used recently",
                source=SuggestionSource.FREQUENCY,
                usage_count=fragment.usage_count,
                recent_uses=st.count,
                success_rate=st.success_rate,
                last_used=st.last_used.isoformat() if st.last_used else None,
            )
        )
    return results
