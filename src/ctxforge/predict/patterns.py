"""Usage analytics over an owner's event history."""

from __future__ import annotations

from collections import defaultdict

from ctxforge.models import DAY_NAMES, Fragment, UsageEvent, as_utc, day_of_week
from ctxforge.predict.models import (
    Combination,
    PatternBucket,
    TopFragment,
    UsagePatterns,
)
from ctxforge.predict.strategies import aggregate, minute_bucket

GROUPINGS = ("hour", "day_of_week", "activity")

# Sessions at or above this success rate count as successful
SUCCESSFUL_SESSION_RATE = 0.8


def _bucket(events: list[UsageEvent], key: str, label: str) -> PatternBucket:
    durations = [e.duration_s for e in events if e.duration_s is not None]
    return PatternBucket(
        key=key,
        label=label,
        usage_count=len(events),
        unique_fragments=len({e.fragment_id for e in events}),
        success_rate=sum(1 for e in events if e.success) / len(events),
        avg_duration_s=sum(durations) / len(durations) if durations else None,
    )


def group_events(events: list[UsageEvent], group_by: str) -> list[PatternBucket]:
    """Bucket events by hour of day, day of week or activity type."""
    groups: dict[object, list[UsageEvent]] = defaultdict(list)
    for event in events:
        ts = as_utc(event.timestamp)
        if group_by == "hour":
            groups[ts.hour].append(event)
        elif group_by == "day_of_week":
            groups[day_of_week(ts)].append(event)
        elif group_by == "activity":
            if event.activity_type:
                groups[event.activity_type].append(event)
        else:
            raise ValueError(f"Unknown grouping: {group_by}")

    if group_by == "activity":
        ordered = sorted(groups.items(), key=lambda kv: (-len(kv[1]), str(kv[0])))
        return [_bucket(evs, str(k), str(k)) for k, evs in ordered]

    buckets = []
    for key, evs in sorted(groups.items()):
        label = DAY_NAMES[key] if group_by == "day_of_week" else f"{key:02d}:00"
        buckets.append(_bucket(evs, str(key), label))
    return buckets


def successful_combinations(events: list[UsageEvent], limit: int = 10) -> list[Combination]:
    """Fragment sets used in the same minute whose sessions mostly succeeded."""
    sessions: dict[object, list[UsageEvent]] = defaultdict(list)
    for event in events:
        sessions[minute_bucket(event.timestamp)].append(event)

    combos: dict[tuple[str, ...], list[float]] = defaultdict(list)
    for evs in sessions.values():
        ids = tuple(sorted({e.fragment_id for e in evs}))
        if len(ids) < 2:
            continue
        rate = sum(1 for e in evs if e.success) / len(evs)
        if rate >= SUCCESSFUL_SESSION_RATE:
            combos[ids].append(rate)

    ranked = sorted(
        combos.items(),
        key=lambda kv: (-len(kv[1]), -sum(kv[1]) / len(kv[1]), kv[0]),
    )
    return [
        Combination(fragment_ids=list(ids), frequency=len(rates), success_rate=sum(rates) / len(rates))
        for ids, rates in ranked[:limit]
    ]


def top_fragments(
    events: list[UsageEvent], fragments: dict[str, Fragment], limit: int = 10
) -> list[TopFragment]:
    stats = aggregate(events, fragments)
    ranked = sorted(stats.items(), key=lambda kv: (-kv[1].count, kv[0]))
    return [
        TopFragment(
            fragment_id=fid,
            name=fragments[fid].label,
            usage_count=st.count,
            success_rate=st.success_rate,
            last_used=st.last_used,
        )
        for fid, st in ranked[:limit]
    ]


def analyze(
    events: list[UsageEvent],
    fragments: dict[str, Fragment],
    days_back: int,
    group_by: str = "activity",
) -> UsagePatterns:
    return UsagePatterns(
        days_back=days_back,
        group_by=group_by,
        buckets=group_events(events, group_by),
        successful_combinations=successful_combinations(events),
        top_fragments=top_fragments(events, fragments),
    )
