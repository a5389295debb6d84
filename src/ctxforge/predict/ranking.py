"""Merge suggestions from several strategies into one ranked list."""

from __future__ import annotations

from ctxforge.models import Suggestion


def deduplicate_and_rank(suggestions: list[Suggestion], limit: int) -> list[Suggestion]:
    """Keep the highest-confidence suggestion per fragment, best first.

    The sort is stable, so equal confidences keep their strategy order.
    """
    ordered = sorted(suggestions, key=lambda s: -s.confidence)
    seen: set[str] = set()
    unique: list[Suggestion] = []
    for suggestion in ordered:
        if suggestion.fragment_id in seen:
            continue
        seen.add(suggestion.fragment_id)
        unique.append(suggestion)
        if len(unique) >= limit:
            break
    return unique
