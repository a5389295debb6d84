"""Builders and stub collaborators shared by the test modules."""

from __future__ import annotations

import asyncio
import itertools
import math
from datetime import datetime, timedelta, timezone

from ctxforge.models import Fragment, FragmentType, UsageEvent
from ctxforge.providers.base import EmbeddingProvider, SimilarityProvider

# A Wednesday (day_of_week == 3), 10:30 UTC
FIXED_NOW = datetime(2026, 3, 4, 10, 30, tzinfo=timezone.utc)

QUERY_VECTOR = [1.0, 0.0, 0.0, 0.0]

_created = itertools.count()


def make_fragment(fid: str, owner: str = "alice", **kwargs) -> Fragment:
    """Fragment with a created_at that increases with every call."""
    kwargs.setdefault("name", fid.upper())
    kwargs.setdefault("text", f"Text of fragment {fid}.")
    kwargs.setdefault("type", FragmentType.TASK)
    kwargs.setdefault(
        "created_at", FIXED_NOW - timedelta(days=100) + timedelta(seconds=next(_created))
    )
    return Fragment(id=fid, owner_id=owner, **kwargs)


def make_event(
    fid: str,
    at: datetime,
    activity: str | None = "coding",
    success: bool = True,
    user: str = "alice",
    duration: float | None = None,
) -> UsageEvent:
    return UsageEvent(
        user_id=user,
        fragment_id=fid,
        activity_type=activity,
        timestamp=at,
        success=success,
        duration_s=duration,
    )


def vector_with_similarity(similarity: float) -> list[float]:
    """A unit vector whose cosine with QUERY_VECTOR is `similarity`."""
    return [similarity, math.sqrt(max(0.0, 1 - similarity**2)), 0.0, 0.0]


class StubEmbedder(EmbeddingProvider):
    """Returns a fixed vector; can be made to fail or stall."""

    def __init__(
        self,
        vector: list[float] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.vector = list(vector or QUERY_VECTOR)
        super().__init__(len(self.vector))
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.vector)


class ScriptedSimilarity(SimilarityProvider):
    """Similarity provider with fixed answers.

    `scores` is what any query scores against each fragment, `pairs` is the
    pairwise table and `vectors` backs `get_vector`.
    """

    def __init__(
        self,
        scores: dict[str, float] | None = None,
        pairs: dict[tuple[str, str], float] | None = None,
        vectors: dict[str, list[float]] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.scores = scores or {}
        self.pairs = pairs
        self.vectors = vectors or {}
        self.error = error
        self.search_calls: list[dict] = []
        self.pairwise_calls = 0

    async def get_vector(self, fragment_id: str) -> list[float] | None:
        if self.error is not None:
            raise self.error
        if fragment_id in self.vectors:
            return self.vectors[fragment_id]
        if self.pairs is not None and any(fragment_id in pair for pair in self.pairs):
            return list(QUERY_VECTOR)
        return None

    async def similarity_search(
        self,
        query_vector: list[float],
        candidate_ids: list[str] | None = None,
        k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[tuple[str, float]]:
        self.search_calls.append(
            {"candidate_ids": candidate_ids, "k": k, "min_similarity": min_similarity}
        )
        if self.error is not None:
            raise self.error
        allowed = set(candidate_ids) if candidate_ids is not None else None
        hits = [
            (fid, score) for fid, score in self.scores.items()
            if score >= min_similarity and (allowed is None or fid in allowed)
        ]
        hits.sort(key=lambda h: (-h[1], h[0]))
        return hits[:k]

    async def pairwise_similarity(
        self, fragment_ids: list[str]
    ) -> dict[tuple[str, str], float]:
        self.pairwise_calls += 1
        if self.error is not None:
            raise self.error
        if self.pairs is None:
            return await super().pairwise_similarity(fragment_ids)
        wanted = set(fragment_ids)
        return {
            (a, b): sim for (a, b), sim in self.pairs.items()
            if a in wanted and b in wanted
        }


