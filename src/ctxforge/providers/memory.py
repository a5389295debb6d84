"""In-memory collaborators for tests, demos and embedding the engine in-process."""

from __future__ import annotations

from datetime import datetime

from ctxforge.models import Fragment, RelationshipEdge, UsageEvent, as_utc
from ctxforge.providers.base import (
    EventLog,
    FragmentStore,
    RelationshipStore,
    SimilarityProvider,
)
from ctxforge.providers.vectors import cosine_similarity, similarity_matrix


class InMemoryFragmentStore(FragmentStore):
    def __init__(self, fragments: list[Fragment] | None = None) -> None:
        self._fragments: dict[str, Fragment] = {}
        for fragment in fragments or []:
            self.add(fragment)

    def add(self, fragment: Fragment) -> None:
        self._fragments[fragment.id] = fragment

    async def get_fragment(self, fragment_id: str) -> Fragment | None:
        return self._fragments.get(fragment_id)

    async def get_fragments(
        self,
        owner_id: str,
        fragment_ids: list[str] | None = None,
        active_only: bool = True,
        limit: int | None = None,
    ) -> list[Fragment]:
        wanted = set(fragment_ids) if fragment_ids is not None else None
        results = [
            f for f in self._fragments.values()
            if f.owner_id == owner_id
            and (not active_only or f.is_active)
            and (wanted is None or f.id in wanted)
        ]
        results.sort(key=lambda f: (as_utc(f.created_at), f.id))
        if limit is not None:
            results = results[:limit]
        return results


class InMemoryRelationshipStore(RelationshipStore):
    def __init__(self, edges: list[RelationshipEdge] | None = None) -> None:
        self._edges: list[RelationshipEdge] = list(edges or [])

    def add(self, edge: RelationshipEdge) -> None:
        self._edges.append(edge)

    async def get_relationships(self, fragment_id: str) -> list[RelationshipEdge]:
        return [
            e for e in self._edges
            if e.source_id == fragment_id or e.target_id == fragment_id
        ]


class InMemoryEventLog(EventLog):
    def __init__(self, events: list[UsageEvent] | None = None) -> None:
        self._events: list[UsageEvent] = list(events or [])

    async def append(self, event: UsageEvent) -> None:
        self._events.append(event)

    async def get_usage_events(
        self, owner_id: str, since: datetime, until: datetime | None = None
    ) -> list[UsageEvent]:
        since = as_utc(since)
        until = as_utc(until) if until is not None else None
        return [
            e for e in self._events
            if e.user_id == owner_id
            and as_utc(e.timestamp) >= since
            and (until is None or as_utc(e.timestamp) <= until)
        ]


class VectorIndex(SimilarityProvider):
    """Brute-force cosine index backed by numpy."""

    def __init__(self) -> None:
        self._vectors: dict[str, list[float]] = {}

    def upsert(self, fragment_id: str, vector: list[float]) -> None:
        self._vectors[fragment_id] = list(vector)

    def delete(self, fragment_id: str) -> None:
        self._vectors.pop(fragment_id, None)

    def __len__(self) -> int:
        return len(self._vectors)

    async def get_vector(self, fragment_id: str) -> list[float] | None:
        return self._vectors.get(fragment_id)

    async def similarity_search(
        self,
        query_vector: list[float],
        candidate_ids: list[str] | None = None,
        k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[tuple[str, float]]:
        ids = candidate_ids if candidate_ids is not None else list(self._vectors)
        scored = []
        for fid in ids:
            vec = self._vectors.get(fid)
            if vec is None:
                continue
            sim = cosine_similarity(query_vector, vec)
            if sim >= min_similarity:
                scored.append((fid, sim))
        scored.sort(key=lambda x: (-x[1], x[0]))
        return scored[:k]

    async def pairwise_similarity(
        self, fragment_ids: list[str]
    ) -> dict[tuple[str, str], float]:
        ids = [fid for fid in fragment_ids if fid in self._vectors]
        sims = similarity_matrix([self._vectors[fid] for fid in ids])
        pairs: dict[tuple[str, str], float] = {}
        for i in range(len(ids)):
            for j in range(i + 1, len(ids)):
                pairs[(ids[i], ids[j])] = float(sims[i, j])
        return pairs
