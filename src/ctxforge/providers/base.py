"""Collaborator interfaces consumed by the engine.

Every method is a coroutine: each call is an I/O boundary the engine may
cancel or time out independently.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from ctxforge.models import Fragment, RelationshipEdge, UsageEvent
from ctxforge.providers.vectors import cosine_similarity


class EmbeddingProvider(ABC):
    """Maps text to a fixed-length vector."""

    def __init__(self, dimensions: int) -> None:
        self.dimensions = dimensions

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        ...


class SimilarityProvider(ABC):
    """Nearest-neighbour index over fragment vectors (cosine, scores in [0, 1])."""

    @abstractmethod
    async def get_vector(self, fragment_id: str) -> list[float] | None:
        """Stored vector for a fragment, or None if it has not been embedded."""
        ...

    @abstractmethod
    async def similarity_search(
        self,
        query_vector: list[float],
        candidate_ids: list[str] | None = None,
        k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[tuple[str, float]]:
        """Return up to k (id, score) pairs, descending by score."""
        ...

    async def pairwise_similarity(
        self, fragment_ids: list[str]
    ) -> dict[tuple[str, str], float]:
        """Similarity for every unordered pair of embedded ids.

        Keys are (a, b) with a before b in `fragment_ids`. Ids without a
        vector are left out. Implementations with a batch comparison should
        override this.
        """
        vectors: list[tuple[str, list[float]]] = []
        for fid in fragment_ids:
            vec = await self.get_vector(fid)
            if vec is not None:
                vectors.append((fid, vec))

        pairs: dict[tuple[str, str], float] = {}
        for i, (a, va) in enumerate(vectors):
            for b, vb in vectors[i + 1:]:
                pairs[(a, b)] = cosine_similarity(va, vb)
        return pairs


class FragmentStore(ABC):
    """Read access to fragment records."""

    @abstractmethod
    async def get_fragment(self, fragment_id: str) -> Fragment | None:
        ...

    @abstractmethod
    async def get_fragments(
        self,
        owner_id: str,
        fragment_ids: list[str] | None = None,
        active_only: bool = True,
        limit: int | None = None,
    ) -> list[Fragment]:
        """Fragments owned by `owner_id`, oldest first."""
        ...


class RelationshipStore(ABC):
    """Typed edges between fragments."""

    @abstractmethod
    async def get_relationships(self, fragment_id: str) -> list[RelationshipEdge]:
        """Edges where the fragment is the source or the target."""
        ...


class EventLog(ABC):
    """Append-only usage history."""

    @abstractmethod
    async def get_usage_events(
        self, owner_id: str, since: datetime, until: datetime | None = None
    ) -> list[UsageEvent]:
        ...

    @abstractmethod
    async def append(self, event: UsageEvent) -> None:
        ...
