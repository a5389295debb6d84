"""Path and neighbourhood queries over the fragment similarity graph."""

from __future__ import annotations

import logging
from collections import deque

import networkx as nx

from ctxforge.config import GraphConfig
from ctxforge.exceptions import FragmentNotFoundError, ValidationError
from ctxforge.graph.models import GraphPath, PathStep, edge_strength
from ctxforge.models import Fragment, Suggestion, SuggestionSource
from ctxforge.providers.base import FragmentStore, SimilarityProvider
from ctxforge.providers.calls import guarded
from ctxforge.validation import require_id, require_positive_int, require_similarity

logger = logging.getLogger("ctxforge.graph")


class GraphQuery:
    """Query engine for fragment relationships derived from similarity.

    Provides shortest-path search between two fragments and nearest
    neighbours of a single fragment. The adjacency is rebuilt per call.
    """

    def __init__(
        self,
        fragments: FragmentStore,
        similarity: SimilarityProvider,
        config: GraphConfig | None = None,
    ) -> None:
        self.fragments = fragments
        self.similarity = similarity
        self.config = config or GraphConfig()

    async def _owned(self, owner_id: str, fragment_id: str) -> Fragment:
        fragment = await guarded("fragment store", self.fragments.get_fragment(fragment_id))
        if fragment is None or fragment.owner_id != owner_id or not fragment.is_active:
            raise FragmentNotFoundError(fragment_id)
        return fragment

    async def find_paths(
        self,
        owner_id: str,
        source_id: str,
        target_id: str,
        max_depth: int | None = None,
        min_similarity: float | None = None,
    ) -> list[GraphPath]:
        """Find up to `max_paths` shortest paths (by hop count) between two fragments.

        A path has at most `max_depth` hops and every hop clears the
        similarity floor. No path within the cap yields an empty list.
        """
        require_id("source_id", source_id)
        require_id("target_id", target_id)
        if source_id == target_id:
            raise ValidationError("target_id", "must differ from source_id")
        max_depth = require_positive_int(
            "max_depth", self.config.max_depth if max_depth is None else max_depth
        )
        floor = require_similarity(
            "min_similarity",
            self.config.min_similarity if min_similarity is None else min_similarity,
        )

        source = await self._owned(owner_id, source_id)
        target = await self._owned(owner_id, target_id)

        fragments = await guarded(
            "fragment store",
            self.fragments.get_fragments(owner_id, limit=self.config.max_nodes),
        )
        by_id = {f.id: f for f in fragments}
        by_id.setdefault(source.id, source)
        by_id.setdefault(target.id, target)
        ids = list(by_id)

        adjacency = await self._adjacency(ids, floor)
        raw_paths = self._bfs(adjacency, source_id, target_id, max_depth, ids)

        paths = []
        for raw in raw_paths:
            weights = [adjacency.edges[a, b]["weight"] for a, b in zip(raw, raw[1:])]
            paths.append(
                GraphPath(
                    steps=[PathStep(fragment_id=fid, name=by_id[fid].label) for fid in raw],
                    length=len(raw) - 1,
                    weakest_similarity=min(weights) if weights else 0.0,
                )
            )
        logger.debug("Found %d path(s) %s -> %s", len(paths), source_id, target_id)
        return paths

    async def _adjacency(self, ids: list[str], floor: float) -> nx.Graph:
        pairs = await guarded("similarity provider", self.similarity.pairwise_similarity(ids))
        graph = nx.Graph()
        graph.add_nodes_from(ids)
        for (a, b), sim in pairs.items():
            if a != b and sim >= floor and a in graph and b in graph:
                graph.add_edge(a, b, weight=sim)
        return graph

    def _bfs(
        self,
        graph: nx.Graph,
        source_id: str,
        target_id: str,
        max_depth: int,
        ids: list[str],
    ) -> list[list[str]]:
        """Breadth-first enumeration of paths.

        Intermediate nodes are claimed by the first path that reaches them;
        the target may be reached by several paths.
        """
        order = {fid: i for i, fid in enumerate(ids)}
        queue: deque[list[str]] = deque([[source_id]])
        visited = {source_id}
        paths: list[list[str]] = []

        while queue and len(paths) < self.config.max_paths:
            path = queue.popleft()
            current = path[-1]

            if current == target_id:
                paths.append(path)
                continue

            if len(path) - 1 >= max_depth:
                continue

            neighbors = sorted(
                graph.neighbors(current),
                key=lambda n: (-graph.edges[current, n]["weight"], order[n]),
            )
            for neighbor in neighbors:
                if neighbor in visited and neighbor != target_id:
                    continue
                queue.append(path + [neighbor])
                if neighbor != target_id:
                    visited.add(neighbor)

        return paths

    async def get_neighbors(
        self,
        owner_id: str,
        fragment_id: str,
        min_similarity: float | None = None,
        limit: int | None = None,
    ) -> list[Suggestion]:
        """Most similar fragments to one fragment, as suggestions."""
        require_id("fragment_id", fragment_id)
        floor = require_similarity(
            "min_similarity",
            self.config.min_similarity if min_similarity is None else min_similarity,
        )
        limit = require_positive_int(
            "limit", self.config.neighbor_limit if limit is None else limit
        )

        source = await self._owned(owner_id, fragment_id)
        vector = await guarded("similarity provider", self.similarity.get_vector(fragment_id))
        if vector is None:
            logger.debug("Fragment %s has no embedding; no neighbours", fragment_id)
            return []

        fragments = await guarded("fragment store", self.fragments.get_fragments(owner_id))
        by_id = {f.id: f for f in fragments if f.id != fragment_id}
        hits = await guarded(
            "similarity provider",
            self.similarity.similarity_search(
                vector, candidate_ids=list(by_id), k=limit, min_similarity=floor
            ),
        )

        suggestions = []
        for fid, sim in hits:
            fragment = by_id.get(fid)
            if fragment is None:
                continue
            suggestions.append(
                Suggestion.for_fragment(
                    fragment,
                    confidence=sim,
                    reason=f"Similar to {source.label} ({sim * 100:.0f}% match)",
                    source=SuggestionSource.SIMILARITY,
                    similarity=sim,
                    strength=edge_strength(sim),
                    usage_count=fragment.usage_count,
                )
            )
        return suggestions[:limit]
