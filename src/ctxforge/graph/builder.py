"""Build a similarity graph over a user's fragments."""

from __future__ import annotations

import logging
import time

import networkx as nx

from ctxforge.config import GraphConfig
from ctxforge.exceptions import CollaboratorError, ValidationError
from ctxforge.graph.models import (
    Cluster,
    GraphEdge,
    GraphNode,
    GraphView,
    edge_strength,
    node_group,
    node_size,
)
from ctxforge.models import Fragment
from ctxforge.providers.base import FragmentStore, SimilarityProvider
from ctxforge.providers.calls import guarded
from ctxforge.validation import require_positive_int, require_similarity

logger = logging.getLogger("ctxforge.graph")


class KnowledgeGraphBuilder:
    """Builds the fragment similarity graph.

    Nodes are fragments; an undirected edge joins two fragments whose
    similarity clears the floor. Edges are admitted in globally descending
    similarity order and a candidate edge is dropped once either endpoint
    already has `max_edges_per_node` edges. This greedy cap is order
    dependent: it bounds degree but does not promise every node keeps its
    own strongest edges.
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

    async def build(
        self,
        owner_id: str,
        fragment_ids: list[str] | None = None,
        min_similarity: float | None = None,
        max_edges_per_node: int | None = None,
        include_metadata: bool = True,
    ) -> GraphView:
        """Build the graph for an explicit fragment set or all active fragments.

        Args:
            owner_id: Owner whose fragments are graphed.
            fragment_ids: Optional explicit set; foreign or inactive ids are ignored.
            min_similarity: Similarity floor for edges.
            max_edges_per_node: Soft degree cap.
            include_metadata: Attach description/tags/usage to nodes.

        Returns:
            A GraphView; empty with a reason when nothing can be graphed.
        """
        floor = require_similarity(
            "min_similarity",
            self.config.min_similarity if min_similarity is None else min_similarity,
        )
        cap = require_positive_int(
            "max_edges_per_node",
            self.config.max_edges_per_node if max_edges_per_node is None else max_edges_per_node,
        )
        if fragment_ids is not None and len(fragment_ids) > self.config.max_nodes:
            raise ValidationError(
                "fragment_ids", f"at most {self.config.max_nodes} fragments can be graphed"
            )

        start_time = time.time()

        fragments = await guarded(
            "fragment store",
            self.fragments.get_fragments(
                owner_id,
                fragment_ids=fragment_ids,
                limit=None if fragment_ids is not None else self.config.max_nodes,
            ),
        )
        if not fragments:
            return GraphView(reason="No fragments to graph")

        ids = [f.id for f in fragments]
        pairs = await guarded("similarity provider", self.similarity.pairwise_similarity(ids))
        embedded = await self._embedded_ids(ids, pairs)
        fragments = [f for f in fragments if f.id in embedded]
        if not fragments:
            return GraphView(reason="No fragments with embeddings found")

        nodes = [self._make_node(f, include_metadata) for f in fragments]
        edges = self._select_edges(ids, pairs, floor, cap)
        clusters = self._find_clusters([n.id for n in nodes], edges)

        elapsed_ms = (time.time() - start_time) * 1000
        logger.debug(
            "Built graph for %s: %d nodes, %d edges, %d clusters",
            owner_id, len(nodes), len(edges), len(clusters),
        )

        return GraphView(
            nodes=nodes,
            edges=edges,
            clusters=clusters,
            metadata={
                "total_nodes": len(nodes),
                "total_edges": len(edges),
                "total_clusters": len(clusters),
                "min_similarity": floor,
                "max_edges_per_node": cap,
                "generation_time_ms": round(elapsed_ms, 1),
            },
        )

    async def _embedded_ids(
        self, ids: list[str], pairs: dict[tuple[str, str], float]
    ) -> set[str]:
        """Ids that have a vector. Pairs only cover embedded ids, so a lone
        fragment has to be checked directly."""
        embedded = {fid for pair in pairs for fid in pair}
        for fid in ids:
            if fid in embedded:
                continue
            vector = await guarded("similarity provider", self.similarity.get_vector(fid))
            if vector is not None:
                embedded.add(fid)
        return embedded

    def _make_node(self, fragment: Fragment, include_metadata: bool) -> GraphNode:
        node = GraphNode(
            id=fragment.id,
            label=fragment.label,
            type=fragment.type,
            group=node_group(fragment.type),
            size=node_size(fragment.usage_count, fragment.tokens),
        )
        if include_metadata:
            node.description = fragment.description
            node.tags = list(fragment.tags)
            node.usage_count = fragment.usage_count
            node.token_count = fragment.tokens
        return node

    def _select_edges(
        self,
        ids: list[str],
        pairs: dict[tuple[str, str], float],
        floor: float,
        cap: int,
    ) -> list[GraphEdge]:
        order = {fid: i for i, fid in enumerate(ids)}
        canonical: dict[tuple[str, str], float] = {}
        for (a, b), sim in pairs.items():
            if a == b or a not in order or b not in order:
                continue
            # Canonical orientation keeps output independent of provider key order
            if order[a] > order[b]:
                a, b = b, a
            previous = canonical.get((a, b))
            if previous is not None and abs(previous - sim) > 1e-9:
                raise CollaboratorError(
                    "similarity provider",
                    f"asymmetric similarity for {a}/{b}: {previous} != {sim}",
                )
            canonical[(a, b)] = sim

        candidates = [(a, b, sim) for (a, b), sim in canonical.items() if sim >= floor]
        candidates.sort(key=lambda c: (-c[2], order[c[0]], order[c[1]]))

        degree = {fid: 0 for fid in ids}
        edges: list[GraphEdge] = []
        for a, b, sim in candidates:
            if degree[a] >= cap or degree[b] >= cap:
                continue
            edges.append(
                GraphEdge(
                    id=f"{a}-{b}",
                    source=a,
                    target=b,
                    weight=sim,
                    strength=edge_strength(sim),
                )
            )
            degree[a] += 1
            degree[b] += 1
        return edges

    def _find_clusters(self, node_ids: list[str], edges: list[GraphEdge]) -> list[Cluster]:
        """Connected components of size >= 2, in node order."""
        graph = nx.Graph()
        graph.add_nodes_from(node_ids)
        graph.add_edges_from((e.source, e.target) for e in edges)

        order = {fid: i for i, fid in enumerate(node_ids)}
        components = [
            sorted(component, key=order.__getitem__)
            for component in nx.connected_components(graph)
            if len(component) >= 2
        ]
        components.sort(key=lambda members: order[members[0]])

        return [
            Cluster(id=f"cluster-{i}", nodes=members, size=len(members))
            for i, members in enumerate(components)
        ]
