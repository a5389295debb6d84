"""Data models for the fragment similarity graph."""

from __future__ import annotations

from typing import Any

import networkx as nx
from pydantic import BaseModel, Field

from ctxforge.models import FragmentType

# Node colour group per fragment type
NODE_GROUPS: dict[str, int] = {
    "profile": 1,
    "project": 2,
    "task": 3,
    "snippet": 4,
    "adhoc": 5,
}


def node_group(fragment_type: FragmentType | str) -> int:
    value = fragment_type.value if isinstance(fragment_type, FragmentType) else fragment_type
    return NODE_GROUPS.get(value, 0)


def node_size(usage_count: int, token_count: int) -> float:
    """Size in [1, 3]: one unit each for usage (capped at 100) and tokens (capped at 5000)."""
    usage_factor = min(max(usage_count, 0), 100) / 100
    token_factor = min(max(token_count, 0), 5000) / 5000
    return 1 + usage_factor + token_factor


def edge_strength(similarity: float) -> str:
    if similarity >= 0.90:
        return "very_strong"
    if similarity >= 0.80:
        return "strong"
    if similarity >= 0.70:
        return "moderate"
    return "weak"


class GraphNode(BaseModel):
    id: str
    label: str
    type: FragmentType
    group: int
    size: float
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    usage_count: int = 0
    token_count: int = 0


class GraphEdge(BaseModel):
    id: str
    source: str
    target: str
    weight: float  # similarity
    strength: str


class Cluster(BaseModel):
    """A connected component with at least two fragments."""

    id: str
    nodes: list[str]
    size: int


class GraphView(BaseModel):
    """Similarity graph over a fragment set, rebuilt on every request.

    An empty view carries a `reason` instead of raising.
    """

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    clusters: list[Cluster] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def degree(self, node_id: str) -> int:
        return sum(1 for e in self.edges if node_id in (e.source, e.target))

    def to_networkx(self) -> nx.Graph:
        graph = nx.Graph()
        for node in self.nodes:
            graph.add_node(node.id, label=node.label, type=node.type.value, size=node.size)
        for edge in self.edges:
            graph.add_edge(edge.source, edge.target, weight=edge.weight)
        return graph


class PathStep(BaseModel):
    fragment_id: str
    name: str


class GraphPath(BaseModel):
    """A chain of similar fragments from a source to a target."""

    steps: list[PathStep]
    length: int  # hops
    weakest_similarity: float = 0.0

    @property
    def fragment_ids(self) -> list[str]:
        return [s.fragment_id for s in self.steps]
