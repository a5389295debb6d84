"""Similarity graph over a user's fragments."""

from ctxforge.graph.builder import KnowledgeGraphBuilder
from ctxforge.graph.models import GraphPath, GraphView
from ctxforge.graph.query import GraphQuery

__all__ = ["KnowledgeGraphBuilder", "GraphQuery", "GraphView", "GraphPath"]
