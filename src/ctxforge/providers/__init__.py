"""Collaborator interfaces and reference implementations."""

from ctxforge.providers.base import (
    EmbeddingProvider,
    EventLog,
    FragmentStore,
    RelationshipStore,
    SimilarityProvider,
)
from ctxforge.providers.local import HashingEmbeddingProvider
from ctxforge.providers.memory import (
    InMemoryEventLog,
    InMemoryFragmentStore,
    InMemoryRelationshipStore,
    VectorIndex,
)

__all__ = [
    "EmbeddingProvider",
    "EventLog",
    "FragmentStore",
    "RelationshipStore",
    "SimilarityProvider",
    "HashingEmbeddingProvider",
    "InMemoryEventLog",
    "InMemoryFragmentStore",
    "InMemoryRelationshipStore",
    "VectorIndex",
]
