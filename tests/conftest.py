"""Shared test fixtures for ctxforge."""

from __future__ import annotations

import pytest

from ctxforge.config import ProjectConfig
from ctxforge.engine import ContextEngine
from ctxforge.providers.base import EmbeddingProvider, SimilarityProvider
from ctxforge.providers.memory import (
    InMemoryEventLog,
    InMemoryFragmentStore,
    InMemoryRelationshipStore,
)
from helpers import FIXED_NOW, ScriptedSimilarity, StubEmbedder


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def make_engine(clock):
    """Factory for a ContextEngine over in-memory collaborators."""

    def _make(
        fragments=(),
        edges=(),
        events=(),
        similarity: SimilarityProvider | None = None,
        embedder: EmbeddingProvider | None = None,
        config: ProjectConfig | None = None,
    ) -> ContextEngine:
        return ContextEngine(
            fragments=InMemoryFragmentStore(list(fragments)),
            relationships=InMemoryRelationshipStore(list(edges)),
            events=InMemoryEventLog(list(events)),
            similarity=similarity or ScriptedSimilarity(),
            embedder=embedder or StubEmbedder(),
            config=config,
            clock=clock,
        )

    return _make
