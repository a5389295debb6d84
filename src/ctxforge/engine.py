"""ContextEngine - the owner-scoped entry point to scoring, graphs and predictions.

The engine holds no mutable state of its own. Every call fetches what it
needs from the injected collaborators, so concurrent requests are
independent.

Usage:
    engine = ContextEngine(fragments, relationships, events, index, embedder)
    composition = await engine.score_and_select("alice", goal_text="write a release note")
    print(composition.summary())
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime

from ctxforge.config import ProjectConfig
from ctxforge.context.models import Composition, ScoredCandidate
from ctxforge.context.resolver import DependencyResolver
from ctxforge.context.scoring import RelevanceScorer
from ctxforge.context.selection import (
    BudgetSelector,
    describe_strategy,
    optimization_notes,
    quality_score,
)
from ctxforge.exceptions import FragmentNotFoundError, ValidationError
from ctxforge.graph.builder import KnowledgeGraphBuilder
from ctxforge.graph.models import GraphPath, GraphView
from ctxforge.graph.query import GraphQuery
from ctxforge.models import Fragment, Suggestion, as_utc, utcnow
from ctxforge.predict.engine import PredictiveEngine
from ctxforge.predict.models import PredictionResult, UsagePatterns
from ctxforge.providers.base import (
    EmbeddingProvider,
    EventLog,
    FragmentStore,
    RelationshipStore,
    SimilarityProvider,
)
from ctxforge.providers.calls import guarded
from ctxforge.validation import (
    require_id,
    require_optional_text,
    require_positive_int,
    require_similarity,
    require_text,
)

logger = logging.getLogger("ctxforge.engine")

SECTION_SEPARATOR = "\n\n---\n\n"


class ContextEngine:
    """Relevance scoring, budgeted composition, graphs and predictions for one store."""

    def __init__(
        self,
        fragments: FragmentStore,
        relationships: RelationshipStore,
        events: EventLog,
        similarity: SimilarityProvider,
        embedder: EmbeddingProvider,
        config: ProjectConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.fragments = fragments
        self.relationships = relationships
        self.events = events
        self.similarity = similarity
        self.embedder = embedder
        self.config = config or ProjectConfig()
        self.clock = clock

        self.scorer = RelevanceScorer(self.config.scoring)
        self.selector = BudgetSelector(
            overflow_ratio=self.config.composition.overflow_ratio,
            cutoff_ratio=self.config.composition.cutoff_ratio,
        )
        self.resolver = DependencyResolver(fragments, relationships)
        self.graph_builder = KnowledgeGraphBuilder(fragments, similarity, self.config.graph)
        self.graph_query = GraphQuery(fragments, similarity, self.config.graph)
        self.predictor = PredictiveEngine(
            fragments, events, similarity, embedder, self.config.prediction, clock
        )

    # -------------------------------------------------------------------
    # Composition
    # -------------------------------------------------------------------

    async def score_and_select(
        self,
        owner_id: str,
        goal_text: str | None = None,
        source_fragment_id: str | None = None,
        token_budget: int | None = None,
        max_items: int | None = None,
        min_similarity: float | None = None,
    ) -> Composition:
        """Pick the most relevant fragments for a goal within a token budget.

        Exactly one of `goal_text` or `source_fragment_id` must be given.
        A source fragment is never selected for its own composition.

        Args:
            owner_id: Owner whose fragments are considered.
            goal_text: Natural-language goal, embedded through the provider.
            source_fragment_id: Use this fragment's vector as the query.
            token_budget: Target token count (up to 10% overflow is allowed).
            max_items: Maximum fragments to select.
            min_similarity: Similarity floor for candidates.

        Returns:
            A Composition; empty with a `reason` when nothing qualifies.

        Raises:
            ValidationError: Bad arguments, before any collaborator call.
            FragmentNotFoundError: The source fragment is absent or foreign.
            CollaboratorError: A store, index or embedder failed.
        """
        defaults = self.config.composition
        require_id("owner_id", owner_id)
        goal = require_optional_text("goal_text", goal_text).strip()
        source_fragment_id = (
            require_optional_text("source_fragment_id", source_fragment_id) or None
        )
        has_goal = goal != ""
        if has_goal == bool(source_fragment_id):
            raise ValidationError(
                "goal_text", "provide exactly one of goal_text or source_fragment_id"
            )
        token_budget = require_positive_int(
            "token_budget", defaults.token_budget if token_budget is None else token_budget
        )
        max_items = require_positive_int(
            "max_items", defaults.max_items if max_items is None else max_items
        )
        floor = require_similarity(
            "min_similarity", defaults.min_similarity if min_similarity is None else min_similarity
        )

        start_time = time.time()
        composition = Composition(
            goal_text=goal,
            source_fragment_id=source_fragment_id,
            token_budget=token_budget,
        )

        if has_goal:
            vector = await guarded("embedding provider", self.embedder.embed(goal_text))
        else:
            await self._owned(owner_id, source_fragment_id)
            vector = await guarded(
                "similarity provider", self.similarity.get_vector(source_fragment_id)
            )
            if vector is None:
                composition.reason = "Source fragment has no embedding"
                return composition

        pool = await guarded("fragment store", self.fragments.get_fragments(owner_id))
        by_id = {f.id: f for f in pool if f.id != source_fragment_id}
        if not by_id:
            composition.reason = "No fragments available"
            return composition

        hits = await guarded(
            "similarity provider",
            self.similarity.similarity_search(
                vector,
                candidate_ids=list(by_id),
                k=max_items * defaults.candidate_multiplier,
                min_similarity=floor,
            ),
        )
        # The index may return stale ids; only the owner's fragments are scored
        similarities = {fid: sim for fid, sim in hits if fid in by_id}
        if not similarities:
            composition.reason = f"No fragments above similarity threshold {floor:.2f}"
            return composition

        ranked = self.scorer.score(
            [by_id[fid] for fid in similarities], similarities, as_utc(self.clock())
        )
        selection = self.selector.select(ranked, token_budget, max_items)
        composition.total_candidates = len(ranked)

        if not selection.selected:
            composition.reason = f"No candidate fits within a budget of {token_budget} tokens"
            return composition

        resolution = await guarded(
            "relationship store", self.resolver.resolve(owner_id, selection.fragment_ids)
        )

        composition.selected_fragment_ids = selection.fragment_ids
        composition.candidates = selection.selected
        composition.total_tokens = selection.total_tokens
        composition.dependencies = resolution.dependencies
        composition.conflicts = resolution.conflicts
        composition.quality_score = quality_score(
            selection.selected, selection.total_tokens, token_budget
        )
        composition.strategy = describe_strategy(selection.total_tokens, token_budget)
        composition.notes = optimization_notes(
            selection.selected, len(ranked), selection.total_tokens, token_budget,
            skipped=len(selection.skipped),
        )
        composition.composed_text = _compose_text(
            [by_id[fid] for fid in selection.fragment_ids]
        )
        composition.assembly_time_ms = round((time.time() - start_time) * 1000, 1)

        logger.debug(
            "Composed %d/%d fragments for %s (%d/%d tokens)",
            len(selection.selected), len(ranked), owner_id,
            selection.total_tokens, token_budget,
        )
        return composition

    async def recommend(
        self,
        owner_id: str,
        prompt_text: str,
        limit: int = 5,
        min_similarity: float = 0.5,
    ) -> list[ScoredCandidate]:
        """Rank fragments for a prompt without applying a token budget."""
        require_id("owner_id", owner_id)
        require_text("prompt_text", prompt_text)
        limit = require_positive_int("limit", limit)
        floor = require_similarity("min_similarity", min_similarity)

        vector = await guarded("embedding provider", self.embedder.embed(prompt_text))
        pool = await guarded("fragment store", self.fragments.get_fragments(owner_id))
        by_id = {f.id: f for f in pool}
        if not by_id:
            return []

        hits = await guarded(
            "similarity provider",
            self.similarity.similarity_search(
                vector, candidate_ids=list(by_id), k=limit * 2, min_similarity=floor
            ),
        )
        similarities = {fid: sim for fid, sim in hits if fid in by_id}
        ranked = self.scorer.score(
            [by_id[fid] for fid in similarities],
            similarities,
            as_utc(self.clock()),
            diversity=False,
        )
        for cand in ranked:
            cand.reason = _recommendation_reason(cand)
        return ranked[:limit]

    # -------------------------------------------------------------------
    # Graph
    # -------------------------------------------------------------------

    async def build_graph(
        self,
        owner_id: str,
        fragment_ids: list[str] | None = None,
        min_similarity: float | None = None,
        max_edges_per_node: int | None = None,
        include_metadata: bool = True,
    ) -> GraphView:
        require_id("owner_id", owner_id)
        return await self.graph_builder.build(
            owner_id,
            fragment_ids=fragment_ids,
            min_similarity=min_similarity,
            max_edges_per_node=max_edges_per_node,
            include_metadata=include_metadata,
        )

    async def find_paths(
        self,
        owner_id: str,
        source_id: str,
        target_id: str,
        max_depth: int | None = None,
        min_similarity: float | None = None,
    ) -> list[GraphPath]:
        require_id("owner_id", owner_id)
        return await self.graph_query.find_paths(
            owner_id, source_id, target_id, max_depth=max_depth, min_similarity=min_similarity
        )

    async def get_neighbors(
        self,
        owner_id: str,
        fragment_id: str,
        min_similarity: float | None = None,
        limit: int | None = None,
    ) -> list[Suggestion]:
        require_id("owner_id", owner_id)
        return await self.graph_query.get_neighbors(
            owner_id, fragment_id, min_similarity=min_similarity, limit=limit
        )

    # -------------------------------------------------------------------
    # Predictions
    # -------------------------------------------------------------------

    async def get_predictions(
        self,
        owner_id: str,
        current_activity: str | None = None,
        recent_fragment_ids: list[str] | None = None,
        limit: int | None = None,
        hour: int | None = None,
        day: int | None = None,
    ) -> PredictionResult:
        require_id("owner_id", owner_id)
        return await self.predictor.predict(
            owner_id,
            current_activity=current_activity,
            recent_fragment_ids=recent_fragment_ids,
            limit=limit,
            hour=hour,
            day=day,
        )

    async def usage_patterns(
        self, owner_id: str, days_back: int = 30, group_by: str = "activity"
    ) -> UsagePatterns:
        require_id("owner_id", owner_id)
        return await self.predictor.usage_patterns(owner_id, days_back=days_back, group_by=group_by)

    async def _owned(self, owner_id: str, fragment_id: str) -> Fragment:
        fragment = await guarded("fragment store", self.fragments.get_fragment(fragment_id))
        if fragment is None or fragment.owner_id != owner_id or not fragment.is_active:
            raise FragmentNotFoundError(fragment_id)
        return fragment


def _compose_text(fragments: list[Fragment]) -> str:
    sections = []
    for fragment in fragments:
        header = f"# {fragment.name}\n\n" if fragment.name else ""
        sections.append(f"{header}{fragment.text}")
    return SECTION_SEPARATOR.join(sections)


def _recommendation_reason(cand: ScoredCandidate) -> str:
    if cand.similarity > 0.8:
        return "Highly relevant to your prompt"
    if cand.similarity > 0.6:
        return "Good match for your prompt"
    if cand.usage_score > 0.1:
        return "Frequently used fragment"
    return "Related to your prompt"
