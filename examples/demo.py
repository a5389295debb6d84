#!/usr/bin/env python3
"""Demo: Using ctxforge as a Python library.

This shows how to drive the engine programmatically, not just through the
CLI, with the in-memory collaborators and local hashing embeddings.
"""

import asyncio
from datetime import timedelta

from ctxforge.engine import ContextEngine
from ctxforge.models import (
    Fragment,
    FragmentType,
    RelationshipEdge,
    RelationType,
    UsageEvent,
    utcnow,
)
from ctxforge.providers import (
    HashingEmbeddingProvider,
    InMemoryEventLog,
    InMemoryFragmentStore,
    InMemoryRelationshipStore,
    VectorIndex,
)

OWNER = "demo"

FRAGMENTS = [
    ("profile", FragmentType.PROFILE, "Engineer profile",
     "Senior python engineer. Prefers concise answers with code samples."),
    ("style", FragmentType.PROJECT, "Python style guide",
     "Format python code with black, annotate public functions with type hints."),
    ("tests", FragmentType.TASK, "Testing checklist",
     "Write pytest tests for new python code, cover error paths and edge cases."),
    ("review", FragmentType.TASK, "Code review rubric",
     "Review python code for naming, tests, error handling and type hints."),
    ("deploy", FragmentType.SNIPPET, "Deploy runbook",
     "Roll out containers with kubernetes, then watch the dashboards for errors."),
]


async def build_engine() -> ContextEngine:
    embedder = HashingEmbeddingProvider(dimensions=256)
    fragments = InMemoryFragmentStore()
    index = VectorIndex()
    for fid, ftype, name, text in FRAGMENTS:
        fragments.add(Fragment(id=fid, owner_id=OWNER, name=name, type=ftype, text=text))
        index.upsert(fid, await embedder.embed(f"{name}\n{text}"))

    relationships = InMemoryRelationshipStore([
        RelationshipEdge(source_id="review", target_id="style", type=RelationType.DEPENDS_ON),
        RelationshipEdge(
            source_id="deploy", target_id="tests", type=RelationType.CONFLICTS,
            metadata={"reason": "release work and test work belong in separate sessions"},
        ),
    ])

    # A few days of history: tests and review tend to be used together
    events = InMemoryEventLog()
    now = utcnow()
    for days_ago in range(1, 6):
        at = now - timedelta(days=days_ago)
        for fid in ("tests", "review"):
            await events.append(UsageEvent(
                user_id=OWNER, fragment_id=fid, activity_type="coding", timestamp=at,
            ))
        await events.append(UsageEvent(
            user_id=OWNER, fragment_id="deploy", activity_type="release",
            timestamp=at + timedelta(hours=2),
        ))

    return ContextEngine(fragments, relationships, events, index, embedder)


async def run() -> None:
    engine = await build_engine()

    # 1. Compose context for a goal within a budget
    print("--- Composing context for 'review python code and tests' ---")
    composition = await engine.score_and_select(
        OWNER, goal_text="review python code and tests", token_budget=60, min_similarity=0.2
    )
    for c in composition.candidates:
        print(f"  {c.name:<22} sim={c.similarity:.2f} score={c.composite_score:.2f} ({c.token_count} tok)")
    print(f"  Tokens: {composition.total_tokens}/{composition.token_budget}")
    print(f"  Quality: {composition.quality_score:.2f} [{composition.strategy}]")
    for dep in composition.dependencies:
        state = "included" if dep.satisfied else "missing"
        print(f"  Requires {dep.target_name} ({state})")
    for conflict in composition.conflicts:
        print(f"  Conflict: {conflict.source_id} / {conflict.target_id}")
    if composition.is_empty:
        print(f"  {composition.reason}")

    # 2. Similarity graph
    print("\n--- Similarity graph ---")
    view = await engine.build_graph(OWNER, min_similarity=0.2)
    print(f"  Nodes: {len(view.nodes)}  Edges: {len(view.edges)}  Clusters: {len(view.clusters)}")
    for edge in view.edges[:5]:
        print(f"  {edge.source} -- {edge.target} ({edge.weight:.2f}, {edge.strength})")

    print("\n--- Paths from 'profile' to 'deploy' ---")
    for path in await engine.find_paths(OWNER, "profile", "deploy", min_similarity=0.1):
        print("  " + " -> ".join(step.name for step in path.steps))

    # 3. Predictions from usage history
    print("\n--- Predictions while coding with 'tests' open ---")
    result = await engine.get_predictions(
        OWNER, current_activity="coding", recent_fragment_ids=["tests"]
    )
    for s in result.predictions:
        print(f"  {s.name:<22} {s.source.value:<10} {s.confidence:.0%}  {s.reason}")

    patterns = await engine.usage_patterns(OWNER, days_back=7, group_by="activity")
    print("\n--- Usage by activity ---")
    for bucket in patterns.buckets:
        print(f"  {bucket.label or bucket.key}: {bucket.usage_count}")


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
