"""Dependency and conflict reporting for a selection.

Advisory only: dependencies are reported, never added to the selection,
and conflicting pairs are flagged, never removed. Budget accounting stays
with the selector.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from ctxforge.context.models import ConflictRef, DependencyRef
from ctxforge.models import DEPENDENCY_RELATIONS, RelationshipEdge, RelationType
from ctxforge.providers.base import FragmentStore, RelationshipStore

logger = logging.getLogger("ctxforge.context")


@dataclass
class Resolution:
    dependencies: list[DependencyRef] = field(default_factory=list)
    conflicts: list[ConflictRef] = field(default_factory=list)


class DependencyResolver:
    def __init__(self, fragments: FragmentStore, relationships: RelationshipStore) -> None:
        self.fragments = fragments
        self.relationships = relationships

    async def resolve(self, owner_id: str, selected_ids: list[str]) -> Resolution:
        """One-hop dependencies plus conflicting pairs within the selection."""
        if not selected_ids:
            return Resolution()

        edge_lists = await asyncio.gather(
            *(self.relationships.get_relationships(sid) for sid in selected_ids)
        )
        edges_by_id = dict(zip(selected_ids, edge_lists))

        dependencies = await self._dependencies(owner_id, selected_ids, edges_by_id)
        conflicts = self._conflicts(selected_ids, edges_by_id)
        return Resolution(dependencies=dependencies, conflicts=conflicts)

    async def _dependencies(
        self,
        owner_id: str,
        selected_ids: list[str],
        edges_by_id: dict[str, list[RelationshipEdge]],
    ) -> list[DependencyRef]:
        selected = set(selected_ids)
        wanted: list[RelationshipEdge] = []
        seen: set[tuple[str, str, str]] = set()

        for sid in selected_ids:
            for edge in edges_by_id[sid]:
                if edge.source_id != sid or edge.type not in DEPENDENCY_RELATIONS:
                    continue
                key = (edge.source_id, edge.target_id, edge.type.value)
                if key in seen:
                    continue
                seen.add(key)
                wanted.append(edge)

        targets = await asyncio.gather(
            *(self.fragments.get_fragment(e.target_id) for e in wanted)
        )

        deps: list[DependencyRef] = []
        for edge, target in zip(wanted, targets):
            # Dangling or foreign targets are dropped rather than failing the request
            if target is None or target.owner_id != owner_id or not target.is_active:
                logger.debug(
                    "Omitting dependency %s -> %s: target unavailable",
                    edge.source_id, edge.target_id,
                )
                continue
            deps.append(
                DependencyRef(
                    source_id=edge.source_id,
                    target_id=edge.target_id,
                    type=edge.type,
                    target_name=target.label,
                    satisfied=edge.target_id in selected,
                )
            )
        return deps

    def _conflicts(
        self,
        selected_ids: list[str],
        edges_by_id: dict[str, list[RelationshipEdge]],
    ) -> list[ConflictRef]:
        selected = set(selected_ids)
        conflicts: list[ConflictRef] = []
        seen: set[frozenset[str]] = set()

        for sid in selected_ids:
            for edge in edges_by_id[sid]:
                if edge.type != RelationType.CONFLICTS:
                    continue
                if edge.source_id not in selected or edge.target_id not in selected:
                    continue
                pair = frozenset((edge.source_id, edge.target_id))
                if pair in seen:
                    continue
                seen.add(pair)
                conflicts.append(
                    ConflictRef(
                        source_id=edge.source_id,
                        target_id=edge.target_id,
                        reason=str(edge.metadata.get("reason", "")),
                    )
                )
        return conflicts
