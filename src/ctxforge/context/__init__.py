"""Relevance scoring and budgeted composition.

Usage:
    from ctxforge.context import RelevanceScorer, BudgetSelector

    ranked = RelevanceScorer().score(fragments, similarities, now)
    selection = BudgetSelector().select(ranked, token_budget=4000, max_items=10)
"""

from ctxforge.context.models import Composition, ConflictRef, DependencyRef, ScoredCandidate
from ctxforge.context.resolver import DependencyResolver
from ctxforge.context.scoring import RelevanceScorer
from ctxforge.context.selection import BudgetSelector

__all__ = [
    "BudgetSelector",
    "Composition",
    "ConflictRef",
    "DependencyRef",
    "DependencyResolver",
    "RelevanceScorer",
    "ScoredCandidate",
]
