"""Predictive suggestions from usage history."""

from ctxforge.predict.engine import PredictiveEngine
from ctxforge.predict.models import PredictionResult, UsagePatterns
from ctxforge.predict.ranking import deduplicate_and_rank

__all__ = ["PredictiveEngine", "PredictionResult", "UsagePatterns", "deduplicate_and_rank"]
