"""Transaction categorization."""

from .engine import CategorizationEngine, ModelPerformance

__all__ = ["CategorizationEngine", "ModelPerformance"]
