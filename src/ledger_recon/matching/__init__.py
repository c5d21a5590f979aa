"""Matching engine, rules and scoring strategies."""

from .engine import MatchingEngine, MatchingResult, verify_exclusivity
from .rules import RuleEngine, RuleProvider, StaticRuleProvider
from .scoring import (
    amount_proximity,
    date_distance_days,
    description_similarity,
    fuzzy_confidence,
)
from .strategies import (
    Candidate,
    ExactMatchStrategy,
    FuzzyMatchStrategy,
    MatchingStrategy,
)

__all__ = [
    "MatchingEngine",
    "MatchingResult",
    "verify_exclusivity",
    "RuleEngine",
    "RuleProvider",
    "StaticRuleProvider",
    "amount_proximity",
    "date_distance_days",
    "description_similarity",
    "fuzzy_confidence",
    "Candidate",
    "ExactMatchStrategy",
    "FuzzyMatchStrategy",
    "MatchingStrategy",
]
