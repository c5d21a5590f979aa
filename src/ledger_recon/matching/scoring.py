"""
Similarity scoring between bank and book transactions.

Pure functions with no state. Amounts are compared by magnitude since the
bank side is signed by direction while book amounts are recorded unsigned.
"""

from datetime import date
from decimal import Decimal
from typing import Optional, Union

Number = Union[Decimal, float, int]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def description_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Jaccard similarity of the lowercase word sets of two descriptions.

    Args:
        a: First description
        b: Second description

    Returns:
        Intersection size over union size, 0.0 when both are empty
    """
    words_a = set((a or "").lower().split())
    words_b = set((b or "").lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return _clamp(len(words_a & words_b) / len(union))


def amount_proximity(
    x: Number,
    y: Number,
    near_threshold: float = 1.0,
    scale: float = 100.0,
) -> float:
    """
    Closeness of two amounts.

    Args:
        x: First amount
        y: Second amount
        near_threshold: Differences below this count as identical
        scale: Difference at which proximity reaches zero

    Returns:
        1.0 when the magnitudes differ by less than ``near_threshold``,
        otherwise ``max(0, 1 - diff / scale)``
    """
    diff = abs(abs(Decimal(str(x))) - abs(Decimal(str(y))))
    if diff < Decimal(str(near_threshold)):
        return 1.0
    return _clamp(1.0 - float(diff) / scale)


def fuzzy_confidence(
    desc_similarity: float,
    amount_prox: float,
    description_weight: float = 0.6,
    amount_weight: float = 0.4,
) -> float:
    """Weighted blend of description similarity and amount proximity."""
    score = description_weight * desc_similarity + amount_weight * amount_prox
    # Rounded so threshold comparisons are not at the mercy of float noise
    return _clamp(round(score, 6))


def date_distance_days(a: date, b: date) -> int:
    return abs((a - b).days)


def amounts_equal(x: Number, y: Number, tolerance: float = 0.01) -> bool:
    """True when the magnitudes differ by strictly less than ``tolerance``."""
    diff = abs(abs(Decimal(str(x))) - abs(Decimal(str(y))))
    return diff < Decimal(str(tolerance))
