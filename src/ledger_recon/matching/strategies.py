"""
Candidate scoring strategies for transaction matching.
Each strategy scores one bank transaction against the book pool; none of them
claims anything, so they are safe to run in parallel.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..config import MatchingConfig
from ..models import BankTransaction, BookTransaction, MatchStatus, MatchType
from .scoring import (
    amount_proximity,
    amounts_equal,
    date_distance_days,
    description_similarity,
    fuzzy_confidence,
)


@dataclass(frozen=True)
class Candidate:
    """A scored, not yet assigned, bank-to-book pairing."""

    bank_transaction_id: str
    book_transaction_id: str
    confidence: float
    amount_proximity: float
    date_distance: int
    reasoning: str
    match_type: MatchType
    status: MatchStatus


class MatchingStrategy(ABC):
    """Abstract base class for matching strategies."""

    match_type: MatchType
    status: MatchStatus
    amount_near_threshold: float = 1.0
    amount_proximity_scale: float = 100.0

    def find_candidates(
        self,
        bank_txn: BankTransaction,
        book_candidates: list[BookTransaction],
    ) -> list[Candidate]:
        """
        Score a bank transaction against every book transaction in the pool.

        Args:
            bank_txn: Bank transaction to match
            book_candidates: Unconsumed book transactions

        Returns:
            Accepted candidates, best first
        """
        found: list[Candidate] = []
        for book_txn in book_candidates:
            scored = self.calculate_match_score(bank_txn, book_txn)
            if scored is None:
                continue
            confidence, reason = scored
            found.append(
                Candidate(
                    bank_transaction_id=bank_txn.id,
                    book_transaction_id=book_txn.id,
                    confidence=confidence,
                    amount_proximity=amount_proximity(
                        bank_txn.amount,
                        book_txn.amount,
                        self.amount_near_threshold,
                        self.amount_proximity_scale,
                    ),
                    date_distance=date_distance_days(bank_txn.date, book_txn.date),
                    reasoning=reason,
                    match_type=self.match_type,
                    status=self.status,
                )
            )
        found.sort(key=candidate_sort_key)
        return found

    @abstractmethod
    def calculate_match_score(
        self,
        bank_txn: BankTransaction,
        book_txn: BookTransaction,
    ) -> Optional[tuple[float, str]]:
        """
        Calculate the confidence and reason for a pairing.

        Args:
            bank_txn: Bank transaction
            book_txn: Book transaction

        Returns:
            Tuple of (confidence 0.0-1.0, reason string), or None when the
            pairing is not acceptable for this strategy
        """
        pass


def candidate_sort_key(candidate: Candidate) -> tuple:
    """Best first: confidence, then amount proximity, then closest date."""
    return (
        -candidate.confidence,
        -candidate.amount_proximity,
        candidate.date_distance,
        candidate.book_transaction_id,
    )


class ExactMatchStrategy(MatchingStrategy):
    """
    Exact match strategy - same amount (to the cent) within a day.
    Highest confidence scoring tier.
    """

    match_type = MatchType.EXACT
    status = MatchStatus.MATCHED

    def __init__(
        self,
        amount_tolerance: float = 0.01,
        date_tolerance_days: int = 1,
        confidence: float = 0.95,
    ):
        self.amount_tolerance = amount_tolerance
        self.date_tolerance_days = date_tolerance_days
        self.confidence = confidence

    def calculate_match_score(
        self,
        bank_txn: BankTransaction,
        book_txn: BookTransaction,
    ) -> Optional[tuple[float, str]]:
        if not amounts_equal(bank_txn.amount, book_txn.amount, self.amount_tolerance):
            return None
        if date_distance_days(bank_txn.date, book_txn.date) > self.date_tolerance_days:
            return None
        reason = (
            f"Exact match: same amount (${bank_txn.magnitude}) "
            f"and date ({bank_txn.date.isoformat()})"
        )
        return self.confidence, reason


class FuzzyMatchStrategy(MatchingStrategy):
    """
    Fuzzy matching - weighted description similarity and amount proximity.
    """

    match_type = MatchType.FUZZY
    status = MatchStatus.PARTIAL_MATCH

    def __init__(
        self,
        threshold: float = 0.70,
        description_weight: float = 0.6,
        amount_weight: float = 0.4,
        amount_near_threshold: float = 1.0,
        amount_proximity_scale: float = 100.0,
    ):
        """
        Initialize with scoring weights.

        Args:
            threshold: Minimum confidence for a candidate to be accepted
            description_weight: Weight of description similarity
            amount_weight: Weight of amount proximity
            amount_near_threshold: Amount differences below this score 1.0
            amount_proximity_scale: Amount difference at which proximity is 0
        """
        self.threshold = threshold
        self.description_weight = description_weight
        self.amount_weight = amount_weight
        self.amount_near_threshold = amount_near_threshold
        self.amount_proximity_scale = amount_proximity_scale

    def calculate_match_score(
        self,
        bank_txn: BankTransaction,
        book_txn: BookTransaction,
    ) -> Optional[tuple[float, str]]:
        similarity = description_similarity(bank_txn.description, book_txn.description)
        proximity = amount_proximity(
            bank_txn.amount,
            book_txn.amount,
            self.amount_near_threshold,
            self.amount_proximity_scale,
        )
        confidence = fuzzy_confidence(
            similarity, proximity, self.description_weight, self.amount_weight
        )
        if confidence < self.threshold:
            return None
        reason = (
            f"Fuzzy match: {round(similarity * 100)}% description similarity, "
            f"{round(proximity * 100)}% amount proximity"
        )
        return confidence, reason


def build_strategies(config: MatchingConfig) -> list[MatchingStrategy]:
    """Scoring tiers in assignment order."""
    return [
        ExactMatchStrategy(
            amount_tolerance=config.exact_amount_tolerance,
            date_tolerance_days=config.exact_date_tolerance_days,
            confidence=config.exact_confidence,
        ),
        FuzzyMatchStrategy(
            threshold=config.fuzzy_threshold,
            description_weight=config.description_weight,
            amount_weight=config.amount_weight,
            amount_near_threshold=config.amount_near_threshold,
            amount_proximity_scale=config.amount_proximity_scale,
        ),
    ]
