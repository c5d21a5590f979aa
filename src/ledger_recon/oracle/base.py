"""
Classification oracle contract.

The oracle is an external, best-effort collaborator: its answers are
suggestions with a confidence, never authoritative decisions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Union

from ..models import BankTransaction, BookTransaction
from ..utils.exceptions import OracleUnavailable

Transaction = Union[BankTransaction, BookTransaction]


@dataclass
class Classification:
    """Category suggestion for one transaction."""

    category: str
    confidence: float
    explanation: str = ""
    model: str = "unknown"
    provider: str = "unknown"


@dataclass
class MatchCandidate:
    """The oracle's pick of a book transaction for a bank transaction."""

    candidate_id: str
    confidence: float
    explanation: str = ""


@dataclass
class FeedbackCorrection:
    """A human correction forwarded to the oracle for model improvement."""

    transaction_id: str
    description: str
    original_category: Optional[str]
    corrected_category: str
    reasoning: str = ""
    user_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)


class ClassificationOracle(ABC):
    """External AI categorization and matching service."""

    name: str = "oracle"

    @abstractmethod
    def classify(self, txn: Transaction) -> Classification:
        """
        Suggest a category for a transaction.

        Raises:
            OracleUnavailable: If the service fails or times out
        """
        pass

    @abstractmethod
    def find_match_candidates(
        self,
        bank_txn: BankTransaction,
        candidates: list[BookTransaction],
    ) -> Optional[MatchCandidate]:
        """
        Pick the book transaction that best matches a bank transaction.

        Args:
            bank_txn: Bank transaction to match
            candidates: Unconsumed book transactions

        Returns:
            The chosen candidate, or None when nothing fits

        Raises:
            OracleUnavailable: If the service fails or times out
        """
        pass

    @abstractmethod
    def submit_feedback(self, correction: FeedbackCorrection) -> None:
        pass


class NullOracle(ClassificationOracle):
    """Oracle for offline runs: every call reports the service as unavailable."""

    name = "none"

    def classify(self, txn: Transaction) -> Classification:
        raise OracleUnavailable("No classification oracle configured")

    def find_match_candidates(
        self,
        bank_txn: BankTransaction,
        candidates: list[BookTransaction],
    ) -> Optional[MatchCandidate]:
        raise OracleUnavailable("No classification oracle configured")

    def submit_feedback(self, correction: FeedbackCorrection) -> None:
        raise OracleUnavailable("No classification oracle configured")
