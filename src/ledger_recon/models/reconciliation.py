"""Data models for reconciliation matches, sessions and rules."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
import re

from .transaction import Period, new_id
from ..utils.exceptions import ConfigurationError

UNMATCHED_REASONING = "No automatic match found - requires manual review"


class MatchType(Enum):
    """Pipeline step that produced a match."""

    EXACT = "exact"
    FUZZY = "fuzzy"
    RULE = "rule"
    AI = "ai"
    MANUAL = "manual"


class MatchStatus(Enum):
    """Reconciliation status of a single bank transaction."""

    UNMATCHED = "unmatched"
    MATCHED = "matched"
    PARTIAL_MATCH = "partial_match"
    DISPUTED = "disputed"
    EXCLUDED = "excluded"


# Statuses that consume a book transaction within a session.
CONSUMING_STATUSES = frozenset({MatchStatus.MATCHED, MatchStatus.PARTIAL_MATCH})


class SessionStatus(Enum):
    """Reconciliation session state machine."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    DISPUTED = "disputed"


class ReconciliationType(Enum):
    """Direction of a reconciliation run."""

    BANK_TO_BOOK = "bank_to_book"
    BOOK_TO_BANK = "book_to_bank"
    FULL_RECONCILIATION = "full_reconciliation"


@dataclass
class SuggestedAdjustments:
    """Corrections a reviewer may apply to the book side of a match."""

    amount: Optional[Decimal] = None
    date: Optional[Any] = None
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            k: (str(v) if isinstance(v, Decimal) else v)
            for k, v in (
                ("amount", self.amount),
                ("date", self.date.isoformat() if self.date else None),
                ("description", self.description),
            )
            if v is not None
        }


@dataclass
class ReconciliationMatch:
    """Outcome of matching one bank transaction within a session."""

    bank_transaction_id: str
    status: MatchStatus
    confidence: float = 0.0
    match_type: Optional[MatchType] = None
    book_transaction_id: Optional[str] = None
    reasoning: str = UNMATCHED_REASONING
    suggested_adjustments: Optional[SuggestedAdjustments] = None
    suggested_category: Optional[str] = None
    session_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    # Diagnostics for reviewers
    amount_proximity: Optional[float] = None
    date_variance_days: Optional[int] = None

    @property
    def consumes_book_transaction(self) -> bool:
        return self.book_transaction_id is not None and self.status in CONSUMING_STATUSES

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_by is not None

    @classmethod
    def unmatched(cls, bank_transaction_id: str, reasoning: str = UNMATCHED_REASONING):
        return cls(
            bank_transaction_id=bank_transaction_id,
            status=MatchStatus.UNMATCHED,
            confidence=0.0,
            match_type=None,
            reasoning=reasoning,
        )


@dataclass
class ReconciliationSession:
    """One reconciliation run over an account's statement period."""

    account_id: str
    user_id: str
    period: Period
    bank_statement_balance: Decimal
    book_balance: Decimal
    type: ReconciliationType = ReconciliationType.FULL_RECONCILIATION
    bank_transaction_ids: list[str] = field(default_factory=list)
    matches: list[ReconciliationMatch] = field(default_factory=list)
    status: SessionStatus = SessionStatus.IN_PROGRESS
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    waiver_reason: Optional[str] = None
    dispute_reason: Optional[str] = None
    notes: Optional[str] = None

    @property
    def difference(self) -> Decimal:
        return self.book_balance - self.bank_statement_balance

    def match_for(self, bank_transaction_id: str) -> Optional[ReconciliationMatch]:
        return next(
            (m for m in self.matches if m.bank_transaction_id == bank_transaction_id),
            None,
        )

    def consumed_book_ids(self) -> set[str]:
        return {
            m.book_transaction_id
            for m in self.matches
            if m.consumes_book_transaction and m.book_transaction_id
        }

    def count_by_status(self) -> dict[MatchStatus, int]:
        counts = {status: 0 for status in MatchStatus}
        for match in self.matches:
            counts[match.status] += 1
        return counts


@dataclass
class ReconciliationRule:
    """
    Static pattern-to-category rule.

    The pattern is a case-insensitive regular expression tested against the
    bank transaction's description and reference.
    """

    id: str
    pattern: str
    target_category: str
    confidence: float = 0.9
    description: str = ""
    target_transaction_id: Optional[str] = None

    def __post_init__(self) -> None:
        try:
            self._regex = re.compile(self.pattern, re.IGNORECASE)
        except re.error as e:
            raise ConfigurationError(
                f"Invalid pattern for reconciliation rule {self.id!r}: {e}"
            ) from e
        if not 0.0 <= self.confidence <= 1.0:
            raise ConfigurationError(
                f"Rule {self.id!r} confidence must be within [0, 1], got {self.confidence}"
            )

    def matches(self, text: Optional[str]) -> bool:
        return bool(text) and self._regex.search(text) is not None


@dataclass
class SessionSummary:
    """Headline numbers of a reconciliation session."""

    bank_balance: Decimal
    book_balance: Decimal
    difference: Decimal
    total_transactions: int
    matched_transactions: int
    partial_matches: int
    unmatched_transactions: int
    disputed_transactions: int
    excluded_transactions: int

    @property
    def match_rate(self) -> float:
        """Percentage of bank transactions fully matched."""
        if self.total_transactions == 0:
            return 0.0
        return (self.matched_transactions / self.total_transactions) * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "bank_balance": str(self.bank_balance),
            "book_balance": str(self.book_balance),
            "difference": str(self.difference),
            "total_transactions": self.total_transactions,
            "matched_transactions": self.matched_transactions,
            "partial_matches": self.partial_matches,
            "unmatched_transactions": self.unmatched_transactions,
            "disputed_transactions": self.disputed_transactions,
            "excluded_transactions": self.excluded_transactions,
        }


@dataclass
class SessionReport:
    """Caller-facing report of a reconciliation session."""

    session: ReconciliationSession
    summary: SessionSummary
    matches: list[ReconciliationMatch]
    recommendations: list[str]
    next_steps: list[str]
