"""Data models for reconciliation."""

from .transaction import (
    BankTransaction,
    BookTransaction,
    BookTransactionStatus,
    BookTransactionType,
    Period,
    TransactionSource,
    TransactionType,
    new_id,
)
from .reconciliation import (
    MatchStatus,
    MatchType,
    ReconciliationMatch,
    ReconciliationRule,
    ReconciliationSession,
    ReconciliationType,
    SessionReport,
    SessionStatus,
    SessionSummary,
    SuggestedAdjustments,
    UNMATCHED_REASONING,
)
from .categorization import (
    CategorizationAttempt,
    CategorizationResult,
    CategoryProvenance,
    TransactionCategory,
)

__all__ = [
    "BankTransaction",
    "BookTransaction",
    "BookTransactionStatus",
    "BookTransactionType",
    "Period",
    "TransactionSource",
    "TransactionType",
    "new_id",
    "MatchStatus",
    "MatchType",
    "ReconciliationMatch",
    "ReconciliationRule",
    "ReconciliationSession",
    "ReconciliationType",
    "SessionReport",
    "SessionStatus",
    "SessionSummary",
    "SuggestedAdjustments",
    "UNMATCHED_REASONING",
    "CategorizationAttempt",
    "CategorizationResult",
    "CategoryProvenance",
    "TransactionCategory",
]
