"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    ConfigurationError,
    StatementParseError,
    LedgerParseError,
    ReportGenerationError,
    DuplicateTransaction,
    InvalidPeriod,
    SessionAlreadyInProgress,
    SessionNotFound,
    InvalidSessionState,
    UnresolvedDiscrepancy,
    BookTransactionAlreadyMatched,
    OracleUnavailable,
    AssignmentConflict,
    ComplianceLogFailure,
    ReconciliationCancelled,
)
from .logging_config import setup_logging
from .concurrency import p_map, p_map_skip

__all__ = [
    "ReconciliationError",
    "ConfigurationError",
    "StatementParseError",
    "LedgerParseError",
    "ReportGenerationError",
    "DuplicateTransaction",
    "InvalidPeriod",
    "SessionAlreadyInProgress",
    "SessionNotFound",
    "InvalidSessionState",
    "UnresolvedDiscrepancy",
    "BookTransactionAlreadyMatched",
    "OracleUnavailable",
    "AssignmentConflict",
    "ComplianceLogFailure",
    "ReconciliationCancelled",
    "setup_logging",
    "p_map",
    "p_map_skip",
]
