"""Custom exceptions for the reconciliation engine."""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class StatementParseError(ReconciliationError):
    """Error parsing a bank statement CSV file."""

    pass


class LedgerParseError(ReconciliationError):
    """Error parsing a book ledger CSV file."""

    pass


class ReportGenerationError(ReconciliationError):
    """Error generating Excel report."""

    pass


class DuplicateTransaction(ReconciliationError):
    """A bank transaction with the same (account, reference) was already imported."""

    def __init__(self, account_id: str, reference: str, existing_id: str):
        super().__init__(
            f"Bank transaction {reference!r} already imported for account "
            f"{account_id} as {existing_id}"
        )
        self.account_id = account_id
        self.reference = reference
        self.existing_id = existing_id


class InvalidPeriod(ReconciliationError):
    """Reconciliation period start is after its end."""

    pass


class SessionAlreadyInProgress(ReconciliationError):
    """Another run owns an in-progress session for the same account and period."""

    def __init__(self, account_id: str, session_id: str):
        super().__init__(
            f"Reconciliation session {session_id} is already in progress "
            f"for account {account_id}"
        )
        self.account_id = account_id
        self.session_id = session_id


class SessionNotFound(ReconciliationError):
    """Reconciliation session does not exist."""

    pass


class InvalidSessionState(ReconciliationError):
    """Requested transition is not allowed from the session's current status."""

    pass


class UnresolvedDiscrepancy(ReconciliationError):
    """Session difference exceeds the approval tolerance."""

    def __init__(self, difference, tolerance):
        super().__init__(
            f"Unresolved discrepancy of {difference} exceeds approval tolerance "
            f"of {tolerance}; resolve the difference or waive it with a reason"
        )
        self.difference = difference
        self.tolerance = tolerance


class BookTransactionAlreadyMatched(ReconciliationError):
    """A manual assignment targeted a book transaction already consumed in the session."""

    pass


class OracleUnavailable(ReconciliationError):
    """Classification oracle failed, timed out, or is not configured."""

    pass


class AssignmentConflict(ReconciliationError):
    """
    A book transaction was assigned to more than one bank transaction.

    Raised only by the exclusivity check; its presence indicates a bug in
    assignment resolution.
    """

    pass


class ComplianceLogFailure(ReconciliationError):
    """The primary audit sink rejected an event."""

    def __init__(self, event_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to persist audit event {event_id}: {cause}")
        self.event_id = event_id
        self.cause = cause


class ReconciliationCancelled(ReconciliationError):
    """A batch run was cancelled by its caller."""

    def __init__(
        self,
        message: str = "Reconciliation run cancelled",
        resolved=None,
        session_id: Optional[str] = None,
    ):
        super().__init__(message)
        # Matches resolved before cancellation; they stay valid.
        self.resolved = list(resolved or [])
        self.session_id = session_id
