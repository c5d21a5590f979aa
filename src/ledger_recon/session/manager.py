"""
Reconciliation session state machine.

    in_progress -> completed -> approved
                             -> disputed -> in_progress (reopen)

Nothing leaves ``approved``. Every transition is written to the audit trail
together with a summary of the session's matches.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from ..audit import AuditEventType, AuditLogger
from ..config import SessionConfig
from ..matching.engine import verify_exclusivity
from ..models import (
    BankTransaction,
    BookTransactionStatus,
    MatchStatus,
    MatchType,
    Period,
    ReconciliationMatch,
    ReconciliationSession,
    ReconciliationType,
    SessionReport,
    SessionStatus,
    SessionSummary,
)
from ..store import TransactionStore
from ..utils.exceptions import (
    BookTransactionAlreadyMatched,
    InvalidPeriod,
    InvalidSessionState,
    UnresolvedDiscrepancy,
)

logger = logging.getLogger(__name__)

_REVIEWABLE = (SessionStatus.COMPLETED, SessionStatus.DISPUTED)


class SessionManager:
    """Owns session lifecycle, balance computation and match review."""

    def __init__(
        self,
        store: TransactionStore,
        audit: AuditLogger,
        config: Optional[SessionConfig] = None,
    ):
        self.store = store
        self.audit = audit
        self.config = config or SessionConfig()

    # Lifecycle

    def create_session(
        self,
        account_id: str,
        user_id: str,
        bank_transactions: list[BankTransaction],
        period: Period,
        session_type: ReconciliationType = ReconciliationType.FULL_RECONCILIATION,
    ) -> ReconciliationSession:
        """
        Open a reconciliation session for a statement period.

        Args:
            account_id: Account being reconciled
            user_id: User starting the run
            bank_transactions: Statement lines the session covers
            period: Statement period (inclusive)
            session_type: Direction of the reconciliation

        Returns:
            The new in-progress session

        Raises:
            InvalidPeriod: If the period starts after it ends
            SessionAlreadyInProgress: If another run owns an overlapping
                in-progress session for the account
        """
        if not period.is_valid:
            raise InvalidPeriod(
                f"Reconciliation period start {period.start} is after end {period.end}"
            )

        session = ReconciliationSession(
            account_id=account_id,
            user_id=user_id,
            period=period,
            type=session_type,
            bank_statement_balance=self.bank_balance(bank_transactions),
            book_balance=self.book_balance(account_id, period),
            bank_transaction_ids=[t.id for t in bank_transactions],
        )
        session = self.store.insert_session(session)

        logger.info(
            f"Created session {session.id} for {account_id} {period}: "
            f"bank {session.bank_statement_balance}, book {session.book_balance}"
        )
        self.audit.log_session_event(
            AuditEventType.RECONCILIATION_SESSION_CREATED,
            session,
            user_id,
            f"Reconciliation session created for {len(bank_transactions)} statement lines",
        )
        return session

    def get_session(self, session_id: str) -> ReconciliationSession:
        return self.store.get_session(session_id)

    def record_matches(
        self, session_id: str, matches: list[ReconciliationMatch]
    ) -> ReconciliationSession:
        """Persist partially resolved matches without changing session status."""
        session = self.store.get_session(session_id)
        self._require(session, SessionStatus.IN_PROGRESS, "record matches")
        for match in matches:
            self.store.upsert_match(session_id, match)
        logger.info(f"Recorded {len(matches)} matches on session {session_id}")
        return self.store.get_session(session_id)

    def complete_session(
        self,
        session_id: str,
        matches: list[ReconciliationMatch],
        user_id: Optional[str] = None,
    ) -> ReconciliationSession:
        """
        Persist the full match set and mark the session completed.

        Book transactions behind ``matched`` records (and reviewed
        ``partial_match`` records) advance to ``reconciled``. The session is
        disputed automatically when the share of unmatched and partial records
        exceeds the configured ratio.

        Raises:
            InvalidSessionState: If the session is not in progress or a
                covered bank transaction has no match record
            AssignmentConflict: If a book transaction is matched twice
        """
        session = self.store.get_session(session_id)
        self._require(session, SessionStatus.IN_PROGRESS, "complete")

        by_bank = {m.bank_transaction_id: m for m in matches}
        covered = set(session.bank_transaction_ids)
        missing = covered - by_bank.keys()
        if missing:
            raise InvalidSessionState(
                f"Session {session_id} cannot complete: {len(missing)} bank "
                f"transactions have no match record"
            )
        unknown = by_bank.keys() - covered
        if unknown:
            raise InvalidSessionState(
                f"Session {session_id} received matches for {len(unknown)} bank "
                f"transactions it does not cover"
            )

        ordered = [by_bank[bank_id] for bank_id in session.bank_transaction_ids]
        verify_exclusivity(ordered)
        for match in ordered:
            self.store.upsert_match(session_id, match)

        session = self.store.get_session(session_id)
        for match in session.matches:
            if self._settles(match):
                self.store.update_book_transaction_status(
                    match.book_transaction_id, BookTransactionStatus.RECONCILED
                )

        session.book_balance = self.book_balance(session.account_id, session.period)
        session.status = SessionStatus.COMPLETED
        session.completed_at = datetime.now()
        session = self.store.save_session(session)

        counts = session.count_by_status()
        logger.info(
            f"Completed session {session_id}: "
            f"{counts[MatchStatus.MATCHED]} matched, "
            f"{counts[MatchStatus.PARTIAL_MATCH]} partial, "
            f"{counts[MatchStatus.UNMATCHED]} unmatched, difference {session.difference}"
        )
        self.audit.log_session_event(
            AuditEventType.RECONCILIATION_COMPLETED,
            session,
            user_id or session.user_id,
            "Reconciliation session completed",
        )

        total = len(session.matches)
        unresolved = counts[MatchStatus.UNMATCHED] + counts[MatchStatus.PARTIAL_MATCH]
        if total and unresolved / total > self.config.auto_dispute_ratio:
            session = self._dispute(
                session,
                user_id=None,
                reason=(
                    f"Automatically disputed: {unresolved} of {total} transactions "
                    f"are unmatched or only partially matched"
                ),
                automatic=True,
            )
        return session

    def approve_session(
        self,
        session_id: str,
        user_id: str,
        waive_discrepancy: bool = False,
        waiver_reason: Optional[str] = None,
    ) -> ReconciliationSession:
        """
        Approve a completed session.

        Balances are recomputed first, so book transactions added since
        completion are taken into account.

        Raises:
            InvalidSessionState: If the session is not completed
            UnresolvedDiscrepancy: If the difference exceeds the tolerance
                and was not waived
            ValueError: If a waiver is requested without a reason
        """
        session = self.store.get_session(session_id)
        self._require(session, SessionStatus.COMPLETED, "approve")

        session.book_balance = self.book_balance(session.account_id, session.period)
        tolerance = Decimal(str(self.config.approval_tolerance))
        waived = False
        if abs(session.difference) > tolerance:
            if not waive_discrepancy:
                self.store.save_session(session)
                raise UnresolvedDiscrepancy(session.difference, tolerance)
            if not waiver_reason or not waiver_reason.strip():
                raise ValueError("Waiving a discrepancy requires a documented reason")
            waived = True
            session.waiver_reason = waiver_reason

        session.status = SessionStatus.APPROVED
        session.approved_by = user_id
        session.approved_at = datetime.now()
        session = self.store.save_session(session)

        logger.info(f"Session {session_id} approved by {user_id}")
        self.audit.log_session_event(
            AuditEventType.RECONCILIATION_APPROVED,
            session,
            user_id,
            "Reconciliation approved"
            + (f" with waived discrepancy: {waiver_reason}" if waived else ""),
            metadata={"bulk": len(session.matches) > 1, "waived": waived},
        )
        return session

    def dispute_session(
        self, session_id: str, user_id: str, reason: str
    ) -> ReconciliationSession:
        session = self.store.get_session(session_id)
        self._require(session, SessionStatus.COMPLETED, "dispute")
        return self._dispute(session, user_id, reason, automatic=False)

    def _dispute(
        self,
        session: ReconciliationSession,
        user_id: Optional[str],
        reason: str,
        automatic: bool,
    ) -> ReconciliationSession:
        session.status = SessionStatus.DISPUTED
        session.dispute_reason = reason
        session = self.store.save_session(session)
        logger.info(f"Session {session.id} disputed: {reason}")
        self.audit.log_session_event(
            AuditEventType.RECONCILIATION_DISPUTED,
            session,
            user_id or "system",
            reason,
            metadata={"automatic": automatic},
        )
        return session

    def reopen_session(self, session_id: str, user_id: str) -> ReconciliationSession:
        """
        Move a disputed session back to in_progress for correction.

        Raises:
            InvalidSessionState: If the session is not disputed
            SessionAlreadyInProgress: If another overlapping run is in progress
        """
        session = self.store.get_session(session_id)
        self._require(session, SessionStatus.DISPUTED, "reopen")
        session.status = SessionStatus.IN_PROGRESS
        session.completed_at = None
        # Book transactions are released only once the overlap check passed
        session = self.store.save_session(session)
        for match in session.matches:
            if not match.is_reviewed:
                self._release(match)
        logger.info(f"Session {session_id} reopened by {user_id}")
        self.audit.log_session_event(
            AuditEventType.RECONCILIATION_REOPENED,
            session,
            user_id,
            "Reconciliation session reopened for correction",
        )
        return session

    # Match review

    def review_match(
        self,
        session_id: str,
        bank_transaction_id: str,
        reviewer: str,
        accept: bool = True,
    ) -> ReconciliationMatch:
        """
        Accept or reject a proposed match.

        Accepting confirms the pairing (a partial match becomes matched) and
        reconciles its book transaction. Rejecting marks the record disputed
        and releases its book transaction.
        """
        session = self.store.get_session(session_id)
        self._require(session, _REVIEWABLE, "review matches")
        match = self._match(session, bank_transaction_id)

        match.reviewed_by = reviewer
        match.reviewed_at = datetime.now()
        if accept:
            if match.status == MatchStatus.PARTIAL_MATCH:
                match.status = MatchStatus.MATCHED
            if self._settles(match):
                self.store.update_book_transaction_status(
                    match.book_transaction_id, BookTransactionStatus.RECONCILED
                )
        else:
            self._release(match)
            match.status = MatchStatus.DISPUTED

        return self._save_reviewed(
            session,
            match,
            reviewer,
            f"Match {'accepted' if accept else 'rejected'} by reviewer",
            {"accepted": accept},
        )

    def assign_manual_match(
        self,
        session_id: str,
        bank_transaction_id: str,
        book_transaction_id: str,
        user_id: str,
        reasoning: Optional[str] = None,
    ) -> ReconciliationMatch:
        """
        Pair a bank transaction with a book transaction by hand.

        Raises:
            BookTransactionAlreadyMatched: If the book transaction is already
                consumed by another record in the session
            ValueError: If the book transaction does not exist
        """
        session = self.store.get_session(session_id)
        self._require(session, _REVIEWABLE, "assign matches")
        match = self._match(session, bank_transaction_id)

        for other in session.matches:
            if (
                other.bank_transaction_id != bank_transaction_id
                and other.consumes_book_transaction
                and other.book_transaction_id == book_transaction_id
            ):
                raise BookTransactionAlreadyMatched(
                    f"Book transaction {book_transaction_id} is already matched to "
                    f"bank transaction {other.bank_transaction_id} in session {session_id}"
                )
        if self.store.get_book_transaction(book_transaction_id) is None:
            raise ValueError(f"Book transaction not found: {book_transaction_id}")

        if match.book_transaction_id != book_transaction_id:
            self._release(match)
        match.book_transaction_id = book_transaction_id
        match.status = MatchStatus.MATCHED
        match.match_type = MatchType.MANUAL
        match.confidence = 1.0
        match.reasoning = reasoning or f"Manually matched by {user_id}"
        match.reviewed_by = user_id
        match.reviewed_at = datetime.now()
        self.store.update_book_transaction_status(
            book_transaction_id, BookTransactionStatus.RECONCILED
        )

        return self._save_reviewed(
            session,
            match,
            user_id,
            "Manual match assigned",
            {"book_transaction_id": book_transaction_id},
        )

    def exclude_match(
        self,
        session_id: str,
        bank_transaction_id: str,
        user_id: str,
        reason: str,
    ) -> ReconciliationMatch:
        """Exclude a bank transaction from reconciliation."""
        session = self.store.get_session(session_id)
        self._require(session, _REVIEWABLE, "exclude transactions")
        match = self._match(session, bank_transaction_id)

        self._release(match)
        match.status = MatchStatus.EXCLUDED
        match.book_transaction_id = None
        match.reasoning = f"Excluded by {user_id}: {reason}"
        match.reviewed_by = user_id
        match.reviewed_at = datetime.now()

        return self._save_reviewed(
            session, match, user_id, "Transaction excluded from reconciliation",
            {"reason": reason},
        )

    def _save_reviewed(
        self,
        session: ReconciliationSession,
        match: ReconciliationMatch,
        user_id: str,
        description: str,
        details: dict,
    ) -> ReconciliationMatch:
        stored = self.store.upsert_match(session.id, match)
        session = self.store.get_session(session.id)
        session.book_balance = self.book_balance(session.account_id, session.period)
        self.store.save_session(session)
        self.audit.log_financial_event(
            AuditEventType.MATCH_REVIEWED,
            action="review_match",
            entity_type="reconciliation_match",
            entity_id=stored.id,
            user_id=user_id,
            description=description,
            metadata={
                "session_id": session.id,
                "bank_transaction_id": stored.bank_transaction_id,
                "status": stored.status.value,
                **details,
            },
        )
        return stored

    def _release(self, match: ReconciliationMatch) -> None:
        """Undo the reconciled status a match gave its book transaction."""
        if not match.consumes_book_transaction:
            return
        book = self.store.get_book_transaction(match.book_transaction_id)
        if book is not None and book.status == BookTransactionStatus.RECONCILED:
            # Reconciled implies cleared, so the book balance is unchanged
            self.store.update_book_transaction_status(
                book.id, BookTransactionStatus.CLEARED
            )

    # Balances and reporting

    @staticmethod
    def bank_balance(bank_transactions: list[BankTransaction]) -> Decimal:
        """Net cash movement of the statement lines."""
        return sum((t.signed_amount for t in bank_transactions), Decimal("0"))

    def book_balance(self, account_id: str, period: Period) -> Decimal:
        """Net cash effect of cleared and reconciled book transactions in the period."""
        snapshot = self.store.snapshot(account_id, period)
        return sum(
            (t.cash_effect for t in snapshot.book_transactions if t.counts_toward_balance),
            Decimal("0"),
        )

    def build_report(self, session_id: str) -> SessionReport:
        session = self.store.get_session(session_id)
        counts = session.count_by_status()
        summary = SessionSummary(
            bank_balance=session.bank_statement_balance,
            book_balance=session.book_balance,
            difference=session.difference,
            total_transactions=len(session.matches),
            matched_transactions=counts[MatchStatus.MATCHED],
            partial_matches=counts[MatchStatus.PARTIAL_MATCH],
            unmatched_transactions=counts[MatchStatus.UNMATCHED],
            disputed_transactions=counts[MatchStatus.DISPUTED],
            excluded_transactions=counts[MatchStatus.EXCLUDED],
        )
        return SessionReport(
            session=session,
            summary=summary,
            matches=list(session.matches),
            recommendations=self._recommendations(summary),
            next_steps=self._next_steps(session, summary),
        )

    def _recommendations(self, summary: SessionSummary) -> list[str]:
        recommendations: list[str] = []
        if summary.unmatched_transactions:
            recommendations.append(
                f"Review {summary.unmatched_transactions} unmatched transactions "
                f"for manual reconciliation"
            )
        if summary.disputed_transactions:
            recommendations.append(
                f"Resolve {summary.disputed_transactions} disputed matches"
            )
        if summary.partial_matches:
            recommendations.append(
                f"Consider adjusting {summary.partial_matches} partial matches"
            )
        return recommendations

    def _next_steps(
        self, session: ReconciliationSession, summary: SessionSummary
    ) -> list[str]:
        steps: list[str] = []
        if abs(session.difference) > Decimal(str(self.config.approval_tolerance)):
            steps.append("Investigate and resolve the balance difference")
        if summary.unmatched_transactions:
            steps.append("Review unmatched transactions and create missing book entries")
        if summary.disputed_transactions:
            steps.append("Resolve disputed transactions with your accountant")
        if session.status != SessionStatus.APPROVED:
            steps.append("Approve reconciliation once all items are matched")
        steps.append("Schedule next reconciliation for end of month")
        return steps

    # Helpers

    @staticmethod
    def _settles(match: ReconciliationMatch) -> bool:
        if not match.book_transaction_id:
            return False
        if match.status == MatchStatus.MATCHED:
            return True
        return match.status == MatchStatus.PARTIAL_MATCH and match.is_reviewed

    @staticmethod
    def _match(session: ReconciliationSession, bank_transaction_id: str) -> ReconciliationMatch:
        match = session.match_for(bank_transaction_id)
        if match is None:
            raise ValueError(
                f"Session {session.id} has no match record for bank transaction "
                f"{bank_transaction_id}"
            )
        return match

    @staticmethod
    def _require(session: ReconciliationSession, allowed, action: str) -> None:
        allowed = allowed if isinstance(allowed, tuple) else (allowed,)
        if session.status not in allowed:
            raise InvalidSessionState(
                f"Cannot {action} session {session.id} in status {session.status.value}"
            )
