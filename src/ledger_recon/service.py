"""
Caller-facing reconciliation service.

Wires the store, oracle, audit trail, matching engine, session manager and
categorization engine together behind the operations a UI or CLI needs.
"""

from decimal import Decimal
from typing import Optional
import logging
import threading

from .audit import AuditEventType, AuditLogger, build_audit_logger
from .categorization import CategorizationEngine
from .config import ReconConfig, get_default_config
from .matching import MatchingEngine, RuleProvider, StaticRuleProvider
from .models import (
    BankTransaction,
    BookTransaction,
    BookTransactionStatus,
    CategorizationAttempt,
    CategorizationResult,
    Period,
    ReconciliationMatch,
    ReconciliationSession,
    ReconciliationType,
    SessionReport,
    SessionStatus,
)
from .oracle import ClassificationOracle, TimeboxedOracle, build_oracle
from .session import SessionManager
from .store import TransactionStore
from .utils.exceptions import (
    DuplicateTransaction,
    InvalidPeriod,
    InvalidSessionState,
    ReconciliationCancelled,
)

logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Reconciliation and categorization operations for one tenant's store.

    All collaborators are injected; nothing is cached between calls except
    what the store persists.
    """

    def __init__(
        self,
        store: TransactionStore,
        oracle: Optional[ClassificationOracle] = None,
        audit: Optional[AuditLogger] = None,
        config: Optional[ReconConfig] = None,
        rule_provider: Optional[RuleProvider] = None,
    ):
        """
        Initialize the service.

        Args:
            store: Transaction store
            oracle: Classification oracle; wrapped in a hard timeout. Defaults
                to the oracle named in configuration
            audit: Audit logger (defaults to the configured sink)
            config: Application configuration (defaults to built-in defaults)
            rule_provider: Source of reconciliation rules (defaults to the
                configured rules)
        """
        self.config = config or ReconConfig(**get_default_config())
        self.store = store
        self.audit = audit or build_audit_logger(self.config.audit)

        if oracle is None:
            self.oracle: ClassificationOracle = build_oracle(self.config)
        elif isinstance(oracle, TimeboxedOracle):
            self.oracle = oracle
        else:
            self.oracle = TimeboxedOracle(
                oracle,
                timeout_seconds=self.config.oracle.timeout_seconds,
                concurrency=self.config.oracle.concurrency,
            )

        self.rule_provider = rule_provider or StaticRuleProvider.from_config(self.config)
        self.sessions = SessionManager(store, self.audit, self.config.session)
        self.matching = MatchingEngine(
            self.config.matching, self.oracle, self.config.oracle.concurrency
        )
        self.categorization = CategorizationEngine(
            store,
            self.oracle,
            self.audit,
            self.config.categorization,
            rule_provider=self.rule_provider,
            concurrency=self.config.oracle.concurrency,
        )

    # Reconciliation

    def import_statement(
        self,
        account_id: str,
        user_id: str,
        bank_transactions: list[BankTransaction],
        period: Period,
        cancel_event: Optional[threading.Event] = None,
        session_type: ReconciliationType = ReconciliationType.FULL_RECONCILIATION,
    ) -> str:
        """
        Import a statement and reconcile it.

        Re-imported lines are not stored twice; the already stored line is
        reconciled instead. The run always ends with one match record per
        statement line, even when nothing matches.

        Args:
            account_id: Account the statement belongs to
            user_id: User running the import
            bank_transactions: Statement lines
            period: Statement period (inclusive)
            cancel_event: Set by the caller to stop the run

        Returns:
            The reconciliation session id

        Raises:
            InvalidPeriod: If the period starts after it ends
            SessionAlreadyInProgress: If another run owns the account/period
            ReconciliationCancelled: If the run was cancelled; ``session_id``
                names the in-progress session to resume
        """
        if not period.is_valid:
            raise InvalidPeriod(
                f"Reconciliation period start {period.start} is after end {period.end}"
            )

        lines: dict[str, BankTransaction] = {}
        imported = duplicates = 0
        for txn in bank_transactions:
            try:
                stored = self.store.import_bank_transaction(txn)
                imported += 1
            except DuplicateTransaction as e:
                duplicates += 1
                logger.info(f"Skipping duplicate: {e}")
                self.audit.log_event(
                    AuditEventType.DUPLICATE_TRANSACTION_SKIPPED,
                    action="import_statement",
                    entity_type="bank_transaction",
                    entity_id=e.existing_id,
                    user_id=user_id,
                    description=str(e),
                    metadata={"reference": e.reference},
                )
                stored = self.store.get_bank_transaction(e.existing_id)
            if stored is None:
                continue
            if not period.contains(stored.date):
                logger.warning(
                    f"Bank transaction {stored.id} dated {stored.date} is outside {period}"
                )
            lines.setdefault(stored.id, stored)

        statement = list(lines.values())
        logger.info(
            f"Imported statement for {account_id}: {len(statement)} lines, "
            f"{duplicates} duplicates skipped"
        )
        self.audit.log_financial_event(
            AuditEventType.STATEMENT_IMPORTED,
            action="import_statement",
            entity_type="account",
            entity_id=account_id,
            user_id=user_id,
            description=(
                f"Imported {imported} statement lines "
                f"({duplicates} duplicates skipped)"
            ),
            amount=sum((t.magnitude for t in statement), Decimal("0")),
            metadata={
                "period": str(period),
                "line_count": len(statement),
                "duplicates": duplicates,
            },
        )

        session = self.sessions.create_session(
            account_id, user_id, statement, period, session_type
        )
        self._run(session, statement, committed=[], user_id=user_id, cancel_event=cancel_event)
        return session.id

    def resume_session(
        self,
        session_id: str,
        cancel_event: Optional[threading.Event] = None,
        rematch: bool = False,
        user_id: Optional[str] = None,
    ) -> str:
        """
        Re-run matching for an in-progress session.

        Matches already recorded (by a cancelled run) are kept and their bank
        transactions skipped. With ``rematch`` only reviewed matches are kept,
        which is how a reopened session is corrected.

        Raises:
            InvalidSessionState: If the session is not in progress
        """
        session = self.store.get_session(session_id)
        if session.status != SessionStatus.IN_PROGRESS:
            raise InvalidSessionState(
                f"Cannot resume session {session_id} in status {session.status.value}"
            )
        statement = [
            txn
            for txn in (self.store.get_bank_transaction(i) for i in session.bank_transaction_ids)
            if txn is not None
        ]
        committed = [m for m in session.matches if m.is_reviewed] if rematch else session.matches
        logger.info(
            f"Resuming session {session_id}: {len(committed)} of "
            f"{len(statement)} lines already resolved"
        )
        self._run(
            session,
            statement,
            committed=committed,
            user_id=user_id or session.user_id,
            cancel_event=cancel_event,
        )
        return session_id

    def _run(
        self,
        session: ReconciliationSession,
        statement: list[BankTransaction],
        committed: list[ReconciliationMatch],
        user_id: str,
        cancel_event: Optional[threading.Event],
    ) -> ReconciliationSession:
        snapshot = self.store.snapshot(session.account_id, session.period)
        own = {m.book_transaction_id for m in session.matches if m.book_transaction_id}
        pool: list[BookTransaction] = [
            b
            for b in snapshot.book_transactions
            if b.status != BookTransactionStatus.RECONCILED or b.id in own
        ]
        rules = self.rule_provider.get_rules(session.account_id)

        try:
            result = self.matching.match(
                statement, pool, rules, committed=committed, cancel_event=cancel_event
            )
        except ReconciliationCancelled as e:
            self.sessions.record_matches(session.id, e.resolved)
            session = self.store.get_session(session.id)
            self.audit.log_session_event(
                AuditEventType.RECONCILIATION_CANCELLED,
                session,
                user_id,
                f"Reconciliation cancelled with {len(e.resolved)} of "
                f"{len(statement)} lines resolved",
            )
            raise ReconciliationCancelled(
                f"Reconciliation of session {session.id} cancelled; resume to finish",
                resolved=e.resolved,
                session_id=session.id,
            ) from e

        if result.oracle_failures >= self.config.audit.repeated_failure_threshold:
            self.audit.log_event(
                AuditEventType.REPEATED_MATCH_FAILURES,
                action="match",
                entity_type="reconciliation_session",
                entity_id=session.id,
                user_id=user_id,
                description=f"{result.oracle_failures} oracle match calls failed",
                metadata={"failure_count": result.oracle_failures},
            )

        return self.sessions.complete_session(session.id, result.matches, user_id)

    def get_session_report(self, session_id: str) -> SessionReport:
        return self.sessions.build_report(session_id)

    def approve_session(
        self,
        session_id: str,
        user_id: str,
        waive_discrepancy: bool = False,
        waiver_reason: Optional[str] = None,
    ) -> ReconciliationSession:
        return self.sessions.approve_session(
            session_id, user_id, waive_discrepancy, waiver_reason
        )

    def dispute_session(self, session_id: str, user_id: str, reason: str) -> ReconciliationSession:
        return self.sessions.dispute_session(session_id, user_id, reason)

    def reopen_session(self, session_id: str, user_id: str) -> ReconciliationSession:
        return self.sessions.reopen_session(session_id, user_id)

    def review_match(
        self,
        session_id: str,
        bank_transaction_id: str,
        reviewer: str,
        accept: bool = True,
    ) -> ReconciliationMatch:
        return self.sessions.review_match(session_id, bank_transaction_id, reviewer, accept)

    def assign_manual_match(
        self,
        session_id: str,
        bank_transaction_id: str,
        book_transaction_id: str,
        user_id: str,
        reasoning: Optional[str] = None,
    ) -> ReconciliationMatch:
        return self.sessions.assign_manual_match(
            session_id, bank_transaction_id, book_transaction_id, user_id, reasoning
        )

    def exclude_match(
        self, session_id: str, bank_transaction_id: str, user_id: str, reason: str
    ) -> ReconciliationMatch:
        return self.sessions.exclude_match(session_id, bank_transaction_id, user_id, reason)

    # Categorization

    def categorize_transactions(
        self, user_id: str, transactions: list[BankTransaction]
    ) -> list[CategorizationResult]:
        return self.categorization.categorize(user_id, transactions)

    def submit_categorization_correction(
        self,
        user_id: str,
        transaction_id: str,
        corrected_category: str,
        reasoning: str = "",
    ) -> CategorizationAttempt:
        return self.categorization.process_feedback(
            user_id,
            transaction_id,
            original_category=None,
            corrected_category=corrected_category,
            reasoning=reasoning,
        )

    def close(self) -> None:
        if isinstance(self.oracle, TimeboxedOracle):
            self.oracle.close()
