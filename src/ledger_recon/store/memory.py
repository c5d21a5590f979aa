"""Thread-safe in-memory Transaction Store."""

from copy import deepcopy
from typing import Optional
import logging
import threading

from ..models import (
    BankTransaction,
    BookTransaction,
    BookTransactionStatus,
    CategorizationAttempt,
    Period,
    ReconciliationMatch,
    ReconciliationSession,
    SessionStatus,
    TransactionCategory,
)
from ..utils.exceptions import (
    DuplicateTransaction,
    SessionAlreadyInProgress,
    SessionNotFound,
)
from .base import PeriodSnapshot, TransactionStore

logger = logging.getLogger(__name__)


class InMemoryTransactionStore(TransactionStore):
    """
    Store backed by process-local dictionaries.

    All access goes through one re-entrant lock, and every read hands out a
    copy, so callers can only change state through the store's methods.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._bank: dict[str, BankTransaction] = {}
        self._bank_keys: dict[tuple[str, str], str] = {}
        self._book: dict[str, BookTransaction] = {}
        self._sessions: dict[str, ReconciliationSession] = {}
        self._attempts: list[CategorizationAttempt] = []
        self._categories: dict[str, TransactionCategory] = {}

    # Bank transactions

    def import_bank_transaction(self, tx: BankTransaction) -> BankTransaction:
        with self._lock:
            existing_id = self._bank_keys.get(tx.dedup_key)
            if existing_id is not None:
                raise DuplicateTransaction(tx.account_id, tx.dedup_key[1], existing_id)
            self._bank[tx.id] = tx
            self._bank_keys[tx.dedup_key] = tx.id
            logger.debug(f"Imported bank transaction {tx.id} ({tx.dedup_key[1]})")
            return tx

    def get_bank_transaction(self, transaction_id: str) -> Optional[BankTransaction]:
        with self._lock:
            return self._bank.get(transaction_id)

    def query_bank_transactions(
        self, account_id: str, period: Period
    ) -> list[BankTransaction]:
        with self._lock:
            return self._bank_in_period(account_id, period)

    def _bank_in_period(self, account_id: str, period: Period) -> list[BankTransaction]:
        rows = [
            tx
            for tx in self._bank.values()
            if tx.account_id == account_id and period.contains(tx.date)
        ]
        return sorted(rows, key=lambda t: (t.date, t.id))

    # Book transactions

    def add_book_transaction(self, tx: BookTransaction) -> BookTransaction:
        with self._lock:
            self._book[tx.id] = deepcopy(tx)
            return deepcopy(tx)

    def get_book_transaction(self, transaction_id: str) -> Optional[BookTransaction]:
        with self._lock:
            tx = self._book.get(transaction_id)
            return deepcopy(tx) if tx else None

    def query_book_transactions(
        self, account_id: str, period: Period
    ) -> list[BookTransaction]:
        with self._lock:
            return self._book_in_period(account_id, period)

    def _book_in_period(self, account_id: str, period: Period) -> list[BookTransaction]:
        rows = [
            deepcopy(tx)
            for tx in self._book.values()
            if tx.account_id == account_id and period.contains(tx.date)
        ]
        return sorted(rows, key=lambda t: (t.date, t.id))

    def update_book_transaction_status(
        self, transaction_id: str, status: BookTransactionStatus
    ) -> BookTransaction:
        with self._lock:
            tx = self._book.get(transaction_id)
            if tx is None:
                raise KeyError(f"Book transaction not found: {transaction_id}")
            tx.status = status
            return deepcopy(tx)

    def snapshot(self, account_id: str, period: Period) -> PeriodSnapshot:
        with self._lock:
            return PeriodSnapshot(
                account_id=account_id,
                period=period,
                bank_transactions=self._bank_in_period(account_id, period),
                book_transactions=self._book_in_period(account_id, period),
            )

    # Sessions and matches

    def insert_session(self, session: ReconciliationSession) -> ReconciliationSession:
        with self._lock:
            for other in self._sessions.values():
                if (
                    other.account_id == session.account_id
                    and other.status == SessionStatus.IN_PROGRESS
                    and other.id != session.id
                    and other.period.overlaps(session.period)
                ):
                    raise SessionAlreadyInProgress(session.account_id, other.id)
            self._sessions[session.id] = deepcopy(session)
            return deepcopy(session)

    def get_session(self, session_id: str) -> ReconciliationSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(f"Reconciliation session not found: {session_id}")
            return deepcopy(session)

    def save_session(self, session: ReconciliationSession) -> ReconciliationSession:
        with self._lock:
            if session.id not in self._sessions:
                raise SessionNotFound(f"Reconciliation session not found: {session.id}")
            if session.status == SessionStatus.IN_PROGRESS:
                # Reopening must not race another in-progress run
                for other in self._sessions.values():
                    if (
                        other.id != session.id
                        and other.account_id == session.account_id
                        and other.status == SessionStatus.IN_PROGRESS
                        and other.period.overlaps(session.period)
                    ):
                        raise SessionAlreadyInProgress(session.account_id, other.id)
            self._sessions[session.id] = deepcopy(session)
            return deepcopy(session)

    def list_sessions(
        self, account_id: str, status: Optional[SessionStatus] = None
    ) -> list[ReconciliationSession]:
        with self._lock:
            return [
                deepcopy(s)
                for s in sorted(self._sessions.values(), key=lambda s: s.created_at)
                if s.account_id == account_id and (status is None or s.status == status)
            ]

    def upsert_match(
        self, session_id: str, match: ReconciliationMatch
    ) -> ReconciliationMatch:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(f"Reconciliation session not found: {session_id}")
            stored = deepcopy(match)
            stored.session_id = session_id
            for idx, existing in enumerate(session.matches):
                if existing.bank_transaction_id == match.bank_transaction_id:
                    session.matches[idx] = stored
                    break
            else:
                session.matches.append(stored)
            return deepcopy(stored)

    # Categorization

    def add_categorization_attempt(
        self, attempt: CategorizationAttempt
    ) -> CategorizationAttempt:
        with self._lock:
            self._attempts.append(deepcopy(attempt))
            return deepcopy(attempt)

    def categorization_attempts(
        self,
        transaction_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[CategorizationAttempt]:
        with self._lock:
            return [
                deepcopy(a)
                for a in self._attempts
                if (transaction_id is None or a.transaction_id == transaction_id)
                and (user_id is None or a.user_id == user_id)
            ]

    def get_transaction_category(
        self, transaction_id: str
    ) -> Optional[TransactionCategory]:
        with self._lock:
            category = self._categories.get(transaction_id)
            return deepcopy(category) if category else None

    def set_transaction_category(
        self, category: TransactionCategory
    ) -> TransactionCategory:
        with self._lock:
            self._categories[category.transaction_id] = deepcopy(category)
            return deepcopy(category)
