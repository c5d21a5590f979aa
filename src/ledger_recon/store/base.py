"""
Transaction Store contract.

The engine only depends on this interface. Single-record writes are assumed
atomic; multi-record consistency is achieved by idempotent re-application
(dedup keys, upsert-by-bank-transaction) rather than cross-table commits.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

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


@dataclass
class PeriodSnapshot:
    """Bank and book rows of one account/period read as a single consistent view."""

    account_id: str
    period: Period
    bank_transactions: list[BankTransaction] = field(default_factory=list)
    book_transactions: list[BookTransaction] = field(default_factory=list)


class TransactionStore(ABC):
    """Durable storage for transactions, sessions and categorization history."""

    # Bank transactions

    @abstractmethod
    def import_bank_transaction(self, tx: BankTransaction) -> BankTransaction:
        """
        Insert a bank transaction.

        Raises:
            DuplicateTransaction: If ``tx.dedup_key`` was already imported
        """

    @abstractmethod
    def get_bank_transaction(self, transaction_id: str) -> Optional[BankTransaction]:
        pass

    @abstractmethod
    def query_bank_transactions(
        self, account_id: str, period: Period
    ) -> list[BankTransaction]:
        pass

    # Book transactions

    @abstractmethod
    def add_book_transaction(self, tx: BookTransaction) -> BookTransaction:
        """Insert or replace a book transaction by id."""

    @abstractmethod
    def get_book_transaction(self, transaction_id: str) -> Optional[BookTransaction]:
        pass

    @abstractmethod
    def query_book_transactions(
        self, account_id: str, period: Period
    ) -> list[BookTransaction]:
        """All invoices, expenses, payments, transfers and adjustments in the window."""

    @abstractmethod
    def update_book_transaction_status(
        self, transaction_id: str, status: BookTransactionStatus
    ) -> BookTransaction:
        pass

    @abstractmethod
    def snapshot(self, account_id: str, period: Period) -> PeriodSnapshot:
        pass

    # Sessions and matches

    @abstractmethod
    def insert_session(self, session: ReconciliationSession) -> ReconciliationSession:
        """
        Insert a new session.

        Raises:
            SessionAlreadyInProgress: If an in-progress session exists for the
                same account with an overlapping period
        """

    @abstractmethod
    def get_session(self, session_id: str) -> ReconciliationSession:
        """
        Raises:
            SessionNotFound: If no session has this id
        """

    @abstractmethod
    def save_session(self, session: ReconciliationSession) -> ReconciliationSession:
        pass

    @abstractmethod
    def list_sessions(
        self, account_id: str, status: Optional[SessionStatus] = None
    ) -> list[ReconciliationSession]:
        pass

    @abstractmethod
    def upsert_match(
        self, session_id: str, match: ReconciliationMatch
    ) -> ReconciliationMatch:
        """Store the single match record for ``match.bank_transaction_id`` in the session."""

    # Categorization

    @abstractmethod
    def add_categorization_attempt(
        self, attempt: CategorizationAttempt
    ) -> CategorizationAttempt:
        pass

    @abstractmethod
    def categorization_attempts(
        self,
        transaction_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[CategorizationAttempt]:
        """Attempts in creation order, optionally filtered."""

    @abstractmethod
    def get_transaction_category(
        self, transaction_id: str
    ) -> Optional[TransactionCategory]:
        pass

    @abstractmethod
    def set_transaction_category(
        self, category: TransactionCategory
    ) -> TransactionCategory:
        pass
