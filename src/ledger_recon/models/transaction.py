"""Data models for bank and book transactions."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
import uuid


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid.uuid4())


class TransactionType(Enum):
    """Bank transaction direction (from the bank's perspective)."""

    CREDIT = "credit"  # Money in (deposits, wire-in)
    DEBIT = "debit"  # Money out (card spend, checks, fees)


class TransactionSource(Enum):
    """How a bank transaction entered the system."""

    BANK_IMPORT = "bank_import"
    API_SYNC = "api_sync"
    MANUAL = "manual"


class BookTransactionType(Enum):
    """Kind of internally recorded economic event."""

    INVOICE = "invoice"
    EXPENSE = "expense"
    PAYMENT = "payment"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class BookTransactionStatus(Enum):
    """Clearing status of a book transaction."""

    PENDING = "pending"
    CLEARED = "cleared"
    RECONCILED = "reconciled"


@dataclass(frozen=True)
class Period:
    """Inclusive date window of a reconciliation run."""

    start: date
    end: date

    @property
    def is_valid(self) -> bool:
        return self.start <= self.end

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlaps(self, other: "Period") -> bool:
        return self.start <= other.end and other.start <= self.end

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


@dataclass(frozen=True)
class BankTransaction:
    """
    A line item from an imported bank or card statement.

    Immutable once imported. ``amount`` carries the sign as it appeared on
    the statement; ``type`` is authoritative for direction.
    """

    id: str
    account_id: str
    date: date
    description: str
    amount: Decimal
    type: TransactionType
    balance: Decimal = Decimal("0")
    reference: Optional[str] = None
    source: TransactionSource = TransactionSource.BANK_IMPORT
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple[str, str]:
        """Identity used to detect re-imports of the same statement line."""
        return (self.account_id, self.reference or self.id)

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)

    @property
    def signed_amount(self) -> Decimal:
        """Cash movement: positive for credits, negative for debits."""
        if self.type == TransactionType.CREDIT:
            return self.magnitude
        return -self.magnitude


@dataclass
class BookTransaction:
    """
    An internally recorded economic event (invoice, expense, payment, ...).

    Status advances to ``reconciled`` only through a successful match.
    """

    id: str
    account_id: str
    type: BookTransactionType
    amount: Decimal
    date: date
    description: str = ""
    category: Optional[str] = None
    reference: Optional[str] = None
    status: BookTransactionStatus = BookTransactionStatus.PENDING
    related_entity_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)

    @property
    def cash_effect(self) -> Decimal:
        """
        Signed effect on the account's cash position.

        Invoices bring money in; expenses and payments take it out. Transfers
        and adjustments keep the sign they were recorded with.
        """
        if self.type == BookTransactionType.INVOICE:
            return self.magnitude
        if self.type in (BookTransactionType.EXPENSE, BookTransactionType.PAYMENT):
            return -self.magnitude
        return self.amount

    @property
    def counts_toward_balance(self) -> bool:
        return self.status in (
            BookTransactionStatus.CLEARED,
            BookTransactionStatus.RECONCILED,
        )
