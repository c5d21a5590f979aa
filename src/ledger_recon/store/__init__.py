"""Transaction Store contract and implementations."""

from .base import PeriodSnapshot, TransactionStore
from .memory import InMemoryTransactionStore

__all__ = ["PeriodSnapshot", "TransactionStore", "InMemoryTransactionStore"]
