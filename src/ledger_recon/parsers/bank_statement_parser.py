"""
Bank statement CSV parser.
Converts exported statement lines into BankTransaction records.
"""

from decimal import Decimal
from pathlib import Path
from typing import Optional
import logging

import pandas as pd

from ..config import ReconConfig
from ..models import BankTransaction, TransactionSource, TransactionType, new_id
from ..utils.exceptions import StatementParseError
from .csv_base import CsvParser

logger = logging.getLogger(__name__)

_CREDIT_WORDS = {"credit", "cr", "c", "deposit"}
_DEBIT_WORDS = {"debit", "dr", "d", "withdrawal"}


class BankStatementParser(CsvParser):
    """
    Parser for bank statement CSV exports.

    Direction comes from the type column when present, otherwise from the
    amount's sign (negative means money out).
    """

    error_class = StatementParseError
    label = "bank statement"

    def __init__(
        self,
        config: ReconConfig,
        account_id: str,
        source: TransactionSource = TransactionSource.BANK_IMPORT,
    ):
        """
        Initialize the parser with configuration.

        Args:
            config: Application configuration object
            account_id: Account the statement belongs to
            source: How the lines entered the system
        """
        super().__init__(config.input.statement)
        self.account_id = account_id
        self.source = source

    def parse_file(self, file_path: Path) -> list[BankTransaction]:
        """
        Parse a statement CSV file.

        Args:
            file_path: Path to the CSV file

        Returns:
            List of bank transactions

        Raises:
            StatementParseError: If the file cannot be read
        """
        df = self.read_frame(file_path)
        transactions = self.process_dataframe(df)
        logger.info(f"Extracted {len(transactions)} transactions from bank statement")
        return transactions

    def _normalize_row(self, row: pd.Series, idx: int) -> Optional[BankTransaction]:
        txn_date = self.parse_date(row.get(self.column("date", "Date")))
        if not txn_date:
            logger.warning(f"Row {idx}: Invalid date, skipping")
            return None

        amount = self.parse_amount(row.get(self.column("amount", "Amount")))
        if amount is None:
            logger.warning(f"Row {idx}: No valid amount found, skipping")
            return None

        txn_type = self._direction(self.text(row, self.column("type", "Type")), amount)
        balance = self.parse_amount(row.get(self.column("balance", "Balance")))

        return BankTransaction(
            id=self.text(row, self.column("id", "Transaction_ID")) or new_id(),
            account_id=self.account_id,
            date=txn_date,
            description=self.text(row, self.column("description", "Description")) or "",
            amount=amount,
            type=txn_type,
            balance=balance if balance is not None else Decimal("0"),
            reference=self.text(row, self.column("reference", "Reference")),
            source=self.source,
            metadata={"row": idx},
        )

    @staticmethod
    def _direction(type_value: Optional[str], amount: Decimal) -> TransactionType:
        if type_value:
            word = type_value.strip().lower()
            if word in _CREDIT_WORDS:
                return TransactionType.CREDIT
            if word in _DEBIT_WORDS:
                return TransactionType.DEBIT
            logger.debug(f"Unknown transaction type {type_value!r}; using amount sign")
        return TransactionType.DEBIT if amount < 0 else TransactionType.CREDIT

    def get_file_summary(self, file_path: Path) -> dict:
        """
        Get summary information from a statement file.

        Args:
            file_path: Path to the CSV file

        Returns:
            Dictionary with row count, date range and credit/debit totals
        """
        df = self.read_frame(file_path)
        transactions: list[BankTransaction] = self.process_dataframe(df)
        credits = [t.magnitude for t in transactions if t.type == TransactionType.CREDIT]
        debits = [t.magnitude for t in transactions if t.type == TransactionType.DEBIT]
        dates = [t.date for t in transactions]

        return {
            "row_count": len(df),
            "parsed_count": len(transactions),
            "columns": list(df.columns),
            "date_range": {
                "start": min(dates).isoformat() if dates else None,
                "end": max(dates).isoformat() if dates else None,
            },
            "totals": {
                "credit_count": len(credits),
                "debit_count": len(debits),
                "total_credits": sum(credits, Decimal("0")),
                "total_debits": sum(debits, Decimal("0")),
            },
        }
