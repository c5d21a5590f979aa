"""
Book ledger CSV parser.
Converts an accounting export (invoices, expenses, payments, transfers,
adjustments) into BookTransaction records.
"""

from pathlib import Path
from typing import Optional
import logging

import pandas as pd

from ..config import ReconConfig
from ..models import (
    BookTransaction,
    BookTransactionStatus,
    BookTransactionType,
)
from ..utils.exceptions import LedgerParseError
from .csv_base import CsvParser

logger = logging.getLogger(__name__)


class BookLedgerParser(CsvParser):
    """Parser for book ledger CSV exports."""

    error_class = LedgerParseError
    label = "book ledger"

    def __init__(self, config: ReconConfig, account_id: str):
        super().__init__(config.input.ledger)
        self.account_id = account_id

    def parse_file(self, file_path: Path) -> list[BookTransaction]:
        """
        Parse a ledger CSV file.

        Raises:
            LedgerParseError: If the file cannot be read
        """
        df = self.read_frame(file_path)
        transactions = self.process_dataframe(df)
        logger.info(f"Extracted {len(transactions)} transactions from book ledger")
        return transactions

    def _normalize_row(self, row: pd.Series, idx: int) -> Optional[BookTransaction]:
        txn_id = self.text(row, self.column("id", "ID"))
        if not txn_id:
            logger.warning(f"Row {idx}: Missing id, skipping")
            return None

        txn_date = self.parse_date(row.get(self.column("date", "Date")))
        if not txn_date:
            logger.warning(f"Row {idx}: Invalid date, skipping")
            return None

        amount = self.parse_amount(row.get(self.column("amount", "Amount")))
        if amount is None:
            logger.warning(f"Row {idx}: No valid amount found, skipping")
            return None

        # Unknown enum values raise ValueError and the row is skipped
        type_text = self.text(row, self.column("type", "Type")) or "expense"
        status_text = self.text(row, self.column("status", "Status")) or "pending"

        return BookTransaction(
            id=txn_id,
            account_id=self.account_id,
            type=BookTransactionType(type_text.lower()),
            amount=amount,
            date=txn_date,
            description=self.text(row, self.column("description", "Description")) or "",
            category=self.text(row, self.column("category", "Category")),
            reference=self.text(row, self.column("reference", "Reference")),
            status=BookTransactionStatus(status_text.lower()),
            related_entity_id=self.text(
                row, self.column("related_entity_id", "Related_Entity_ID")
            ),
            metadata={"row": idx},
        )
