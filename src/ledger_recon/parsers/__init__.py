"""Parsers for bank statement and book ledger CSV files."""

from .bank_statement_parser import BankStatementParser
from .book_ledger_parser import BookLedgerParser

__all__ = ["BankStatementParser", "BookLedgerParser"]
