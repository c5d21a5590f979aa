from datetime import date
from decimal import Decimal

import pytest

from ledger_recon.models import (
    BookTransactionStatus,
    BookTransactionType,
    TransactionSource,
    TransactionType,
)
from ledger_recon.parsers import BankStatementParser, BookLedgerParser
from ledger_recon.parsers.csv_base import CsvParser
from ledger_recon.utils.exceptions import LedgerParseError, StatementParseError

STATEMENT = """Transaction_ID,Date,Description,Amount,Balance,Reference,Type
T1,2024-01-03,ACME CORP,-150.00,850.00,CHK-100,
T2,2024-01-05,Customer wire,"$1,200.50",,WIRE-7,credit
T3,01/09/2024,Refund,25.00,,,DR
T4,not a date,Broken,10.00,,,
T5,2024-01-11,No amount,,,,
,2024-01-12,Card spend,(42.10),,,
"""

LEDGER = """ID,Type,Amount,Date,Description,Category,Reference,Status,Related_Entity_ID
K1,Expense,150.00,2024-01-02,ACME CORP,office,PO-9,cleared,vendor-1
K2,invoice,1200.50,2024-01-04,Invoice 17,,,,
K3,bogus,5.00,2024-01-04,Unknown type,,,,
,expense,5.00,2024-01-04,No id,,,,
K5,payment,80.00,2024-01-20,Payroll,,,reconciled,
"""


def write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def test_parse_statement(tmp_path, config):
    parser = BankStatementParser(config, "acct-1")

    txns = parser.parse_file(write(tmp_path, "statement.csv", STATEMENT))

    assert [t.id for t in txns[:3]] == ["T1", "T2", "T3"]
    assert len(txns) == 4

    acme, wire, refund, card = txns
    assert acme.type == TransactionType.DEBIT
    assert acme.signed_amount == Decimal("-150.00")
    assert acme.balance == Decimal("850.00")
    assert acme.reference == "CHK-100"
    assert acme.account_id == "acct-1"
    assert acme.source == TransactionSource.BANK_IMPORT
    assert acme.metadata == {"row": 0}

    assert wire.amount == Decimal("1200.50")
    assert wire.type == TransactionType.CREDIT
    assert wire.balance == Decimal("0")

    # The type column wins over the amount's sign
    assert refund.type == TransactionType.DEBIT
    assert refund.signed_amount == Decimal("-25.00")
    assert refund.date == date(2024, 1, 9)

    # Missing ids are generated
    assert card.id
    assert card.signed_amount == Decimal("-42.10")
    assert card.reference is None


def test_statement_summary(tmp_path, config):
    parser = BankStatementParser(config, "acct-1")

    summary = parser.get_file_summary(write(tmp_path, "statement.csv", STATEMENT))

    assert summary["row_count"] == 6
    assert summary["parsed_count"] == 4
    assert summary["columns"][0] == "Transaction_ID"
    assert summary["date_range"] == {"start": "2024-01-03", "end": "2024-01-12"}
    assert summary["totals"]["credit_count"] == 1
    assert summary["totals"]["debit_count"] == 3
    assert summary["totals"]["total_credits"] == Decimal("1200.50")
    assert summary["totals"]["total_debits"] == Decimal("217.10")


def test_custom_column_mapping(tmp_path, config):
    config.input.statement = {
        "delimiter": ";",
        "date_format": "%d.%m.%Y",
        "column_mappings": {"date": "Booked", "amount": "Value", "description": "Text"},
    }
    path = write(tmp_path, "de.csv", "Booked;Text;Value\n31.01.2024;Miete;-900.00\n")

    [txn] = BankStatementParser(config, "acct-1").parse_file(path)

    assert txn.date == date(2024, 1, 31)
    assert txn.description == "Miete"
    assert txn.type == TransactionType.DEBIT


def test_unreadable_statement(tmp_path, config):
    with pytest.raises(StatementParseError):
        BankStatementParser(config, "acct-1").parse_file(tmp_path / "missing.csv")


def test_parse_ledger(tmp_path, config):
    parser = BookLedgerParser(config, "acct-1")

    txns = parser.parse_file(write(tmp_path, "ledger.csv", LEDGER))

    assert [t.id for t in txns] == ["K1", "K2", "K5"]
    k1, k2, k5 = txns
    assert k1.type == BookTransactionType.EXPENSE
    assert k1.status == BookTransactionStatus.CLEARED
    assert k1.category == "office"
    assert k1.related_entity_id == "vendor-1"
    assert k1.cash_effect == Decimal("-150.00")

    assert k2.type == BookTransactionType.INVOICE
    assert k2.status == BookTransactionStatus.PENDING
    assert k2.category is None
    assert k2.cash_effect == Decimal("1200.50")

    assert k5.status == BookTransactionStatus.RECONCILED


def test_unreadable_ledger(tmp_path, config):
    with pytest.raises(LedgerParseError):
        BookLedgerParser(config, "acct-1").parse_file(write(tmp_path, "empty.csv", ""))


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1,234.56", Decimal("1234.56")),
        ("$-12.00", Decimal("-12.00")),
        ("(99.95)", Decimal("-99.95")),
        ("  7 ", Decimal("7")),
        ("", None),
        ("abc", None),
        (None, None),
    ],
)
def test_parse_amount(value, expected):
    assert CsvParser.parse_amount(value) == expected


def test_parse_date_fallback():
    parser = CsvParser({"date_format": "%d/%m/%Y"})
    assert parser.parse_date("15/01/2024") == date(2024, 1, 15)
    assert parser.parse_date("2024-01-15") == date(2024, 1, 15)
    assert parser.parse_date("garbage") is None
    assert parser.parse_date(float("nan")) is None
