"""
Excel report generator for reconciliation sessions.
Creates multi-sheet workbooks with formatted output.
"""

from datetime import datetime
from pathlib import Path
from typing import Iterable, Mapping, Optional
import logging

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Border, Side
from openpyxl.worksheet.worksheet import Worksheet

from ..audit.events import AuditEvent, RiskLevel
from ..config import ReconConfig
from ..models import (
    BankTransaction,
    BookTransaction,
    MatchStatus,
    ReconciliationMatch,
    SessionReport,
)
from ..utils.exceptions import ReportGenerationError

logger = logging.getLogger(__name__)

# Style definitions
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
MATCH_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
REVIEW_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
UNMATCHED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

NEEDS_REVIEW = (MatchStatus.PARTIAL_MATCH, MatchStatus.DISPUTED)


class ExcelReportGenerator:
    """Generates Excel reconciliation reports with multiple sheets."""

    def __init__(self, config: ReconConfig):
        """
        Initialize the report generator.

        Args:
            config: Application configuration
        """
        self.config = config
        self.sheet_config = config.output.sheets

    def generate_report(
        self,
        report: SessionReport,
        audit_events: Iterable[AuditEvent],
        output_path: Path,
        bank_transactions: Optional[Mapping[str, BankTransaction]] = None,
        book_transactions: Optional[Mapping[str, BookTransaction]] = None,
    ) -> Path:
        """
        Generate the complete reconciliation report.

        Args:
            report: Session report to render
            audit_events: Audit events to list on the audit trail sheet
            output_path: Path for output file
            bank_transactions: Statement lines by id, for descriptive columns
            book_transactions: Ledger entries by id, for descriptive columns

        Returns:
            Path to generated report

        Raises:
            ReportGenerationError: If the workbook cannot be written
        """
        logger.info(f"Generating Excel report: {output_path}")
        bank = dict(bank_transactions or {})
        book = dict(book_transactions or {})

        wb = Workbook()
        if wb.active:
            wb.remove(wb.active)

        sheets = self.sheet_config
        if sheets.summary.enabled:
            self._create_summary_sheet(wb, report)
        if sheets.matches.enabled:
            matched = [m for m in report.matches if m.status == MatchStatus.MATCHED]
            self._create_match_sheet(wb, sheets.matches.name, matched, bank, book, MATCH_FILL)
        if sheets.needs_review.enabled:
            review = [m for m in report.matches if m.status in NEEDS_REVIEW]
            self._create_match_sheet(
                wb, sheets.needs_review.name, review, bank, book, REVIEW_FILL
            )
        if sheets.unmatched.enabled:
            unmatched = [m for m in report.matches if m.status == MatchStatus.UNMATCHED]
            self._create_unmatched_sheet(wb, unmatched, bank)
        if sheets.audit_trail.enabled:
            self._create_audit_trail_sheet(wb, report, list(audit_events))

        if not wb.sheetnames:
            wb.create_sheet("Report")

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            wb.save(output_path)
        except OSError as e:
            raise ReportGenerationError(f"Failed to write report {output_path}: {e}") from e
        logger.info(f"Report saved: {output_path}")

        return output_path

    def _create_summary_sheet(self, wb: Workbook, report: SessionReport) -> None:
        """Create the summary sheet with balances, counts and guidance."""
        ws = wb.create_sheet(self.sheet_config.summary.name)
        session = report.session
        summary = report.summary

        ws["A1"] = "Reconciliation Summary"
        ws["A1"].font = Font(size=16, bold=True)
        ws.merge_cells("A1:D1")

        session_info = [
            ("Session ID:", session.id),
            ("Account:", session.account_id),
            ("Prepared By:", session.user_id),
            ("Statement Period:", f"{session.period.start} to {session.period.end}"),
            ("Status:", session.status.value),
            ("Approved By:", session.approved_by or ""),
            ("Waiver Reason:", session.waiver_reason or ""),
            ("Dispute Reason:", session.dispute_reason or ""),
        ]
        row = self._write_section(ws, 3, "Session", session_info)

        balances = [
            ("Bank Statement Balance:", f"${summary.bank_balance:,.2f}"),
            ("Book Balance:", f"${summary.book_balance:,.2f}"),
            ("Difference:", f"${summary.difference:,.2f}"),
        ]
        row = self._write_section(ws, row + 1, "Balances", balances)

        counts = [
            ("Total Transactions:", summary.total_transactions),
            ("Matched:", summary.matched_transactions),
            ("Partial Matches:", summary.partial_matches),
            ("Unmatched:", summary.unmatched_transactions),
            ("Disputed:", summary.disputed_transactions),
            ("Excluded:", summary.excluded_transactions),
            ("Match Rate:", f"{summary.match_rate:.1f}%"),
        ]
        row = self._write_section(ws, row + 1, "Transaction Counts", counts)

        row = self._write_section(
            ws, row + 1, "Recommendations", [("", r) for r in report.recommendations]
        )
        self._write_section(ws, row + 1, "Next Steps", [("", s) for s in report.next_steps])

        ws.column_dimensions["A"].width = 30
        ws.column_dimensions["B"].width = 60

    @staticmethod
    def _write_section(ws: Worksheet, row: int, title: str, items) -> int:
        ws[f"A{row}"] = title
        ws[f"A{row}"].font = Font(bold=True)
        row += 1
        for label, value in items:
            ws[f"A{row}"] = label
            ws[f"B{row}"] = value
            row += 1
        return row

    def _create_match_sheet(
        self,
        wb: Workbook,
        sheet_name: str,
        matches: list[ReconciliationMatch],
        bank: dict[str, BankTransaction],
        book: dict[str, BookTransaction],
        fill: PatternFill,
    ) -> None:
        ws = wb.create_sheet(sheet_name)
        headers = [
            "Bank ID",
            "Bank Date",
            "Bank Amount",
            "Bank Description",
            "Book ID",
            "Book Date",
            "Book Amount",
            "Book Description",
            "Status",
            "Match Type",
            "Confidence",
            "Reasoning",
            "Suggested Category",
            "Reviewed By",
        ]
        self._write_headers(ws, headers)

        for row_num, match in enumerate(matches, start=2):
            bank_txn = bank.get(match.bank_transaction_id)
            book_txn = book.get(match.book_transaction_id) if match.book_transaction_id else None
            row_data = [
                match.bank_transaction_id,
                bank_txn.date if bank_txn else "",
                float(bank_txn.signed_amount) if bank_txn else "",
                bank_txn.description if bank_txn else "",
                match.book_transaction_id or "",
                book_txn.date if book_txn else "",
                float(book_txn.cash_effect) if book_txn else "",
                book_txn.description if book_txn else "",
                match.status.value,
                match.match_type.value if match.match_type else "",
                f"{match.confidence:.2f}",
                match.reasoning,
                match.suggested_category or "",
                match.reviewed_by or "",
            ]
            self._write_row(ws, row_num, row_data, fill)

        self._auto_fit_columns(ws)

    def _create_unmatched_sheet(
        self,
        wb: Workbook,
        unmatched: list[ReconciliationMatch],
        bank: dict[str, BankTransaction],
    ) -> None:
        ws = wb.create_sheet(self.sheet_config.unmatched.name)
        headers = ["Bank ID", "Date", "Reference", "Amount", "Type", "Description", "Reasoning"]
        self._write_headers(ws, headers)

        for row_num, match in enumerate(unmatched, start=2):
            txn = bank.get(match.bank_transaction_id)
            row_data = [
                match.bank_transaction_id,
                txn.date if txn else "",
                (txn.reference or "") if txn else "",
                float(txn.signed_amount) if txn else "",
                txn.type.value if txn else "",
                txn.description if txn else "",
                match.reasoning,
            ]
            self._write_row(ws, row_num, row_data, UNMATCHED_FILL)

        self._auto_fit_columns(ws)

    def _create_audit_trail_sheet(
        self, wb: Workbook, report: SessionReport, events: list[AuditEvent]
    ) -> None:
        """Create the audit trail sheet."""
        ws = wb.create_sheet(self.sheet_config.audit_trail.name)

        ws["A1"] = "Reconciliation Audit Trail"
        ws["A1"].font = Font(size=14, bold=True)
        ws["A3"] = "Generated At:"
        ws["B3"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        ws["A4"] = "Config File:"
        ws["B4"] = self.config.config_file_path or "Default"
        ws["A5"] = "Session ID:"
        ws["B5"] = report.session.id

        header_row = 7
        headers = [
            "Timestamp",
            "Event",
            "Action",
            "Entity",
            "User",
            "Risk",
            "Compliance",
            "Amount",
            "Description",
        ]
        self._write_headers(ws, headers, row=header_row)

        for row_num, event in enumerate(events, start=header_row + 1):
            row_data = [
                event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                event.event_type.value,
                event.action,
                f"{event.entity_type}:{event.entity_id or ''}",
                event.user_id or "",
                event.risk_level.value,
                ", ".join(tag.value for tag in event.compliance_tags),
                float(event.amount) if event.amount is not None else "",
                event.description,
            ]
            fill = UNMATCHED_FILL if event.risk_level == RiskLevel.HIGH else None
            self._write_row(ws, row_num, row_data, fill)

        self._auto_fit_columns(ws)

    @staticmethod
    def _write_headers(ws: Worksheet, headers: list[str], row: int = 1) -> None:
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=row, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER

    @staticmethod
    def _write_row(ws: Worksheet, row: int, values: list, fill: Optional[PatternFill]) -> None:
        for col, value in enumerate(values, start=1):
            cell = ws.cell(row=row, column=col, value=value)
            cell.border = THIN_BORDER
            if fill is not None:
                cell.fill = fill

    def _auto_fit_columns(self, ws: Worksheet) -> None:
        """Auto-fit column widths based on content."""
        for column_cells in ws.columns:
            max_length = 0
            column = column_cells[0].column_letter
            for cell in column_cells:
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))
            ws.column_dimensions[column].width = min(max_length + 2, 50)
