"""
Command-line interface for the ledger reconciliation and categorization engine.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional
import logging
import sys

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .audit import AuditEventType
from .config import generate_default_config, load_config, ReconConfig
from .models import Period, SessionReport
from .parsers import BankStatementParser, BookLedgerParser
from .reports import ExcelReportGenerator
from .service import ReconciliationService
from .store import InMemoryTransactionStore
from .utils.exceptions import ReconciliationError
from .utils.logging_config import setup_logging

console = Console()


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Bank-to-book reconciliation and transaction categorization tool."""
    pass


@main.command()
@click.argument("statement_file", type=click.Path(exists=True, path_type=Path))
@click.argument("ledger_file", type=click.Path(exists=True, path_type=Path))
@click.option("--account", "account_id", required=True, help="Account identifier")
@click.option("--user", "user_id", required=True, help="User running the reconciliation")
@click.option("--start", type=click.DateTime(formats=["%Y-%m-%d"]), required=True,
              help="Statement period start (YYYY-MM-DD)")
@click.option("--end", type=click.DateTime(formats=["%Y-%m-%d"]), required=True,
              help="Statement period end (YYYY-MM-DD)")
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Output Excel file path")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option(
    "--dry-run", is_flag=True, help="Reconcile and show summary without generating report"
)
def reconcile(
    statement_file: Path,
    ledger_file: Path,
    account_id: str,
    user_id: str,
    start: datetime,
    end: datetime,
    config: Optional[Path],
    output: Optional[Path],
    verbose: bool,
    dry_run: bool,
):
    """
    Reconcile a bank statement with the book ledger.

    STATEMENT_FILE: Path to the bank statement CSV export
    LEDGER_FILE: Path to the book ledger CSV export
    """
    recon_config = load_config(config)
    _setup(recon_config, verbose)

    try:
        period = Period(start.date(), end.date())
        store = InMemoryTransactionStore()
        service = ReconciliationService(store, config=recon_config)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Parsing bank statement...", total=None)
            bank_transactions = BankStatementParser(recon_config, account_id).parse_file(
                statement_file
            )
            progress.update(task, completed=True)

            task = progress.add_task("Parsing book ledger...", total=None)
            book_transactions = BookLedgerParser(recon_config, account_id).parse_file(
                ledger_file
            )
            for txn in book_transactions:
                store.add_book_transaction(txn)
            progress.update(task, completed=True)

            task = progress.add_task("Running reconciliation...", total=None)
            try:
                session_id = service.import_statement(
                    account_id, user_id, bank_transactions, period
                )
            finally:
                service.close()
            progress.update(task, completed=True)

        report = service.get_session_report(session_id)
        _display_summary(report)

        if dry_run:
            console.print("\n[yellow]Dry run - no report generated[/yellow]")
            return

        if output is None:
            output = Path(_default_filename(recon_config))

        report_path = ExcelReportGenerator(recon_config).generate_report(
            report,
            service.audit.events(),
            output,
            bank_transactions={
                i: store.get_bank_transaction(i) for i in report.session.bank_transaction_ids
            },
            book_transactions={t.id: store.get_book_transaction(t.id) for t in book_transactions},
        )
        service.audit.log_event(
            AuditEventType.REPORT_GENERATED,
            action="generate_report",
            entity_type="reconciliation_session",
            entity_id=session_id,
            user_id=user_id,
            description=f"Excel report written to {report_path}",
        )
        console.print(f"\n[green]Report generated: {report_path}[/green]")

    except ReconciliationError as e:
        console.print(f"[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@main.command()
@click.argument("statement_file", type=click.Path(exists=True, path_type=Path))
@click.option("--user", "user_id", required=True, help="User requesting categorization")
@click.option("--account", "account_id", default="default", show_default=True)
@click.option("-c", "--config", type=click.Path(exists=True, path_type=Path))
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def categorize(
    statement_file: Path,
    user_id: str,
    account_id: str,
    config: Optional[Path],
    verbose: bool,
):
    """
    Categorize the lines of a bank statement.

    STATEMENT_FILE: Path to the bank statement CSV export
    """
    recon_config = load_config(config)
    _setup(recon_config, verbose)

    try:
        transactions = BankStatementParser(recon_config, account_id).parse_file(statement_file)
        service = ReconciliationService(InMemoryTransactionStore(), config=recon_config)
        try:
            results = service.categorize_transactions(user_id, transactions)
        finally:
            service.close()
    except ReconciliationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    descriptions = {t.id: t.description for t in transactions}
    table = Table(title=f"Categories: {statement_file.name}")
    table.add_column("Transaction")
    table.add_column("Description")
    table.add_column("Category", style="cyan")
    table.add_column("Confidence", justify="right")
    table.add_column("Source")

    for result in results:
        table.add_row(
            result.transaction_id,
            _truncate(descriptions.get(result.transaction_id, "")),
            result.category,
            f"{result.confidence:.2f}",
            result.source,
        )

    console.print(table)
    console.print(f"\nTotal transactions: {len(results)}")


@main.command("parse-statement")
@click.argument("statement_file", type=click.Path(exists=True, path_type=Path))
@click.option("--account", "account_id", default="default", show_default=True)
@click.option("-c", "--config", type=click.Path(exists=True, path_type=Path))
def parse_statement(statement_file: Path, account_id: str, config: Optional[Path]):
    """
    Parse a bank statement CSV and display transaction summary.

    STATEMENT_FILE: Path to the bank statement CSV export
    """
    recon_config = load_config(config)
    parser = BankStatementParser(recon_config, account_id)

    try:
        transactions = parser.parse_file(statement_file)
    except ReconciliationError as e:
        console.print(f"[red]Error parsing file: {e}[/red]")
        sys.exit(1)

    table = Table(title=f"Bank Transactions: {statement_file.name}")
    table.add_column("Date")
    table.add_column("Reference")
    table.add_column("Amount", justify="right")
    table.add_column("Type")
    table.add_column("Description")

    for txn in transactions[:20]:  # Show first 20
        table.add_row(
            str(txn.date),
            txn.reference or "-",
            f"${txn.signed_amount:,.2f}",
            txn.type.value,
            _truncate(txn.description),
        )

    console.print(table)

    if len(transactions) > 20:
        console.print(f"\n... and {len(transactions) - 20} more transactions")

    console.print(f"\nTotal transactions: {len(transactions)}")


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


def _setup(config: ReconConfig, verbose: bool) -> None:
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, config.logging.level.upper(), logging.INFO)
    setup_logging(level, log_format=config.logging.format)


def _default_filename(config: ReconConfig) -> str:
    now = datetime.now()
    excel = config.output.excel
    if not excel.include_timestamp:
        return excel.filename_template.replace("_{date}", "").replace("_{time}", "")
    return excel.filename_template.format(
        date=now.strftime("%Y%m%d"), time=now.strftime("%H%M%S")
    )


def _truncate(text: str, width: int = 40) -> str:
    return text[:width] + "..." if len(text) > width else text


def _display_summary(report: SessionReport) -> None:
    """Display reconciliation summary in console."""
    summary = report.summary
    table = Table(title="Reconciliation Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Session", report.session.id)
    table.add_row("Status", report.session.status.value)
    table.add_row("Total Transactions", str(summary.total_transactions))
    table.add_row("Matched", str(summary.matched_transactions))
    table.add_row("Partial Matches", str(summary.partial_matches))
    table.add_row("Unmatched", str(summary.unmatched_transactions))
    table.add_row("Disputed", str(summary.disputed_transactions))
    table.add_row("Match Rate", f"{summary.match_rate:.1f}%")
    table.add_row("Bank Balance", f"${summary.bank_balance:,.2f}")
    table.add_row("Book Balance", f"${summary.book_balance:,.2f}")
    table.add_row("Difference", f"${summary.difference:,.2f}")

    console.print(table)

    for recommendation in report.recommendations:
        console.print(f"[yellow]- {recommendation}[/yellow]")


if __name__ == "__main__":
    main()
