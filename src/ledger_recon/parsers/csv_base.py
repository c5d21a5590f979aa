"""Shared CSV reading and cell parsing for the ingestion parsers."""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional
import logging

import pandas as pd

logger = logging.getLogger(__name__)


class CsvParser:
    """
    Base for pandas-backed CSV parsers driven by a column mapping.

    Subclasses implement ``_normalize_row``; rows that fail to normalize are
    logged and skipped.
    """

    error_class: type[Exception] = ValueError
    label = "CSV"

    def __init__(self, settings: dict[str, Any]):
        self.settings = settings or {}
        self.column_mappings: dict[str, str] = self.settings.get("column_mappings", {})
        self.encoding = self.settings.get("encoding", "utf-8")
        self.delimiter = self.settings.get("delimiter", ",")
        self.date_format = self.settings.get("date_format", "%Y-%m-%d")

    def column(self, field_name: str, default: str) -> str:
        return self.column_mappings.get(field_name, default)

    def read_frame(self, file_path: Path) -> pd.DataFrame:
        """
        Read the file with every cell as text.

        Raises:
            error_class: If the file cannot be read
        """
        logger.info(f"Parsing {self.label} file: {file_path}")
        try:
            return pd.read_csv(
                file_path,
                encoding=self.encoding,
                delimiter=self.delimiter,
                dtype=str,
            )
        except Exception as e:
            logger.error(f"Failed to read CSV file: {e}")
            raise self.error_class(f"Failed to read CSV file {file_path}: {e}") from e

    def process_dataframe(self, df: pd.DataFrame) -> list:
        records = []
        for idx, row in df.iterrows():
            try:
                record = self._normalize_row(row, int(idx))
                if record is not None:
                    records.append(record)
            except Exception as e:
                logger.warning(f"Failed to process row {idx}: {e}")
                continue
        return records

    def _normalize_row(self, row: pd.Series, idx: int):
        raise NotImplementedError

    def parse_date(self, date_value) -> Optional[date]:
        """
        Parse a date cell using the configured format, then pandas as fallback.
        """
        if date_value is None or (not isinstance(date_value, str) and pd.isna(date_value)):
            return None
        if isinstance(date_value, datetime):
            return date_value.date()
        if isinstance(date_value, date):
            return date_value

        text = str(date_value).strip()
        if not text:
            return None
        try:
            return datetime.strptime(text, self.date_format).date()
        except ValueError:
            try:
                return pd.to_datetime(text).date()
            except (ValueError, TypeError):
                return None

    @staticmethod
    def parse_amount(amount_value) -> Optional[Decimal]:
        """
        Parse an amount cell, tolerating currency symbols, thousands
        separators and accounting-style parentheses.
        """
        if amount_value is None or (
            not isinstance(amount_value, str) and pd.isna(amount_value)
        ):
            return None
        text = str(amount_value).replace("$", "").replace(",", "").strip()
        if not text:
            return None
        negative = text.startswith("(") and text.endswith(")")
        if negative:
            text = text[1:-1]
        try:
            amount = Decimal(text)
        except (InvalidOperation, ValueError):
            return None
        return -amount if negative else amount

    @staticmethod
    def text(row: pd.Series, col: str) -> Optional[str]:
        value = row.get(col)
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return None
        value = str(value).strip()
        return value or None
