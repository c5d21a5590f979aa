"""Report generators for reconciliation sessions."""

from .excel_generator import ExcelReportGenerator

__all__ = ["ExcelReportGenerator"]
