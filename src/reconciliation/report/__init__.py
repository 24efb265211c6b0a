"""
Reconciliation report generation and formatting.

Builds a report from finished runs and renders it for the console,
as JSON or as CSV.
"""

from .formatters import (
    export_report_csv,
    export_report_json,
    format_report_console,
    format_report_json,
)
from .generator import DiscrepancyType, generate_report

__all__ = [
    'generate_report',
    'DiscrepancyType',
    'export_report_json',
    'export_report_csv',
    'format_report_console',
    'format_report_json',
]
