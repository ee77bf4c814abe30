"""
Output Handler Module.

Review workbook export for reconciled invoices.
"""

from .excel_exporter import ReviewExporter

__all__ = ['ReviewExporter']
