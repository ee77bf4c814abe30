"""
Excel Exporter Module.

Builds a review workbook for one reconciled invoice using openpyxl.

Sheets:
    - Line Items: every line with quantities, costs, markup and sell prices
    - Price Changes: catalog cost changes this invoice triggered

Author: ML Engineering Team
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from config import get_config
from invoice_reconciler.entities import CatalogItem, Invoice, InvoiceLineItem, PriceHistoryEntry
from invoice_reconciler.utils.exceptions import ExcelExportError
from invoice_reconciler.utils.helpers import ensure_directory, generate_timestamp, safe_filename
from invoice_reconciler.utils.logger import get_logger

# Initialize module logger
logger = get_logger(__name__)

PriceChange = Tuple[PriceHistoryEntry, CatalogItem]


class ReviewExporter:
    """
    Exports an invoice and its reconciliation to Excel.

    Attributes:
        output_dir: Directory for output files
        line_items_sheet: Title of the line item sheet
        price_changes_sheet: Title of the price change sheet

    Example:
        >>> exporter = ReviewExporter()
        >>> path = exporter.export(invoice, lines, changes)
        >>> print(f"Saved to: {path}")
    """

    LINE_COLUMNS = [
        ('#', lambda line: line.position + 1),
        ('Name', lambda line: line.name),
        ('Raw Description', lambda line: line.raw_description),
        ('Quantity', lambda line: line.quantity),
        ('Pack Size', lambda line: line.pack_size),
        ('Unit Cost ex GST', lambda line: line.unit_cost_ex_gst),
        ('Effective Cost ex GST', lambda line: line.effective_unit_cost_ex_gst),
        ('Line Total ex GST', lambda line: line.line_total_ex_gst),
        ('Category', lambda line: line.category),
        ('GST', lambda line: 'Yes' if line.tax_applicable else 'No'),
        ('Markup', lambda line: line.markup),
        ('Markup Source', lambda line: line.markup_source),
        ('Sell ex GST', lambda line: line.sell_ex_gst),
        ('Sell inc GST', lambda line: line.sell_inc_gst),
        ('Catalog Item', lambda line: line.catalog_item_id),
        ('Confidence', lambda line: line.confidence),
        ('Provenance', lambda line: line.provenance),
        ('Notes', lambda line: line.notes),
    ]

    CHANGE_COLUMNS = [
        ('Catalog Item', lambda entry, item: item.id),
        ('Name', lambda entry, item: item.name),
        ('Previous Cost ex GST', lambda entry, item: entry.cost_ex_gst),
        ('New Cost ex GST', lambda entry, item: item.cost_ex_gst),
        ('Previous Markup', lambda entry, item: entry.markup),
        ('Previous Sell inc GST', lambda entry, item: entry.sell_inc_gst),
        ('New Sell inc GST', lambda entry, item: item.sell_inc_gst),
        ('Changed At', lambda entry, item: entry.changed_at),
    ]

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir or get_config("paths.output_dir", "outputs"))
        self.line_items_sheet = get_config("output.excel.line_items_sheet", "Line Items")
        self.price_changes_sheet = get_config("output.excel.price_changes_sheet", "Price Changes")

        logger.debug(f"ReviewExporter initialized (output_dir: {self.output_dir})")

    def export(
        self,
        invoice: Invoice,
        line_items: List[InvoiceLineItem],
        price_changes: Sequence[PriceChange] = (),
        filename: Optional[str] = None
    ) -> str:
        """
        Write the review workbook.

        Args:
            invoice: The invoice being reviewed.
            line_items: Its line items in position order.
            price_changes: (history entry, current catalog item) pairs.
            filename: Output filename. If None, auto-generated.

        Returns:
            Path to the created Excel file.

        Raises:
            ExcelExportError: If the workbook cannot be written.
        """
        ensure_directory(self.output_dir)

        if filename is None:
            label = invoice.invoice_number or f"invoice_{invoice.id}"
            filename = f"review_{label}_{generate_timestamp()}.xlsx"

        filepath = self.output_dir / safe_filename(filename)

        try:
            workbook = openpyxl.Workbook()

            sheet = workbook.active
            sheet.title = self.line_items_sheet
            self._write_sheet(sheet, [c[0] for c in self.LINE_COLUMNS],
                              [[get(line) for _, get in self.LINE_COLUMNS] for line in line_items])

            sheet = workbook.create_sheet(title=self.price_changes_sheet)
            self._write_sheet(sheet, [c[0] for c in self.CHANGE_COLUMNS],
                              [[get(entry, item) for _, get in self.CHANGE_COLUMNS]
                               for entry, item in price_changes])

            workbook.save(filepath)

        except Exception as e:
            logger.error(f"Excel export failed: {e}")
            raise ExcelExportError(str(filepath), str(e)) from e

        logger.info(
            f"Review workbook saved: {filepath} ({len(line_items)} lines, "
            f"{len(price_changes)} price changes)"
        )
        return str(filepath)

    def _write_sheet(self, sheet, headers: List[str], rows: List[List[Any]]) -> None:
        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
        header_alignment = Alignment(horizontal="center", vertical="center")
        thin_border = Border(
            left=Side(style='thin'),
            right=Side(style='thin'),
            top=Side(style='thin'),
            bottom=Side(style='thin')
        )

        for col, header in enumerate(headers, 1):
            cell = sheet.cell(row=1, column=col, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = header_alignment
            cell.border = thin_border

        for row_num, row in enumerate(rows, 2):
            for col, value in enumerate(row, 1):
                cell = sheet.cell(row=row_num, column=col, value=self._cell_value(value))
                cell.border = thin_border

        # Adjust column widths
        for col, header in enumerate(headers, 1):
            max_length = len(header)
            for row in rows:
                if row[col - 1] is not None:
                    max_length = max(max_length, len(str(self._cell_value(row[col - 1]))))
            sheet.column_dimensions[get_column_letter(col)].width = min(max_length + 2, 50)

        sheet.freeze_panes = 'A2'

    @staticmethod
    def _cell_value(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, Decimal):
            return float(value)
        if isinstance(value, datetime):
            # Excel has no timezone support
            return value.replace(tzinfo=None)
        return value
