"""
Domain Entities.

Plain dataclasses exchanged between the pipeline stages and the repository.
They carry no storage concerns; ``invoice_reconciler.persistence`` maps them
to and from database rows.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class InvoiceStatus(str, Enum):
    """Invoice lifecycle. Transitions only move forward."""
    INGESTED = "INGESTED"
    EXTRACTED = "EXTRACTED"
    RECONCILED = "RECONCILED"
    POSTED = "POSTED"


class Provenance(str, Enum):
    """Which recognition path produced a line item."""
    VISION = "vision"
    OCR = "ocr"
    OCR_FALLBACK_TEXT = "ocr-fallback-text"


class MarkupSource(str, Enum):
    """Which row of the markup policy table supplied a markup."""
    LINE_MANUAL = "line_manual"
    ITEM_MANUAL = "item_manual"
    VENDOR_CATEGORY = "vendor_category"
    CATEGORY = "category"
    DEFAULT = "default"


@dataclass
class Vendor:
    name: str
    id: Optional[int] = None


@dataclass
class ExtractedLineItem:
    """
    Canonical line item produced by the Extraction Normalizer.

    Attributes:
        name: Cleaned product name (item codes stripped)
        raw_description: Description exactly as the recognizer returned it
        quantity: Number of invoiced units
        pack_size: Units inside one invoiced unit (1 when not a pack)
        pack_is_measure: True when pack_size is a weight/volume, not a count
        unit_cost_ex_gst: Cost of one invoiced unit, ex tax
        effective_unit_cost_ex_gst: Cost of one sellable unit, ex tax
        category: One of the closed business categories
        tax_applicable: Whether GST applies
        confidence: Recognition confidence (0-1)
        provenance: Recognition path that produced the item
    """
    name: str
    raw_description: str
    quantity: Decimal
    pack_size: Decimal
    unit_cost_ex_gst: Decimal
    effective_unit_cost_ex_gst: Decimal
    category: str
    tax_applicable: bool
    confidence: float
    provenance: Provenance
    pack_is_measure: bool = False
    tax_rate: Optional[Decimal] = None
    barcode: Optional[str] = None
    notes: List[str] = field(default_factory=list)

    @property
    def line_total_ex_gst(self) -> Decimal:
        return self.quantity * self.unit_cost_ex_gst


@dataclass
class InvoiceLineItem:
    """Persisted line item tied to one invoice."""
    invoice_id: int
    name: str
    raw_description: str
    quantity: Decimal
    pack_size: Decimal
    unit_cost_ex_gst: Decimal
    effective_unit_cost_ex_gst: Decimal
    category: str
    tax_applicable: bool
    confidence: float
    provenance: Provenance
    position: int = 0
    pack_is_measure: bool = False
    tax_rate: Optional[Decimal] = None
    barcode: Optional[str] = None
    catalog_item_id: Optional[int] = None
    manual_markup: Optional[Decimal] = None
    markup: Optional[Decimal] = None
    markup_source: Optional[MarkupSource] = None
    sell_ex_gst: Optional[Decimal] = None
    sell_inc_gst: Optional[Decimal] = None
    notes: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def from_extracted(cls, invoice_id: int, position: int,
                       item: ExtractedLineItem) -> 'InvoiceLineItem':
        return cls(
            invoice_id=invoice_id,
            position=position,
            name=item.name,
            raw_description=item.raw_description,
            quantity=item.quantity,
            pack_size=item.pack_size,
            pack_is_measure=item.pack_is_measure,
            unit_cost_ex_gst=item.unit_cost_ex_gst,
            effective_unit_cost_ex_gst=item.effective_unit_cost_ex_gst,
            category=item.category,
            tax_applicable=item.tax_applicable,
            tax_rate=item.tax_rate,
            confidence=item.confidence,
            provenance=item.provenance,
            barcode=item.barcode,
            notes="; ".join(item.notes) or None,
        )

    @property
    def line_total_ex_gst(self) -> Decimal:
        return self.quantity * self.unit_cost_ex_gst

    def add_note(self, note: str) -> None:
        if self.notes and note in self.notes:
            return
        self.notes = f"{self.notes}; {note}" if self.notes else note


@dataclass
class Invoice:
    """
    One uploaded vendor document and its extraction/reconciliation state.
    """
    vendor_id: int
    document: bytes
    filename: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.INGESTED
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    subtotal_ex_gst: Optional[Decimal] = None
    gst_amount: Optional[Decimal] = None
    total_inc_gst: Optional[Decimal] = None
    provenance: Optional[Provenance] = None
    extraction_confidence: Optional[float] = None
    needs_rectification: bool = False
    rectification_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    posted_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class CatalogItem:
    """
    A sellable product, scoped to the vendor that supplies it.

    ``sell_ex_gst`` and ``sell_inc_gst`` are always derived from cost,
    markup and tax through the pricing calculator.
    """
    vendor_id: int
    name: str
    category: str
    cost_ex_gst: Decimal
    markup: Decimal
    sell_ex_gst: Decimal
    sell_inc_gst: Decimal
    tax_applicable: bool = True
    subcategory: Optional[str] = None
    manual_markup: Optional[Decimal] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None
    stock_on_hand: int = 0
    reorder_level: Optional[int] = None
    version: int = 0
    updated_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class PriceHistoryEntry:
    """Snapshot of the pricing fields a cost change superseded."""
    catalog_item_id: int
    cost_ex_gst: Decimal
    markup: Decimal
    sell_ex_gst: Decimal
    sell_inc_gst: Decimal
    source_invoice_id: Optional[int] = None
    changed_at: Optional[datetime] = None
    id: Optional[int] = None


def empty_learning_data() -> Dict[str, Any]:
    return {
        "common_items": [],
        "pack_size_patterns": [],
        "price_patterns": [],
        "category_mappings": {},
    }


def default_parsing_rules() -> Dict[str, Any]:
    return {
        "has_gst_column": None,
        "pack_size_in_description": None,
    }


@dataclass
class VendorProfile:
    """
    Accumulated corrections for one vendor.

    ``learning_data`` holds the four learning collections; the correction
    history is capped and evicts its oldest entries first.
    """
    vendor_id: int
    learning_data: Dict[str, Any] = field(default_factory=empty_learning_data)
    parsing_rules: Dict[str, Any] = field(default_factory=default_parsing_rules)
    correction_history: List[Dict[str, Any]] = field(default_factory=list)
    version: int = 0
    updated_at: Optional[datetime] = None
    id: Optional[int] = None
