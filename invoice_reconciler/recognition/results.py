"""
Recognition Result Types.

The recognition chain always returns exactly one of:
    VisionResult       - the vision tier produced line items
    OcrResult          - the OCR tier plus text parser produced line items
    UnsupportedFormat  - the document could not be rasterized
    RecognitionEmpty   - every tier ran and none produced a line item

``RawLineItem`` is the loosely typed, tier-specific line shape handed to
the extraction normalizer.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from invoice_reconciler.entities import Provenance
from invoice_reconciler.utils.exceptions import RecognitionParseError


@dataclass
class RawLineItem:
    """
    A line item as a recognizer reported it, before normalization.

    Attributes:
        description: Product description as printed
        quantity: Invoiced quantity, any numeric-looking value
        quantity_text: Free-text quantity/unit expression, e.g. "2 x 5kg"
        unit_cost: Unit cost ex tax, any money-looking value
        line_total: Line total ex tax, used when unit cost is missing
        category: Recognizer's category guess
        tax_applicable: False only when the source marks the line exempt
        confidence: Item confidence (0-1) when the recognizer gives one
        provenance: Recognition path that produced the line
    """
    description: str
    quantity: Any = None
    quantity_text: Optional[str] = None
    unit_cost: Any = None
    line_total: Any = None
    category: Optional[str] = None
    tax_applicable: Optional[bool] = None
    tax_rate: Any = None
    confidence: Optional[float] = None
    barcode: Optional[str] = None
    provenance: Provenance = Provenance.VISION
    raw_text: Optional[str] = None


@dataclass
class InvoiceHeader:
    vendor_name: Optional[str] = None
    vendor_confidence: float = 0.0
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None


@dataclass
class TierAttempt:
    """What happened when one tier ran."""
    tier: str
    outcome: str  # succeeded | empty | failed | timeout | skipped
    item_count: int = 0
    detail: Optional[str] = None


@dataclass
class VisionResult:
    items: List[RawLineItem]
    header: InvoiceHeader
    confidence: float
    page_count: int
    attempts: List[TierAttempt] = field(default_factory=list)

    provenance = Provenance.VISION


@dataclass
class OcrResult:
    """
    Attributes:
        confidence: Mean per-page OCR confidence (0-1), never adjusted
            for how well the text parser understood the lines
        parser_coverage: Share of candidate item lines the parser read
            with a known layout (0-1), reported alongside confidence
    """
    items: List[RawLineItem]
    header: InvoiceHeader
    confidence: float
    text: str
    page_count: int
    parser_coverage: float = 0.0
    attempts: List[TierAttempt] = field(default_factory=list)

    provenance = Provenance.OCR


@dataclass
class UnsupportedFormat:
    reason: str


@dataclass
class RecognitionEmpty:
    attempts: List[TierAttempt] = field(default_factory=list)

    @property
    def reason(self) -> str:
        if not self.attempts:
            return "no recognition tier available"
        return "; ".join(f"{a.tier}: {a.outcome}" + (f" ({a.detail})" if a.detail else "")
                         for a in self.attempts)


RecognitionResult = Union[VisionResult, OcrResult, UnsupportedFormat, RecognitionEmpty]


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_flag(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "y", "gst", "1"):
        return True
    if text in ("false", "no", "n", "fre", "free", "gst-free", "0"):
        return False
    return None


def vision_result_from_payload(payload: Dict[str, Any], page_count: int) -> VisionResult:
    """
    Build a VisionResult from the structured answer of the vision tier.

    Expected shape (extra keys are ignored)::

        {"vendor": {"name": ..., "confidence": ...},
         "invoiceNumber": ..., "invoiceDate": ...,
         "lineItems": [{"itemDescription", "quantity", "quantityText",
                        "unitCostExGst", "priceExGst", "category", "hasGst",
                        "barcode", "validationConfidence"}],
         "confidence": ...}

    Raises:
        RecognitionParseError: If the payload is not shaped like the above.
    """
    if not isinstance(payload, dict):
        raise RecognitionParseError("vision", f"expected an object, got {type(payload).__name__}")

    line_items = payload.get("lineItems", [])
    if not isinstance(line_items, list):
        raise RecognitionParseError("vision", "lineItems is not a list")

    confidence = _as_float(payload.get("confidence"), 0.8)

    items = []
    for entry in line_items:
        if not isinstance(entry, dict):
            continue
        description = entry.get("itemDescription") or entry.get("name") or ""
        if not str(description).strip():
            continue
        items.append(RawLineItem(
            description=str(description),
            quantity=entry.get("quantity"),
            quantity_text=entry.get("quantityText"),
            unit_cost=entry.get("unitCostExGst"),
            line_total=entry.get("priceExGst"),
            category=entry.get("category"),
            tax_applicable=_as_flag(entry.get("hasGst")),
            tax_rate=entry.get("gstRate"),
            confidence=_as_float(entry.get("validationConfidence"), confidence),
            barcode=entry.get("barcode"),
            provenance=Provenance.VISION,
        ))

    vendor = payload.get("vendor") or {}
    if isinstance(vendor, str):
        vendor = {"name": vendor}

    header = InvoiceHeader(
        vendor_name=vendor.get("name"),
        vendor_confidence=_as_float(vendor.get("confidence"), 0.8),
        invoice_number=payload.get("invoiceNumber") or None,
        invoice_date=payload.get("invoiceDate") or None,
    )
    return VisionResult(items=items, header=header, confidence=confidence, page_count=page_count)
