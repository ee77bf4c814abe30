"""
Extraction Normalizer Module.

This module provides the ExtractionNormalizer class that turns whatever a
recognition tier produced into canonical ExtractedLineItem objects.

Operations:
    - Separate invoiced quantity from pack size
    - Derive the effective (per sellable unit) cost
    - Strip leading supplier item codes from names
    - Map categories onto the closed business set
    - Apply learned vendor hints when they are trusted enough

Author: ML Engineering Team
"""

import re
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from config import get_config
from invoice_reconciler.entities import ExtractedLineItem
from invoice_reconciler.learning.vendor_profile import ParsingHints, VendorProfileService
from invoice_reconciler.recognition.results import RawLineItem
from invoice_reconciler.utils.helpers import to_decimal
from invoice_reconciler.utils.logger import get_logger
from .normalizers import CategoryNormalizer, ItemNameCleaner, PackSizeParser, QuantityParse

# Initialize module logger
logger = get_logger(__name__)

EFFECTIVE_COST_PLACES = Decimal("0.0001")
BARCODE_PATTERN = re.compile(r'^\d{8,14}$')


class ExtractionNormalizer:
    """
    Normalizer for recognizer line items.

    Attributes:
        pack_parser: PackSizeParser instance
        name_cleaner: ItemNameCleaner instance
        categories: CategoryNormalizer instance
        learning: Optional VendorProfileService consulted for hints

    Example:
        >>> normalizer = ExtractionNormalizer()
        >>> item = normalizer.normalize([RawLineItem("Rolled Oats", quantity_text="2 x 5kg",
        ...                                          unit_cost="18.50")])[0]
        >>> (item.quantity, item.pack_size, item.effective_unit_cost_ex_gst)
        (Decimal('2'), Decimal('5'), Decimal('18.5000'))
    """

    def __init__(
        self,
        pack_parser: Optional[PackSizeParser] = None,
        name_cleaner: Optional[ItemNameCleaner] = None,
        categories: Optional[CategoryNormalizer] = None,
        learning: Optional[VendorProfileService] = None,
        override_threshold: Optional[float] = None
    ) -> None:
        self.pack_parser = pack_parser or PackSizeParser()
        self.name_cleaner = name_cleaner or ItemNameCleaner()
        self.categories = categories or CategoryNormalizer()
        self.learning = learning
        self.override_threshold = (
            override_threshold if override_threshold is not None
            else get_config("learning.override_threshold", 0.7)
        )

    def normalize(
        self,
        raw_items: List[RawLineItem],
        vendor_id: Optional[int] = None,
        default_confidence: float = 0.0
    ) -> List[ExtractedLineItem]:
        """
        Normalize a recognizer's line items.

        Args:
            raw_items: Items from the vision tier or the text parser.
            vendor_id: Vendor whose learned hints apply, if any.
            default_confidence: Confidence for items that carry none.

        Returns:
            ExtractedLineItem list in input order.
        """
        items = [self._normalize_item(raw, vendor_id, default_confidence) for raw in raw_items]
        logger.info(f"Normalized {len(items)} line items")
        return items

    def _normalize_item(
        self,
        raw: RawLineItem,
        vendor_id: Optional[int],
        default_confidence: float
    ) -> ExtractedLineItem:
        notes = []
        description = ' '.join((raw.description or '').split())
        hints = self._hints(vendor_id, description)

        parse, name_text = self._read_quantity(raw, description)
        quantity = parse.quantity
        if quantity is None or quantity <= 0:
            quantity = Decimal(1)
        pack_size = parse.pack_size
        pack_is_measure = parse.pack_is_measure

        if pack_size == 1 and hints.parsing_rules.get("pack_size_in_description") is not False:
            detected = self.pack_parser.detect_pack_size(name_text or description)
            if detected:
                pack_size = Decimal(detected)

        if hints.pack_size and hints.pack_size_confidence > self.override_threshold:
            if Decimal(hints.pack_size) != pack_size or pack_is_measure:
                logger.debug(f"Learned pack size {hints.pack_size} overrides {pack_size} for '{description}'")
            pack_size = Decimal(hints.pack_size)
            pack_is_measure = False

        unit_cost = self._unit_cost(raw, quantity, notes)
        effective = self.effective_cost(unit_cost, pack_size, pack_is_measure)

        category = self.categories.normalize(raw.category)
        if hints.category and hints.category_confidence > self.override_threshold:
            learned = self.categories.match(hints.category)
            if learned:
                category = learned

        name = self.name_cleaner.clean(name_text or description)

        return ExtractedLineItem(
            name=name,
            raw_description=raw.description or '',
            quantity=quantity,
            pack_size=pack_size,
            pack_is_measure=pack_is_measure,
            unit_cost_ex_gst=unit_cost,
            effective_unit_cost_ex_gst=effective,
            category=category,
            tax_applicable=raw.tax_applicable is not False,
            tax_rate=to_decimal(raw.tax_rate),
            confidence=self._confidence(raw.confidence, default_confidence),
            provenance=raw.provenance,
            barcode=self._barcode(raw.barcode),
            notes=notes,
        )

    def _hints(self, vendor_id: Optional[int], description: str) -> ParsingHints:
        if self.learning is None or vendor_id is None:
            return ParsingHints()
        return self.learning.get_parsing_hints(vendor_id, description)

    def _read_quantity(self, raw: RawLineItem, description: str):
        """
        Quantity text wins over a leading expression in the description,
        which wins over the bare quantity value.
        """
        if raw.quantity_text:
            parse = self.pack_parser.parse(str(raw.quantity_text))
            if parse.matched:
                return parse, description

        parse = self.pack_parser.parse(description)
        if parse.matched:
            return parse, parse.remainder

        quantity = to_decimal(raw.quantity)
        if quantity is None and raw.quantity_text:
            quantity = to_decimal(raw.quantity_text)
        return QuantityParse(quantity, Decimal(1), False, description), description

    @staticmethod
    def _unit_cost(raw: RawLineItem, quantity: Decimal, notes: List[str]) -> Decimal:
        unit_cost = to_decimal(raw.unit_cost)
        if unit_cost is not None and unit_cost >= 0:
            return unit_cost

        line_total = to_decimal(raw.line_total)
        if line_total is not None and line_total >= 0:
            notes.append("unit cost derived from line total")
            return (line_total / quantity).quantize(EFFECTIVE_COST_PLACES, rounding=ROUND_HALF_UP)

        notes.append("unit cost missing")
        return Decimal(0)

    @staticmethod
    def effective_cost(unit_cost: Decimal, pack_size: Decimal, pack_is_measure: bool) -> Decimal:
        # A measure pack ("5kg") is the sellable unit itself
        if pack_size > 1 and not pack_is_measure:
            effective = unit_cost / pack_size
        else:
            effective = unit_cost
        return effective.quantize(EFFECTIVE_COST_PLACES, rounding=ROUND_HALF_UP)

    @staticmethod
    def _confidence(value: Optional[float], default: float) -> float:
        if value is None:
            value = default
        return max(0.0, min(1.0, float(value)))

    @staticmethod
    def _barcode(value) -> Optional[str]:
        if value is None:
            return None
        digits = re.sub(r'\s', '', str(value))
        return digits if BARCODE_PATTERN.match(digits) else None
