"""
Invoice Text Parser Module.

Deterministic, rule-based reading of OCR text into an invoice header and
raw line items. Used by the OCR tier of the recognition chain.

Line layouts recognised, most specific first:
    - Trumps:         CODE DESC QTY QTY UNIT $PRICE GST% $GST $TOTAL
    - United Organics: CODE DESC QTY QTY UNIT PRICE/UNIT TOTAL
    - Little Valley:  QTY ITEM_NO DESC $PRICE ... $EXTENDED GST|FRE
    - Pipe table:     DESC | QTY | UNIT | TOTAL
    - Name first:     DESC QTY $UNIT $TOTAL
    - Quantity first: QTY DESC $UNIT $TOTAL
    - Column table:   tab or wide-space separated columns

Lines that look like items but fit no layout go through a loose reading
and are marked with ``ocr-fallback-text`` provenance.

Author: ML Engineering Team
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from invoice_reconciler.entities import Provenance
from invoice_reconciler.postprocessor.normalizers import CategoryNormalizer, DateNormalizer, PackSizeParser
from invoice_reconciler.utils.logger import get_logger
from .results import InvoiceHeader, RawLineItem

logger = get_logger(__name__)

PAGE_BREAK_LINE = re.compile(r'^-{2,}\s*PAGE BREAK\s*-{2,}$', re.IGNORECASE)
MONEY = re.compile(r'\$?(\d[\d,]*\.\d{2})\b')

# Share of a parsed line counted towards parser coverage
LAYOUT_CERTAINTY = 1.0
LOOSE_CERTAINTY = 0.5


@dataclass
class ParsedInvoiceText:
    """
    What the text parser read from one document.

    Attributes:
        header: Vendor, invoice number and date
        items: Parsed line items in document order
        candidate_lines: Lines in the item block that carry a price
        coverage_score: Sum of per-line certainty over parsed lines
        looks_like_roster: True when an itemless document reads like a roster
    """
    header: InvoiceHeader
    items: List[RawLineItem] = field(default_factory=list)
    candidate_lines: int = 0
    coverage_score: float = 0.0
    looks_like_roster: bool = False

    @property
    def parser_coverage(self) -> float:
        if self.candidate_lines == 0:
            return 0.0
        return round(min(1.0, self.coverage_score / self.candidate_lines), 4)


class InvoiceTextParser:
    """
    Reads OCR text of a supplier invoice.

    Example:
        >>> parser = InvoiceTextParser()
        >>> parsed = parser.parse(ocr_text)
        >>> [item.description for item in parsed.items]
        ['Rolled Oats 5kg', 'Byron Chai Tea 500g']
    """

    KNOWN_VENDORS = {
        'little valley': 'Little Valley Distribution',
        'trumps pty': 'Trumps Pty Ltd',
        'united organics': 'United Organics',
    }

    INVOICE_NUMBER_PATTERNS = [
        re.compile(r'invoice\s+no\.?\s*:?\s*([A-Z]{0,4}\d+)', re.IGNORECASE),
        re.compile(r'invoice\s+number\s*:?\s*([A-Z]{0,4}\d+)', re.IGNORECASE),
        re.compile(r'inv\s+no\.?\s*:?\s*([A-Z]{0,4}\d+)', re.IGNORECASE),
        re.compile(r'invoice\s+#\s*([A-Z]{0,4}\d+)', re.IGNORECASE),
        re.compile(r'^(?:tax\s+)?invoice\s+(\d+)$', re.IGNORECASE),
        re.compile(r'^(\d{6,8})$'),
    ]

    HEADER_WORDS = re.compile(
        r'\b(description|item|product|qty|quantity|unit|price|amount|extended|total)\b',
        re.IGNORECASE
    )

    NON_ITEM_PATTERNS = [
        re.compile(p, re.IGNORECASE) for p in (
            r'^total', r'^sub\s*-?total', r'^gst', r'^tax', r'^freight', r'^shipping',
            r'^delivery', r'^thank you', r'^payment', r'^remittance', r'^balance',
            r'^amount due', r'^page \d+', r'^-+$', r'^=+$', r'discount',
            r'pls call', r'gates opened', r'^bsb', r'^abn', r'^account',
        )
    ]

    ROSTER_KEYWORDS = [
        'roster', 'schedule', 'staff', 'shift', 'manager', 'barista', 'kitchen',
        'hours', '/hr', 'monday', 'tuesday', 'wednesday', 'thursday', 'friday',
        'saturday', 'sunday',
    ]

    def __init__(
        self,
        categories: Optional[CategoryNormalizer] = None,
        date_normalizer: Optional[DateNormalizer] = None,
        pack_parser: Optional[PackSizeParser] = None
    ) -> None:
        self.categories = categories or CategoryNormalizer()
        self.date_normalizer = date_normalizer or DateNormalizer()
        self.pack_parser = pack_parser or PackSizeParser()

        self.layouts: List[Tuple[str, re.Pattern, Callable]] = [
            ("trumps", re.compile(
                r'^(\w+)\s+(.*?)\s+(\d+(?:\.\d+)?)\s+(\d+(?:\.\d+)?)\s+\w+\s+\$(\d+\.\d{2})'
                r'\s+([\d.]+)%?\s+\$([\d.]+)\s+\$(\d+\.\d{2})$'), self._from_trumps),
            ("united_organics", re.compile(
                r'^(\d+)\s+(.*?)\s+(\d+(?:\.\d+)?)\s+(\d+(?:\.\d+)?)\s+\w+\s+(\d+\.\d{2})\/\w+'
                r'\s+(\d+\.\d{2})$'), self._from_united_organics),
            ("little_valley", re.compile(
                r'^(\d+(?:\.\d+)?)\s+(\w+)\s+(.*?)\s+\$(\d+\.\d{2})\s+.*?\s*\$(\d+\.\d{2})'
                r'\s+(GST|FRE)\s*$'), self._from_little_valley),
            ("pipe", re.compile(
                r'^(.+?)\|\s*(\d+(?:\.\d+)?)\s*\|\s*\$?(\d+\.\d{2})\s*\|\s*\$?(\d+\.\d{2})\s*\|?$'),
             self._from_name_first),
            ("name_first", re.compile(
                r'^(.+?)\s+(\d+(?:\.\d+)?)\s+\$?(\d+\.\d{2})\s+\$?(\d+\.\d{2})$'),
             self._from_name_first),
            ("quantity_first", re.compile(
                r'^(\d+(?:\.\d+)?)\s+([A-Za-z].*?)\s+\$?(\d+\.\d{2})\s+\$?(\d+\.\d{2})$'),
             self._from_quantity_first),
        ]

    # =========================================================== entry point

    def parse(self, text: str) -> ParsedInvoiceText:
        """
        Parse OCR text of one invoice (page texts already joined).

        Args:
            text: OCR text, pages separated by the page-break marker.

        Returns:
            ParsedInvoiceText with header, items and coverage counts.
        """
        lines = [line.strip() for line in (text or '').split('\n')]
        lines = [line for line in lines if line and not PAGE_BREAK_LINE.match(line)]

        parsed = ParsedInvoiceText(header=InvoiceHeader(
            vendor_name=None,
            invoice_number=self.extract_invoice_number(lines),
            invoice_date=self.date_normalizer.extract_date('\n'.join(lines[:20])),
        ))
        parsed.header.vendor_name, parsed.header.vendor_confidence = self.extract_vendor(lines)

        start = self.find_line_items_start(lines)
        for line in lines[start:]:
            if self.is_non_item_line(line):
                continue

            item, certainty = self.parse_line(line)
            if item is not None:
                parsed.items.append(item)
                parsed.coverage_score += certainty
                parsed.candidate_lines += 1
            elif MONEY.search(line):
                parsed.candidate_lines += 1
                logger.debug(f"No layout matched priced line: '{line}'")

        if not parsed.items:
            parsed.looks_like_roster = self.looks_like_roster(text)
            if parsed.looks_like_roster:
                logger.warning("Document reads like a staff roster rather than an invoice")

        logger.info(
            f"Text parser read {len(parsed.items)} item(s) from "
            f"{parsed.candidate_lines} candidate line(s)"
        )
        return parsed

    # ================================================================ header

    def extract_vendor(self, lines: List[str]) -> Tuple[Optional[str], float]:
        header_lines = lines[:10]

        for line in header_lines:
            lowered = line.lower()
            for marker, name in self.KNOWN_VENDORS.items():
                if marker in lowered:
                    return name, 0.9

        for line in header_lines:
            if self._looks_like_company_name(line):
                return self._clean_vendor_name(line), 0.8

        for line in header_lines:
            if len(line) > 5 and 'invoice' not in line.lower():
                return self._clean_vendor_name(line), 0.5

        return None, 0.0

    def extract_invoice_number(self, lines: List[str]) -> Optional[str]:
        for line in lines[:15]:
            for pattern in self.INVOICE_NUMBER_PATTERNS:
                match = pattern.search(line)
                if match:
                    return match.group(1)
        return None

    @staticmethod
    def _looks_like_company_name(line: str) -> bool:
        lowered = line.lower()
        return (
            3 < len(line) < 50
            and re.search(r'[A-Z]', line) is not None
            and '$' not in line
            and not re.match(r'^\d', line)
            and 'invoice' not in lowered
            and 'date' not in lowered
            and not re.match(r'^(page|total|subtotal|gst|tax|abn)\b', lowered)
        )

    @staticmethod
    def _clean_vendor_name(line: str) -> str:
        cleaned = re.sub(r'[^\w\s&.\-]', '', line)
        return ' '.join(cleaned.split())[:50]

    # ============================================================ item block

    def find_line_items_start(self, lines: List[str]) -> int:
        """Index just after the item table's header row."""
        for index, line in enumerate(lines[:30]):
            if len(set(w.lower() for w in self.HEADER_WORDS.findall(line))) >= 2 and not MONEY.search(line):
                logger.debug(f"Item table header at line {index}: '{line}'")
                return index + 1

        # No header row, scan everything
        return 0

    def is_non_item_line(self, line: str) -> bool:
        return len(line) < 3 or any(p.search(line) for p in self.NON_ITEM_PATTERNS)

    def looks_like_line_item(self, line: str) -> bool:
        return (
            len(line) > 10
            and MONEY.search(line) is not None
            and re.search(r'[A-Za-z]{3,}', line) is not None
            and not self.is_non_item_line(line)
        )

    def looks_like_roster(self, text: str) -> bool:
        lowered = (text or '').lower()
        return sum(1 for keyword in self.ROSTER_KEYWORDS if keyword in lowered) >= 3

    def parse_line(self, line: str) -> Tuple[Optional[RawLineItem], float]:
        """
        Read one line with the first layout that fits.

        Returns:
            (item, certainty); item is None when the line is not an item.
        """
        for name, pattern, build in self.layouts:
            match = pattern.match(line)
            if match:
                item = build(match, line)
                if item is not None:
                    logger.debug(f"Layout '{name}' matched: '{line}'")
                    return item, LAYOUT_CERTAINTY

        item = self._from_columns(line)
        if item is not None:
            return item, LAYOUT_CERTAINTY

        if self.looks_like_line_item(line):
            item = self._from_loose(line)
            if item is not None:
                return item, LOOSE_CERTAINTY

        return None, 0.0

    # =============================================================== layouts

    def _item(self, description: str, quantity, unit_cost, line_total, line: str,
              tax_applicable: Optional[bool] = None, tax_rate=None,
              provenance: Provenance = Provenance.OCR,
              quantity_text: Optional[str] = None) -> Optional[RawLineItem]:
        description = ' '.join(description.strip(' |-').split())
        if len(description) < 2 or not re.search(r'[A-Za-z]', description):
            return None
        return RawLineItem(
            description=description,
            quantity=quantity,
            quantity_text=quantity_text,
            unit_cost=unit_cost,
            line_total=line_total,
            category=self.categories.guess(description),
            tax_applicable=tax_applicable,
            tax_rate=tax_rate,
            provenance=provenance,
            raw_text=line,
        )

    def _from_trumps(self, match, line):
        _, desc, ordered, _, unit_price, _, gst_amount, total = match.groups()
        gst = Decimal(gst_amount)
        tax_rate = None
        if gst > 0:
            subtotal = Decimal(unit_price) * Decimal(ordered)
            tax_rate = (gst / subtotal).quantize(Decimal("0.01")) if subtotal > 0 else None
        return self._item(desc, ordered, unit_price, total, line,
                          tax_applicable=gst > 0, tax_rate=tax_rate)

    def _from_united_organics(self, match, line):
        _, desc, ordered, _, unit_price, total = match.groups()
        # Fresh produce supplier, GST is never shown
        return self._item(desc, ordered, unit_price, total, line, tax_applicable=False)

    def _from_little_valley(self, match, line):
        qty, item_no, desc, unit_price, extended, indicator = match.groups()
        quantity_text, rest = self._split_quantity(qty, f"{item_no} {desc}")
        if quantity_text is None:
            rest = desc
        return self._item(rest, qty, unit_price, extended, line,
                          tax_applicable=indicator.upper() == "GST", quantity_text=quantity_text)

    def _from_name_first(self, match, line):
        desc, qty, unit_price, total = match.groups()
        return self._item(desc, qty, unit_price, total, line)

    def _from_quantity_first(self, match, line):
        qty, desc, unit_price, total = match.groups()
        quantity_text, desc = self._split_quantity(qty, desc)
        return self._item(desc, qty, unit_price, total, line, quantity_text=quantity_text)

    def _split_quantity(self, qty: str, rest: str) -> Tuple[Optional[str], str]:
        """
        Rejoin a quantity with the words that continue it ("x 5kg",
        "boxes of 10", "pack") so the pack size is not lost.

        Returns:
            (quantity expression or None, description without it)
        """
        parse = self.pack_parser.parse(f"{qty} {rest}")
        if not parse.matched or not parse.remainder:
            return None, rest
        return parse.expression, parse.remainder

    def _from_columns(self, line: str) -> Optional[RawLineItem]:
        columns = [c.strip() for c in re.split(r'\t|\s{3,}', line) if c.strip()]
        if len(columns) < 3:
            return None

        money = [c for c in columns if re.fullmatch(r'\$?\d[\d,]*\.\d{2}', c)]
        if not money or not re.fullmatch(r'\$?\d[\d,]*\.\d{2}', columns[-1]):
            return None

        descriptions = [c for c in columns if re.search(r'[A-Za-z]{3,}', c)]
        quantities = [c for c in columns if re.fullmatch(r'\d+(?:\.\d+)?', c)]
        if not descriptions:
            return None

        quantity = quantities[0] if quantities else None
        unit_cost = money[-2] if len(money) >= 2 else None
        return self._item(max(descriptions, key=len), quantity, unit_cost, money[-1], line)

    def _from_loose(self, line: str) -> Optional[RawLineItem]:
        prices = MONEY.findall(line)
        if not prices:
            return None

        name_match = re.match(r'^([^0-9$]+)', line)
        description = name_match.group(1) if name_match else re.split(r'[\d$]', line)[0]
        if len(description.strip()) < 2:
            return None

        qty_match = re.search(r'\b(\d+(?:\.\d+)?)\b', line)
        quantity = qty_match.group(1) if qty_match and qty_match.group(1) not in prices else 1

        return self._item(description, quantity, prices[-1], None, line,
                          provenance=Provenance.OCR_FALLBACK_TEXT)
