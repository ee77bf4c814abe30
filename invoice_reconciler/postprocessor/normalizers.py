"""
Field Normalizers Module.

Rule-based normalizers shared by the extraction normalizer and the OCR
text parser:
    - Quantity vs. pack size disambiguation
    - Item-code stripping from product names
    - Closed-set category assignment
    - Invoice date normalization (day-first, as printed on AU invoices)

Author: ML Engineering Team
"""

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from dateutil import parser as date_parser

from config import get_config
from invoice_reconciler.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CATEGORIES = [
    "House", "Bulk", "Fruit & Veg", "Fridge & Freezer", "Naturo",
    "Groceries", "Drinks Fridge", "Supplements", "Personal Care", "Fresh Bread",
]


# =============================================================================
# QUANTITY / PACK SIZE
# =============================================================================

@dataclass
class QuantityParse:
    """
    Outcome of reading a quantity expression.

    Attributes:
        quantity: Invoiced units, None when the text did not say
        pack_size: Units (or measure) inside one invoiced unit
        pack_is_measure: True for weights/volumes such as "5kg"
        remainder: Input text with the matched expression removed
        rule: Name of the rule that matched, None if nothing matched
        expression: The matched quantity expression, e.g. "3 boxes of 10"
    """
    quantity: Optional[Decimal]
    pack_size: Decimal
    pack_is_measure: bool
    remainder: str
    rule: Optional[str] = None
    expression: str = ""

    @property
    def matched(self) -> bool:
        return self.rule is not None


class PackSizeParser:
    """
    Separates "how many were invoiced" from "how many are in each one".

    Leading quantity expressions:
        "2 x 5kg"       -> quantity 2, pack 5 (measure, cost not divided)
        "6 pack"        -> quantity 6, pack 1
        "3 boxes of 10" -> quantity 3, pack 10

    Count packs mentioned inside a description ("24pk", "pack of 6",
    "600ml x24", "dozen") are picked up by ``detect_pack_size``.

    Example:
        >>> parser = PackSizeParser()
        >>> parser.parse("2 x 5kg Rolled Oats").quantity
        Decimal('2')
    """

    MEASURE_UNITS = r'kg|gm|g|ltr|lt|ml|l'

    LEADING_EXPRESSIONS = [
        ("multiplied", re.compile(
            r'^\s*(?P<qty>\d+(?:\.\d+)?)\s*(?:x|×|\*)\s*(?P<pack>\d+(?:\.\d+)?)\s*'
            r'(?P<unit>' + MEASURE_UNITS + r')?\b',
            re.IGNORECASE)),
        ("containers_of", re.compile(
            r'^\s*(?P<qty>\d+)\s*(?:boxes|box|cartons|carton|ctns|ctn|cases|case|bags|bag|trays|tray|packs)'
            r'\s+of\s+(?P<pack>\d+)\b',
            re.IGNORECASE)),
        ("pack", re.compile(
            r'^\s*(?P<qty>\d+)\s*-?\s*(?:pack|pk)\b',
            re.IGNORECASE)),
    ]

    DESCRIPTION_PACKS = [
        re.compile(r'\b(\d+)\s*-?\s*(?:pk|pack)\b', re.IGNORECASE),
        re.compile(r'\bpack\s+of\s+(\d+)\b', re.IGNORECASE),
        re.compile(r'\bx\s?(\d+)\b(?!\s*(?:' + MEASURE_UNITS + r')\b)', re.IGNORECASE),
    ]

    DOZEN = re.compile(r'\bdozen\b|\bdoz\b', re.IGNORECASE)

    def __init__(self, min_pack: Optional[int] = None, max_pack: Optional[int] = None) -> None:
        self.min_pack = min_pack or get_config("normalization.pack_size.min", 2)
        self.max_pack = max_pack or get_config("normalization.pack_size.max", 100)

    def parse(self, text: str) -> QuantityParse:
        """Read a leading quantity expression from ``text``."""
        text = text or ""
        for rule, pattern in self.LEADING_EXPRESSIONS:
            match = pattern.match(text)
            if not match:
                continue

            quantity = Decimal(match.group('qty'))
            groups = match.groupdict()
            pack = Decimal(groups['pack']) if groups.get('pack') else Decimal(1)
            is_measure = bool(groups.get('unit'))
            remainder = text[match.end():].strip(" -,:")

            logger.debug(f"Quantity rule '{rule}' matched '{text}' -> q={quantity} pack={pack}")
            return QuantityParse(quantity, pack, is_measure, remainder, rule,
                                 expression=match.group(0).strip())

        return QuantityParse(None, Decimal(1), False, text.strip())

    def detect_pack_size(self, description: str) -> Optional[int]:
        """
        Find a count pack size inside a product description.

        Returns:
            Pack size within the configured range, or None.
        """
        if not description:
            return None

        for pattern in self.DESCRIPTION_PACKS:
            match = pattern.search(description)
            if match:
                size = int(match.group(1))
                if self.min_pack <= size <= self.max_pack:
                    return size

        if self.DOZEN.search(description):
            return 12

        return None


# =============================================================================
# ITEM NAMES
# =============================================================================

class ItemNameCleaner:
    """
    Removes supplier item codes that precede the product name.

    Example:
        >>> ItemNameCleaner().clean("BOK-CCGF-001 Cheesecake")
        'Cheesecake'
    """

    HYPHENATED_CODE = re.compile(r'^[A-Z0-9]{2,}(?:[-_/][A-Z0-9]+)+:?$')
    MIXED_CODE = re.compile(r'^[A-Za-z]{0,6}\d[A-Za-z0-9]*:?$')
    MEASURE = re.compile(r'^\d+(?:\.\d+)?(?:kg|gm|g|ltr|lt|ml|l|cm|mm)$', re.IGNORECASE)

    def __init__(self, min_length: Optional[int] = None) -> None:
        self.min_length = min_length or get_config("normalization.min_name_length", 3)

    def is_code(self, token: str) -> bool:
        if self.MEASURE.match(token):
            return False
        return bool(self.HYPHENATED_CODE.match(token) or self.MIXED_CODE.match(token))

    def clean(self, raw_name: str) -> str:
        name = ' '.join((raw_name or '').split())
        tokens = name.split(' ')

        while len(tokens) > 1 and self.is_code(tokens[0]):
            tokens.pop(0)

        cleaned = ' '.join(tokens).strip()

        # Stripping everything descriptive is worse than keeping the code
        return cleaned if len(cleaned) >= self.min_length else name


# =============================================================================
# CATEGORIES
# =============================================================================

class CategoryNormalizer:
    """
    Maps free-text categories onto the closed business category set.

    Example:
        >>> categories = CategoryNormalizer()
        >>> categories.normalize("fruit and veg")
        'Fruit & Veg'
        >>> categories.normalize("Hardware")
        'Groceries'
    """

    def __init__(
        self,
        categories: Optional[List[str]] = None,
        default: Optional[str] = None,
        keywords: Optional[Dict[str, List[str]]] = None
    ) -> None:
        self.categories = categories or get_config("normalization.categories", DEFAULT_CATEGORIES)
        self.default = default or get_config("normalization.default_category", "Groceries")
        self.keywords = keywords if keywords is not None else get_config("normalization.category_keywords", {})
        self._lookup = {self._key(c): c for c in self.categories}

    @staticmethod
    def _key(value: str) -> str:
        value = value.lower().replace(' and ', ' & ')
        return re.sub(r'[^a-z&]', '', value)

    def match(self, category: Optional[str]) -> Optional[str]:
        """Canonical category for ``category``, or None if it is not in the set."""
        if not category:
            return None
        return self._lookup.get(self._key(str(category)))

    def normalize(self, category: Optional[str]) -> str:
        return self.match(category) or self.default

    def guess(self, description: str) -> str:
        """Keyword-based category for descriptions with no recognizer guess."""
        text = (description or '').lower()
        for category, words in self.keywords.items():
            if any(word in text for word in words):
                return self.normalize(category)
        return self.default

    def is_known(self, category: Optional[str]) -> bool:
        return self.match(category) is not None


# =============================================================================
# DATES
# =============================================================================

class DateNormalizer:
    """
    Normalizes invoice dates to ISO format (YYYY-MM-DD).

    Numeric dates are read day-first, so "03/04/2025" is 3 April 2025.

    Example:
        >>> DateNormalizer().normalize("17/12/2024")
        '2024-12-17'
    """

    DATE_PATTERNS = [
        r'\b(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})\b',
        r'\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})\b',
        r'\b(\d{1,2})(?:st|nd|rd|th)?\s+((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*)\.?,?\s+(\d{2,4})\b',
        r'\b((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*)\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{2,4})\b',
    ]

    INPUT_FORMATS = ["%Y-%m-%d", "%d/%m/%Y", "%d/%m/%y", "%d-%m-%Y", "%d.%m.%Y", "%d %B %Y", "%d %b %Y"]

    def __init__(self, output_format: str = "%Y-%m-%d") -> None:
        self.output_format = output_format

    def normalize(self, date_str: Optional[str]) -> Optional[str]:
        if not date_str:
            return None

        date_str = ' '.join(str(date_str).split())
        date_str = re.sub(r'(\d+)(st|nd|rd|th)\b', r'\1', date_str, flags=re.IGNORECASE)

        parsed = None
        for fmt in self.INPUT_FORMATS:
            try:
                parsed = datetime.strptime(date_str, fmt)
                break
            except ValueError:
                continue

        if parsed is None:
            try:
                parsed = date_parser.parse(date_str, dayfirst=True, fuzzy=True)
            except (ValueError, OverflowError):
                logger.debug(f"Could not parse date: {date_str}")
                return None

        return parsed.strftime(self.output_format)

    def extract_date(self, text: str) -> Optional[str]:
        """Find and normalize the first date-looking fragment in ``text``."""
        for pattern in self.DATE_PATTERNS:
            match = re.search(pattern, text or '', re.IGNORECASE)
            if match:
                normalized = self.normalize(match.group(0))
                if normalized:
                    return normalized
        return None
