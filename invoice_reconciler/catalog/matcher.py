"""
Catalog Matcher Module.

Resolves a normalized line item to an existing catalog item of the same
vendor, or reports it as new. Matching order:

    1. exact case-insensitive name
    2. a learned name correction sharing enough significant words, whose
       name equals or contains (or is contained in) a catalog item name
    3. unmatched

Items of other vendors are never considered, even when names are equal.

Author: ML Engineering Team
"""

from dataclasses import dataclass
from typing import List, Optional

from config import get_config
from invoice_reconciler.entities import CatalogItem
from invoice_reconciler.learning.vendor_profile import VendorProfileService
from invoice_reconciler.persistence.repository import Repository
from invoice_reconciler.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CatalogMatch:
    """Either a matched catalog item (with how it matched) or unmatched."""
    item: Optional[CatalogItem] = None
    method: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.item is not None

    @classmethod
    def unmatched(cls) -> 'CatalogMatch':
        return cls()


class CatalogMatcher:
    """
    Vendor-scoped catalog lookup.

    Example:
        >>> matcher = CatalogMatcher(repository, learning)
        >>> match = matcher.match(vendor_id=3, name="Byron Chai Tea 500g")
        >>> match.matched, match.method
        (True, 'exact')
    """

    EXACT = "exact"
    LEARNED_VARIANT = "learned_variant"

    def __init__(
        self,
        repository: Repository,
        learning: Optional[VendorProfileService] = None,
        min_name_length: Optional[int] = None
    ) -> None:
        self.repository = repository
        self.learning = learning
        self.min_name_length = min_name_length or get_config("normalization.min_name_length", 3)

    def match(self, vendor_id: int, name: str) -> CatalogMatch:
        name = ' '.join((name or '').split())
        if not name:
            return CatalogMatch.unmatched()

        item = self.repository.find_catalog_item_by_name(vendor_id, name)
        if item is not None:
            return CatalogMatch(item=item, method=self.EXACT)

        if self.learning is None:
            return CatalogMatch.unmatched()

        variants = self.learning.find_name_variants(vendor_id, name)
        if not variants:
            return CatalogMatch.unmatched()

        catalog = self.repository.find_catalog_items(vendor_id)
        for variant in variants:
            for candidate in (variant.corrected, variant.original):
                item = self._find_in_catalog(catalog, candidate)
                if item is not None:
                    logger.debug(
                        f"'{name}' matched catalog item {item.id} '{item.name}' "
                        f"through learned name '{candidate}'"
                    )
                    return CatalogMatch(item=item, method=self.LEARNED_VARIANT)

        return CatalogMatch.unmatched()

    def _find_in_catalog(self, catalog: List[CatalogItem], candidate: str) -> Optional[CatalogItem]:
        wanted = ' '.join(candidate.split()).lower()
        if len(wanted) < self.min_name_length:
            return None

        for item in catalog:
            if item.name.lower() == wanted:
                return item

        for item in catalog:
            existing = item.name.lower()
            if len(existing) >= self.min_name_length and (wanted in existing or existing in wanted):
                return item

        return None
