"""
Catalog Updater Module.

Writes pricing changes to catalog items. A cost change stores a price
history entry holding the superseded values in the same transaction as the
item update. Updates compare-and-swap on the item version and are retried
against a fresh read when another writer got there first.

Author: ML Engineering Team
"""

from dataclasses import replace
from decimal import Decimal
from typing import Any, Optional, Tuple

from config import get_config
from invoice_reconciler.entities import CatalogItem, InvoiceLineItem, PriceHistoryEntry
from invoice_reconciler.persistence.repository import Repository
from invoice_reconciler.utils.exceptions import (
    CatalogConflictError,
    CatalogItemNotFoundError,
    ConcurrencyConflictError,
)
from invoice_reconciler.utils.helpers import to_decimal
from invoice_reconciler.utils.logger import get_logger
from .pricing import PricingCalculator

logger = get_logger(__name__)


class CatalogUpdater:
    """
    Catalog writes for reconciliation and operator edits.

    Attributes:
        repository: Storage for catalog items and price history
        calculator: PricingCalculator deriving sell prices
        max_retries: Attempts per write when the version check fails
    """

    def __init__(
        self,
        repository: Repository,
        calculator: Optional[PricingCalculator] = None,
        max_retries: Optional[int] = None
    ) -> None:
        self.repository = repository
        self.calculator = calculator or PricingCalculator()
        self.max_retries = max_retries or get_config("database.max_write_retries", 3)

    def apply_cost(
        self,
        item: CatalogItem,
        cost_ex_gst: Decimal,
        markup: Decimal,
        tax_applicable: bool,
        tax_rate: Optional[Decimal] = None,
        source_invoice_id: Optional[int] = None
    ) -> Tuple[CatalogItem, bool]:
        """
        Bring a catalog item in line with an invoiced cost and markup.

        Returns:
            (item as stored, whether the cost changed)

        Raises:
            ConcurrencyConflictError: If every attempt lost the version race.
            CatalogItemNotFoundError: If the item was deleted meanwhile.
        """
        current = item
        for attempt in range(1, self.max_retries + 1):
            cost_changed = current.cost_ex_gst != cost_ex_gst
            if (not cost_changed and current.markup == markup
                    and current.tax_applicable == tax_applicable):
                return current, False

            pricing = self.calculator.calculate(cost_ex_gst, markup, tax_rate, tax_applicable)
            history = None
            if cost_changed:
                history = PriceHistoryEntry(
                    catalog_item_id=current.id,
                    cost_ex_gst=current.cost_ex_gst,
                    markup=current.markup,
                    sell_ex_gst=current.sell_ex_gst,
                    sell_inc_gst=current.sell_inc_gst,
                    source_invoice_id=source_invoice_id,
                )

            updated = replace(
                current,
                cost_ex_gst=pricing.cost_ex_gst,
                markup=pricing.markup,
                sell_ex_gst=pricing.sell_ex_gst,
                sell_inc_gst=pricing.sell_inc_gst,
                tax_applicable=tax_applicable,
            )
            try:
                stored = self.repository.update_catalog_item(updated, history=history)
            except ConcurrencyConflictError:
                logger.debug(f"Catalog item {current.id} changed concurrently (attempt {attempt}), re-reading")
                current = self._reload(current.id)
                continue

            if cost_changed:
                logger.info(
                    f"Catalog item {stored.id} '{stored.name}' cost "
                    f"{history.cost_ex_gst} -> {stored.cost_ex_gst}"
                )
            return stored, cost_changed

        raise ConcurrencyConflictError("catalog item", item.id)

    def create_item(
        self,
        vendor_id: int,
        line: InvoiceLineItem,
        markup: Decimal
    ) -> Tuple[CatalogItem, bool]:
        """
        Create a catalog item from an unmatched invoice line.

        When another writer created an item with the same name for this
        vendor first, that item is returned instead.

        Returns:
            (catalog item, whether it was created here)

        Raises:
            CatalogConflictError: If the line's barcode is already taken.
        """
        pricing = self.calculator.calculate(
            line.effective_unit_cost_ex_gst, markup, line.tax_rate, line.tax_applicable)
        item = CatalogItem(
            vendor_id=vendor_id,
            name=line.name,
            category=line.category,
            cost_ex_gst=pricing.cost_ex_gst,
            markup=pricing.markup,
            sell_ex_gst=pricing.sell_ex_gst,
            sell_inc_gst=pricing.sell_inc_gst,
            tax_applicable=line.tax_applicable,
            barcode=line.barcode,
        )
        try:
            created = self.repository.add_catalog_item(item)
        except CatalogConflictError as e:
            if "name" not in e.details.get("fields", []):
                raise
            existing = self.repository.find_catalog_item_by_name(vendor_id, line.name)
            if existing is None:
                raise
            logger.info(f"Catalog item '{line.name}' already exists for vendor {vendor_id}, using {existing.id}")
            return existing, False

        logger.info(f"Created catalog item {created.id} '{created.name}' for vendor {vendor_id}")
        return created, True

    def set_markup(self, item_id: int, markup: Any) -> CatalogItem:
        """
        Set an operator markup on an item and reprice it.

        Cost is unchanged, so no price history is written.
        """
        markup = to_decimal(markup)

        def change(current: CatalogItem) -> CatalogItem:
            pricing = self.calculator.calculate(current.cost_ex_gst, markup,
                                                tax_applicable=current.tax_applicable)
            return replace(current, manual_markup=markup, markup=pricing.markup,
                           sell_ex_gst=pricing.sell_ex_gst, sell_inc_gst=pricing.sell_inc_gst)

        return self._update_with_retry(item_id, change)

    def assign_codes(self, item_id: int, sku: Optional[str] = None,
                     barcode: Optional[str] = None) -> CatalogItem:
        """
        Set SKU and/or barcode on an item.

        Raises:
            CatalogConflictError: If another item already uses either code.
        """
        def change(current: CatalogItem) -> CatalogItem:
            return replace(
                current,
                sku=sku if sku is not None else current.sku,
                barcode=barcode if barcode is not None else current.barcode,
            )

        return self._update_with_retry(item_id, change)

    def _update_with_retry(self, item_id: int, change) -> CatalogItem:
        for attempt in range(1, self.max_retries + 1):
            current = self._reload(item_id)
            try:
                return self.repository.update_catalog_item(change(current))
            except ConcurrencyConflictError:
                logger.debug(f"Catalog item {item_id} changed concurrently (attempt {attempt})")
        raise ConcurrencyConflictError("catalog item", item_id)

    def _reload(self, item_id: int) -> CatalogItem:
        item = self.repository.get_catalog_item(item_id)
        if item is None:
            raise CatalogItemNotFoundError(item_id)
        return item
