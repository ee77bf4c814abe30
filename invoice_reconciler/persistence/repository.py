"""
Repository interface.

The pipeline talks to storage only through ``Repository``. Every method
takes and returns the dataclasses in ``invoice_reconciler.entities``.

Versioned entities (catalog items, vendor profiles) are updated with
compare-and-swap semantics: the entity passed in carries the version it was
read at, and the update fails with ``ConcurrencyConflictError`` when the
stored row has moved on.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from invoice_reconciler.entities import (
    CatalogItem,
    Invoice,
    InvoiceLineItem,
    PriceHistoryEntry,
    Vendor,
    VendorProfile,
)


class Repository(ABC):

    # ----------------------------------------------------------------- vendors

    @abstractmethod
    def add_vendor(self, name: str) -> Vendor:
        ...

    @abstractmethod
    def get_vendor(self, vendor_id: int) -> Optional[Vendor]:
        ...

    @abstractmethod
    def find_vendor_by_name(self, name: str) -> Optional[Vendor]:
        """Case-insensitive lookup."""

    # ---------------------------------------------------------------- invoices

    @abstractmethod
    def add_invoice(self, invoice: Invoice) -> Invoice:
        ...

    @abstractmethod
    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        ...

    @abstractmethod
    def update_invoice(self, invoice: Invoice) -> Invoice:
        ...

    @abstractmethod
    def delete_invoice(self, invoice_id: int) -> None:
        """
        Delete an invoice and its line items.

        Raises:
            InvoiceInUseError: If price history references the invoice.
        """

    # -------------------------------------------------------------- line items

    @abstractmethod
    def replace_line_items(self, invoice_id: int,
                           items: List[InvoiceLineItem]) -> List[InvoiceLineItem]:
        """Drop the invoice's current line items and store ``items`` in order."""

    @abstractmethod
    def list_line_items(self, invoice_id: int) -> List[InvoiceLineItem]:
        ...

    @abstractmethod
    def update_line_item(self, item: InvoiceLineItem) -> InvoiceLineItem:
        ...

    # ----------------------------------------------------------------- catalog

    @abstractmethod
    def add_catalog_item(self, item: CatalogItem) -> CatalogItem:
        """
        Raises:
            CatalogConflictError: If the SKU or barcode is already taken.
        """

    @abstractmethod
    def get_catalog_item(self, item_id: int) -> Optional[CatalogItem]:
        ...

    @abstractmethod
    def find_catalog_items(self, vendor_id: int) -> List[CatalogItem]:
        ...

    @abstractmethod
    def find_catalog_item_by_name(self, vendor_id: int, name: str) -> Optional[CatalogItem]:
        """Case-insensitive exact name match within one vendor."""

    @abstractmethod
    def update_catalog_item(self, item: CatalogItem,
                            history: Optional[PriceHistoryEntry] = None) -> CatalogItem:
        """
        Compare-and-swap update of a catalog item.

        When ``history`` is given it is written in the same transaction, so
        either both the snapshot and the new pricing are stored or neither is.

        Raises:
            ConcurrencyConflictError: If ``item.version`` is stale.
            CatalogConflictError: If the SKU or barcode is already taken.
        """

    @abstractmethod
    def list_price_history(self, catalog_item_id: Optional[int] = None,
                           invoice_id: Optional[int] = None) -> List[PriceHistoryEntry]:
        """Oldest first."""

    # ---------------------------------------------------------- vendor profile

    @abstractmethod
    def get_vendor_profile(self, vendor_id: int) -> Optional[VendorProfile]:
        ...

    @abstractmethod
    def save_vendor_profile(self, profile: VendorProfile) -> VendorProfile:
        """
        Insert (``profile.id is None``) or compare-and-swap update.

        Raises:
            ConcurrencyConflictError: If another writer got there first.
        """

    def close(self) -> None:
        """Release storage resources."""
