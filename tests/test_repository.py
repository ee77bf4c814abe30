"""Tests for the SQLAlchemy repository."""

from dataclasses import replace
from decimal import Decimal

import pytest

from invoice_reconciler.entities import (
    CatalogItem,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    PriceHistoryEntry,
    Provenance,
    VendorProfile,
)
from invoice_reconciler.persistence import SQLAlchemyRepository
from invoice_reconciler.utils.exceptions import (
    CatalogConflictError,
    ConcurrencyConflictError,
    InvoiceInUseError,
    InvoiceNotFoundError,
)


@pytest.fixture
def vendor(repository):
    return repository.add_vendor("Little Valley Distribution")


@pytest.fixture
def item(repository, vendor):
    return repository.add_catalog_item(CatalogItem(
        vendor_id=vendor.id,
        name="Oat Flakes",
        category="Bulk",
        cost_ex_gst=Decimal("18.50"),
        markup=Decimal("1.75"),
        sell_ex_gst=Decimal("32.38"),
        sell_inc_gst=Decimal("35.62"),
        sku="LV1001",
    ))


def test_vendor_lookup_is_case_insensitive(repository, vendor):
    assert repository.find_vendor_by_name("little valley DISTRIBUTION").id == vendor.id
    assert repository.find_vendor_by_name("Unknown") is None


def test_invoice_round_trip(repository, vendor):
    invoice = repository.add_invoice(Invoice(vendor_id=vendor.id, document=b"%PDF-1.4", filename="a.pdf"))

    invoice.status = InvoiceStatus.EXTRACTED
    invoice.provenance = Provenance.OCR
    invoice.subtotal_ex_gst = Decimal("37.00")
    repository.update_invoice(invoice)

    stored = repository.get_invoice(invoice.id)
    assert stored.status == InvoiceStatus.EXTRACTED
    assert stored.provenance == Provenance.OCR
    assert stored.subtotal_ex_gst == Decimal("37.00")
    assert stored.document == b"%PDF-1.4"


def test_replace_line_items_renumbers(repository, vendor):
    invoice = repository.add_invoice(Invoice(vendor_id=vendor.id, document=b"x"))

    def line(name):
        return InvoiceLineItem(
            invoice_id=invoice.id, name=name, raw_description=name, quantity=Decimal(1),
            pack_size=Decimal(1), unit_cost_ex_gst=Decimal("2.00"),
            effective_unit_cost_ex_gst=Decimal("2.00"), category="Groceries",
            tax_applicable=True, confidence=0.9, provenance=Provenance.VISION, position=7,
        )

    repository.replace_line_items(invoice.id, [line("First"), line("Second")])
    repository.replace_line_items(invoice.id, [line("Only")])

    stored = repository.list_line_items(invoice.id)
    assert [(l.name, l.position) for l in stored] == [("Only", 0)]


def test_catalog_update_bumps_version(repository, item):
    updated = repository.update_catalog_item(replace(item, markup=Decimal("1.80")))
    assert updated.version == item.version + 1
    assert updated.markup == Decimal("1.80")


def test_stale_catalog_update_rejected(repository, item):
    first = repository.get_catalog_item(item.id)
    second = repository.get_catalog_item(item.id)

    repository.update_catalog_item(replace(first, cost_ex_gst=Decimal("19.00")))

    with pytest.raises(ConcurrencyConflictError):
        repository.update_catalog_item(replace(second, cost_ex_gst=Decimal("20.00")))
    assert repository.get_catalog_item(item.id).cost_ex_gst == Decimal("19.00")


def test_duplicate_sku_rejected(repository, vendor, item):
    duplicate = replace(item, id=None, name="Oat Flakes Fine", version=0)

    with pytest.raises(CatalogConflictError) as exc_info:
        repository.add_catalog_item(duplicate)
    assert exc_info.value.details["fields"] == ["sku"]



def test_item_names_unique_per_vendor(repository, vendor, item):
    duplicate = replace(item, id=None, name="  oat   FLAKES ", sku=None, version=0)

    with pytest.raises(CatalogConflictError) as exc_info:
        repository.add_catalog_item(duplicate)
    assert exc_info.value.details["fields"] == ["name"]

    other = repository.add_vendor("Trumps Pty Ltd")
    assert repository.add_catalog_item(replace(duplicate, vendor_id=other.id)).id != item.id
    assert repository.find_catalog_item_by_name(vendor.id, "OAT  flakes").id == item.id


def test_duplicate_name_rejected_by_the_database(repository, vendor, item, monkeypatch):
    monkeypatch.setattr(SQLAlchemyRepository, "_check_unique_fields",
                        staticmethod(lambda session, item: None))

    with pytest.raises(CatalogConflictError) as exc_info:
        repository.add_catalog_item(replace(item, id=None, sku=None, version=0))
    assert "name" in exc_info.value.details["fields"]
    assert len(repository.find_catalog_items(vendor.id)) == 1


def test_history_written_with_item_update(repository, vendor, item):
    invoice = repository.add_invoice(Invoice(vendor_id=vendor.id, document=b"x"))
    history = PriceHistoryEntry(
        catalog_item_id=item.id,
        cost_ex_gst=item.cost_ex_gst,
        markup=item.markup,
        sell_ex_gst=item.sell_ex_gst,
        sell_inc_gst=item.sell_inc_gst,
        source_invoice_id=invoice.id,
    )
    repository.update_catalog_item(replace(item, cost_ex_gst=Decimal("19.00")), history=history)

    entries = repository.list_price_history(catalog_item_id=item.id)
    assert len(entries) == 1
    assert entries[0].cost_ex_gst == Decimal("18.50")
    assert entries[0].sell_inc_gst == Decimal("35.62")
    assert repository.list_price_history(invoice_id=invoice.id) == entries


def test_failed_update_writes_no_history(repository, item):
    stale = replace(item, version=item.version - 1)
    history = PriceHistoryEntry(item.id, item.cost_ex_gst, item.markup, item.sell_ex_gst, item.sell_inc_gst)

    with pytest.raises(ConcurrencyConflictError):
        repository.update_catalog_item(replace(stale, cost_ex_gst=Decimal("19.00")), history=history)
    assert repository.list_price_history(catalog_item_id=item.id) == []


def test_invoice_referenced_by_history_cannot_be_deleted(repository, vendor, item):
    invoice = repository.add_invoice(Invoice(vendor_id=vendor.id, document=b"x"))
    history = PriceHistoryEntry(item.id, item.cost_ex_gst, item.markup, item.sell_ex_gst,
                                item.sell_inc_gst, source_invoice_id=invoice.id)
    repository.update_catalog_item(replace(item, cost_ex_gst=Decimal("19.00")), history=history)

    with pytest.raises(InvoiceInUseError):
        repository.delete_invoice(invoice.id)
    assert repository.get_invoice(invoice.id) is not None


def test_unreferenced_invoice_deleted(repository, vendor):
    invoice = repository.add_invoice(Invoice(vendor_id=vendor.id, document=b"x"))
    repository.delete_invoice(invoice.id)

    assert repository.get_invoice(invoice.id) is None
    with pytest.raises(InvoiceNotFoundError):
        repository.delete_invoice(invoice.id)


def test_vendor_profile_compare_and_swap(repository, vendor):
    created = repository.save_vendor_profile(VendorProfile(vendor_id=vendor.id))
    first = repository.get_vendor_profile(vendor.id)
    second = repository.get_vendor_profile(vendor.id)

    first.correction_history.append({"field": "category"})
    repository.save_vendor_profile(first)

    with pytest.raises(ConcurrencyConflictError):
        repository.save_vendor_profile(second)
    assert repository.get_vendor_profile(vendor.id).version == created.version + 1


def test_second_profile_for_vendor_is_a_conflict(repository, vendor):
    repository.save_vendor_profile(VendorProfile(vendor_id=vendor.id))
    with pytest.raises(ConcurrencyConflictError):
        repository.save_vendor_profile(VendorProfile(vendor_id=vendor.id))
