"""Tests for field normalizers and the extraction normalizer."""

from decimal import Decimal

import pytest

from invoice_reconciler.entities import Provenance
from invoice_reconciler.learning import VendorProfileService
from invoice_reconciler.postprocessor import (
    CategoryNormalizer,
    DateNormalizer,
    ExtractionNormalizer,
    ItemNameCleaner,
    PackSizeParser,
)
from invoice_reconciler.recognition import RawLineItem


# =============================================================================
# PACK SIZE
# =============================================================================

@pytest.mark.parametrize("text, quantity, pack, measure, remainder", [
    ("2 x 5kg", "2", "5", True, ""),
    ("2 x 5kg Oat Flakes", "2", "5", True, "Oat Flakes"),
    ("6 pack", "6", "1", False, ""),
    ("3 boxes of 10", "3", "10", False, ""),
    ("4 x 6 Kombucha", "4", "6", False, "Kombucha"),
])
def test_leading_quantity_expressions(text, quantity, pack, measure, remainder):
    parse = PackSizeParser().parse(text)

    assert parse.matched
    assert parse.quantity == Decimal(quantity)
    assert parse.pack_size == Decimal(pack)
    assert parse.pack_is_measure is measure
    assert parse.remainder == remainder


def test_plain_text_has_no_quantity_expression():
    parse = PackSizeParser().parse("Byron Chai Tea 500g")
    assert not parse.matched
    assert parse.quantity is None
    assert parse.pack_size == 1


@pytest.mark.parametrize("description, expected", [
    ("Almond Milk 24pk", 24),
    ("Sparkling Water pack of 6", 6),
    ("Kombucha 330ml x12", 12),
    ("Free Range Eggs Dozen", 12),
    ("Coconut Water 1L", None),
    ("Bulk Rice 1 pack", None),
    ("Paper Bags 500pk", None),
])
def test_detect_pack_size_in_description(description, expected):
    assert PackSizeParser().detect_pack_size(description) == expected


# =============================================================================
# NAMES AND CATEGORIES
# =============================================================================

@pytest.mark.parametrize("raw, expected", [
    ("BOK-CCGF-001 Cheesecake", "Cheesecake"),
    ("LV1001 Oat Flakes", "Oat Flakes"),
    ("12345 Almond Milk", "Almond Milk"),
    ("500g Byron Chai", "500g Byron Chai"),
    ("ABC-123", "ABC-123"),
    ("  Spelt   Flour ", "Spelt Flour"),
])
def test_item_name_cleaner(raw, expected):
    assert ItemNameCleaner().clean(raw) == expected


def test_category_normalizer_maps_to_closed_set():
    categories = CategoryNormalizer()

    assert categories.normalize("fruit and veg") == "Fruit & Veg"
    assert categories.normalize("FRIDGE & FREEZER") == "Fridge & Freezer"
    assert categories.normalize("Hardware") == "Groceries"
    assert categories.normalize(None) == "Groceries"
    assert categories.match("Hardware") is None
    assert categories.is_known("naturo")


def test_category_guess_from_keywords():
    categories = CategoryNormalizer()
    assert categories.guess("Organic Bananas") == "Fruit & Veg"
    assert categories.guess("Vitamin C 1000mg") == "Supplements"
    assert categories.guess("Spelt Flour") == "Groceries"


# =============================================================================
# DATES
# =============================================================================

@pytest.mark.parametrize("raw, expected", [
    ("17/12/2024", "2024-12-17"),
    ("03/04/2025", "2025-04-03"),
    ("2024-12-17", "2024-12-17"),
    ("17th December 2024", "2024-12-17"),
    ("TBC", None),
    (None, None),
])
def test_date_normalizer(raw, expected):
    assert DateNormalizer().normalize(raw) == expected


def test_extract_date_from_text():
    text = "Tax Invoice 104233\nDate: 5/1/2025\nDue: 5/2/2025"
    assert DateNormalizer().extract_date(text) == "2025-01-05"


# =============================================================================
# EXTRACTION NORMALIZER
# =============================================================================

def test_measure_pack_does_not_divide_cost():
    item = ExtractionNormalizer().normalize([
        RawLineItem("Oat Flakes", quantity_text="2 x 5kg", unit_cost="18.50"),
    ])[0]

    assert item.quantity == Decimal("2")
    assert item.pack_size == Decimal("5")
    assert item.pack_is_measure
    assert item.effective_unit_cost_ex_gst == Decimal("18.5000")


def test_count_pack_divides_cost():
    item = ExtractionNormalizer().normalize([
        RawLineItem("Coconut Water", quantity_text="3 boxes of 10", unit_cost="24.00"),
    ])[0]

    assert item.quantity == Decimal("3")
    assert item.pack_size == Decimal("10")
    assert item.effective_unit_cost_ex_gst == Decimal("2.4000")


def test_quantity_expression_inside_description():
    item = ExtractionNormalizer().normalize([
        RawLineItem("6 pack Kombucha Ginger", unit_cost="4.20"),
    ])[0]

    assert item.quantity == Decimal("6")
    assert item.pack_size == Decimal("1")
    assert item.name == "Kombucha Ginger"
    assert item.raw_description == "6 pack Kombucha Ginger"


def test_description_pack_detected_when_no_quantity_expression():
    item = ExtractionNormalizer().normalize([
        RawLineItem("Almond Milk 24pk", quantity=1, unit_cost="48.00"),
    ])[0]

    assert item.pack_size == Decimal("24")
    assert not item.pack_is_measure
    assert item.effective_unit_cost_ex_gst == Decimal("2.0000")


def test_unit_cost_derived_from_line_total():
    item = ExtractionNormalizer().normalize([
        RawLineItem("Spelt Flour", quantity="4", line_total="$72.60"),
    ])[0]

    assert item.unit_cost_ex_gst == Decimal("18.1500")
    assert "unit cost derived from line total" in item.notes


def test_missing_cost_and_quantity_defaults():
    item = ExtractionNormalizer().normalize([RawLineItem("Mystery Item")], default_confidence=0.4)[0]

    assert item.quantity == Decimal("1")
    assert item.unit_cost_ex_gst == Decimal("0")
    assert "unit cost missing" in item.notes
    assert item.confidence == 0.4


def test_item_fields_carried_through():
    item = ExtractionNormalizer().normalize([
        RawLineItem("BOK-CCGF-001 Cheesecake", quantity=1, unit_cost=12, category="fridge and freezer",
                    tax_applicable=False, confidence=1.7, barcode="9 300000 000011",
                    provenance=Provenance.OCR),
    ])[0]

    assert item.name == "Cheesecake"
    assert item.category == "Fridge & Freezer"
    assert item.tax_applicable is False
    assert item.confidence == 1.0
    assert item.barcode == "9300000000011"
    assert item.provenance == Provenance.OCR


def test_invalid_barcode_dropped():
    item = ExtractionNormalizer().normalize([RawLineItem("Spelt Flour", unit_cost=3, barcode="N/A")])[0]
    assert item.barcode is None


def test_learned_hints_override_when_trusted(repository):
    vendor = repository.add_vendor("Little Valley Distribution")
    learning = VendorProfileService(repository)
    learning.record_correction(vendor.id, "quantity", "Coconut Water 1L", 6)
    learning.record_correction(vendor.id, "category", "Coconut Water 1L", "Drinks Fridge")

    normalizer = ExtractionNormalizer(learning=learning)
    item = normalizer.normalize([
        RawLineItem("Coconut Water 1L", quantity=2, unit_cost="24.00", category="Groceries"),
    ], vendor_id=vendor.id)[0]

    assert item.pack_size == Decimal("6")
    assert item.effective_unit_cost_ex_gst == Decimal("4.0000")
    assert item.category == "Drinks Fridge"


def test_learned_hints_ignored_at_or_below_threshold(repository):
    vendor = repository.add_vendor("Little Valley Distribution")
    learning = VendorProfileService(repository)
    learning.record_correction(vendor.id, "quantity", "Coconut Water 1L", 6, confidence=0.7)

    item = ExtractionNormalizer(learning=learning).normalize([
        RawLineItem("Coconut Water 1L", quantity=2, unit_cost="24.00"),
    ], vendor_id=vendor.id)[0]

    assert item.pack_size == Decimal("1")


def test_description_pack_detection_can_be_disabled_per_vendor(repository):
    vendor = repository.add_vendor("United Organics")
    learning = VendorProfileService(repository)
    learning.update_parsing_rules(vendor.id, pack_size_in_description=False)

    item = ExtractionNormalizer(learning=learning).normalize([
        RawLineItem("Almond Milk 24pk", quantity=1, unit_cost="48.00"),
    ], vendor_id=vendor.id)[0]

    assert item.pack_size == Decimal("1")
