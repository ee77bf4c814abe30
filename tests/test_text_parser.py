"""Tests for the rule-based OCR text parser."""

from decimal import Decimal

import pytest

from conftest import LITTLE_VALLEY_TEXT, ROSTER_TEXT

from invoice_reconciler.entities import Provenance
from invoice_reconciler.postprocessor import ExtractionNormalizer
from invoice_reconciler.recognition import InvoiceTextParser


def test_little_valley_layout_and_header():
    parsed = InvoiceTextParser().parse(LITTLE_VALLEY_TEXT)

    assert parsed.header.vendor_name == "Little Valley Distribution"
    assert parsed.header.vendor_confidence == 0.9
    assert parsed.header.invoice_number == "104233"
    assert parsed.header.invoice_date == "2024-12-17"

    assert [i.description for i in parsed.items] == [
        "Oat Flakes 5kg", "Byron Chai Tea 500g", "Almond Milk 24pk",
    ]
    oats, chai, milk = parsed.items
    assert (oats.quantity, oats.unit_cost, oats.line_total) == ("2", "18.50", "37.00")
    assert oats.tax_applicable is True
    assert chai.tax_applicable is False
    assert milk.category == "Fridge & Freezer"
    assert all(i.provenance == Provenance.OCR for i in parsed.items)
    assert parsed.parser_coverage == 1.0


def test_totals_and_tax_lines_are_not_items():
    parsed = InvoiceTextParser().parse(LITTLE_VALLEY_TEXT)
    descriptions = " ".join(i.description.lower() for i in parsed.items)
    assert "total" not in descriptions
    assert "gst" not in descriptions


def test_trumps_layout_reads_tax_rate_from_gst_amount():
    text = "\n".join([
        "Trumps Pty Ltd",
        "Invoice Number: 88812",
        "Code Description Ordered Supplied Unit Price GST Total",
        "TR100 Spelt Flour 10 10 EA $4.00 10% $4.00 $44.00",
        "TR200 Brown Rice 2 2 EA $3.00 0% $0.00 $6.00",
    ])
    parsed = InvoiceTextParser().parse(text)

    flour, rice = parsed.items
    assert flour.description == "Spelt Flour"
    assert flour.tax_applicable is True
    assert Decimal(flour.tax_rate) == Decimal("0.10")
    assert rice.tax_applicable is False
    assert parsed.header.vendor_name == "Trumps Pty Ltd"
    assert parsed.header.invoice_number == "88812"


def test_united_organics_layout_is_gst_free():
    text = "\n".join([
        "United Organics",
        "Item Description Qty Supplied Unit Price Total",
        "1042 Organic Carrots 5 5 KG 3.20/KG 16.00",
    ])
    item = InvoiceTextParser().parse(text).items[0]

    assert item.description == "Organic Carrots"
    assert item.quantity == "5"
    assert item.unit_cost == "3.20"
    assert item.tax_applicable is False
    assert item.category == "Fruit & Veg"


def test_simple_layouts():
    text = "\n".join([
        "Corner Bakery",
        "Description Qty Price Total",
        "Sourdough Loaf 6 $5.50 $33.00",
        "12 Spelt Rolls $0.90 $10.80",
        "Rye Bread | 2 | $6.00 | $12.00 |",
    ])
    items = InvoiceTextParser().parse(text).items

    assert [(i.description, i.quantity) for i in items] == [
        ("Sourdough Loaf", "6"),
        ("Spelt Rolls", "12"),
        ("Rye Bread", "2"),
    ]
    assert all(i.category == "Fresh Bread" for i in items)


def test_unrecognised_priced_line_falls_back_to_loose_reading():
    text = "\n".join([
        "Some Supplier",
        "Description Qty Total",
        "Mixed Nuts assorted $12.50 each",
    ])
    parsed = InvoiceTextParser().parse(text)

    item = parsed.items[0]
    assert item.description == "Mixed Nuts assorted"
    assert item.unit_cost == "12.50"
    assert item.provenance == Provenance.OCR_FALLBACK_TEXT
    assert parsed.parser_coverage == 0.5


def test_page_break_marker_lines_dropped():
    text = LITTLE_VALLEY_TEXT.replace(
        "1 LV3300", "--- PAGE BREAK ---\n1 LV3300")
    parsed = InvoiceTextParser().parse(text)
    assert len(parsed.items) == 3


def test_roster_detected_when_no_items():
    parsed = InvoiceTextParser().parse(ROSTER_TEXT)

    assert parsed.items == []
    assert parsed.looks_like_roster
    assert parsed.parser_coverage == 0.0


def test_empty_text():
    parsed = InvoiceTextParser().parse("")
    assert parsed.items == []
    assert parsed.header.vendor_name is None
    assert not parsed.looks_like_roster


@pytest.mark.parametrize("line, name, quantity, pack, effective", [
    ("3 boxes of 10 Cheesecake $30.00 $90.00", "Cheesecake", "3", "10", "3.00"),
    ("2 x 5kg Rolled Oats $18.50 $37.00", "Rolled Oats", "2", "5", "18.50"),
    ("6 pack Mineral Water $2.00 $12.00", "Mineral Water", "6", "1", "2.00"),
])
def test_ocr_quantity_expressions_keep_pack_size(line, name, quantity, pack, effective):
    parsed = InvoiceTextParser().parse(f"Qty Description Price Total\n{line}")
    item = ExtractionNormalizer().normalize(parsed.items)[0]

    assert item.name == name
    assert item.quantity == Decimal(quantity)
    assert item.pack_size == Decimal(pack)
    assert item.effective_unit_cost_ex_gst == Decimal(effective)


def test_little_valley_line_with_quantity_expression():
    parsed = InvoiceTextParser().parse(
        "Qty Item Description Price Extended\n"
        "3 boxes of 10 Cheesecake $30.00 $0.00 $90.00 FRE"
    )
    raw = parsed.items[0]
    assert raw.quantity_text == "3 boxes of 10"
    assert raw.description == "Cheesecake"

    item = ExtractionNormalizer().normalize(parsed.items)[0]
    assert item.pack_size == Decimal(10)
    assert item.effective_unit_cost_ex_gst == Decimal("3.00")
