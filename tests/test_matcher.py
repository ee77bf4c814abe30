"""Tests for vendor-scoped catalog matching."""

from decimal import Decimal

import pytest

from invoice_reconciler.catalog import CatalogMatcher
from invoice_reconciler.entities import CatalogItem
from invoice_reconciler.learning import VendorProfileService


def add_item(repository, vendor_id, name, cost="10.00"):
    return repository.add_catalog_item(CatalogItem(
        vendor_id=vendor_id,
        name=name,
        category="Groceries",
        cost_ex_gst=Decimal(cost),
        markup=Decimal("1.65"),
        sell_ex_gst=Decimal("16.50"),
        sell_inc_gst=Decimal("18.15"),
    ))


@pytest.fixture
def vendors(repository):
    return repository.add_vendor("Little Valley Distribution"), repository.add_vendor("Trumps Pty Ltd")


def test_exact_match_is_case_insensitive(repository, vendors):
    little_valley, _ = vendors
    item = add_item(repository, little_valley.id, "Byron Chai Tea 500g")

    match = CatalogMatcher(repository).match(little_valley.id, "  BYRON chai tea   500G ")

    assert match.matched
    assert match.item.id == item.id
    assert match.method == CatalogMatcher.EXACT


def test_other_vendors_items_never_match(repository, vendors):
    little_valley, trumps = vendors
    add_item(repository, trumps.id, "Oat Flakes")

    match = CatalogMatcher(repository).match(little_valley.id, "Oat Flakes")

    assert not match.matched
    assert match.item is None


def test_learned_name_variant_matches(repository, vendors):
    little_valley, _ = vendors
    item = add_item(repository, little_valley.id, "Byron Chai Tea 500g")
    learning = VendorProfileService(repository)
    learning.record_correction(little_valley.id, "itemDescription", "Byron Chai Spiced", "Byron Chai Tea 500g")

    match = CatalogMatcher(repository, learning).match(little_valley.id, "Byron Chai Spiced Tea")

    assert match.matched
    assert match.item.id == item.id
    assert match.method == CatalogMatcher.LEARNED_VARIANT


def test_learned_variant_for_other_vendor_ignored(repository, vendors):
    little_valley, trumps = vendors
    add_item(repository, little_valley.id, "Byron Chai Tea 500g")
    learning = VendorProfileService(repository)
    learning.record_correction(trumps.id, "itemDescription", "Byron Chai Spiced", "Byron Chai Tea 500g")

    match = CatalogMatcher(repository, learning).match(little_valley.id, "Byron Chai Spiced Tea")

    assert not match.matched


def test_variant_needs_enough_shared_words(repository, vendors):
    little_valley, _ = vendors
    add_item(repository, little_valley.id, "Byron Chai Tea 500g")
    learning = VendorProfileService(repository)
    learning.record_correction(little_valley.id, "itemDescription", "Byron Chai Spiced", "Byron Chai Tea 500g")

    match = CatalogMatcher(repository, learning).match(little_valley.id, "Chai Latte Powder")

    assert not match.matched


def test_blank_name_unmatched(repository, vendors):
    little_valley, _ = vendors
    assert not CatalogMatcher(repository).match(little_valley.id, "   ").matched
