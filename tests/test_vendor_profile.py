"""Tests for the vendor learning profile."""

import copy

import pytest

from invoice_reconciler.learning import CorrectionField, VendorProfileService
from invoice_reconciler.utils.exceptions import ConcurrencyConflictError, LearningWriteError


@pytest.fixture
def vendor(repository):
    return repository.add_vendor("Little Valley Distribution")


@pytest.fixture
def learning(repository):
    return VendorProfileService(repository)


def test_each_field_feeds_its_collection(learning, vendor):
    assert learning.record_correction(vendor.id, "quantity", "Almond Milk 24pk", 12)
    assert learning.record_correction(vendor.id, "unitCost", "48.00", "52.80")
    assert learning.record_correction(vendor.id, "category", "Byron Chai Tea 500g Bulk", "Groceries")
    assert learning.record_correction(vendor.id, CorrectionField.ITEM_DESCRIPTION, "BYRON CHAI", "Byron Chai Tea 500g")

    data = learning.get_profile(vendor.id).learning_data
    assert data["pack_size_patterns"][0]["text"] == "almond milk 24pk"
    assert data["pack_size_patterns"][0]["pack_size"] == 12
    assert data["pack_size_patterns"][0]["confidence"] == 0.8
    assert data["price_patterns"][0]["ratio"] == pytest.approx(1.1)
    assert data["category_mappings"]["byron chai tea"]["category"] == "Groceries"
    assert data["common_items"][0]["corrected_description"] == "Byron Chai Tea 500g"


def test_history_capped_oldest_first(learning, vendor):
    for n in range(120):
        learning.record_correction(vendor.id, "unitCost", "10.00", f"{10 + n}.00")

    profile = learning.get_profile(vendor.id)
    assert len(profile.correction_history) == 100
    assert profile.correction_history[0]["corrected"] == "30.00"
    assert profile.correction_history[-1]["corrected"] == "129.00"
    assert len(profile.learning_data["price_patterns"]) == 50


def test_repeat_correction_replaces_pattern(learning, vendor):
    learning.record_correction(vendor.id, "quantity", "Almond Milk 24pk", 12)
    learning.record_correction(vendor.id, "quantity", "almond milk 24PK", 24, confidence=0.95)

    patterns = learning.get_profile(vendor.id).learning_data["pack_size_patterns"]
    assert len(patterns) == 1
    assert patterns[0]["pack_size"] == 24
    assert patterns[0]["confidence"] == 0.95


def test_hints_are_read_only(learning, vendor):
    learning.record_correction(vendor.id, "quantity", "Almond Milk", 24)
    learning.record_correction(vendor.id, "category", "Almond Milk", "Fridge & Freezer")
    before = copy.deepcopy(learning.get_profile(vendor.id))

    hints = learning.get_parsing_hints(vendor.id, "ALMOND MILK unsweetened 1L")
    assert hints.pack_size == 24
    assert hints.pack_size_confidence == 0.8
    assert hints.category == "Fridge & Freezer"

    assert learning.get_profile(vendor.id) == before


def test_hints_empty_for_unknown_vendor(learning):
    assert learning.get_parsing_hints(999, "Oat Flakes").is_empty


def test_price_ratio_is_mean(learning, vendor):
    learning.record_correction(vendor.id, "unitCost", "10.00", "11.00")
    learning.record_correction(vendor.id, "unitCost", "10.00", "13.00")
    assert learning.get_parsing_hints(vendor.id, "anything").price_ratio == pytest.approx(1.2)


def test_name_variants_sorted_and_limited(learning, vendor):
    learning.record_correction(vendor.id, "itemDescription", "Chai Tea", "Byron Chai Tea 500g")
    learning.record_correction(vendor.id, "itemDescription", "Byron Chai Spiced Tea", "Byron Chai Tea 500g")
    learning.record_correction(vendor.id, "itemDescription", "Green Tea Chai", "Green Chai")
    learning.record_correction(vendor.id, "itemDescription", "Chai Tea Bags", "Chai Tea Bags 20s")

    variants = learning.find_name_variants(vendor.id, "Byron Chai Spiced Tea")

    assert len(variants) == 3
    assert variants[0].original == "Byron Chai Spiced Tea"
    assert [v.shared_words for v in variants] == sorted((v.shared_words for v in variants), reverse=True)


@pytest.mark.parametrize("field, original, corrected", [
    ("colour", "Oat Flakes", "Red"),
    ("quantity", "", 6),
    ("quantity", "Almond Milk", "six"),
    ("quantity", "Almond Milk", 2.5),
    ("unitCost", "0", "4.00"),
    ("category", None, "Groceries"),
])
def test_invalid_corrections_reported_not_raised(learning, vendor, field, original, corrected):
    result = learning.record_correction(vendor.id, field, original, corrected)

    assert not result
    assert isinstance(result.error, LearningWriteError)
    assert learning.get_profile(vendor.id) is None


def test_storage_failure_swallowed(learning, vendor, monkeypatch):
    def broken_save(profile):
        raise ConcurrencyConflictError("vendor profile", profile.vendor_id)

    monkeypatch.setattr(learning.repository, "save_vendor_profile", broken_save)

    result = learning.record_correction(vendor.id, "category", "Oat Flakes", "Bulk")

    assert result.ok is False
    assert result.error.details["vendor_id"] == vendor.id


def test_lost_race_retried_against_fresh_profile(learning, vendor, repository, monkeypatch):
    learning.record_correction(vendor.id, "category", "Oat Flakes", "Bulk")
    real_save = repository.save_vendor_profile
    calls = []

    def racing_save(profile):
        calls.append(profile.version)
        if len(calls) == 1:
            # Another writer lands first
            concurrent = repository.get_vendor_profile(vendor.id)
            concurrent.parsing_rules["has_gst_column"] = True
            real_save(concurrent)
        return real_save(profile)

    monkeypatch.setattr(repository, "save_vendor_profile", racing_save)

    assert learning.record_correction(vendor.id, "category", "Spelt Flour", "Bulk")
    profile = repository.get_vendor_profile(vendor.id)
    assert len(calls) == 2
    assert profile.parsing_rules["has_gst_column"] is True
    assert set(profile.learning_data["category_mappings"]) == {"oat flakes", "spelt flour"}
    assert len(profile.correction_history) == 2
