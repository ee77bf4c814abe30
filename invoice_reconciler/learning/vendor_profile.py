"""
Vendor Learning Profile Module.

Per-vendor memory of human corrections. Four learning collections are fed
by ``record_correction``:

    quantity        -> pack_size_patterns  (description text -> pack size)
    unitCost        -> price_patterns      (original/corrected cost ratio)
    category        -> category_mappings   (description prefix -> category)
    itemDescription -> common_items        (name correction pairs)

Every correction is also appended to a bounded history log. Learning is
best-effort: writes report failure through ``LearningWriteResult`` and
reads fall back to empty hints, neither ever raises to the caller.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from config import get_config
from invoice_reconciler.entities import VendorProfile
from invoice_reconciler.persistence.repository import Repository
from invoice_reconciler.utils.exceptions import ConcurrencyConflictError, LearningWriteError
from invoice_reconciler.utils.helpers import significant_words, to_decimal, utcnow
from invoice_reconciler.utils.logger import get_logger

logger = get_logger(__name__)


class CorrectionField(str, Enum):
    QUANTITY = "quantity"
    UNIT_COST = "unitCost"
    CATEGORY = "category"
    ITEM_DESCRIPTION = "itemDescription"


@dataclass
class NameVariant:
    original: str
    corrected: str
    confidence: float
    shared_words: int


@dataclass
class ParsingHints:
    """
    Read-only hints derived from a vendor profile for one description.

    Attributes:
        pack_size: Learned pack size whose text occurs in the description
        category: Learned category whose prefix occurs in the description
        name_variants: Past name corrections sharing enough words
        price_ratio: Mean corrected/original cost ratio for the vendor
        parsing_rules: Vendor-level parsing flags
    """
    pack_size: Optional[int] = None
    pack_size_confidence: float = 0.0
    category: Optional[str] = None
    category_confidence: float = 0.0
    name_variants: List[NameVariant] = field(default_factory=list)
    price_ratio: Optional[float] = None
    parsing_rules: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return (
            self.pack_size is None
            and self.category is None
            and not self.name_variants
            and self.price_ratio is None
        )


@dataclass
class LearningWriteResult:
    """Outcome of a learning write. Callers may ignore it."""
    ok: bool
    vendor_id: int
    field: str
    error: Optional[LearningWriteError] = None

    def __bool__(self) -> bool:
        return self.ok


class VendorProfileService:
    """
    Records corrections and serves parsing hints per vendor.

    Profiles are created lazily on the first correction and saved with
    compare-and-swap on their version, retried on conflict.

    Example:
        >>> service = VendorProfileService(repository)
        >>> service.record_correction(3, "category", "Byron Chai Tea 500g", "Groceries")
        >>> service.get_parsing_hints(3, "BYRON CHAI TEA 500g Bulk").category
        'Groceries'
    """

    PREFIX_WORDS = 3

    def __init__(
        self,
        repository: Repository,
        history_cap: Optional[int] = None,
        pack_pattern_cap: Optional[int] = None,
        price_pattern_cap: Optional[int] = None,
        common_item_cap: Optional[int] = None,
        default_confidence: Optional[float] = None,
        min_shared_words: Optional[int] = None,
        max_retries: Optional[int] = None
    ) -> None:
        self.repository = repository
        self.history_cap = history_cap or get_config("learning.history_cap", 100)
        self.pack_pattern_cap = pack_pattern_cap or get_config("learning.pack_pattern_cap", 50)
        self.price_pattern_cap = price_pattern_cap or get_config("learning.price_pattern_cap", 50)
        self.common_item_cap = common_item_cap or get_config("learning.common_item_cap", 100)
        self.default_confidence = default_confidence or get_config("learning.default_confidence", 0.8)
        self.min_shared_words = min_shared_words or get_config("matching.min_shared_words", 2)
        self.max_retries = max_retries or get_config("learning.max_write_retries", 3)
        self.stopwords = get_config("matching.stopwords", [])

    # ==================================================================== write

    def record_correction(
        self,
        vendor_id: int,
        field: str,
        original_value: Any,
        corrected_value: Any,
        confidence: Optional[float] = None,
        reason: Optional[str] = None
    ) -> LearningWriteResult:
        """
        Learn from one human correction.

        Args:
            vendor_id: Vendor the correction belongs to.
            field: "quantity", "unitCost", "category" or "itemDescription".
            original_value: What extraction produced (for quantity and
                category, the raw item description).
            corrected_value: What the operator entered.
            confidence: Trust in the correction, defaults to 0.8.
            reason: Optional free-text note kept in the history log.

        Returns:
            LearningWriteResult, ``ok`` False with the error on failure.
        """
        field_name = getattr(field, "value", field)
        confidence = self.default_confidence if confidence is None else float(confidence)

        try:
            correction_field = CorrectionField(field_name)
            applier = self._appliers()[correction_field]

            for attempt in range(1, self.max_retries + 1):
                profile = self.repository.get_vendor_profile(vendor_id) or VendorProfile(vendor_id=vendor_id)
                applier(profile, original_value, corrected_value, confidence)
                self._append_history(profile, correction_field, original_value,
                                     corrected_value, confidence, reason)
                try:
                    self.repository.save_vendor_profile(profile)
                except ConcurrencyConflictError:
                    logger.debug(f"Vendor {vendor_id} profile changed concurrently (attempt {attempt})")
                    continue

                logger.info(f"Learned {field_name} correction for vendor {vendor_id}")
                return LearningWriteResult(ok=True, vendor_id=vendor_id, field=field_name)

            raise ConcurrencyConflictError("vendor profile", vendor_id)

        except Exception as e:
            error = LearningWriteError(vendor_id, str(field_name), str(e))
            logger.error(f"{error}")
            return LearningWriteResult(ok=False, vendor_id=vendor_id, field=str(field_name), error=error)

    def update_parsing_rules(self, vendor_id: int, **rules: Any) -> LearningWriteResult:
        """Set vendor-level parsing flags such as ``has_gst_column``."""
        try:
            for _ in range(self.max_retries):
                profile = self.repository.get_vendor_profile(vendor_id) or VendorProfile(vendor_id=vendor_id)
                profile.parsing_rules.update(rules)
                try:
                    self.repository.save_vendor_profile(profile)
                    return LearningWriteResult(ok=True, vendor_id=vendor_id, field="parsingRules")
                except ConcurrencyConflictError:
                    continue
            raise ConcurrencyConflictError("vendor profile", vendor_id)
        except Exception as e:
            error = LearningWriteError(vendor_id, "parsingRules", str(e))
            logger.error(f"{error}")
            return LearningWriteResult(ok=False, vendor_id=vendor_id, field="parsingRules", error=error)

    def _appliers(self):
        return {
            CorrectionField.QUANTITY: self._learn_pack_size,
            CorrectionField.UNIT_COST: self._learn_price,
            CorrectionField.CATEGORY: self._learn_category,
            CorrectionField.ITEM_DESCRIPTION: self._learn_item_name,
        }

    def _learn_pack_size(self, profile: VendorProfile, original: Any, corrected: Any,
                         confidence: float) -> None:
        text = self._require_text(original, "quantity correction needs the item description")
        pack_size = to_decimal(corrected)
        if pack_size is None or pack_size <= 0 or pack_size != pack_size.to_integral_value():
            raise ValueError(f"pack size must be a positive whole number, got {corrected!r}")

        patterns = [p for p in profile.learning_data["pack_size_patterns"] if p["text"] != text]
        patterns.append({
            "text": text,
            "pack_size": int(pack_size),
            "confidence": confidence,
            "last_seen": utcnow().isoformat(),
        })
        profile.learning_data["pack_size_patterns"] = patterns[-self.pack_pattern_cap:]

    def _learn_price(self, profile: VendorProfile, original: Any, corrected: Any,
                     confidence: float) -> None:
        original_cost = to_decimal(original)
        corrected_cost = to_decimal(corrected)
        if original_cost is None or corrected_cost is None or original_cost <= 0:
            raise ValueError(f"unit cost correction needs two positive amounts, got {original!r} -> {corrected!r}")

        patterns = profile.learning_data["price_patterns"]
        patterns.append({
            "original": float(original_cost),
            "corrected": float(corrected_cost),
            "ratio": float(corrected_cost / original_cost),
            "confidence": confidence,
            "last_seen": utcnow().isoformat(),
        })
        profile.learning_data["price_patterns"] = patterns[-self.price_pattern_cap:]

    def _learn_category(self, profile: VendorProfile, original: Any, corrected: Any,
                        confidence: float) -> None:
        text = self._require_text(original, "category correction needs the item description")
        category = self._require_text(corrected, "category correction needs a category", lower=False)

        key = ' '.join(text.split()[:self.PREFIX_WORDS])
        profile.learning_data["category_mappings"][key] = {
            "category": category,
            "confidence": confidence,
            "last_seen": utcnow().isoformat(),
        }

    def _learn_item_name(self, profile: VendorProfile, original: Any, corrected: Any,
                         confidence: float) -> None:
        original_name = self._require_text(original, "name correction needs the extracted name", lower=False)
        corrected_name = self._require_text(corrected, "name correction needs the corrected name", lower=False)

        items = [
            i for i in profile.learning_data["common_items"]
            if i["original_description"].lower() != original_name.lower()
        ]
        items.append({
            "original_description": original_name,
            "corrected_description": corrected_name,
            "confidence": confidence,
            "last_seen": utcnow().isoformat(),
        })
        profile.learning_data["common_items"] = items[-self.common_item_cap:]

    def _append_history(self, profile: VendorProfile, correction_field: CorrectionField,
                        original: Any, corrected: Any, confidence: float,
                        reason: Optional[str]) -> None:
        profile.correction_history.append({
            "field": correction_field.value,
            "original": self._json_safe(original),
            "corrected": self._json_safe(corrected),
            "confidence": confidence,
            "reason": reason,
            "timestamp": utcnow().isoformat(),
        })
        # Oldest entries are evicted first
        profile.correction_history = profile.correction_history[-self.history_cap:]

    @staticmethod
    def _require_text(value: Any, message: str, lower: bool = True) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(message)
        text = ' '.join(value.split())
        return text.lower() if lower else text

    @staticmethod
    def _json_safe(value: Any) -> Any:
        if isinstance(value, Decimal):
            return str(value)
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        return str(value)

    # ===================================================================== read

    def get_profile(self, vendor_id: int) -> Optional[VendorProfile]:
        return self.repository.get_vendor_profile(vendor_id)

    def get_parsing_hints(self, vendor_id: int, description: str) -> ParsingHints:
        """
        Hints for one item description. Never mutates and never raises.
        """
        try:
            profile = self.repository.get_vendor_profile(vendor_id)
            if profile is None:
                return ParsingHints()
            return self._build_hints(profile, description or "")
        except Exception as e:
            logger.error(f"Could not read parsing hints for vendor {vendor_id}: {e}")
            return ParsingHints()

    def find_name_variants(self, vendor_id: int, name: str) -> List[NameVariant]:
        """Past name corrections similar to ``name``. Never raises."""
        return self.get_parsing_hints(vendor_id, name).name_variants

    def _build_hints(self, profile: VendorProfile, description: str) -> ParsingHints:
        text = ' '.join(description.lower().split())
        data = profile.learning_data
        hints = ParsingHints(parsing_rules=dict(profile.parsing_rules))

        # Most recent pattern wins
        for pattern in reversed(data.get("pack_size_patterns", [])):
            if pattern.get("text") and pattern["text"] in text:
                hints.pack_size = int(pattern["pack_size"])
                hints.pack_size_confidence = float(pattern.get("confidence", 0.0))
                break

        matching_keys = [k for k in data.get("category_mappings", {}) if k and k in text]
        if matching_keys:
            mapping = data["category_mappings"][max(matching_keys, key=len)]
            hints.category = mapping["category"]
            hints.category_confidence = float(mapping.get("confidence", 0.0))

        hints.name_variants = self._similar_items(data.get("common_items", []), description)

        ratios = [p["ratio"] for p in data.get("price_patterns", [])]
        if ratios:
            hints.price_ratio = sum(ratios) / len(ratios)

        return hints

    def _similar_items(self, items: List[Dict[str, Any]], description: str) -> List[NameVariant]:
        words = significant_words(description, self.stopwords)
        variants = []
        for item in items:
            shared = max(
                len(words & significant_words(item["original_description"], self.stopwords)),
                len(words & significant_words(item["corrected_description"], self.stopwords)),
            )
            if shared >= self.min_shared_words:
                variants.append(NameVariant(
                    original=item["original_description"],
                    corrected=item["corrected_description"],
                    confidence=float(item.get("confidence", 0.0)),
                    shared_words=shared,
                ))
        variants.sort(key=lambda v: v.shared_words, reverse=True)
        return variants[:3]
