"""
Pricing Calculator Module.

Sell prices are derived from cost, a markup multiplier and GST:

    sell_ex_gst  = cost_ex_gst * markup
    sell_inc_gst = sell_ex_gst * (1 + tax_rate)   if tax applies
                 = sell_ex_gst                    otherwise

Both sell prices are rounded to cents, half-up. GST is computed on the
rounded ex-GST price so the two stored prices always agree.

Markups come from an explicit policy table, highest precedence first:

    1. manual markup on the invoice line
    2. manual markup on the catalog item
    3. vendor/category markup from configuration
    4. global category markup table
    5. global default markup (1.65)

Author: ML Engineering Team
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from config import get_config
from invoice_reconciler.entities import MarkupSource
from invoice_reconciler.utils.exceptions import PricingError
from invoice_reconciler.utils.helpers import round_money, to_decimal
from invoice_reconciler.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TAX_RATE = Decimal("0.10")
DEFAULT_MARKUP = Decimal("1.65")

DEFAULT_CATEGORY_MARKUPS = {
    "House": "1.65",
    "Bulk": "1.75",
    "Fruit & Veg": "1.75",
    "Fridge & Freezer": "1.5",
    "Naturo": "1.65",
    "Groceries": "1.65",
    "Drinks Fridge": "1.65",
    "Supplements": "1.65",
    "Personal Care": "1.65",
    "Fresh Bread": "1.5",
}


@dataclass(frozen=True)
class PricingResult:
    cost_ex_gst: Decimal
    markup: Decimal
    tax_rate: Decimal
    tax_applicable: bool
    sell_ex_gst: Decimal
    gst_amount: Decimal
    sell_inc_gst: Decimal


class PricingCalculator:
    """
    Pure sell-price calculation.

    Example:
        >>> PricingCalculator().calculate(Decimal("10.00"), Decimal("1.65")).sell_inc_gst
        Decimal('18.15')
    """

    def __init__(self, tax_rate: Optional[Any] = None) -> None:
        self.tax_rate = to_decimal(tax_rate if tax_rate is not None
                                   else get_config("pricing.tax_rate", DEFAULT_TAX_RATE))

    def calculate(
        self,
        cost_ex_gst: Any,
        markup: Any,
        tax_rate: Optional[Any] = None,
        tax_applicable: bool = True
    ) -> PricingResult:
        """
        Derive sell prices.

        Args:
            cost_ex_gst: Cost of one sellable unit, ex GST.
            markup: Multiplier applied to cost.
            tax_rate: Line-level rate overriding the national rate.
            tax_applicable: False for GST-free items.

        Raises:
            PricingError: If cost is negative, markup is not positive or
                the tax rate is outside [0, 1).
        """
        cost = to_decimal(cost_ex_gst)
        markup = to_decimal(markup)
        rate = self.tax_rate if tax_rate is None else to_decimal(tax_rate)

        if cost is None or cost < 0:
            raise PricingError(f"Cost ex GST must be zero or positive, got {cost_ex_gst!r}")
        if markup is None or markup <= 0:
            raise PricingError(f"Markup must be positive, got {markup!r}")
        if rate is None or not (0 <= rate < 1):
            raise PricingError(f"Tax rate must be in [0, 1), got {tax_rate!r}")

        sell_ex = round_money(cost * markup)
        gst_amount = round_money(sell_ex * rate) if tax_applicable else Decimal("0.00")
        sell_inc = sell_ex + gst_amount

        return PricingResult(
            cost_ex_gst=cost,
            markup=markup,
            tax_rate=rate,
            tax_applicable=tax_applicable,
            sell_ex_gst=sell_ex,
            gst_amount=gst_amount,
            sell_inc_gst=sell_inc,
        )


class MarkupPolicy:
    """
    Markup resolution table.

    ``vendor_markups`` maps a vendor name to a mapping of category to
    markup; the category "*" applies to every category of that vendor.

    Example:
        >>> policy = MarkupPolicy(vendor_markups={"Trumps Pty Ltd": {"Bulk": 1.8}})
        >>> policy.resolve("Bulk", vendor_name="Trumps Pty Ltd")
        (Decimal('1.8'), <MarkupSource.VENDOR_CATEGORY: 'vendor_category'>)
    """

    def __init__(
        self,
        category_markups: Optional[Dict[str, Any]] = None,
        vendor_markups: Optional[Dict[str, Dict[str, Any]]] = None,
        default_markup: Optional[Any] = None
    ) -> None:
        categories = category_markups if category_markups is not None else get_config(
            "pricing.category_markups", DEFAULT_CATEGORY_MARKUPS)
        vendors = vendor_markups if vendor_markups is not None else get_config("pricing.vendor_markups", {})

        self.category_markups = {k.lower(): to_decimal(v) for k, v in (categories or {}).items()}
        self.vendor_markups = {
            vendor.lower(): {k.lower(): to_decimal(v) for k, v in (table or {}).items()}
            for vendor, table in (vendors or {}).items()
        }
        self.default_markup = to_decimal(default_markup if default_markup is not None
                                         else get_config("pricing.default_markup", DEFAULT_MARKUP))

    def resolve(
        self,
        category: Optional[str],
        vendor_name: Optional[str] = None,
        line_manual: Optional[Any] = None,
        item_manual: Optional[Any] = None
    ) -> Tuple[Decimal, MarkupSource]:
        """Markup for a line and the policy row that supplied it."""
        if line_manual is not None:
            return to_decimal(line_manual), MarkupSource.LINE_MANUAL

        if item_manual is not None:
            return to_decimal(item_manual), MarkupSource.ITEM_MANUAL

        category_key = (category or "").lower()
        vendor_table = self.vendor_markups.get((vendor_name or "").strip().lower(), {})
        if category_key in vendor_table:
            return vendor_table[category_key], MarkupSource.VENDOR_CATEGORY
        if "*" in vendor_table:
            return vendor_table["*"], MarkupSource.VENDOR_CATEGORY

        if category_key in self.category_markups:
            return self.category_markups[category_key], MarkupSource.CATEGORY

        return self.default_markup, MarkupSource.DEFAULT


def validate_pricing(
    result: PricingResult,
    min_markup: Optional[Any] = None,
    max_markup: Optional[Any] = None
) -> List[str]:
    """
    Sanity warnings for a priced line. Never raises.

    Returns:
        Human-readable warnings, empty when the pricing looks sane.
    """
    low = to_decimal(min_markup if min_markup is not None else get_config("pricing.validation.min_markup", 1.0))
    high = to_decimal(max_markup if max_markup is not None else get_config("pricing.validation.max_markup", 3.0))
    warnings = []

    if result.cost_ex_gst <= 0:
        warnings.append("cost ex GST is not positive")

    if not (low <= result.markup <= high):
        warnings.append(f"markup {result.markup} outside {low}-{high}")

    expected_gst = round_money(result.sell_ex_gst * result.tax_rate) if result.tax_applicable else Decimal("0.00")
    if abs(result.sell_inc_gst - (result.sell_ex_gst + expected_gst)) > Decimal("0.01"):
        warnings.append("sell price inc GST is inconsistent with GST")

    return warnings
