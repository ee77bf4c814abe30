"""
Catalog Module.

Vendor-scoped matching, pricing and catalog writes.
"""

from .pricing import (
    DEFAULT_MARKUP,
    DEFAULT_TAX_RATE,
    MarkupPolicy,
    PricingCalculator,
    PricingResult,
    validate_pricing,
)
from .matcher import CatalogMatch, CatalogMatcher
from .updater import CatalogUpdater

__all__ = [
    'CatalogMatch',
    'CatalogMatcher',
    'CatalogUpdater',
    'DEFAULT_MARKUP',
    'DEFAULT_TAX_RATE',
    'MarkupPolicy',
    'PricingCalculator',
    'PricingResult',
    'validate_pricing',
]
