"""
Learning Module.

Per-vendor correction memory feeding the normalizer and catalog matcher.
"""

from .vendor_profile import (
    CorrectionField,
    LearningWriteResult,
    NameVariant,
    ParsingHints,
    VendorProfileService,
)

__all__ = [
    'CorrectionField',
    'LearningWriteResult',
    'NameVariant',
    'ParsingHints',
    'VendorProfileService',
]
