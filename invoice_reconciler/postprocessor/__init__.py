"""
Postprocessor Module.

Normalization of recognizer output into canonical line items.
"""

from .normalizers import (
    CategoryNormalizer,
    DateNormalizer,
    ItemNameCleaner,
    PackSizeParser,
    QuantityParse,
)
from .processor import ExtractionNormalizer

__all__ = [
    'CategoryNormalizer',
    'DateNormalizer',
    'ExtractionNormalizer',
    'ItemNameCleaner',
    'PackSizeParser',
    'QuantityParse',
]
