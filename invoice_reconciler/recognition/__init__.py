"""
Recognition Module.

Vision-first, OCR-fallback recognition of invoice line items.
"""

from .results import (
    InvoiceHeader,
    OcrResult,
    RawLineItem,
    RecognitionEmpty,
    RecognitionResult,
    TierAttempt,
    UnsupportedFormat,
    VisionResult,
)
from .text_parser import InvoiceTextParser, ParsedInvoiceText
from .vision_extractor import INVOICE_INSTRUCTIONS, VisionExtractor
from .chain import ChainRun, ChainState, RecognitionChain

__all__ = [
    'ChainRun',
    'ChainState',
    'INVOICE_INSTRUCTIONS',
    'InvoiceHeader',
    'InvoiceTextParser',
    'OcrResult',
    'ParsedInvoiceText',
    'RawLineItem',
    'RecognitionChain',
    'RecognitionEmpty',
    'RecognitionResult',
    'TierAttempt',
    'UnsupportedFormat',
    'VisionExtractor',
    'VisionResult',
]
