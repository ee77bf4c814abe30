"""
OCR Engine Module.

Text-OCR tier of the recognition chain:
    - Per-page Tesseract recognition with mean word confidence
    - Concurrent page processing with preserved page order
    - Document text joined with an explicit page-break marker

Author: ML Engineering Team
"""

from .engine import OCREngine, DEFAULT_PAGE_BREAK
from .ocr_result import OCRDocumentResult, OCRLine, OCRPageResult, OCRWord

__all__ = [
    'OCREngine',
    'DEFAULT_PAGE_BREAK',
    'OCRDocumentResult',
    'OCRLine',
    'OCRPageResult',
    'OCRWord',
]
