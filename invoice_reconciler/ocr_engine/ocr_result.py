"""
OCR Result Data Classes.

Classes:
    OCRWord: Individual recognized word
    OCRLine: Words sharing a Tesseract block/paragraph/line key
    OCRPageResult: Text and mean confidence for one page image
    OCRDocumentResult: Pages joined in document order

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


@dataclass
class OCRWord:
    """
    A single word extracted by OCR.

    Attributes:
        text: The recognized text content
        confidence: Engine confidence score (0-100)
        line_key: (block, paragraph, line) position reported by the engine
        left: Horizontal pixel offset, used to order words within a line
    """
    text: str
    confidence: float = 0.0
    line_key: Tuple[int, int, int] = (0, 0, 0)
    left: int = 0


@dataclass
class OCRLine:
    words: List[OCRWord] = field(default_factory=list)

    @property
    def text(self) -> str:
        return ' '.join(w.text for w in self.words)


@dataclass
class OCRPageResult:
    """
    Output of the OCR tier for one page image.

    Attributes:
        text: Page text, one OCR line per text line
        confidence: Mean word confidence scaled to 0-1
        word_count: Number of recognized words
        processing_time: Seconds spent in the engine
    """
    text: str
    confidence: float
    word_count: int = 0
    processing_time: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_lines(cls, lines: List[OCRLine], processing_time: float = 0.0,
                   metadata: Dict[str, Any] = None) -> 'OCRPageResult':
        words = [w for line in lines for w in line.words]
        confidence = sum(w.confidence for w in words) / len(words) / 100.0 if words else 0.0
        return cls(
            text='\n'.join(line.text for line in lines),
            confidence=round(confidence, 4),
            word_count=len(words),
            processing_time=processing_time,
            metadata=metadata or {},
        )


@dataclass
class OCRDocumentResult:
    """
    All pages of one document, in page order.

    Attributes:
        pages: Per-page results; failed pages are absent
        page_indexes: Original page index of each entry in ``pages``
        text: Page texts joined with the page-break marker
        confidence: Mean of the per-page confidences (0-1)
    """
    pages: List[OCRPageResult]
    page_indexes: List[int]
    text: str
    confidence: float

    @property
    def page_count(self) -> int:
        return len(self.pages)
