"""
Tesseract OCR Backend.

Runs Tesseract through pytesseract on one page image and reports the page
text together with the mean word confidence.

Requirements:
    - Tesseract OCR installed on the system
    - pytesseract Python package

Author: ML Engineering Team
"""

import time
from typing import Dict, List, Optional, Tuple

import pytesseract

from config import get_config
from invoice_reconciler.input_handler.image_processor import ImageProcessor
from invoice_reconciler.utils.exceptions import (
    OCREngineNotAvailableError,
    RecognitionTransportError,
)
from invoice_reconciler.utils.logger import get_logger
from .ocr_result import OCRLine, OCRPageResult, OCRWord

logger = get_logger(__name__)


class TesseractBackend:
    """
    Tesseract implementation of the OCR tier call ``(image) -> {text, confidence}``.

    Attributes:
        language: Tesseract language code (e.g., "eng")
        psm: Page Segmentation Mode (1-13)
        oem: OCR Engine Mode (0-3)
        extra_config: Additional Tesseract flags

    Example:
        >>> backend = TesseractBackend()
        >>> page = backend.recognize(png_bytes)
        >>> print(page.confidence)
        0.87
    """

    name = "tesseract"

    def __init__(self, image_processor: Optional[ImageProcessor] = None) -> None:
        self.language = get_config("ocr.tesseract.lang", "eng")
        self.psm = get_config("ocr.tesseract.psm", 6)
        self.oem = get_config("ocr.tesseract.oem", 3)
        self.extra_config = get_config("ocr.tesseract.config", "")
        self.image_processor = image_processor or ImageProcessor()

        self._check_dependencies()

        logger.debug(
            f"TesseractBackend initialized (lang={self.language}, "
            f"psm={self.psm}, oem={self.oem})"
        )

    def _check_dependencies(self) -> None:
        """
        Raises:
            OCREngineNotAvailableError: If the tesseract binary is missing.
        """
        try:
            self.version = str(pytesseract.get_tesseract_version())
        except pytesseract.TesseractNotFoundError as e:
            raise OCREngineNotAvailableError(f"Tesseract OCR (not installed or not in PATH): {e}") from e
        logger.info(f"Tesseract version: {self.version}")

    def _build_config(self) -> str:
        config_parts = [f"--psm {self.psm}", f"--oem {self.oem}"]
        if self.extra_config:
            config_parts.append(self.extra_config)
        return ' '.join(config_parts)

    def recognize(self, image_bytes: bytes) -> OCRPageResult:
        """
        OCR one page image.

        Raises:
            UnsupportedFormatError: If the bytes are not a decodable image.
            RecognitionTransportError: If Tesseract fails.
        """
        start_time = time.time()
        image = self.image_processor.prepare_for_ocr(image_bytes)

        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.language,
                config=self._build_config(),
                output_type=pytesseract.Output.DICT
            )
        except (pytesseract.TesseractError, RuntimeError) as e:
            logger.error(f"OCR processing failed: {e}")
            raise RecognitionTransportError("ocr", str(e)) from e

        lines = self._group_into_lines(self._parse_tesseract_output(data))
        result = OCRPageResult.from_lines(
            lines,
            processing_time=time.time() - start_time,
            metadata={'psm': self.psm, 'oem': self.oem, 'engine': self.name},
        )

        logger.info(
            f"OCR completed: {result.word_count} words, {len(lines)} lines, "
            f"confidence {result.confidence:.2f} ({result.processing_time:.2f}s)"
        )
        return result

    def _parse_tesseract_output(self, data: Dict[str, List]) -> List[OCRWord]:
        words = []

        for i in range(len(data['text'])):
            text = (data['text'][i] or '').strip()
            if not text:
                continue

            # Tesseract reports -1 for non-word boxes
            conf = max(float(data['conf'][i]), 0.0)

            words.append(OCRWord(
                text=text,
                confidence=conf,
                line_key=(data['block_num'][i], data['par_num'][i], data['line_num'][i]),
                left=data['left'][i],
            ))

        return words

    def _group_into_lines(self, words: List[OCRWord]) -> List[OCRLine]:
        line_groups: Dict[Tuple[int, int, int], List[OCRWord]] = {}
        for word in words:
            line_groups.setdefault(word.line_key, []).append(word)

        lines = []
        for key in sorted(line_groups):
            line_words = sorted(line_groups[key], key=lambda w: w.left)
            lines.append(OCRLine(words=line_words))
        return lines

