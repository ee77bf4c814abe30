"""
Main OCR Engine Module.

Runs an OCR backend over every page of a document and joins the page texts
in document order. Pages may be processed concurrently; the whole document
is bounded by a single timeout.

Usage:
    from invoice_reconciler.ocr_engine import OCREngine

    engine = OCREngine()
    document = engine.recognize_pages(page_images)
    print(document.text)

Author: ML Engineering Team
"""

from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Optional

from config import get_config
from invoice_reconciler.utils.exceptions import RecognitionTransportError
from invoice_reconciler.utils.logger import get_logger
from .ocr_result import OCRDocumentResult

logger = get_logger(__name__)

DEFAULT_PAGE_BREAK = "\n\n--- PAGE BREAK ---\n\n"


class OCREngine:
    """
    Document-level OCR over a per-page backend.

    The backend is any object with ``recognize(image_bytes) -> OCRPageResult``.
    A page that raises is logged and left out; the document fails only when
    no page succeeds or the timeout expires.

    Attributes:
        backend: Per-page OCR backend
        max_workers: Pages recognized concurrently
        timeout_seconds: Time limit for the whole document
        page_break_marker: Separator inserted between page texts

    Example:
        >>> engine = OCREngine(backend=TesseractBackend(), max_workers=2)
        >>> result = engine.recognize_pages([page1, page2])
        >>> result.confidence
        0.91
    """

    def __init__(
        self,
        backend=None,
        max_workers: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        page_break_marker: Optional[str] = None
    ) -> None:
        if backend is None:
            from .tesseract_backend import TesseractBackend
            backend = TesseractBackend()

        self.backend = backend
        self.max_workers = max_workers or get_config("ocr.max_workers", 2)
        self.timeout_seconds = timeout_seconds or get_config("ocr.timeout_seconds", 120)
        self.page_break_marker = page_break_marker or get_config("ocr.page_break_marker", DEFAULT_PAGE_BREAK)

        logger.debug(
            f"OCREngine initialized (workers={self.max_workers}, "
            f"timeout={self.timeout_seconds}s)"
        )

    def recognize_pages(self, pages: List[bytes]) -> OCRDocumentResult:
        """
        OCR every page and join the results in page order.

        Args:
            pages: Page images in document order.

        Returns:
            OCRDocumentResult with the joined text and mean page confidence.

        Raises:
            RecognitionTransportError: On timeout, or when every page failed.
        """
        if not pages:
            raise RecognitionTransportError("ocr", "no pages to recognize")

        executor = ThreadPoolExecutor(
            max_workers=max(1, min(self.max_workers, len(pages))),
            thread_name_prefix="ocr-page",
        )
        try:
            futures = [executor.submit(self.backend.recognize, page) for page in pages]
            _, not_done = wait(futures, timeout=self.timeout_seconds)
        finally:
            # Running pages cannot be interrupted; queued ones are dropped
            executor.shutdown(wait=False, cancel_futures=True)

        if not_done:
            raise RecognitionTransportError(
                "ocr",
                f"timed out after {self.timeout_seconds}s with {len(not_done)} page(s) pending"
            )

        results = []
        indexes = []
        for index, future in enumerate(futures):
            try:
                results.append(future.result())
                indexes.append(index)
            except Exception as e:
                logger.warning(f"OCR failed on page {index + 1}, skipping: {e}")

        if not results:
            raise RecognitionTransportError("ocr", f"all {len(pages)} page(s) failed")

        text = self.page_break_marker.join(r.text for r in results)
        confidence = sum(r.confidence for r in results) / len(results)

        logger.info(
            f"OCR finished {len(results)}/{len(pages)} page(s), "
            f"mean confidence {confidence:.2f}"
        )
        return OCRDocumentResult(
            pages=results,
            page_indexes=indexes,
            text=text,
            confidence=round(confidence, 4),
        )
