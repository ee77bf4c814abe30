"""
Recognition Chain Module.

Two-tier fallback over one document:

    NOT_STARTED -> VISION_ATTEMPTED -> VISION_SUCCEEDED
                                    -> OCR_ATTEMPTED -> OCR_SUCCEEDED
                                                     -> FAILED

The vision tier runs only when a credential is configured. Any vision
failure (transport, timeout, unreadable answer or no items) demotes the
document to the OCR tier for the rest of the run; there is no retry.
Only when the OCR tier also yields nothing does the run end in FAILED,
reported as ``RecognitionEmpty`` rather than raised.

Author: ML Engineering Team
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from enum import Enum
from typing import List, Optional

from config import get_config
from invoice_reconciler.input_handler.rasterizer import DocumentRasterizer
from invoice_reconciler.utils.exceptions import RecognitionError, UnsupportedFormatError
from invoice_reconciler.utils.logger import get_logger
from .results import (
    OcrResult,
    RecognitionEmpty,
    RecognitionResult,
    TierAttempt,
    UnsupportedFormat,
    vision_result_from_payload,
)
from .text_parser import InvoiceTextParser
from .vision_extractor import INVOICE_INSTRUCTIONS

logger = get_logger(__name__)


class ChainState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    VISION_ATTEMPTED = "VISION_ATTEMPTED"
    VISION_SUCCEEDED = "VISION_SUCCEEDED"
    OCR_ATTEMPTED = "OCR_ATTEMPTED"
    OCR_SUCCEEDED = "OCR_SUCCEEDED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS = {
    ChainState.NOT_STARTED: {ChainState.VISION_ATTEMPTED, ChainState.OCR_ATTEMPTED},
    ChainState.VISION_ATTEMPTED: {ChainState.VISION_SUCCEEDED, ChainState.OCR_ATTEMPTED},
    ChainState.OCR_ATTEMPTED: {ChainState.OCR_SUCCEEDED, ChainState.FAILED},
    ChainState.VISION_SUCCEEDED: set(),
    ChainState.OCR_SUCCEEDED: set(),
    ChainState.FAILED: set(),
}


class ChainRun:
    """State and tier log of a single document run."""

    def __init__(self) -> None:
        self.state = ChainState.NOT_STARTED
        self.transitions: List[ChainState] = [self.state]
        self.attempts: List[TierAttempt] = []

    def advance(self, new_state: ChainState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal recognition transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Recognition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.transitions.append(new_state)

    def record(self, tier: str, outcome: str, item_count: int = 0, detail: Optional[str] = None) -> None:
        self.attempts.append(TierAttempt(tier=tier, outcome=outcome, item_count=item_count, detail=detail))


class RecognitionChain:
    """
    Runs the vision tier, then the OCR tier, over one document.

    Collaborators are injected; the OCR engine is created on first use so
    a missing Tesseract binary only matters when OCR is actually needed.

    Attributes:
        rasterizer: DocumentRasterizer producing page images
        vision: Vision extractor, or None to go straight to OCR
        ocr_engine: Document OCR engine
        text_parser: Rule-based parser for OCR text
        vision_timeout: Seconds allowed for the vision call

    Example:
        >>> chain = RecognitionChain(vision=VisionExtractor.from_config())
        >>> result = chain.run(pdf_bytes)
        >>> isinstance(result, (VisionResult, OcrResult))
        True
    """

    def __init__(
        self,
        rasterizer: Optional[DocumentRasterizer] = None,
        ocr_engine=None,
        text_parser: Optional[InvoiceTextParser] = None,
        vision=None,
        vision_timeout: Optional[float] = None,
        instructions: str = INVOICE_INSTRUCTIONS
    ) -> None:
        self.rasterizer = rasterizer or DocumentRasterizer()
        self._ocr_engine = ocr_engine
        self.text_parser = text_parser or InvoiceTextParser()
        self.vision = vision
        self.vision_timeout = vision_timeout or get_config("vision.timeout_seconds", 90)
        self.instructions = instructions

    @property
    def ocr_engine(self):
        if self._ocr_engine is None:
            from invoice_reconciler.ocr_engine import OCREngine
            self._ocr_engine = OCREngine()
        return self._ocr_engine

    def run(self, document: bytes) -> RecognitionResult:
        """
        Recognize the line items of one document.

        Args:
            document: Raw PDF or image bytes.

        Returns:
            VisionResult, OcrResult, UnsupportedFormat or RecognitionEmpty.
        """
        run = ChainRun()

        try:
            pages = self.rasterizer.rasterize(document)
        except UnsupportedFormatError as e:
            logger.warning(f"Document rejected before recognition: {e}")
            return UnsupportedFormat(reason=e.details.get("reason", e.message))

        if self.vision is not None and self.vision.is_configured():
            run.advance(ChainState.VISION_ATTEMPTED)
            result = self._run_vision(run, pages)
            if result is not None:
                run.advance(ChainState.VISION_SUCCEEDED)
                result.attempts = run.attempts
                return result
        else:
            run.record("vision", "skipped", detail="no vision credential configured")

        run.advance(ChainState.OCR_ATTEMPTED)
        result = self._run_ocr(run, pages)
        if result is not None:
            run.advance(ChainState.OCR_SUCCEEDED)
            result.attempts = run.attempts
            return result

        run.advance(ChainState.FAILED)
        empty = RecognitionEmpty(attempts=run.attempts)
        logger.warning(f"No line items recognized: {empty.reason}")
        return empty

    def _run_vision(self, run: ChainRun, pages: List[bytes]):
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vision")
        try:
            future = executor.submit(self.vision.extract, pages, self.instructions)
            payload = future.result(timeout=self.vision_timeout)
            result = vision_result_from_payload(payload, page_count=len(pages))
        except FutureTimeoutError:
            logger.warning(f"Vision tier timed out after {self.vision_timeout}s, falling back to OCR")
            run.record("vision", "timeout", detail=f"{self.vision_timeout}s")
            return None
        except Exception as e:
            logger.warning(f"Vision tier failed, falling back to OCR: {e}")
            run.record("vision", "failed", detail=str(e))
            return None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if not result.items:
            logger.warning("Vision tier returned no line items, falling back to OCR")
            run.record("vision", "empty")
            return None

        run.record("vision", "succeeded", item_count=len(result.items))
        logger.info(f"Vision tier extracted {len(result.items)} line item(s)")
        return result

    def _run_ocr(self, run: ChainRun, pages: List[bytes]):
        try:
            document = self.ocr_engine.recognize_pages(pages)
        except RecognitionError as e:
            logger.warning(f"OCR tier failed: {e}")
            run.record("ocr", "failed", detail=str(e))
            return None

        parsed = self.text_parser.parse(document.text)
        if not parsed.items:
            detail = "document looks like a staff roster" if parsed.looks_like_roster else None
            run.record("ocr", "empty", detail=detail)
            return None

        for item in parsed.items:
            item.confidence = document.confidence

        run.record("ocr", "succeeded", item_count=len(parsed.items))
        logger.info(
            f"OCR tier extracted {len(parsed.items)} line item(s), "
            f"confidence {document.confidence:.2f}, parser coverage {parsed.parser_coverage:.2f}"
        )
        return OcrResult(
            items=parsed.items,
            header=parsed.header,
            confidence=document.confidence,
            text=document.text,
            page_count=len(pages),
            parser_coverage=parsed.parser_coverage,
        )
