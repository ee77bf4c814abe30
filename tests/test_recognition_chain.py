"""Tests for the vision/OCR recognition chain."""

import pytest

from conftest import ROSTER_TEXT, StubVision, vision_payload

from invoice_reconciler.entities import Provenance
from invoice_reconciler.recognition import (
    ChainRun,
    ChainState,
    OcrResult,
    RecognitionEmpty,
    UnsupportedFormat,
    VisionResult,
)
from invoice_reconciler.recognition.results import vision_result_from_payload
from invoice_reconciler.recognition.vision_extractor import VisionExtractor
from invoice_reconciler.utils.exceptions import RecognitionParseError, RecognitionTransportError


def test_vision_success_skips_ocr(make_chain, png_bytes):
    vision = StubVision(payload=vision_payload())
    chain = make_chain(vision=vision)

    result = chain.run(png_bytes)

    assert isinstance(result, VisionResult)
    assert len(result.items) == 3
    assert result.header.vendor_name == "Trumps Pty Ltd"
    assert result.header.invoice_number == "INV-5521"
    assert [a.outcome for a in result.attempts] == ["succeeded"]
    assert chain.ocr_engine.backend.pages_seen == 0


def test_vision_failure_falls_back_to_ocr(make_chain, png_bytes):
    vision = StubVision(error=RecognitionTransportError("vision", "503 overloaded"))
    result = make_chain(vision=vision).run(png_bytes)

    assert isinstance(result, OcrResult)
    assert len(result.items) == 3
    assert result.provenance == Provenance.OCR
    assert result.confidence == 0.9
    assert result.parser_coverage == 1.0
    assert [(a.tier, a.outcome) for a in result.attempts] == [("vision", "failed"), ("ocr", "succeeded")]
    assert vision.calls == 1


def test_unreadable_vision_answer_falls_back_to_ocr(make_chain, png_bytes):
    vision = StubVision(error=RecognitionParseError("vision", "invalid JSON"))
    result = make_chain(vision=vision).run(png_bytes)
    assert isinstance(result, OcrResult)


def test_vision_with_no_items_falls_back_to_ocr(make_chain, png_bytes):
    vision = StubVision(payload=vision_payload(lineItems=[]))
    result = make_chain(vision=vision).run(png_bytes)

    assert isinstance(result, OcrResult)
    assert result.attempts[0].outcome == "empty"


def test_vision_timeout_falls_back_to_ocr(make_chain, png_bytes):
    vision = StubVision(payload=vision_payload(), delay=0.5)
    result = make_chain(vision=vision, vision_timeout=0.05).run(png_bytes)

    assert isinstance(result, OcrResult)
    assert result.attempts[0].outcome == "timeout"


def test_unconfigured_vision_goes_straight_to_ocr(make_chain, png_bytes):
    vision = VisionExtractor(api_key=None)
    result = make_chain(vision=vision).run(png_bytes)

    assert isinstance(result, OcrResult)
    assert result.attempts[0].outcome == "skipped"


def test_both_tiers_empty_is_recognition_empty(make_chain, png_bytes):
    vision = StubVision(payload=vision_payload(lineItems=[]))
    result = make_chain(vision=vision, ocr_text=ROSTER_TEXT).run(png_bytes)

    assert isinstance(result, RecognitionEmpty)
    assert [a.outcome for a in result.attempts] == ["empty", "empty"]
    assert "staff roster" in result.reason


def test_ocr_failure_is_recognition_empty(make_chain, png_bytes, ocr_failure):
    result = make_chain(ocr_error=ocr_failure).run(png_bytes)

    assert isinstance(result, RecognitionEmpty)
    assert [(a.tier, a.outcome) for a in result.attempts] == [("vision", "skipped"), ("ocr", "failed")]


def test_unsupported_document(make_chain):
    vision = StubVision(payload=vision_payload())
    result = make_chain(vision=vision).run(b"PK\x03\x04 not an invoice")

    assert isinstance(result, UnsupportedFormat)
    assert vision.calls == 0


def test_every_pdf_page_sent_to_ocr(make_chain, pdf_bytes):
    chain = make_chain()
    result = chain.run(pdf_bytes(pages=2))

    assert isinstance(result, OcrResult)
    assert result.page_count == 2
    assert chain.ocr_engine.backend.pages_seen == 2


# =============================================================================
# STATE MACHINE
# =============================================================================

def test_chain_run_rejects_illegal_transitions():
    run = ChainRun()
    run.advance(ChainState.VISION_ATTEMPTED)
    run.advance(ChainState.OCR_ATTEMPTED)
    run.advance(ChainState.FAILED)

    assert run.transitions == [
        ChainState.NOT_STARTED, ChainState.VISION_ATTEMPTED, ChainState.OCR_ATTEMPTED, ChainState.FAILED,
    ]
    with pytest.raises(RuntimeError):
        run.advance(ChainState.OCR_SUCCEEDED)


def test_vision_cannot_be_retried_after_demotion():
    run = ChainRun()
    run.advance(ChainState.VISION_ATTEMPTED)
    run.advance(ChainState.OCR_ATTEMPTED)
    with pytest.raises(RuntimeError):
        run.advance(ChainState.VISION_ATTEMPTED)


# =============================================================================
# VISION PAYLOAD
# =============================================================================

def test_payload_mapping():
    result = vision_result_from_payload(vision_payload(), page_count=1)

    oats, water, cake = result.items
    assert oats.quantity_text == "2 x 5kg"
    assert oats.confidence == 0.92
    assert water.confidence == 0.9
    assert cake.tax_applicable is False
    assert result.header.invoice_date == "2024-12-17"


def test_payload_must_be_an_object():
    with pytest.raises(RecognitionParseError):
        vision_result_from_payload(["not", "an", "object"], page_count=1)
    with pytest.raises(RecognitionParseError):
        vision_result_from_payload({"lineItems": "none"}, page_count=1)


def test_fenced_json_response_parsed():
    text = 'Here you go:\n```json\n{"lineItems": [], "confidence": 0.5}\n```'
    assert VisionExtractor._parse_response(text) == {"lineItems": [], "confidence": 0.5}

    with pytest.raises(RecognitionParseError):
        VisionExtractor._parse_response("I could not read this invoice.")
