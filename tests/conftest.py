"""Shared fixtures for the invoice reconciler test suite."""

import io
import time

import fitz
import pytest
from PIL import Image

from config import ConfigurationManager
from invoice_reconciler.catalog import CatalogMatcher, CatalogUpdater, MarkupPolicy, PricingCalculator
from invoice_reconciler.learning import VendorProfileService
from invoice_reconciler.ocr_engine import OCREngine, OCRPageResult
from invoice_reconciler.output_handler import ReviewExporter
from invoice_reconciler.persistence import SQLAlchemyRepository
from invoice_reconciler.pipeline import InvoicePipeline
from invoice_reconciler.postprocessor import ExtractionNormalizer
from invoice_reconciler.recognition import RecognitionChain
from invoice_reconciler.utils.exceptions import RecognitionTransportError


LITTLE_VALLEY_TEXT = """Little Valley Distribution
Tax Invoice No: 104233
Date: 17/12/2024
Qty Item Description Price Extended
2 LV1001 Oat Flakes 5kg $18.50 $0.00 $37.00 GST
4 LV2040 Byron Chai Tea 500g $18.15 $0.00 $72.60 FRE
1 LV3300 Almond Milk 24pk $48.00 $0.00 $48.00 GST
Subtotal $157.60
GST $8.50
Total $166.10"""

ROSTER_TEXT = """Weekly Staff Roster
Monday  Barista  7am - 3pm
Tuesday Kitchen  9am - 5pm
Manager on shift: Sam"""


def vision_payload(**overrides):
    payload = {
        "vendor": {"name": "Trumps Pty Ltd", "confidence": 0.95},
        "invoiceNumber": "INV-5521",
        "invoiceDate": "2024-12-17",
        "lineItems": [
            {
                "itemDescription": "Oat Flakes",
                "quantity": 2,
                "quantityText": "2 x 5kg",
                "unitCostExGst": 18.50,
                "category": "Bulk",
                "hasGst": True,
                "validationConfidence": 0.92,
            },
            {
                "itemDescription": "Coconut Water 1L",
                "quantityText": "3 boxes of 10",
                "unitCostExGst": 24.00,
                "category": "Drinks Fridge",
                "hasGst": True,
            },
            {
                "itemDescription": "BOK-CCGF-001 Cheesecake",
                "quantity": 1,
                "unitCostExGst": 12.00,
                "category": "fridge and freezer",
                "hasGst": "FRE",
            },
        ],
        "confidence": 0.9,
    }
    payload.update(overrides)
    return payload


# =============================================================================
# STUB RECOGNIZERS
# =============================================================================

class StubVision:
    """Vision tier double: returns a payload, raises, or stalls."""

    def __init__(self, payload=None, error=None, delay=0.0):
        self.payload = payload
        self.error = error
        self.delay = delay
        self.calls = 0

    def is_configured(self):
        return True

    def extract(self, images, instructions):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload


class StubOcrBackend:
    """Per-page OCR double returning fixed text for every page."""

    def __init__(self, text, confidence=0.9, error=None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.pages_seen = 0

    def recognize(self, image_bytes):
        self.pages_seen += 1
        if self.error is not None:
            raise self.error
        return OCRPageResult(text=self.text, confidence=self.confidence,
                             word_count=len(self.text.split()))


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def fresh_config():
    ConfigurationManager.reset()
    yield
    ConfigurationManager.reset()


@pytest.fixture
def repository(tmp_path):
    repo = SQLAlchemyRepository(f"sqlite:///{tmp_path / 'reconciler.db'}")
    yield repo
    repo.close()


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (64, 32), "white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def pdf_bytes():
    def build(pages=2):
        doc = fitz.open()
        for number in range(pages):
            page = doc.new_page(width=200, height=120)
            page.insert_text((20, 40), f"Invoice page {number + 1}")
        data = doc.tobytes()
        doc.close()
        return data
    return build


@pytest.fixture
def make_chain():
    def build(vision=None, ocr_text=LITTLE_VALLEY_TEXT, ocr_error=None, vision_timeout=None):
        backend = StubOcrBackend(ocr_text, error=ocr_error)
        engine = OCREngine(backend=backend, max_workers=1, timeout_seconds=5)
        return RecognitionChain(ocr_engine=engine, vision=vision, vision_timeout=vision_timeout)
    return build


@pytest.fixture
def make_pipeline(repository, make_chain, tmp_path):
    def build(chain=None, vendor_markups=None):
        learning = VendorProfileService(repository)
        calculator = PricingCalculator()
        return InvoicePipeline(
            repository,
            chain=chain or make_chain(vision=StubVision(payload=vision_payload())),
            learning=learning,
            normalizer=ExtractionNormalizer(learning=learning),
            matcher=CatalogMatcher(repository, learning),
            calculator=calculator,
            policy=MarkupPolicy(vendor_markups=vendor_markups or {}),
            updater=CatalogUpdater(repository, calculator),
            exporter=ReviewExporter(output_dir=str(tmp_path / "outputs")),
        )
    return build


@pytest.fixture
def ocr_failure():
    return RecognitionTransportError("ocr", "engine unavailable")
