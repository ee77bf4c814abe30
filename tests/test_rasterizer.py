"""Tests for signature sniffing and PDF rasterization."""

import io

import fitz
import pytest
from PIL import Image

from invoice_reconciler.input_handler import (
    DocumentRasterizer,
    ImageProcessor,
    is_pdf,
    media_type_for,
    sniff_image_type,
)
from invoice_reconciler.recognition import UnsupportedFormat
from invoice_reconciler.utils.exceptions import UnsupportedFormatError

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def test_sniff_image_types():
    assert sniff_image_type(PNG_MAGIC + b"rest") == "png"
    assert sniff_image_type(b"\xff\xd8\xff\xe0rest") == "jpeg"
    assert sniff_image_type(b"GIF89a....") == "gif"
    assert sniff_image_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "webp"
    assert sniff_image_type(b"%PDF-1.7") is None
    assert sniff_image_type(b"") is None


def test_media_type_for_image_and_non_image():
    assert media_type_for(PNG_MAGIC) == "image/png"
    assert media_type_for(encode(Image.new("RGB", (4, 4)), "BMP")) == "image/bmp"
    assert media_type_for(b"hello") is None


def test_text_starting_with_bm_is_not_a_bitmap():
    text = b"BMW parts order 2024\nBrake pads x 4   $120.00\n"

    assert sniff_image_type(text) is None
    with pytest.raises(UnsupportedFormatError):
        DocumentRasterizer().rasterize(text)


def test_pdf_header_found_within_first_kilobyte():
    assert is_pdf(b"%PDF-1.4\n")
    assert is_pdf(b"\x00" * 100 + b"%PDF-1.4\n")
    assert not is_pdf(b"\x00" * 2048 + b"%PDF-1.4\n")


def test_image_passes_through_unchanged(png_bytes):
    pages = DocumentRasterizer().rasterize(png_bytes)
    assert pages == [png_bytes]


def test_pdf_renders_one_png_per_page_in_order(pdf_bytes):
    pages = DocumentRasterizer(dpi=72).rasterize(pdf_bytes(pages=3))

    assert len(pages) == 3
    assert all(page.startswith(PNG_MAGIC) for page in pages)


def test_pdf_page_limit(pdf_bytes):
    pages = DocumentRasterizer(dpi=72, max_pages=2).rasterize(pdf_bytes(pages=4))
    assert len(pages) == 2


@pytest.mark.parametrize("data", [b"", b"PK\x03\x04zipfile", b"just some text"])
def test_unrecognized_bytes_rejected(data):
    with pytest.raises(UnsupportedFormatError):
        DocumentRasterizer().rasterize(data)


def test_corrupt_pdf_rejected():
    with pytest.raises(UnsupportedFormatError) as exc_info:
        DocumentRasterizer().rasterize(b"%PDF-1.4\nthis is not really a pdf")
    assert "PDF" in exc_info.value.details["reason"]


def encrypted_pdf():
    doc = fitz.open()
    doc.new_page().insert_text((20, 40), "Tax Invoice")
    data = doc.tobytes(encryption=fitz.PDF_ENCRYPT_AES_256, user_pw="secret", owner_pw="owner")
    doc.close()
    return data


def test_password_protected_pdf_rejected():
    with pytest.raises(UnsupportedFormatError) as exc_info:
        DocumentRasterizer().rasterize(encrypted_pdf())
    assert "password" in exc_info.value.details["reason"]


def test_password_protected_pdf_is_an_unsupported_format(make_chain):
    result = make_chain().run(encrypted_pdf())

    assert isinstance(result, UnsupportedFormat)


def test_unknown_backend_is_a_configuration_error():
    with pytest.raises(ValueError):
        DocumentRasterizer(backend="ghostscript")


# =============================================================================
# IMAGE PREPARATION
# =============================================================================

def encode(image, fmt="PNG"):
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def test_ocr_image_is_grayscale_and_bounded():
    processor = ImageProcessor()
    processor.max_width, processor.max_height = 100, 100

    image = processor.prepare_for_ocr(encode(Image.new("RGB", (400, 200), "white")))

    assert image.mode == "L"
    assert image.size == (100, 50)


def test_transparent_image_flattened_onto_white():
    png = ImageProcessor(grayscale=False, enhance_contrast=False).to_png(
        encode(Image.new("RGBA", (4, 4), (0, 0, 0, 0))))

    with Image.open(io.BytesIO(png)) as image:
        assert image.mode == "RGB"
        assert image.getpixel((0, 0)) == (255, 255, 255)


def test_undecodable_image_rejected():
    with pytest.raises(UnsupportedFormatError):
        ImageProcessor().load(PNG_MAGIC + b"truncated")
