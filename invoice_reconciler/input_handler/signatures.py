"""
File signature sniffing.

Documents arrive as raw bytes with no trustworthy filename, so the format
is decided from magic bytes alone.
"""

from typing import Optional

PDF_MAGIC = b"%PDF-"

# PDF readers accept the header anywhere in the first kilobyte
PDF_HEADER_WINDOW = 1024

IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff", "jpeg"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
)

# Size field of the DIB header that follows the 14 byte BMP file header
BMP_DIB_HEADER_SIZES = {12, 40, 52, 56, 64, 108, 124}

MEDIA_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
}


def sniff_image_type(data: bytes) -> Optional[str]:
    """
    Identify a raster image from its leading bytes.

    Returns:
        One of "png", "jpeg", "gif", "bmp", "webp", or None.
    """
    if not data:
        return None

    for magic, image_type in IMAGE_SIGNATURES:
        if data.startswith(magic):
            return image_type

    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"

    if is_bmp(data):
        return "bmp"

    return None


def is_bmp(data: bytes) -> bool:
    """The "BM" magic followed by a known DIB header size."""
    if len(data) < 18 or not data.startswith(b"BM"):
        return False
    return int.from_bytes(data[14:18], "little") in BMP_DIB_HEADER_SIZES


def is_pdf(data: bytes) -> bool:
    return bool(data) and PDF_MAGIC in data[:PDF_HEADER_WINDOW]


def media_type_for(data: bytes) -> Optional[str]:
    """MIME type of an image buffer, or None when it is not an image."""
    image_type = sniff_image_type(data)
    return MEDIA_TYPES.get(image_type) if image_type else None
