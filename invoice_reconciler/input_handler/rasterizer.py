"""
Document Rasterizer Module.

Turns an uploaded document into ordered page images:
    - Raster images (PNG, JPEG, GIF, BMP, WEBP) pass through unchanged
    - PDFs are rendered page by page at a fixed DPI
    - Anything else is rejected with UnsupportedFormatError

PyMuPDF renders entirely in memory. The pdf2image backend writes
intermediate frames to a temporary directory that is always removed
before returning.

Author: ML Engineering Team
"""

import tempfile
from pathlib import Path
from typing import List, Optional

import fitz  # PyMuPDF
from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFPageCountError, PDFSyntaxError

from config import get_config
from invoice_reconciler.utils.exceptions import UnsupportedFormatError
from invoice_reconciler.utils.logger import get_logger
from .signatures import is_pdf, sniff_image_type

logger = get_logger(__name__)

SUPPORTED_BACKENDS = ("pymupdf", "pdf2image")


class DocumentRasterizer:
    """
    Converts PDF or image bytes into a list of page image buffers.

    Attributes:
        dpi: Default render resolution for PDF pages
        backend: PDF renderer, "pymupdf" or "pdf2image"
        max_pages: Upper bound on rendered pages

    Example:
        >>> rasterizer = DocumentRasterizer()
        >>> pages = rasterizer.rasterize(pdf_bytes)
        >>> len(pages)
        2
    """

    def __init__(
        self,
        dpi: Optional[int] = None,
        backend: Optional[str] = None,
        max_pages: Optional[int] = None
    ) -> None:
        self.dpi = dpi or get_config("input.pdf.dpi", 200)
        self.backend = backend or get_config("input.pdf.backend", "pymupdf")
        self.max_pages = max_pages or get_config("input.pdf.max_pages", 20)

        if self.backend not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unknown PDF backend '{self.backend}', expected one of {SUPPORTED_BACKENDS}"
            )

        logger.debug(f"DocumentRasterizer initialized (DPI={self.dpi}, backend={self.backend})")

    def rasterize(self, data: bytes, dpi: Optional[int] = None) -> List[bytes]:
        """
        Rasterize a document.

        Args:
            data: Raw document bytes.
            dpi: Render resolution overriding the configured default.

        Returns:
            Page images in document order. Image inputs yield a single
            element holding the original bytes.

        Raises:
            UnsupportedFormatError: If the bytes are neither an image nor
                a readable PDF.
        """
        if not data:
            raise UnsupportedFormatError("empty document")

        image_type = sniff_image_type(data)
        if image_type is not None:
            logger.debug(f"Input is a {image_type} image, passing through")
            return [data]

        if not is_pdf(data):
            raise UnsupportedFormatError("unrecognized file signature", data)

        dpi = dpi or self.dpi
        if self.backend == "pymupdf":
            pages = self._render_with_pymupdf(data, dpi)
        else:
            pages = self._render_with_pdf2image(data, dpi)

        if not pages:
            raise UnsupportedFormatError("PDF contains no pages")

        logger.info(f"Rasterized PDF into {len(pages)} page image(s) at {dpi} DPI")
        return pages

    def _render_with_pymupdf(self, data: bytes, dpi: int) -> List[bytes]:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            logger.error(f"PyMuPDF could not open document: {e}")
            raise UnsupportedFormatError(f"unreadable PDF: {e}", data) from e

        if doc.needs_pass:
            doc.close()
            logger.error("PDF is password protected")
            raise UnsupportedFormatError("password protected PDF", data)

        pages = []
        try:
            page_count = len(doc)
            if page_count > self.max_pages:
                logger.warning(f"PDF has {page_count} pages, limiting to {self.max_pages}")

            # PDF user space is 72 units per inch
            zoom = dpi / 72.0
            matrix = fitz.Matrix(zoom, zoom)

            for page_num in range(min(page_count, self.max_pages)):
                page = doc.load_page(page_num)
                pix = page.get_pixmap(matrix=matrix)
                pages.append(pix.tobytes("png"))
        except (RuntimeError, ValueError) as e:
            logger.error(f"PyMuPDF rendering failed: {e}")
            raise UnsupportedFormatError(f"unrenderable PDF: {e}", data) from e
        finally:
            doc.close()

        return pages

    def _render_with_pdf2image(self, data: bytes, dpi: int) -> List[bytes]:
        with tempfile.TemporaryDirectory(prefix="invoice-pages-") as tmp_dir:
            try:
                paths = convert_from_bytes(
                    data,
                    dpi=dpi,
                    output_folder=tmp_dir,
                    fmt="png",
                    last_page=self.max_pages,
                    paths_only=True,
                )
            except (PDFPageCountError, PDFSyntaxError) as e:
                logger.error(f"pdf2image conversion failed: {e}")
                raise UnsupportedFormatError(f"unreadable PDF: {e}", data) from e

            # poppler names frames <uuid>-<page>.png, zero padded
            return [Path(p).read_bytes() for p in sorted(paths)]
