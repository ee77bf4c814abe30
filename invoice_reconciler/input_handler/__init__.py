"""
Input Handler Module.

Document intake for the reconciler:
    - Signature sniffing (PDF and raster images)
    - PDF rasterization to page images
    - Page image preparation for OCR
"""

from .rasterizer import DocumentRasterizer
from .image_processor import ImageProcessor
from .signatures import is_pdf, media_type_for, sniff_image_type

__all__ = ['DocumentRasterizer', 'ImageProcessor', 'is_pdf', 'media_type_for', 'sniff_image_type']
