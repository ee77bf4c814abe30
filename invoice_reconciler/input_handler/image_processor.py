"""
Image Processor Module.

Prepares page images for the recognizers:
    - Orientation correction from EXIF
    - Colour mode normalization
    - Downscaling of oversized scans
    - Contrast/sharpness enhancement for OCR
    - Re-encoding to PNG for recognizers with narrow format support

Author: ML Engineering Team
"""

import io
from typing import Optional

from PIL import Image, ImageEnhance, ImageOps, UnidentifiedImageError

from config import get_config
from invoice_reconciler.utils.exceptions import UnsupportedFormatError
from invoice_reconciler.utils.logger import get_logger

logger = get_logger(__name__)


class ImageProcessor:
    """
    Normalizes page images before recognition.

    Attributes:
        auto_orient: Whether to apply EXIF orientation
        grayscale: Whether OCR input is converted to grayscale
        enhance_contrast: Whether to apply contrast enhancement
        max_width: Maximum image width in pixels
        max_height: Maximum image height in pixels

    Example:
        >>> processor = ImageProcessor()
        >>> image = processor.prepare_for_ocr(page_bytes)
    """

    def __init__(
        self,
        auto_orient: Optional[bool] = None,
        grayscale: Optional[bool] = None,
        enhance_contrast: Optional[bool] = None
    ) -> None:
        self.auto_orient = get_config("input.image.auto_orient", True) if auto_orient is None else auto_orient
        self.grayscale = get_config("input.image.grayscale", True) if grayscale is None else grayscale
        self.enhance_contrast = (
            get_config("input.image.enhance_contrast", True)
            if enhance_contrast is None else enhance_contrast
        )
        self.max_width = get_config("input.image.max_width", 2480)
        self.max_height = get_config("input.image.max_height", 3508)

    def load(self, data: bytes) -> Image.Image:
        """
        Decode image bytes.

        Raises:
            UnsupportedFormatError: If Pillow cannot decode the buffer.
        """
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise UnsupportedFormatError(f"undecodable image: {e}", data) from e
        return image

    def prepare_for_ocr(self, data: bytes) -> Image.Image:
        """
        Decode and clean up a page image for the OCR engine.

        Processing steps:
            1. Fix orientation from EXIF
            2. Convert to RGB
            3. Resize if too large
            4. Grayscale and enhance (optional)
        """
        image = self.load(data)

        if self.auto_orient:
            image = ImageOps.exif_transpose(image)

        image = self._convert_to_rgb(image)
        image = self._resize_if_needed(image)

        if self.grayscale:
            image = image.convert('L')

        if self.enhance_contrast:
            image = self._enhance_image(image)

        return image

    def to_png(self, data: bytes) -> bytes:
        """Re-encode any decodable image as PNG."""
        image = self._convert_to_rgb(self.load(data))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()

    def _convert_to_rgb(self, image: Image.Image) -> Image.Image:
        if image.mode == 'RGB':
            return image

        if image.mode in ('RGBA', 'LA') or (image.mode == 'P' and 'transparency' in image.info):
            # Flatten transparency onto white, scanners never produce alpha
            rgba = image.convert('RGBA')
            background = Image.new('RGB', rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[3])
            return background

        return image.convert('RGB')

    def _resize_if_needed(self, image: Image.Image) -> Image.Image:
        width, height = image.size
        if width <= self.max_width and height <= self.max_height:
            return image

        ratio = min(self.max_width / width, self.max_height / height)
        new_size = (int(width * ratio), int(height * ratio))
        logger.debug(f"Resized image from {width}x{height} to {new_size[0]}x{new_size[1]}")
        return image.resize(new_size, Image.LANCZOS)

    def _enhance_image(self, image: Image.Image) -> Image.Image:
        image = ImageEnhance.Contrast(image).enhance(1.2)
        return ImageEnhance.Sharpness(image).enhance(1.1)
