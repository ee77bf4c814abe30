"""
Vision Extractor Module.

Sends every page image of an invoice to a vision-capable language model in
a single request and returns the structured line items it reports.

The model is asked to answer with one ```json fenced block; anything else
is treated as a parse failure so the recognition chain can fall back to
OCR.

Author: ML Engineering Team
"""

import base64
import json
import os
import re
import time
from typing import Any, Dict, List, Optional

import anthropic

from config import get_config
from invoice_reconciler.input_handler.image_processor import ImageProcessor
from invoice_reconciler.input_handler.signatures import media_type_for
from invoice_reconciler.utils.exceptions import RecognitionParseError, RecognitionTransportError
from invoice_reconciler.utils.logger import get_logger

logger = get_logger(__name__)

# Media types the messages API accepts for image blocks
SUPPORTED_MEDIA_TYPES = ("image/png", "image/jpeg", "image/gif", "image/webp")

JSON_BLOCK = re.compile(r'```json\s*([\s\S]*?)\s*```')

INVOICE_INSTRUCTIONS = """You are reading a supplier tax invoice for an Australian retail and food business.
The images are the pages of one invoice, in order.

Extract EVERY line item from the item table. Do not summarize or truncate.

For each line item report:
- itemDescription: the product description as printed, without the supplier item code
- quantity: the number of units invoiced (the QTY column, not a pack count in the description)
- quantityText: the quantity/unit expression exactly as printed when it is not a plain number, e.g. "2 x 5kg" or "3 boxes of 10"
- unitCostExGst: cost of one invoiced unit excluding GST
- priceExGst: line total excluding GST
- hasGst: false only when the line is marked GST-free (e.g. "FRE", "$0.00" in the GST column)
- category: one of House, Bulk, Fruit & Veg, Fridge & Freezer, Naturo, Groceries, Drinks Fridge, Supplements, Personal Care, Fresh Bread
- barcode: the product barcode when printed, else null
- validationConfidence: your confidence in this line between 0 and 1

Numbers in brackets after a description, such as "(12)", are pack counts and not quantities.
When only a line total is printed, calculate unitCostExGst = priceExGst / quantity.
Format dates as YYYY-MM-DD. Dates on these invoices are day first.

Answer with a single JSON block and nothing else:

```json
{
  "vendor": {"name": "Supplier name", "confidence": 0.95},
  "invoiceNumber": "INV123456",
  "invoiceDate": "2024-12-17",
  "lineItems": [
    {
      "itemDescription": "Byron Chai Indian Spiced Tea 500g Bulk",
      "quantity": 4,
      "quantityText": null,
      "unitCostExGst": 18.15,
      "priceExGst": 72.60,
      "hasGst": false,
      "category": "Groceries",
      "barcode": null,
      "validationConfidence": 0.9
    }
  ],
  "confidence": 0.9
}
```"""


class VisionExtractor:
    """
    Client for the vision recognition tier.

    Attributes:
        model: Model name sent with each request
        max_tokens: Response token budget
        temperature: Sampling temperature
        timeout_seconds: HTTP timeout for the single request

    Example:
        >>> extractor = VisionExtractor.from_config()
        >>> if extractor.is_configured():
        ...     payload = extractor.extract(pages, INVOICE_INSTRUCTIONS)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[Any] = None,
        image_processor: Optional[ImageProcessor] = None
    ) -> None:
        self.api_key = api_key
        self.model = model or get_config("vision.model", "claude-3-5-haiku-20241022")
        self.max_tokens = max_tokens or get_config("vision.max_tokens", 8192)
        self.temperature = temperature if temperature is not None else get_config("vision.temperature", 0.1)
        self.timeout_seconds = timeout_seconds or get_config("vision.timeout_seconds", 90)
        self.image_processor = image_processor or ImageProcessor(auto_orient=False, grayscale=False,
                                                                 enhance_contrast=False)
        self._client = client

    @classmethod
    def from_config(cls) -> 'VisionExtractor':
        """Build an extractor whose credential comes from the configured env var."""
        env_var = get_config("vision.api_key_env", "ANTHROPIC_API_KEY")
        api_key = os.environ.get(env_var) if get_config("vision.enabled", True) else None
        return cls(api_key=api_key)

    def is_configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self):
        if self._client is None:
            # Retries are the chain's decision, not the SDK's
            self._client = anthropic.Anthropic(
                api_key=self.api_key,
                timeout=self.timeout_seconds,
                max_retries=0,
            )
        return self._client

    def extract(self, images: List[bytes], instructions: str = INVOICE_INSTRUCTIONS) -> Dict[str, Any]:
        """
        Send all page images plus instructions in one request.

        Args:
            images: Page images in document order.
            instructions: Extraction instruction text.

        Returns:
            The decoded JSON object from the model's answer.

        Raises:
            RecognitionTransportError: On network, API or timeout errors.
            RecognitionParseError: When the answer holds no readable JSON object.
        """
        content = [self._image_block(image) for image in images]
        content.append({"type": "text", "text": instructions})

        logger.info(f"Sending {len(images)} page(s) to vision model {self.model}")
        start_time = time.time()

        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.APITimeoutError as e:
            raise RecognitionTransportError("vision", f"timed out: {e}") from e
        except anthropic.APIError as e:
            raise RecognitionTransportError("vision", str(e)) from e

        elapsed = time.time() - start_time
        text = ''.join(
            getattr(block, "text", "") for block in response.content
            if getattr(block, "type", None) == "text"
        )
        logger.debug(f"Vision response: {len(text)} chars in {elapsed:.2f}s")

        if getattr(response, "stop_reason", None) == "max_tokens":
            logger.warning("Vision response hit the token limit and may be truncated")

        return self._parse_response(text)

    def _image_block(self, image: bytes) -> Dict[str, Any]:
        media_type = media_type_for(image)
        if media_type not in SUPPORTED_MEDIA_TYPES:
            image = self.image_processor.to_png(image)
            media_type = "image/png"

        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": media_type,
                "data": base64.b64encode(image).decode("ascii"),
            },
        }

    @staticmethod
    def _parse_response(text: str) -> Dict[str, Any]:
        match = JSON_BLOCK.search(text)
        raw = match.group(1) if match else text.strip()

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise RecognitionParseError("vision", f"invalid JSON: {e.msg}") from e

        if not isinstance(payload, dict):
            raise RecognitionParseError("vision", "response is not a JSON object")

        return payload
