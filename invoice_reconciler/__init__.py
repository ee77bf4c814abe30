"""
Invoice Reconciler - Source Package.

Turns uploaded supplier invoices (PDF or image) into priced catalog
updates. Each module has a single responsibility.

Modules:
    - input_handler: Signature sniffing and PDF rasterization
    - recognition: Vision tier with OCR and text parser fallback
    - ocr_engine: Per-page Tesseract recognition
    - postprocessor: Quantity, pack size, name and category normalization
    - catalog: Vendor-scoped matching, pricing and price history
    - learning: Per-vendor correction memory
    - persistence: SQLAlchemy repository
    - output_handler: Review workbook export

Architecture:
    Rasterize → Vision | OCR + Parser → Normalize → Match → Price → Catalog
                                          ↑                          ↓
                                     Vendor learning  ←  Operator corrections
"""

__version__ = "1.0.0"
__author__ = "ML Engineering Team"

__all__ = [
    'input_handler',
    'recognition',
    'ocr_engine',
    'postprocessor',
    'catalog',
    'learning',
    'persistence',
    'output_handler',
    'utils',
]
