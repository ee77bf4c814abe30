"""
Custom Exceptions Module.

All errors raised by the invoice reconciler derive from
``InvoiceReconcilerError`` so callers can catch the whole family at once.

Exception Hierarchy:
    InvoiceReconcilerError (base)
    ├── InputError
    │   └── UnsupportedFormatError
    ├── RecognitionError
    │   ├── RecognitionTransportError
    │   ├── RecognitionParseError
    │   └── OCREngineNotAvailableError
    ├── CatalogError
    │   ├── CatalogConflictError
    │   ├── CatalogItemNotFoundError
    │   └── PricingError
    ├── LifecycleError
    │   ├── VendorNotFoundError
    │   ├── InvoiceNotFoundError
    │   ├── LineItemNotFoundError
    │   └── InvalidStateTransitionError
    ├── RepositoryError
    │   ├── ConcurrencyConflictError
    │   └── InvoiceInUseError
    ├── LearningWriteError
    └── OutputError
        └── ExcelExportError
"""

from typing import Iterable, Optional


class InvoiceReconcilerError(Exception):
    """
    Base exception for all reconciler errors.

    Attributes:
        message: Human-readable error message.
        details: Dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# INPUT ERRORS
# =============================================================================

class InputError(InvoiceReconcilerError):
    """Base exception for document input errors."""
    pass


class UnsupportedFormatError(InputError):
    """
    Raised when a document is neither a recognizable image nor a parseable PDF.

    Example:
        >>> raise UnsupportedFormatError("unknown signature", b"PK\\x03\\x04")
    """

    def __init__(self, reason: str, header: Optional[bytes] = None):
        message = f"Unsupported document format: {reason}"
        details = {"reason": reason}
        if header is not None:
            details["header"] = header[:8].hex()
        super().__init__(message, details)


# =============================================================================
# RECOGNITION ERRORS
# =============================================================================

class RecognitionError(InvoiceReconcilerError):
    """Base exception for recognizer failures."""
    pass


class RecognitionTransportError(RecognitionError):
    """Raised when a recognizer call fails on the network or times out."""

    def __init__(self, tier: str, reason: str = None):
        message = f"{tier} recognizer call failed"
        details = {"tier": tier, "reason": reason}
        super().__init__(message, details)


class RecognitionParseError(RecognitionError):
    """Raised when a recognizer answers with something that cannot be read."""

    def __init__(self, tier: str, reason: str = None):
        message = f"Could not parse {tier} recognizer response"
        details = {"tier": tier, "reason": reason}
        super().__init__(message, details)


class OCREngineNotAvailableError(RecognitionError):
    """Raised when the OCR engine binary cannot be found."""

    def __init__(self, engine_name: str):
        message = f"OCR engine not available: {engine_name}"
        details = {"engine": engine_name}
        super().__init__(message, details)


# =============================================================================
# CATALOG ERRORS
# =============================================================================

class CatalogError(InvoiceReconcilerError):
    """Base exception for catalog errors."""
    pass


class CatalogConflictError(CatalogError):
    """Raised when a catalog write would duplicate a SKU, a barcode or a vendor's item name."""

    def __init__(self, fields: Iterable[str], item_name: str = None):
        fields = list(fields)
        message = f"Catalog conflict on {', '.join(fields)}"
        details = {"fields": fields, "item_name": item_name}
        super().__init__(message, details)


class CatalogItemNotFoundError(CatalogError):
    """Raised when a catalog item id does not exist."""

    def __init__(self, item_id: int):
        super().__init__(f"Catalog item not found: {item_id}", {"item_id": item_id})


class PricingError(CatalogError):
    """Raised when pricing inputs are outside their valid domain."""
    pass


# =============================================================================
# LIFECYCLE ERRORS
# =============================================================================

class LifecycleError(InvoiceReconcilerError):
    """Base exception for invoice lifecycle errors."""
    pass


class VendorNotFoundError(LifecycleError):
    """Raised when a vendor id does not exist."""

    def __init__(self, vendor_id: int):
        super().__init__(f"Vendor not found: {vendor_id}", {"vendor_id": vendor_id})


class InvoiceNotFoundError(LifecycleError):
    """Raised when an invoice id does not exist."""

    def __init__(self, invoice_id: int):
        super().__init__(f"Invoice not found: {invoice_id}", {"invoice_id": invoice_id})


class LineItemNotFoundError(LifecycleError):
    """Raised when a line item does not belong to the given invoice."""

    def __init__(self, invoice_id: int, line_id: int):
        message = f"Line item {line_id} not found on invoice {invoice_id}"
        super().__init__(message, {"invoice_id": invoice_id, "line_id": line_id})


class InvalidStateTransitionError(LifecycleError):
    """Raised when an operation is not allowed in the invoice's current status."""

    def __init__(self, invoice_id: int, current: str, operation: str):
        message = f"Cannot {operation} invoice {invoice_id} in status {current}"
        details = {"invoice_id": invoice_id, "status": current, "operation": operation}
        super().__init__(message, details)


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================

class RepositoryError(InvoiceReconcilerError):
    """Raised when the storage layer fails."""

    def __init__(self, operation: str, reason: str = None):
        message = f"Repository operation failed: {operation}"
        details = {"operation": operation, "reason": reason}
        super().__init__(message, details)


class ConcurrencyConflictError(RepositoryError):
    """Raised when a versioned row changed underneath an update."""

    def __init__(self, entity: str, entity_id: int):
        super().__init__(f"update {entity}", f"stale version for {entity} {entity_id}")
        self.details.update({"entity": entity, "entity_id": entity_id})


class InvoiceInUseError(RepositoryError):
    """Raised when deleting an invoice that price history still references."""

    def __init__(self, invoice_id: int):
        super().__init__("delete invoice", f"invoice {invoice_id} is referenced by price history")
        self.details["invoice_id"] = invoice_id


# =============================================================================
# LEARNING ERRORS
# =============================================================================

class LearningWriteError(InvoiceReconcilerError):
    """
    Describes a failed vendor profile update.

    Never raised out of the learning service; it is carried inside a
    ``LearningWriteResult`` so callers may inspect or ignore it.
    """

    def __init__(self, vendor_id: int, field: str, reason: str = None):
        message = f"Could not record {field} correction for vendor {vendor_id}"
        details = {"vendor_id": vendor_id, "field": field, "reason": reason}
        super().__init__(message, details)


# =============================================================================
# OUTPUT ERRORS
# =============================================================================

class OutputError(InvoiceReconcilerError):
    """Base exception for output errors."""
    pass


class ExcelExportError(OutputError):
    """Raised when Excel export fails."""

    def __init__(self, filepath: str, reason: str = None):
        message = f"Excel export failed: {filepath}"
        details = {"filepath": filepath, "reason": reason}
        super().__init__(message, details)


__all__ = [
    'InvoiceReconcilerError',
    'InputError',
    'UnsupportedFormatError',
    'RecognitionError',
    'RecognitionTransportError',
    'RecognitionParseError',
    'OCREngineNotAvailableError',
    'CatalogError',
    'CatalogConflictError',
    'CatalogItemNotFoundError',
    'PricingError',
    'LifecycleError',
    'VendorNotFoundError',
    'InvoiceNotFoundError',
    'LineItemNotFoundError',
    'InvalidStateTransitionError',
    'RepositoryError',
    'ConcurrencyConflictError',
    'InvoiceInUseError',
    'LearningWriteError',
    'OutputError',
    'ExcelExportError',
]
