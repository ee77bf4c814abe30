"""
Invoice Pipeline Module.

Orchestrates one invoice through its lifecycle:

    submit_invoice  -> INGESTED
    run_extraction  -> EXTRACTED   (rasterize, recognize, normalize)
    reconcile       -> RECONCILED  (match, price, update catalog)
    post_invoice    -> POSTED      (catalog changes final)

Human corrections flow back into the vendor learning profile through
``record_correction`` and ``correct_line_item``.

Every collaborator is injected; ``InvoicePipeline.from_config()`` wires
the default stack from settings.yaml.

Usage:
    with InvoicePipeline.from_config() as pipeline:
        vendor = pipeline.ensure_vendor("Little Valley Distribution")
        invoice_id = pipeline.submit_invoice(vendor.id, pdf_bytes, "inv-1042.pdf")
        summary = pipeline.run_extraction(invoice_id)
        lines = pipeline.reconcile(invoice_id)
        pipeline.post_invoice(invoice_id)

Author: ML Engineering Team
"""

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from invoice_reconciler.catalog import (
    CatalogMatcher,
    CatalogUpdater,
    MarkupPolicy,
    PricingCalculator,
    validate_pricing,
)
from invoice_reconciler.entities import (
    CatalogItem,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    PriceHistoryEntry,
    Vendor,
)
from invoice_reconciler.learning import CorrectionField, LearningWriteResult, VendorProfileService
from invoice_reconciler.persistence import Repository
from invoice_reconciler.postprocessor import DateNormalizer, ExtractionNormalizer
from invoice_reconciler.recognition import (
    RecognitionChain,
    RecognitionEmpty,
    TierAttempt,
    UnsupportedFormat,
)
from invoice_reconciler.utils.exceptions import (
    CatalogError,
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    InvoiceNotFoundError,
    LineItemNotFoundError,
    UnsupportedFormatError,
    VendorNotFoundError,
)
from invoice_reconciler.utils.helpers import round_money, to_decimal, utcnow
from invoice_reconciler.utils.logger import get_logger

logger = get_logger(__name__)

MANUAL_ENTRY_NOTE = "No line items recognized; manual entry required"


class ExtractionOutcome(str, Enum):
    EXTRACTED = "EXTRACTED"
    RECOGNITION_EMPTY = "RECOGNITION_EMPTY"


@dataclass
class ExtractionSummary:
    """
    Result of one extraction run, shaped for a review screen.

    Attributes:
        invoice_id: Invoice the run belongs to
        item_count: Line items stored
        vendor_name: Name of the invoice's vendor
        detected_vendor_name: Vendor name read from the document, if any
        confidence: Recognition confidence (0-1)
        provenance: Tier that produced the items, None when empty
        outcome: EXTRACTED or RECOGNITION_EMPTY
        parser_coverage: OCR text parser coverage, None for vision
        attempts: What each recognition tier did
    """
    invoice_id: int
    item_count: int
    vendor_name: Optional[str]
    confidence: float
    provenance: Optional[str]
    outcome: ExtractionOutcome
    detected_vendor_name: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    parser_coverage: Optional[float] = None
    attempts: List[TierAttempt] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


class InvoicePipeline:
    """
    Inbound operations of the invoice reconciler.

    Attributes:
        repository: Persistence boundary for every entity
        chain: Recognition chain (vision tier, then OCR tier)
        learning: Vendor learning profile service
        normalizer: Extraction normalizer consulting learned hints
        matcher: Vendor-scoped catalog matcher
        calculator: Pricing calculator
        policy: Markup policy table
        updater: Catalog writer with price history
    """

    def __init__(
        self,
        repository: Repository,
        chain: Optional[RecognitionChain] = None,
        learning: Optional[VendorProfileService] = None,
        normalizer: Optional[ExtractionNormalizer] = None,
        matcher: Optional[CatalogMatcher] = None,
        calculator: Optional[PricingCalculator] = None,
        policy: Optional[MarkupPolicy] = None,
        updater: Optional[CatalogUpdater] = None,
        date_normalizer: Optional[DateNormalizer] = None,
        exporter=None
    ) -> None:
        self.repository = repository
        self.chain = chain or RecognitionChain()
        self.learning = learning or VendorProfileService(repository)
        self.normalizer = normalizer or ExtractionNormalizer(learning=self.learning)
        self.matcher = matcher or CatalogMatcher(repository, self.learning)
        self.calculator = calculator or PricingCalculator()
        self.policy = policy or MarkupPolicy()
        self.updater = updater or CatalogUpdater(repository, self.calculator)
        self.date_normalizer = date_normalizer or DateNormalizer()
        self._exporter = exporter

    @classmethod
    def from_config(cls) -> 'InvoicePipeline':
        """Wire the default stack: SQLAlchemy repository, vision tier, Tesseract OCR."""
        from invoice_reconciler.persistence import SQLAlchemyRepository
        from invoice_reconciler.recognition import VisionExtractor

        repository = SQLAlchemyRepository()
        chain = RecognitionChain(vision=VisionExtractor.from_config())
        return cls(repository, chain=chain)

    def __enter__(self) -> 'InvoicePipeline':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.repository.close()

    # ================================================================= vendors

    def ensure_vendor(self, name: str) -> Vendor:
        """Vendor with this name (case-insensitive), created if missing."""
        vendor = self.repository.find_vendor_by_name(name)
        if vendor is None:
            vendor = self.repository.add_vendor(name)
            logger.info(f"Created vendor {vendor.id} '{vendor.name}'")
        return vendor

    # =================================================================== submit

    def submit_invoice(self, vendor_id: int, document: bytes, filename: Optional[str] = None) -> int:
        """
        Store an uploaded document as a new INGESTED invoice.

        Returns:
            The new invoice id.
        """
        if self.repository.get_vendor(vendor_id) is None:
            raise VendorNotFoundError(vendor_id)
        if not document:
            raise UnsupportedFormatError("empty document")

        invoice = self.repository.add_invoice(Invoice(
            vendor_id=vendor_id,
            document=document,
            filename=filename,
            status=InvoiceStatus.INGESTED,
            created_at=utcnow(),
        ))
        logger.info(f"Submitted invoice {invoice.id} ({filename or 'unnamed'}, {len(document)} bytes)")
        return invoice.id

    # =============================================================== extraction

    def run_extraction(self, invoice_id: int) -> ExtractionSummary:
        """
        Recognize and normalize the invoice's line items.

        Re-runnable while the invoice is INGESTED or EXTRACTED; a re-run
        replaces the stored line items. When no tier recognizes any item
        the invoice still becomes EXTRACTED, with zero items and flagged
        for manual entry.

        Raises:
            UnsupportedFormatError: Document is neither image nor PDF. The
                invoice stays INGESTED.
            InvalidStateTransitionError: Invoice already reconciled or posted.
        """
        invoice = self._load_invoice(invoice_id)
        self._require_status(invoice, "extract", InvoiceStatus.INGESTED, InvoiceStatus.EXTRACTED)
        vendor = self._load_vendor(invoice.vendor_id)

        logger.info(f"Extracting invoice {invoice_id} (vendor '{vendor.name}')")
        result = self.chain.run(invoice.document)

        if isinstance(result, UnsupportedFormat):
            raise UnsupportedFormatError(result.reason)

        if isinstance(result, RecognitionEmpty):
            self.repository.replace_line_items(invoice_id, [])
            invoice.status = InvoiceStatus.EXTRACTED
            invoice.provenance = None
            invoice.extraction_confidence = 0.0
            invoice.needs_rectification = True
            invoice.rectification_notes = f"{MANUAL_ENTRY_NOTE} ({result.reason})"
            self._apply_totals(invoice, [])
            self.repository.update_invoice(invoice)

            logger.warning(f"Invoice {invoice_id}: {MANUAL_ENTRY_NOTE}")
            return ExtractionSummary(
                invoice_id=invoice_id,
                item_count=0,
                vendor_name=vendor.name,
                confidence=0.0,
                provenance=None,
                outcome=ExtractionOutcome.RECOGNITION_EMPTY,
                attempts=result.attempts,
            )

        extracted = self.normalizer.normalize(result.items, vendor_id=vendor.id,
                                              default_confidence=result.confidence)
        lines = [InvoiceLineItem.from_extracted(invoice_id, position, item)
                 for position, item in enumerate(extracted)]
        lines = self.repository.replace_line_items(invoice_id, lines)

        header = result.header
        invoice.status = InvoiceStatus.EXTRACTED
        invoice.invoice_number = header.invoice_number or invoice.invoice_number
        invoice.invoice_date = self.date_normalizer.normalize(header.invoice_date) or invoice.invoice_date
        invoice.provenance = result.provenance
        invoice.extraction_confidence = result.confidence
        invoice.needs_rectification = False
        invoice.rectification_notes = None
        self._apply_totals(invoice, lines)
        self._flag_lines(invoice, lines)
        self.repository.update_invoice(invoice)

        parser_coverage = getattr(result, "parser_coverage", None)
        logger.info(
            f"Invoice {invoice_id} extracted: {len(lines)} item(s) via {result.provenance.value}, "
            f"confidence {result.confidence:.2f}"
        )
        return ExtractionSummary(
            invoice_id=invoice_id,
            item_count=len(lines),
            vendor_name=vendor.name,
            confidence=result.confidence,
            provenance=result.provenance.value,
            outcome=ExtractionOutcome.EXTRACTED,
            detected_vendor_name=header.vendor_name,
            invoice_number=invoice.invoice_number,
            invoice_date=invoice.invoice_date,
            parser_coverage=parser_coverage,
            attempts=result.attempts,
        )

    # =========================================================== reconciliation

    def reconcile(self, invoice_id: int) -> List[InvoiceLineItem]:
        """
        Match, price and write every line to the vendor's catalog.

        Idempotent: a second run against an unchanged catalog links the
        same catalog items and writes no history. A catalog conflict on
        one line is noted on that line and does not stop the others.

        Raises:
            InvalidStateTransitionError: Invoice not yet extracted, or posted.
        """
        invoice = self._load_invoice(invoice_id)
        self._require_status(invoice, "reconcile", InvoiceStatus.EXTRACTED, InvoiceStatus.RECONCILED)
        vendor = self._load_vendor(invoice.vendor_id)

        lines = self.repository.list_line_items(invoice_id)
        logger.info(f"Reconciling invoice {invoice_id}: {len(lines)} line(s)")

        failed = 0
        for line in lines:
            try:
                self._reconcile_line(invoice, vendor, line)
            except (CatalogError, ConcurrencyConflictError) as e:
                failed += 1
                line.catalog_item_id = None
                line.add_note(f"catalog update failed: {e.message}")
                logger.warning(f"Invoice {invoice_id} line {line.position + 1} '{line.name}': {e}")
            self.repository.update_line_item(line)

        lines = self.repository.list_line_items(invoice_id)
        invoice.status = InvoiceStatus.RECONCILED
        self._apply_totals(invoice, lines)
        self._flag_lines(invoice, lines)
        self.repository.update_invoice(invoice)

        logger.info(
            f"Invoice {invoice_id} reconciled: {len(lines) - failed} linked, {failed} failed"
        )
        return lines

    def _reconcile_line(self, invoice: Invoice, vendor: Vendor, line: InvoiceLineItem) -> None:
        item = self._linked_item(vendor, line)
        if item is None:
            match = self.matcher.match(vendor.id, line.name)
            item = match.item

        created = False
        if item is None:
            markup, source = self.policy.resolve(line.category, vendor.name, line_manual=line.manual_markup)
            item, created = self.updater.create_item(vendor.id, line, markup)

        if not created:
            markup, source = self.policy.resolve(
                item.category, vendor.name,
                line_manual=line.manual_markup, item_manual=item.manual_markup,
            )
            item, _ = self.updater.apply_cost(
                item,
                line.effective_unit_cost_ex_gst,
                markup,
                line.tax_applicable,
                tax_rate=line.tax_rate,
                source_invoice_id=invoice.id,
            )

        pricing = self.calculator.calculate(
            line.effective_unit_cost_ex_gst, markup, line.tax_rate, line.tax_applicable)
        line.catalog_item_id = item.id
        line.markup = pricing.markup
        line.markup_source = source
        line.sell_ex_gst = pricing.sell_ex_gst
        line.sell_inc_gst = pricing.sell_inc_gst

        for warning in validate_pricing(pricing):
            line.add_note(warning)

    def _linked_item(self, vendor: Vendor, line: InvoiceLineItem) -> Optional[CatalogItem]:
        if line.catalog_item_id is None:
            return None
        item = self.repository.get_catalog_item(line.catalog_item_id)
        if item is None or item.vendor_id != vendor.id:
            return None
        return item

    # ================================================================== posting

    def post_invoice(self, invoice_id: int) -> Invoice:
        """
        Finalize a reconciled invoice. Posted invoices accept no further
        extraction, reconciliation or line corrections.
        """
        invoice = self._load_invoice(invoice_id)
        self._require_status(invoice, "post", InvoiceStatus.RECONCILED)

        lines = self.repository.list_line_items(invoice_id)
        invoice.status = InvoiceStatus.POSTED
        invoice.posted_at = utcnow()
        self._apply_totals(invoice, lines)
        invoice = self.repository.update_invoice(invoice)

        logger.info(f"Posted invoice {invoice_id}, total inc GST {invoice.total_inc_gst}")
        return invoice

    # ============================================================== corrections

    def record_correction(
        self,
        vendor_id: int,
        field: str,
        original_value: Any,
        corrected_value: Any,
        confidence: Optional[float] = None,
        reason: Optional[str] = None
    ) -> LearningWriteResult:
        """Feed one human correction to the vendor profile. Never raises."""
        return self.learning.record_correction(
            vendor_id, field, original_value, corrected_value, confidence, reason)

    def correct_line_item(
        self,
        invoice_id: int,
        line_id: int,
        name: Optional[str] = None,
        category: Optional[str] = None,
        quantity: Optional[Any] = None,
        pack_size: Optional[Any] = None,
        unit_cost: Optional[Any] = None,
        markup: Optional[Any] = None
    ) -> Tuple[InvoiceLineItem, List[LearningWriteResult]]:
        """
        Apply an operator's edit to one line and learn from it.

        Name, category, pack size and unit cost corrections are recorded in
        the vendor profile. On a reconciled invoice the line is repriced and
        written to the catalog again.

        Returns:
            (updated line, learning write results)
        """
        invoice = self._load_invoice(invoice_id)
        self._require_status(invoice, "correct", InvoiceStatus.EXTRACTED, InvoiceStatus.RECONCILED)
        line = self._load_line(invoice_id, line_id)
        vendor_id = invoice.vendor_id
        learned = []

        if name is not None and name.strip() and name.strip() != line.name:
            learned.append(self.learning.record_correction(
                vendor_id, CorrectionField.ITEM_DESCRIPTION, line.name, name.strip()))
            line.name = name.strip()

        if category is not None:
            canonical = self.normalizer.categories.match(category)
            if canonical is None:
                raise ValueError(f"Unknown category: {category}")
            if canonical != line.category:
                learned.append(self.learning.record_correction(
                    vendor_id, CorrectionField.CATEGORY, line.raw_description, canonical))
                line.category = canonical

        if quantity is not None:
            line.quantity = self._positive(quantity, "quantity")

        if pack_size is not None:
            new_pack = self._positive(pack_size, "pack size")
            if new_pack != line.pack_size or line.pack_is_measure:
                learned.append(self.learning.record_correction(
                    vendor_id, CorrectionField.QUANTITY, line.raw_description, int(new_pack)))
            line.pack_size = new_pack
            line.pack_is_measure = False

        if unit_cost is not None:
            new_cost = to_decimal(unit_cost)
            if new_cost is None or new_cost < 0:
                raise ValueError(f"Invalid unit cost: {unit_cost!r}")
            if new_cost != line.unit_cost_ex_gst:
                if line.unit_cost_ex_gst > 0:
                    learned.append(self.learning.record_correction(
                        vendor_id, CorrectionField.UNIT_COST, line.unit_cost_ex_gst, new_cost))
                line.unit_cost_ex_gst = new_cost

        if markup is not None:
            line.manual_markup = self._positive(markup, "markup")

        line.effective_unit_cost_ex_gst = self.normalizer.effective_cost(
            line.unit_cost_ex_gst, line.pack_size, line.pack_is_measure)

        if invoice.status == InvoiceStatus.RECONCILED:
            vendor = self._load_vendor(vendor_id)
            try:
                self._reconcile_line(invoice, vendor, line)
            except (CatalogError, ConcurrencyConflictError) as e:
                line.catalog_item_id = None
                line.add_note(f"catalog update failed: {e.message}")

        line = self.repository.update_line_item(line)
        lines = self.repository.list_line_items(invoice_id)
        self._apply_totals(invoice, lines)
        self.repository.update_invoice(invoice)

        logger.info(f"Corrected line {line_id} of invoice {invoice_id} ({len(learned)} learning write(s))")
        return line, learned

    # ================================================================ operators

    def set_item_markup(self, catalog_item_id: int, markup: Any) -> CatalogItem:
        """Manual markup for a catalog item; sell prices are recomputed."""
        self._positive(markup, "markup")
        return self.updater.set_markup(catalog_item_id, markup)

    def assign_item_codes(self, catalog_item_id: int, sku: Optional[str] = None,
                          barcode: Optional[str] = None) -> CatalogItem:
        """Set SKU/barcode. Raises CatalogConflictError when either is taken."""
        return self.updater.assign_codes(catalog_item_id, sku=sku, barcode=barcode)

    def get_price_history(self, catalog_item_id: Optional[int] = None,
                          invoice_id: Optional[int] = None) -> List[PriceHistoryEntry]:
        return self.repository.list_price_history(catalog_item_id=catalog_item_id, invoice_id=invoice_id)

    def resolve_rectification(self, invoice_id: int, note: Optional[str] = None) -> Invoice:
        """Clear the invoice's needs-rectification flag."""
        invoice = self._load_invoice(invoice_id)
        invoice.needs_rectification = False
        if note:
            invoice.rectification_notes = (
                f"{invoice.rectification_notes}; resolved: {note}"
                if invoice.rectification_notes else f"resolved: {note}"
            )
        return self.repository.update_invoice(invoice)

    def export_review(self, invoice_id: int, filename: Optional[str] = None) -> str:
        """Write the review workbook for an invoice and return its path."""
        if self._exporter is None:
            from invoice_reconciler.output_handler import ReviewExporter
            self._exporter = ReviewExporter()

        invoice = self._load_invoice(invoice_id)
        lines = self.repository.list_line_items(invoice_id)
        changes = []
        for entry in self.repository.list_price_history(invoice_id=invoice_id):
            item = self.repository.get_catalog_item(entry.catalog_item_id)
            if item is not None:
                changes.append((entry, item))
        return self._exporter.export(invoice, lines, changes, filename=filename)

    # ================================================================== helpers

    def _load_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.repository.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def _load_vendor(self, vendor_id: int) -> Vendor:
        vendor = self.repository.get_vendor(vendor_id)
        if vendor is None:
            raise VendorNotFoundError(vendor_id)
        return vendor

    def _load_line(self, invoice_id: int, line_id: int) -> InvoiceLineItem:
        for line in self.repository.list_line_items(invoice_id):
            if line.id == line_id:
                return line
        raise LineItemNotFoundError(invoice_id, line_id)

    @staticmethod
    def _require_status(invoice: Invoice, operation: str, *allowed: InvoiceStatus) -> None:
        if invoice.status not in allowed:
            raise InvalidStateTransitionError(invoice.id, invoice.status.value, operation)

    @staticmethod
    def _positive(value: Any, label: str) -> Decimal:
        number = to_decimal(value)
        if number is None or number <= 0:
            raise ValueError(f"Invalid {label}: {value!r}")
        return number

    def _apply_totals(self, invoice: Invoice, lines: List[InvoiceLineItem]) -> None:
        subtotal = Decimal("0.00")
        gst = Decimal("0.00")
        for line in lines:
            line_total = round_money(line.line_total_ex_gst)
            subtotal += line_total
            if line.tax_applicable:
                rate = line.tax_rate if line.tax_rate is not None else self.calculator.tax_rate
                gst += round_money(line_total * rate)

        invoice.subtotal_ex_gst = subtotal
        invoice.gst_amount = gst
        invoice.total_inc_gst = subtotal + gst

    @staticmethod
    def _flag_lines(invoice: Invoice, lines: List[InvoiceLineItem]) -> None:
        problems = []
        for line in lines:
            if line.unit_cost_ex_gst <= 0:
                problems.append(f"line {line.position + 1} has no unit cost")
            if invoice.status == InvoiceStatus.RECONCILED and line.catalog_item_id is None:
                problems.append(f"line {line.position + 1} is not linked to the catalog")

        if problems:
            invoice.needs_rectification = True
            invoice.rectification_notes = "; ".join(problems)
