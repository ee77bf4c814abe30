"""
SQLAlchemy Repository Module.

Relational implementation of ``Repository``. SQLite is the default store,
any SQLAlchemy URL works.

Features:
    - Automatic schema creation
    - One short-lived session per repository call
    - Optimistic locking on catalog items and vendor profiles
    - Duplicate SKU/barcode detection

Author: ML Engineering Team
"""

import copy
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, func
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from config import get_config
from invoice_reconciler.entities import (
    CatalogItem,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    MarkupSource,
    PriceHistoryEntry,
    Provenance,
    Vendor,
    VendorProfile,
)
from invoice_reconciler.persistence.models import (
    Base,
    CatalogItemRecord,
    InvoiceLineItemRecord,
    InvoiceRecord,
    PriceHistoryRecord,
    VendorProfileRecord,
    VendorRecord,
)
from invoice_reconciler.persistence.repository import Repository
from invoice_reconciler.utils.exceptions import (
    CatalogConflictError,
    CatalogItemNotFoundError,
    ConcurrencyConflictError,
    InvoiceInUseError,
    InvoiceNotFoundError,
    LineItemNotFoundError,
    RepositoryError,
)
from invoice_reconciler.utils.helpers import catalog_name_key, ensure_directory
from invoice_reconciler.utils.logger import get_logger

logger = get_logger(__name__)


class SQLAlchemyRepository(Repository):
    """
    Repository backed by a relational database.

    Attributes:
        url: SQLAlchemy database URL
        engine: SQLAlchemy engine instance

    Example:
        >>> repo = SQLAlchemyRepository("sqlite:///outputs/reconciler.db")
        >>> vendor = repo.add_vendor("Little Valley Distribution")
        >>> repo.find_catalog_items(vendor.id)
        []
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None) -> None:
        self.url = url or get_config("database.url", "sqlite:///outputs/invoice_reconciler.db")
        if echo is None:
            echo = get_config("database.echo", False)

        connect_args = {}
        parsed = make_url(self.url)
        if parsed.get_backend_name() == "sqlite":
            connect_args = {"check_same_thread": False, "timeout": 30}
            if parsed.database and parsed.database != ":memory:":
                ensure_directory(Path(parsed.database).parent)

        self.engine = create_engine(self.url, echo=echo, connect_args=connect_args)
        Base.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

        logger.info(f"SQLAlchemyRepository initialized (url: {parsed.render_as_string(hide_password=True)})")

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Unit of work: commit on success, roll back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database operation failed: {e}")
            raise RepositoryError("session", str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()
        logger.debug("Database engine disposed")

    # ================================================================= vendors

    def add_vendor(self, name: str) -> Vendor:
        with self.session_scope() as session:
            record = VendorRecord(name=name.strip())
            session.add(record)
            session.flush()
            return Vendor(id=record.id, name=record.name)

    def get_vendor(self, vendor_id: int) -> Optional[Vendor]:
        with self.session_scope() as session:
            record = session.get(VendorRecord, vendor_id)
            return Vendor(id=record.id, name=record.name) if record else None

    def find_vendor_by_name(self, name: str) -> Optional[Vendor]:
        with self.session_scope() as session:
            record = (
                session.query(VendorRecord)
                .filter(func.lower(VendorRecord.name) == name.strip().lower())
                .first()
            )
            return Vendor(id=record.id, name=record.name) if record else None

    # ================================================================ invoices

    def add_invoice(self, invoice: Invoice) -> Invoice:
        with self.session_scope() as session:
            record = InvoiceRecord()
            self._apply_invoice(record, invoice)
            session.add(record)
            session.flush()
            return self._to_invoice(record)

    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        with self.session_scope() as session:
            record = session.get(InvoiceRecord, invoice_id)
            return self._to_invoice(record) if record else None

    def update_invoice(self, invoice: Invoice) -> Invoice:
        with self.session_scope() as session:
            record = session.get(InvoiceRecord, invoice.id)
            if record is None:
                raise InvoiceNotFoundError(invoice.id)
            self._apply_invoice(record, invoice)
            session.flush()
            return self._to_invoice(record)

    def delete_invoice(self, invoice_id: int) -> None:
        with self.session_scope() as session:
            record = session.get(InvoiceRecord, invoice_id)
            if record is None:
                raise InvoiceNotFoundError(invoice_id)
            referenced = (
                session.query(PriceHistoryRecord.id)
                .filter(PriceHistoryRecord.source_invoice_id == invoice_id)
                .first()
            )
            if referenced is not None:
                raise InvoiceInUseError(invoice_id)
            session.delete(record)
            logger.info(f"Deleted invoice {invoice_id}")

    # ============================================================== line items

    def replace_line_items(self, invoice_id: int,
                           items: List[InvoiceLineItem]) -> List[InvoiceLineItem]:
        with self.session_scope() as session:
            invoice = session.get(InvoiceRecord, invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_id)

            invoice.line_items.clear()
            session.flush()

            records = []
            for position, item in enumerate(items):
                record = InvoiceLineItemRecord(invoice_id=invoice_id)
                self._apply_line_item(record, item)
                record.position = position
                invoice.line_items.append(record)
                records.append(record)
            session.flush()
            return [self._to_line_item(r) for r in records]

    def list_line_items(self, invoice_id: int) -> List[InvoiceLineItem]:
        with self.session_scope() as session:
            records = (
                session.query(InvoiceLineItemRecord)
                .filter(InvoiceLineItemRecord.invoice_id == invoice_id)
                .order_by(InvoiceLineItemRecord.position, InvoiceLineItemRecord.id)
                .all()
            )
            return [self._to_line_item(r) for r in records]

    def update_line_item(self, item: InvoiceLineItem) -> InvoiceLineItem:
        with self.session_scope() as session:
            record = session.get(InvoiceLineItemRecord, item.id)
            if record is None or record.invoice_id != item.invoice_id:
                raise LineItemNotFoundError(item.invoice_id, item.id)
            self._apply_line_item(record, item)
            session.flush()
            return self._to_line_item(record)

    # ================================================================= catalog

    def add_catalog_item(self, item: CatalogItem) -> CatalogItem:
        with self.session_scope() as session:
            self._check_unique_fields(session, item)
            record = CatalogItemRecord()
            self._apply_catalog_item(record, item)
            session.add(record)
            try:
                session.flush()
            except IntegrityError as e:
                raise CatalogConflictError(self._conflicting_fields(e), item.name) from e
            logger.debug(f"Created catalog item {record.id} '{record.name}' (vendor {record.vendor_id})")
            return self._to_catalog_item(record)

    def get_catalog_item(self, item_id: int) -> Optional[CatalogItem]:
        with self.session_scope() as session:
            record = session.get(CatalogItemRecord, item_id)
            return self._to_catalog_item(record) if record else None

    def find_catalog_items(self, vendor_id: int) -> List[CatalogItem]:
        with self.session_scope() as session:
            records = (
                session.query(CatalogItemRecord)
                .filter(CatalogItemRecord.vendor_id == vendor_id)
                .order_by(CatalogItemRecord.id)
                .all()
            )
            return [self._to_catalog_item(r) for r in records]

    def find_catalog_item_by_name(self, vendor_id: int, name: str) -> Optional[CatalogItem]:
        with self.session_scope() as session:
            record = (
                session.query(CatalogItemRecord)
                .filter(CatalogItemRecord.vendor_id == vendor_id)
                .filter(CatalogItemRecord.name_key == catalog_name_key(name))
                .first()
            )
            return self._to_catalog_item(record) if record else None

    def update_catalog_item(self, item: CatalogItem,
                            history: Optional[PriceHistoryEntry] = None) -> CatalogItem:
        with self.session_scope() as session:
            record = session.get(CatalogItemRecord, item.id)
            if record is None:
                raise CatalogItemNotFoundError(item.id)
            if record.version != item.version:
                raise ConcurrencyConflictError("catalog item", item.id)

            self._check_unique_fields(session, item)
            self._apply_catalog_item(record, item)

            if history is not None:
                session.add(PriceHistoryRecord(
                    catalog_item_id=item.id,
                    cost_ex_gst=history.cost_ex_gst,
                    markup=history.markup,
                    sell_ex_gst=history.sell_ex_gst,
                    sell_inc_gst=history.sell_inc_gst,
                    source_invoice_id=history.source_invoice_id,
                ))

            try:
                session.flush()
            except StaleDataError as e:
                raise ConcurrencyConflictError("catalog item", item.id) from e
            except IntegrityError as e:
                raise CatalogConflictError(self._conflicting_fields(e), item.name) from e
            return self._to_catalog_item(record)

    def list_price_history(self, catalog_item_id: Optional[int] = None,
                           invoice_id: Optional[int] = None) -> List[PriceHistoryEntry]:
        with self.session_scope() as session:
            query = session.query(PriceHistoryRecord)
            if catalog_item_id is not None:
                query = query.filter(PriceHistoryRecord.catalog_item_id == catalog_item_id)
            if invoice_id is not None:
                query = query.filter(PriceHistoryRecord.source_invoice_id == invoice_id)
            records = query.order_by(PriceHistoryRecord.id).all()
            return [
                PriceHistoryEntry(
                    id=r.id,
                    catalog_item_id=r.catalog_item_id,
                    cost_ex_gst=r.cost_ex_gst,
                    markup=r.markup,
                    sell_ex_gst=r.sell_ex_gst,
                    sell_inc_gst=r.sell_inc_gst,
                    source_invoice_id=r.source_invoice_id,
                    changed_at=r.changed_at,
                )
                for r in records
            ]

    # ========================================================== vendor profile

    def get_vendor_profile(self, vendor_id: int) -> Optional[VendorProfile]:
        with self.session_scope() as session:
            record = (
                session.query(VendorProfileRecord)
                .filter(VendorProfileRecord.vendor_id == vendor_id)
                .first()
            )
            return self._to_profile(record) if record else None

    def save_vendor_profile(self, profile: VendorProfile) -> VendorProfile:
        with self.session_scope() as session:
            if profile.id is None:
                record = VendorProfileRecord(vendor_id=profile.vendor_id)
                session.add(record)
            else:
                record = session.get(VendorProfileRecord, profile.id)
                if record is None or record.version != profile.version:
                    raise ConcurrencyConflictError("vendor profile", profile.vendor_id)

            # Fresh objects so the JSON columns are flagged as modified
            record.learning_data = copy.deepcopy(profile.learning_data)
            record.parsing_rules = copy.deepcopy(profile.parsing_rules)
            record.correction_history = copy.deepcopy(profile.correction_history)

            try:
                session.flush()
            except (StaleDataError, IntegrityError) as e:
                raise ConcurrencyConflictError("vendor profile", profile.vendor_id) from e
            return self._to_profile(record)

    # ================================================================= helpers

    @staticmethod
    def _check_unique_fields(session: Session, item: CatalogItem) -> None:
        taken = []
        for field_name in ("sku", "barcode"):
            value = getattr(item, field_name)
            if not value:
                continue
            column = getattr(CatalogItemRecord, field_name)
            query = session.query(CatalogItemRecord.id).filter(column == value)
            if item.id is not None:
                query = query.filter(CatalogItemRecord.id != item.id)
            if query.first() is not None:
                taken.append(field_name)

        # Names are unique within one vendor's catalog
        query = (
            session.query(CatalogItemRecord.id)
            .filter(CatalogItemRecord.vendor_id == item.vendor_id)
            .filter(CatalogItemRecord.name_key == catalog_name_key(item.name))
        )
        if item.id is not None:
            query = query.filter(CatalogItemRecord.id != item.id)
        if query.first() is not None:
            taken.append("name")

        if taken:
            raise CatalogConflictError(taken, item.name)

    @staticmethod
    def _conflicting_fields(error: IntegrityError) -> List[str]:
        text = str(error.orig).lower()
        fields = [f for f in ("sku", "barcode") if f in text]
        if "name_key" in text:
            fields.append("name")
        return fields or ["sku", "barcode", "name"]

    @staticmethod
    def _apply_invoice(record: InvoiceRecord, invoice: Invoice) -> None:
        record.vendor_id = invoice.vendor_id
        record.document = invoice.document
        record.filename = invoice.filename
        record.status = InvoiceStatus(invoice.status).value
        record.invoice_number = invoice.invoice_number
        record.invoice_date = invoice.invoice_date
        record.subtotal_ex_gst = invoice.subtotal_ex_gst
        record.gst_amount = invoice.gst_amount
        record.total_inc_gst = invoice.total_inc_gst
        record.provenance = invoice.provenance.value if invoice.provenance else None
        record.extraction_confidence = invoice.extraction_confidence
        record.needs_rectification = invoice.needs_rectification
        record.rectification_notes = invoice.rectification_notes
        record.posted_at = invoice.posted_at

    @staticmethod
    def _to_invoice(record: InvoiceRecord) -> Invoice:
        return Invoice(
            id=record.id,
            vendor_id=record.vendor_id,
            document=record.document,
            filename=record.filename,
            status=InvoiceStatus(record.status),
            invoice_number=record.invoice_number,
            invoice_date=record.invoice_date,
            subtotal_ex_gst=record.subtotal_ex_gst,
            gst_amount=record.gst_amount,
            total_inc_gst=record.total_inc_gst,
            provenance=Provenance(record.provenance) if record.provenance else None,
            extraction_confidence=record.extraction_confidence,
            needs_rectification=bool(record.needs_rectification),
            rectification_notes=record.rectification_notes,
            created_at=record.created_at,
            posted_at=record.posted_at,
        )

    @staticmethod
    def _apply_line_item(record: InvoiceLineItemRecord, item: InvoiceLineItem) -> None:
        record.position = item.position
        record.name = item.name
        record.raw_description = item.raw_description
        record.quantity = item.quantity
        record.pack_size = item.pack_size
        record.pack_is_measure = item.pack_is_measure
        record.unit_cost_ex_gst = item.unit_cost_ex_gst
        record.effective_unit_cost_ex_gst = item.effective_unit_cost_ex_gst
        record.category = item.category
        record.tax_applicable = item.tax_applicable
        record.tax_rate = item.tax_rate
        record.confidence = item.confidence
        record.provenance = Provenance(item.provenance).value
        record.barcode = item.barcode
        record.catalog_item_id = item.catalog_item_id
        record.manual_markup = item.manual_markup
        record.markup = item.markup
        record.markup_source = item.markup_source.value if item.markup_source else None
        record.sell_ex_gst = item.sell_ex_gst
        record.sell_inc_gst = item.sell_inc_gst
        record.notes = item.notes

    @staticmethod
    def _to_line_item(record: InvoiceLineItemRecord) -> InvoiceLineItem:
        return InvoiceLineItem(
            id=record.id,
            invoice_id=record.invoice_id,
            position=record.position,
            name=record.name,
            raw_description=record.raw_description,
            quantity=record.quantity,
            pack_size=record.pack_size,
            pack_is_measure=bool(record.pack_is_measure),
            unit_cost_ex_gst=record.unit_cost_ex_gst,
            effective_unit_cost_ex_gst=record.effective_unit_cost_ex_gst,
            category=record.category,
            tax_applicable=bool(record.tax_applicable),
            tax_rate=record.tax_rate,
            confidence=record.confidence,
            provenance=Provenance(record.provenance),
            barcode=record.barcode,
            catalog_item_id=record.catalog_item_id,
            manual_markup=record.manual_markup,
            markup=record.markup,
            markup_source=MarkupSource(record.markup_source) if record.markup_source else None,
            sell_ex_gst=record.sell_ex_gst,
            sell_inc_gst=record.sell_inc_gst,
            notes=record.notes,
        )

    @staticmethod
    def _apply_catalog_item(record: CatalogItemRecord, item: CatalogItem) -> None:
        record.vendor_id = item.vendor_id
        record.name = item.name
        record.name_key = catalog_name_key(item.name)
        record.category = item.category
        record.subcategory = item.subcategory
        record.cost_ex_gst = item.cost_ex_gst
        record.markup = item.markup
        record.manual_markup = item.manual_markup
        record.sell_ex_gst = item.sell_ex_gst
        record.sell_inc_gst = item.sell_inc_gst
        record.tax_applicable = item.tax_applicable
        record.sku = item.sku or None
        record.barcode = item.barcode or None
        record.stock_on_hand = item.stock_on_hand
        record.reorder_level = item.reorder_level

    @staticmethod
    def _to_catalog_item(record: CatalogItemRecord) -> CatalogItem:
        return CatalogItem(
            id=record.id,
            vendor_id=record.vendor_id,
            name=record.name,
            category=record.category,
            subcategory=record.subcategory,
            cost_ex_gst=record.cost_ex_gst,
            markup=record.markup,
            manual_markup=record.manual_markup,
            sell_ex_gst=record.sell_ex_gst,
            sell_inc_gst=record.sell_inc_gst,
            tax_applicable=bool(record.tax_applicable),
            sku=record.sku,
            barcode=record.barcode,
            stock_on_hand=record.stock_on_hand,
            reorder_level=record.reorder_level,
            version=record.version,
            updated_at=record.updated_at,
        )

    @staticmethod
    def _to_profile(record: VendorProfileRecord) -> VendorProfile:
        return VendorProfile(
            id=record.id,
            vendor_id=record.vendor_id,
            learning_data=copy.deepcopy(record.learning_data),
            parsing_rules=copy.deepcopy(record.parsing_rules),
            correction_history=copy.deepcopy(record.correction_history),
            version=record.version,
            updated_at=record.updated_at,
        )
