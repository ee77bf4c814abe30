"""
SQLAlchemy table definitions.

Catalog items and vendor profiles carry a ``version`` column used by the
mapper as ``version_id_col``: every UPDATE is issued as
``... WHERE id = :id AND version = :expected`` and a lost race surfaces as
``StaleDataError``.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from invoice_reconciler.utils.helpers import utcnow

Base = declarative_base()

MONEY = Numeric(precision=12, scale=4, asdecimal=True)


class VendorRecord(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class InvoiceRecord(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    document = Column(LargeBinary, nullable=False)
    filename = Column(String(255))
    status = Column(String(20), nullable=False, default="INGESTED")
    invoice_number = Column(String(100))
    invoice_date = Column(String(20))
    subtotal_ex_gst = Column(MONEY)
    gst_amount = Column(MONEY)
    total_inc_gst = Column(MONEY)
    provenance = Column(String(30))
    extraction_confidence = Column(Float)
    needs_rectification = Column(Boolean, default=False, nullable=False)
    rectification_notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    posted_at = Column(DateTime)

    line_items = relationship(
        "InvoiceLineItemRecord",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItemRecord.position",
    )


class InvoiceLineItemRecord(Base):
    __tablename__ = "invoice_line_items"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(255), nullable=False)
    raw_description = Column(Text)
    quantity = Column(MONEY, nullable=False)
    pack_size = Column(MONEY, nullable=False)
    pack_is_measure = Column(Boolean, default=False, nullable=False)
    unit_cost_ex_gst = Column(MONEY, nullable=False)
    effective_unit_cost_ex_gst = Column(MONEY, nullable=False)
    category = Column(String(50), nullable=False)
    tax_applicable = Column(Boolean, default=True, nullable=False)
    tax_rate = Column(MONEY)
    confidence = Column(Float, nullable=False, default=0.0)
    provenance = Column(String(30), nullable=False)
    barcode = Column(String(64))
    catalog_item_id = Column(Integer, ForeignKey("catalog_items.id"), index=True)
    manual_markup = Column(MONEY)
    markup = Column(MONEY)
    markup_source = Column(String(30))
    sell_ex_gst = Column(MONEY)
    sell_inc_gst = Column(MONEY)
    notes = Column(Text)

    invoice = relationship("InvoiceRecord", back_populates="line_items")


class CatalogItemRecord(Base):
    __tablename__ = "catalog_items"

    id = Column(Integer, primary_key=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    name_key = Column(String(255), nullable=False)
    category = Column(String(50), nullable=False)
    subcategory = Column(String(50))
    cost_ex_gst = Column(MONEY, nullable=False)
    markup = Column(MONEY, nullable=False)
    manual_markup = Column(MONEY)
    sell_ex_gst = Column(MONEY, nullable=False)
    sell_inc_gst = Column(MONEY, nullable=False)
    tax_applicable = Column(Boolean, default=True, nullable=False)
    sku = Column(String(64), unique=True)
    barcode = Column(String(64), unique=True)
    stock_on_hand = Column(Integer, default=0, nullable=False)
    reorder_level = Column(Integer)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("vendor_id", "name_key", name="uq_catalog_items_vendor_name"),
    )
    __mapper_args__ = {"version_id_col": version}


class PriceHistoryRecord(Base):
    __tablename__ = "price_history"

    id = Column(Integer, primary_key=True)
    catalog_item_id = Column(Integer, ForeignKey("catalog_items.id"), nullable=False, index=True)
    cost_ex_gst = Column(MONEY, nullable=False)
    markup = Column(MONEY, nullable=False)
    sell_ex_gst = Column(MONEY, nullable=False)
    sell_inc_gst = Column(MONEY, nullable=False)
    source_invoice_id = Column(Integer, ForeignKey("invoices.id"), index=True)
    changed_at = Column(DateTime, default=utcnow)


class VendorProfileRecord(Base):
    __tablename__ = "vendor_profiles"

    id = Column(Integer, primary_key=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), unique=True, nullable=False)
    learning_data = Column(JSON, nullable=False)
    parsing_rules = Column(JSON, nullable=False)
    correction_history = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}
