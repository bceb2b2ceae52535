"""
SQLAlchemy Models for the Back-office
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Numeric,
    ForeignKey, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
import enum

from backoffice.core.database import Base


# ==================== ENUMS ====================

class SaleStatus(str, enum.Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    ORDERED = "Ordered"
    COMPLETED = "Completed"
    RECEIVED = "Received"
    CANCELLED = "Cancelled"


class PaymentStatus(str, enum.Enum):
    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"


class PurchaseStatus(str, enum.Enum):
    DRAFT = "Draft"
    ORDERED = "Ordered"
    PARTIALLY_RECEIVED = "Partially Received"
    RECEIVED = "Received"
    CANCELLED = "Cancelled"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    UNPAID = "unpaid"
    PAID = "paid"
    VOID = "void"


class RefundStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    COMPLETED = "Completed"


class StockReason(str, enum.Enum):
    """Subsystem tag stamped on Product.last_modified_from"""
    SALES = "sales"
    SALES_CANCELLATION = "sales-cancellation"
    PURCHASES = "purchases"
    PURCHASES_CANCELLATION = "purchases-cancellation"
    REFUNDS = "refunds"
    REFUND_REVERSAL = "refund-reversal"
    OPENING_STOCK = "opening-stock"
    MANUAL = "manual"


# ==================== USERS ====================

class User(Base):
    """User account; every business document is owned by one user"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    stock_adjustments = relationship("StockAdjustment", back_populates="user")


# ==================== CRM ====================

class Customer(Base):
    """Customer"""
    __tablename__ = 'customers'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    tax_id = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True)
    owner_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sales = relationship("Sale", back_populates="customer")

    __table_args__ = (
        Index('ix_customers_owner_id', 'owner_id'),
    )


# ==================== INVENTORY ====================

class Product(Base):
    """Product/Item. ``quantity`` is only written through the stock ledger."""
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=True)
    category = Column(String(100), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    cost = Column(Numeric(15, 2), default=Decimal("0.00"))
    selling_price = Column(Numeric(15, 2), default=Decimal("0.00"))
    purchase_price = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    reorder_level = Column(Integer, default=0)
    supplier_id = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True)
    last_modified = Column(DateTime, default=datetime.utcnow)
    last_modified_from = Column(String(50), nullable=True)
    owner_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    stock_adjustments = relationship(
        "StockAdjustment", back_populates="product", order_by="StockAdjustment.id"
    )

    __table_args__ = (
        CheckConstraint('quantity >= 0', name='ck_products_quantity_non_negative'),
        Index('ix_products_owner_id', 'owner_id'),
        Index('ix_products_sku', 'sku'),
    )


class StockAdjustment(Base):
    """One ledger entry per quantity change"""
    __tablename__ = 'stock_adjustments'

    id = Column(Integer, primary_key=True)
    quantity_change = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    reason = Column(String(50), nullable=False)
    reference_type = Column(String(50), nullable=True)  # Sale, Purchase, Refund
    reference_id = Column(Integer, nullable=True)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product", back_populates="stock_adjustments")
    user = relationship("User", back_populates="stock_adjustments")


class DocumentSequence(Base):
    """Per-owner, per-year counter behind INV-/SALE-/PO- numbers"""
    __tablename__ = 'document_sequences'

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    prefix = Column(String(10), nullable=False)
    year = Column(Integer, nullable=False)
    last_value = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint('owner_id', 'prefix', 'year', name='uq_document_sequence'),
    )


# ==================== SALES MODELS ====================

class Sale(Base):
    """Sale order"""
    __tablename__ = 'sales'

    id = Column(Integer, primary_key=True)
    sale_number = Column(String(50), nullable=False)
    sale_date = Column(Date, nullable=False)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    customer_name = Column(String(255), nullable=True)
    status = Column(String(20), default=SaleStatus.DRAFT.value, nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.UNPAID.value, nullable=False)
    subtotal = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax_total = Column(Numeric(15, 2), default=Decimal("0.00"))
    discount = Column(Numeric(15, 2), default=Decimal("0.00"))
    round_off = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    paid_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    refunded_total = Column(Numeric(15, 2), default=Decimal("0.00"))
    payment_method = Column(String(50), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    # Not a foreign key: invoices.sale_id already points back at sales
    invoice_id = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Customer", back_populates="sales")
    items = relationship(
        "SaleItem", back_populates="sale", cascade="all, delete-orphan", order_by="SaleItem.id"
    )
    payments = relationship("Payment", back_populates="sale", cascade="all, delete-orphan")
    refunds = relationship("Refund", back_populates="sale")

    __table_args__ = (
        UniqueConstraint('sale_number', 'owner_id', name='uq_sale_number'),
        Index('ix_sales_owner_id', 'owner_id'),
        Index('ix_sales_invoice_id', 'invoice_id'),
    )


class SaleItem(Base):
    """Sale line; ``price`` is tax-exclusive, ``total`` tax-inclusive"""
    __tablename__ = 'sale_items'

    id = Column(Integer, primary_key=True)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(15, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    tax_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    refunded_quantity = Column(Integer, default=0, nullable=False)
    sale_id = Column(Integer, ForeignKey('sales.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)

    sale = relationship("Sale", back_populates="items")
    product = relationship("Product")


class Payment(Base):
    """Payment received against a sale"""
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True)
    amount = Column(Numeric(15, 2), nullable=False)
    method = Column(String(50), default="Cash")
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    paid_at = Column(DateTime, default=datetime.utcnow)
    sale_id = Column(Integer, ForeignKey('sales.id', ondelete='CASCADE'), nullable=False)
    owner_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    sale = relationship("Sale", back_populates="payments")


# ==================== PURCHASE MODELS ====================

class Purchase(Base):
    """Purchase order"""
    __tablename__ = 'purchases'

    id = Column(Integer, primary_key=True)
    po_number = Column(String(50), nullable=False)
    supplier_id = Column(String(100), nullable=True)
    supplier_name = Column(String(255), nullable=False)
    order_date = Column(Date, nullable=False)
    expected_delivery_date = Column(Date, nullable=True)
    delivery_date = Column(Date, nullable=True)
    status = Column(String(20), default=PurchaseStatus.DRAFT.value, nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.UNPAID.value, nullable=False)
    total_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    paid_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    notes = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "PurchaseItem", back_populates="purchase", cascade="all, delete-orphan",
        order_by="PurchaseItem.id"
    )

    __table_args__ = (
        UniqueConstraint('po_number', 'owner_id', name='uq_po_number'),
        Index('ix_purchases_owner_id', 'owner_id'),
    )


class PurchaseItem(Base):
    """Purchase order line"""
    __tablename__ = 'purchase_items'

    id = Column(Integer, primary_key=True)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    received_quantity = Column(Integer, default=0, nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    tax_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    purchase_id = Column(Integer, ForeignKey('purchases.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)

    purchase = relationship("Purchase", back_populates="items")
    product = relationship("Product")


# ==================== INVOICES ====================

class Invoice(Base):
    """Customer invoice, at most one live invoice per sale"""
    __tablename__ = 'invoices'

    id = Column(Integer, primary_key=True)
    number = Column(String(50), nullable=False)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    customer_name = Column(String(255), nullable=True)
    gst_enabled = Column(Boolean, default=True)
    subtotal = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax_total = Column(Numeric(15, 2), default=Decimal("0.00"))
    discount = Column(Numeric(15, 2), default=Decimal("0.00"))
    round_off = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    status = Column(String(20), default=InvoiceStatus.UNPAID.value, nullable=False)
    notes = Column(Text, nullable=True)
    sale_id = Column(Integer, ForeignKey('sales.id', ondelete='SET NULL'), nullable=True)
    converted_to_sale = Column(Boolean, default=False)
    voided_at = Column(DateTime, nullable=True)
    owner_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "InvoiceItem", back_populates="invoice", cascade="all, delete-orphan",
        order_by="InvoiceItem.id"
    )

    __table_args__ = (
        UniqueConstraint('number', 'owner_id', name='uq_invoice_number'),
        Index('ix_invoices_owner_id', 'owner_id'),
        Index('ix_invoices_sale_id', 'sale_id'),
    )


class InvoiceItem(Base):
    """Invoice line; ``selling_price`` is the tax-inclusive source price"""
    __tablename__ = 'invoice_items'

    id = Column(Integer, primary_key=True)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    selling_price = Column(Numeric(15, 2), nullable=False)
    price = Column(Numeric(15, 4), nullable=False)
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    tax_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)

    invoice = relationship("Invoice", back_populates="items")


# ==================== REFUNDS ====================

class Refund(Base):
    """Partial or full reversal of a sale"""
    __tablename__ = 'refunds'

    id = Column(Integer, primary_key=True)
    reason = Column(Text, nullable=True)
    status = Column(String(20), default=RefundStatus.PENDING.value, nullable=False)
    subtotal = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax_total = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    approved_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    sale_id = Column(Integer, ForeignKey('sales.id', ondelete='CASCADE'), nullable=False)
    owner_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    created_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sale = relationship("Sale", back_populates="refunds")
    items = relationship(
        "RefundItem", back_populates="refund", cascade="all, delete-orphan",
        order_by="RefundItem.id"
    )

    __table_args__ = (
        Index('ix_refunds_owner_id', 'owner_id'),
    )


class RefundItem(Base):
    """Refunded portion of one sale line"""
    __tablename__ = 'refund_items'

    id = Column(Integer, primary_key=True)
    product_name = Column(String(255), nullable=False)
    refund_quantity = Column(Integer, nullable=False)
    price = Column(Numeric(15, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    tax_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    refund_id = Column(Integer, ForeignKey('refunds.id', ondelete='CASCADE'), nullable=False)
    sale_item_id = Column(Integer, ForeignKey('sale_items.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)

    refund = relationship("Refund", back_populates="items")
    sale_item = relationship("SaleItem")


# ==================== AUDIT ====================

class AuditLog(Base):
    """Audit trail for lifecycle transitions and sensitive operations"""
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Who performed the action
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    username = Column(String(100), nullable=True)  # Store username in case user is deleted
    ip_address = Column(String(50), nullable=True)

    # What action was performed
    action = Column(String(50), nullable=False)
    resource_type = Column(String(100), nullable=False)
    resource_id = Column(Integer, nullable=True)

    # Details
    description = Column(Text, nullable=True)
    old_values = Column(Text, nullable=True)  # JSON string
    new_values = Column(Text, nullable=True)  # JSON string
    status = Column(String(20), default="success")
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index('ix_audit_logs_timestamp', 'timestamp'),
        Index('ix_audit_logs_resource', 'resource_type', 'resource_id'),
    )
