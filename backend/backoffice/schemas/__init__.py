"""
Pydantic Schemas for API Validation
"""
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import List, Optional
from datetime import datetime, date
from decimal import Decimal


# ==================== COMMON ====================

class MessageResponse(BaseModel):
    message: str
    success: bool = True


# ==================== AUTH SCHEMAS ====================

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = Field(None, max_length=255)


class UserResponse(BaseModel):
    id: int
    username: str
    email: EmailStr
    full_name: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== CUSTOMER SCHEMAS ====================

class CustomerBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None
    tax_id: Optional[str] = Field(None, max_length=50)


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None
    tax_id: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None


class CustomerResponse(CustomerBase):
    id: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== PRODUCT SCHEMAS ====================

class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sku: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=100)
    cost: Decimal = Field(default=Decimal("0.00"), ge=0)
    selling_price: Decimal = Field(default=Decimal("0.00"), ge=0)
    purchase_price: Decimal = Field(default=Decimal("0.00"), ge=0)
    tax_rate: Decimal = Field(default=Decimal("0.00"), ge=0, le=100)
    reorder_level: int = Field(default=0, ge=0)
    supplier_id: Optional[str] = Field(None, max_length=100)


class ProductCreate(ProductBase):
    opening_stock: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    """Quantity is deliberately absent; stock only moves through the ledger."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    sku: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=100)
    cost: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)
    purchase_price: Optional[Decimal] = Field(None, ge=0)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    reorder_level: Optional[int] = Field(None, ge=0)
    supplier_id: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class ProductResponse(ProductBase):
    id: int
    quantity: int
    is_active: bool
    last_modified: Optional[datetime] = None
    last_modified_from: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class QuantityAdjustRequest(BaseModel):
    delta: int = Field(..., description="Positive to restock, negative to consume")
    reason: str = Field(default="manual", min_length=1, max_length=50)


class StockAdjustmentResponse(BaseModel):
    id: int
    product_id: int
    quantity_change: int
    quantity_after: int
    reason: str
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== SALE SCHEMAS ====================

class SaleItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    price: Optional[Decimal] = Field(None, ge=0, description="Tax-exclusive unit price")
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)


class SaleItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    refunded_quantity: int

    model_config = ConfigDict(from_attributes=True)


class SaleCreate(BaseModel):
    customer_id: Optional[int] = None
    customer_name: Optional[str] = Field(None, max_length=255)
    sale_date: Optional[date] = None
    status: str = "Draft"
    discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    notes: Optional[str] = None
    items: List[SaleItemCreate] = Field(..., min_length=1)


class SaleUpdate(BaseModel):
    customer_id: Optional[int] = None
    customer_name: Optional[str] = Field(None, max_length=255)
    sale_date: Optional[date] = None
    discount: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None
    items: Optional[List[SaleItemCreate]] = Field(None, min_length=1)


class SaleStatusUpdate(BaseModel):
    status: str


class SalePaymentRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to the outstanding balance")
    method: str = Field(default="Cash", max_length=50)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class SaleResponse(BaseModel):
    id: int
    sale_number: str
    sale_date: date
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    status: str
    payment_status: str
    subtotal: Decimal
    tax_total: Decimal
    discount: Decimal
    round_off: Decimal
    total: Decimal
    paid_amount: Decimal
    refunded_total: Decimal
    payment_method: Optional[str] = None
    invoice_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SaleWithItems(SaleResponse):
    items: List[SaleItemResponse] = []


# ==================== INVOICE SCHEMAS ====================

class InvoiceItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    selling_price: Optional[Decimal] = Field(None, ge=0, description="Tax-inclusive unit price")
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)


class InvoiceItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    selling_price: Decimal
    price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class InvoiceCreate(BaseModel):
    customer_id: Optional[int] = None
    customer_name: Optional[str] = Field(None, max_length=255)
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    gst_enabled: bool = True
    discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    status: str = "unpaid"
    notes: Optional[str] = None
    items: List[InvoiceItemCreate] = Field(..., min_length=1)


class GstModeRequest(BaseModel):
    gst_enabled: bool


class InvoiceResponse(BaseModel):
    id: int
    number: str
    invoice_date: date
    due_date: Optional[date] = None
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    gst_enabled: bool
    subtotal: Decimal
    tax_total: Decimal
    discount: Decimal
    round_off: Decimal
    total: Decimal
    status: str
    sale_id: Optional[int] = None
    converted_to_sale: bool
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceWithItems(InvoiceResponse):
    items: List[InvoiceItemResponse] = []


# ==================== PURCHASE SCHEMAS ====================

class PurchaseItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0)
    tax_rate: Decimal = Field(default=Decimal("0.00"), ge=0, le=100)


class PurchaseItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    received_quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class PurchaseCreate(BaseModel):
    supplier_id: Optional[str] = Field(None, max_length=100)
    supplier_name: str = Field(..., min_length=1, max_length=255)
    order_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    status: str = "Draft"
    notes: Optional[str] = None
    items: List[PurchaseItemCreate] = Field(..., min_length=1)


class PurchaseUpdate(BaseModel):
    supplier_id: Optional[str] = Field(None, max_length=100)
    supplier_name: Optional[str] = Field(None, min_length=1, max_length=255)
    order_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    items: Optional[List[PurchaseItemCreate]] = Field(None, min_length=1)


class ReceiptLine(BaseModel):
    item_id: int
    quantity: int = Field(..., ge=1)


class PurchaseReceiveRequest(BaseModel):
    """Omit ``items`` to receive everything still outstanding."""
    items: Optional[List[ReceiptLine]] = None
    delivery_date: Optional[date] = None


class PurchasePaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)


class PurchaseResponse(BaseModel):
    id: int
    po_number: str
    supplier_id: Optional[str] = None
    supplier_name: str
    order_date: date
    expected_delivery_date: Optional[date] = None
    delivery_date: Optional[date] = None
    status: str
    payment_status: str
    total_amount: Decimal
    paid_amount: Decimal
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PurchaseWithItems(PurchaseResponse):
    items: List[PurchaseItemResponse] = []


# ==================== REFUND SCHEMAS ====================

class RefundItemCreate(BaseModel):
    sale_item_id: int
    refund_quantity: int = Field(..., ge=1)


class RefundItemResponse(BaseModel):
    id: int
    sale_item_id: int
    product_id: int
    product_name: str
    refund_quantity: int
    price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class RefundCreate(BaseModel):
    sale_id: int
    reason: Optional[str] = None
    items: List[RefundItemCreate] = Field(..., min_length=1)


class RefundStatusUpdate(BaseModel):
    status: str


class RefundResponse(BaseModel):
    id: int
    sale_id: int
    reason: Optional[str] = None
    status: str
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RefundWithItems(RefundResponse):
    items: List[RefundItemResponse] = []


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class RefundListResponse(BaseModel):
    refunds: List[RefundResponse]
    pagination: Pagination


# ==================== LIFECYCLE ====================

class InventoryUpdate(BaseModel):
    product_id: int
    product_name: str
    old_quantity: int
    new_quantity: int
    change: int


class RestockFailureResponse(BaseModel):
    product_id: int
    quantity: int
    error: str


class TransitionResponse(BaseModel):
    success: bool = True
    message: str
    previous_status: Optional[str] = None
    status: str
    partial: bool = False
    inventory_updates: List[InventoryUpdate] = []
    restock_failures: List[RestockFailureResponse] = []
