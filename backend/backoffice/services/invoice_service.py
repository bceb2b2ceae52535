"""
Invoice Service - Invoice numbering, GST pricing, sale <-> invoice linkage

A sale has at most one live (non-void) invoice. ``create_from_sale`` is
idempotent: asking again returns the invoice already linked.
"""
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session, joinedload

from backoffice.core.config import settings
from backoffice.core.exceptions import (
    AuthorizationError, NotFoundError, StateTransitionError, ValidationError
)
from backoffice.models import (
    Invoice, InvoiceItem, Sale, SaleItem, InvoiceStatus, PaymentStatus, SaleStatus, StockReason
)
from backoffice.schemas import InvoiceCreate
from backoffice.services.crm_service import CustomerService
from backoffice.services.inventory_service import ProductService
from backoffice.services.lifecycle import TransitionResult
from backoffice.services.pricing import (
    PricedLine, apply_gst_mode, line_amounts, order_totals, quantize_money, to_decimal, ZERO
)
from backoffice.services.sales_service import SaleService
from backoffice.services.sequence_service import SequenceService

logger = logging.getLogger(__name__)

INVOICE_INITIAL = {InvoiceStatus.DRAFT.value, InvoiceStatus.UNPAID.value}


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db
        self.products = ProductService(db)
        self.sequences = SequenceService(db)

    def get_by_id(self, invoice_id: int) -> Optional[Invoice]:
        return self.db.query(Invoice).options(
            joinedload(Invoice.items)
        ).filter(Invoice.id == invoice_id).first()

    def get_owned(self, invoice_id: int, owner_id: int) -> Invoice:
        invoice = self.get_by_id(invoice_id)
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if invoice.owner_id != owner_id:
            raise AuthorizationError("Not authorized to access this invoice")
        return invoice

    def list(self, owner_id: int, status: str = None) -> List[Invoice]:
        query = self.db.query(Invoice).filter(Invoice.owner_id == owner_id)
        if status:
            query = query.filter(Invoice.status == status)
        return query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).all()

    # ==================== NUMBERING ====================

    def next_number(self, owner_id: int, year: int = None) -> str:
        """Allocate the next INV-<year>-<seq> number"""
        year = year or date.today().year
        value = self.sequences.next_value(owner_id, SequenceService.INVOICE, year)
        return SequenceService.format_number(SequenceService.INVOICE, year, value)

    def peek_next_number(self, owner_id: int) -> str:
        return self.sequences.peek_number(owner_id, SequenceService.INVOICE)

    # ==================== PRICING ====================

    @staticmethod
    def _apply_lines(invoice: Invoice, priced: Iterable[PricedLine], discount: Decimal):
        priced = list(priced)
        for item, line in zip(invoice.items, priced):
            item.price = line.price.quantize(Decimal("0.0001"))
            item.tax_rate = line.tax_rate
            item.tax_amount = quantize_money(line.tax_amount)
            item.total = quantize_money(line.total)

        totals = order_totals(priced, discount)
        invoice.subtotal = totals.subtotal
        invoice.tax_total = totals.tax_total
        invoice.discount = totals.discount
        invoice.round_off = totals.round_off
        invoice.total = totals.total

    def _source_rate(self, item: InvoiceItem) -> Decimal:
        # Non-GST lines store a zero rate; the catalogue rate is the source
        if item.tax_rate:
            return to_decimal(item.tax_rate)
        product = self.products.get_by_id(item.product_id)
        return to_decimal(product.tax_rate or ZERO) if product else ZERO

    def create(self, invoice_data: InvoiceCreate, owner_id: int) -> Invoice:
        """Standalone invoice priced from tax-inclusive selling prices"""
        status = invoice_data.status or InvoiceStatus.UNPAID.value
        if status not in INVOICE_INITIAL:
            raise ValidationError(f"Invalid initial status '{status}'. Must be draft or unpaid")
        if not invoice_data.items:
            raise ValidationError("An invoice needs at least one item")

        customer_id = invoice_data.customer_id
        customer_name = invoice_data.customer_name
        if customer_id is not None:
            customer = CustomerService(self.db).get_owned(customer_id, owner_id)
            customer_name = customer_name or customer.name

        sources = []
        invoice = Invoice(
            customer_id=customer_id,
            customer_name=customer_name,
            gst_enabled=invoice_data.gst_enabled,
            status=status,
            notes=invoice_data.notes,
            owner_id=owner_id
        )
        for item_data in invoice_data.items:
            product = self.products.get_owned(item_data.product_id, owner_id)
            selling_price = to_decimal(
                item_data.selling_price if item_data.selling_price is not None
                else (product.selling_price or ZERO)
            )
            tax_rate = to_decimal(
                item_data.tax_rate if item_data.tax_rate is not None else (product.tax_rate or ZERO)
            )
            sources.append({
                "selling_price": selling_price, "quantity": item_data.quantity, "tax_rate": tax_rate
            })
            invoice.items.append(InvoiceItem(
                product_id=product.id,
                product_name=product.name,
                quantity=item_data.quantity,
                selling_price=quantize_money(selling_price),
                price=ZERO
            ))

        self._apply_lines(invoice, apply_gst_mode(sources, invoice_data.gst_enabled), invoice_data.discount)

        invoice_date = invoice_data.invoice_date or date.today()
        invoice.invoice_date = invoice_date
        invoice.due_date = invoice_data.due_date
        invoice.number = self.next_number(owner_id, invoice_date.year)
        self.db.add(invoice)
        self.db.flush()

        logger.info("Invoice %s created (total %s)", invoice.number, invoice.total)
        return invoice

    def set_gst_mode(self, invoice_id: int, gst_enabled: bool, owner_id: int) -> Invoice:
        """Switch GST mode and re-price every line, not only new ones"""
        invoice = self.get_owned(invoice_id, owner_id)
        if invoice.status not in INVOICE_INITIAL:
            raise StateTransitionError(f"Cannot re-price a {invoice.status} invoice")

        sources = [
            {
                "selling_price": item.selling_price,
                "quantity": item.quantity,
                "tax_rate": self._source_rate(item),
            }
            for item in invoice.items
        ]
        invoice.gst_enabled = gst_enabled
        self._apply_lines(invoice, apply_gst_mode(sources, gst_enabled), invoice.discount or ZERO)
        self.db.flush()
        return invoice

    # ==================== SALE LINKAGE ====================

    def create_from_sale(self, sale_id: int, owner_id: int, reissue: bool = False) -> Tuple[Invoice, bool]:
        """
        Invoice a sale. Returns ``(invoice, created)``; an existing live
        invoice is returned unchanged with ``created = False``.
        """
        sales = SaleService(self.db)
        sale = sales.get_owned(sale_id, owner_id)

        if sale.status == SaleStatus.CANCELLED.value:
            raise StateTransitionError(f"Cannot invoice cancelled sale {sale.sale_number}")

        existing = sales.linked_invoice(sale)
        if existing is None:
            # Also catch invoices pointing at the sale without the back-link
            existing = self.db.query(Invoice).filter(
                Invoice.sale_id == sale.id,
                Invoice.status != InvoiceStatus.VOID.value
            ).order_by(Invoice.id.desc()).first()
        if existing is not None:
            if existing.status != InvoiceStatus.VOID.value:
                sale.invoice_id = existing.id
                self.db.flush()
                return existing, False
            if not reissue:
                raise StateTransitionError(
                    f"Invoice {existing.number} for sale {sale.sale_number} is void; "
                    "pass reissue to create a new one"
                )

        today = date.today()
        invoice = Invoice(
            number=self.next_number(owner_id, today.year),
            invoice_date=today,
            due_date=today + timedelta(days=settings.INVOICE_DUE_DAYS),
            customer_id=sale.customer_id,
            customer_name=sale.customer_name,
            gst_enabled=any(item.tax_rate for item in sale.items),
            subtotal=sale.subtotal,
            tax_total=sale.tax_total,
            discount=sale.discount,
            round_off=sale.round_off,
            total=sale.total,
            status=(
                InvoiceStatus.PAID.value if sale.payment_status == PaymentStatus.PAID.value
                else InvoiceStatus.UNPAID.value
            ),
            sale_id=sale.id,
            notes=sale.notes,
            owner_id=owner_id
        )
        for item in sale.items:
            invoice.items.append(InvoiceItem(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                selling_price=quantize_money(Decimal(item.total) / item.quantity),
                price=item.price,
                tax_rate=item.tax_rate,
                tax_amount=item.tax_amount,
                total=item.total
            ))
        self.db.add(invoice)
        self.db.flush()

        sale.invoice_id = invoice.id
        self.db.flush()
        logger.info("Invoice %s created from sale %s", invoice.number, sale.sale_number)
        return invoice, True

    def convert_to_sale(self, invoice_id: int, owner_id: int, user_id: int = None) -> TransitionResult:
        """Create a Completed sale from an invoice, taking its items out of stock"""
        invoice = self.get_owned(invoice_id, owner_id)
        if invoice.status == InvoiceStatus.VOID.value:
            raise StateTransitionError(f"Cannot convert void invoice {invoice.number}")
        if invoice.converted_to_sale or invoice.sale_id:
            raise StateTransitionError(f"Invoice {invoice.number} already has a sale")
        already_linked = self.db.query(Sale.id).filter(
            Sale.invoice_id == invoice.id, Sale.owner_id == owner_id
        ).first()
        if already_linked:
            raise StateTransitionError(f"Invoice {invoice.number} already has a sale")

        paid = invoice.status == InvoiceStatus.PAID.value
        sale_date = date.today()
        sale = Sale(
            sale_number=self.sequences.next_number(owner_id, SequenceService.SALE, on=sale_date),
            sale_date=sale_date,
            customer_id=invoice.customer_id,
            customer_name=invoice.customer_name,
            status=SaleStatus.COMPLETED.value,
            payment_status=PaymentStatus.PAID.value if paid else PaymentStatus.UNPAID.value,
            subtotal=invoice.subtotal,
            tax_total=invoice.tax_total,
            discount=invoice.discount,
            round_off=invoice.round_off,
            total=invoice.total,
            paid_amount=invoice.total if paid else Decimal("0.00"),
            refunded_total=Decimal("0.00"),
            paid_at=datetime.utcnow() if paid else None,
            invoice_id=invoice.id,
            notes=invoice.notes,
            owner_id=owner_id
        )
        for item in invoice.items:
            amounts = line_amounts(item.price, item.quantity, item.tax_rate or ZERO)
            sale.items.append(SaleItem(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                price=quantize_money(item.price),
                tax_rate=item.tax_rate or ZERO,
                tax_amount=quantize_money(amounts.tax_amount),
                total=quantize_money(amounts.total),
                refunded_quantity=0
            ))
        self.db.add(sale)
        self.db.flush()

        movements = self.products.apply_deltas(
            [(item.product_id, -item.quantity) for item in sale.items],
            StockReason.SALES.value, owner_id,
            user_id=user_id, reference_type="Sale", reference_id=sale.id
        )
        invoice.sale_id = sale.id
        invoice.converted_to_sale = True
        self.db.flush()

        logger.info("Invoice %s converted to sale %s", invoice.number, sale.sale_number)
        return TransitionResult(
            entity=sale,
            previous_status=None,
            status=sale.status,
            message=f"Invoice converted to sale {sale.sale_number}",
            inventory_updates=movements
        )

    # ==================== STATUS ====================

    def void(self, invoice_id: int, owner_id: int) -> TransitionResult:
        invoice = self.get_owned(invoice_id, owner_id)
        if invoice.status == InvoiceStatus.VOID.value:
            raise StateTransitionError(f"Invoice {invoice.number} is already void")
        if invoice.status == InvoiceStatus.PAID.value:
            raise StateTransitionError(f"Cannot void paid invoice {invoice.number}")

        previous = invoice.status
        invoice.status = InvoiceStatus.VOID.value
        invoice.voided_at = datetime.utcnow()
        self.db.flush()

        logger.info("Invoice %s voided", invoice.number)
        return TransitionResult(
            entity=invoice, previous_status=previous, status=invoice.status,
            message=f"Invoice {invoice.number} voided"
        )

    def mark_paid(self, invoice_id: int, owner_id: int) -> TransitionResult:
        invoice = self.get_owned(invoice_id, owner_id)
        if invoice.status == InvoiceStatus.VOID.value:
            raise StateTransitionError(f"Cannot mark void invoice {invoice.number} as paid")
        if invoice.status == InvoiceStatus.PAID.value:
            raise StateTransitionError(f"Invoice {invoice.number} is already paid")

        previous = invoice.status
        invoice.status = InvoiceStatus.PAID.value

        if invoice.sale_id:
            sale = self.db.query(Sale).filter(Sale.id == invoice.sale_id).first()
            if sale and sale.payment_status != PaymentStatus.PAID.value:
                # Payment row for the outstanding balance
                SaleService(self.db).record_payment(
                    sale.id, owner_id,
                    method=sale.payment_method or "Cash",
                    reference=invoice.number,
                    notes=f"Invoice {invoice.number} marked paid"
                )
        self.db.flush()

        logger.info("Invoice %s marked paid", invoice.number)
        return TransitionResult(
            entity=invoice, previous_status=previous, status=invoice.status,
            message=f"Invoice {invoice.number} marked as paid"
        )
