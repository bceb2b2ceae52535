"""
Sales Service - Sale orders, status transitions, payments
"""
from typing import Optional, List, Tuple
from sqlalchemy.orm import Session, joinedload
from decimal import Decimal
from datetime import date, datetime
import logging

from backoffice.core.exceptions import (
    AuthorizationError, NotFoundError, StateTransitionError, ValidationError
)
from backoffice.models import (
    Sale, SaleItem, Payment, Invoice, SaleStatus, PaymentStatus, InvoiceStatus, StockReason
)
from backoffice.schemas import SaleCreate, SaleUpdate, SaleItemCreate
from backoffice.services.crm_service import CustomerService
from backoffice.services.inventory_service import ProductService
from backoffice.services.lifecycle import (
    SALE_DELETABLE, SALE_EDITABLE, SALE_INITIAL, SALE_STOCK_CONSUMED, SALE_TRANSITIONS,
    TransitionResult, validate_sale_transition
)
from backoffice.services.pricing import (
    LineAmounts, line_amounts, order_totals, quantize_money, strip_tax, to_decimal, ZERO
)
from backoffice.services.sequence_service import SequenceService

logger = logging.getLogger(__name__)


class SaleService:
    def __init__(self, db: Session):
        self.db = db
        self.products = ProductService(db)
        self.sequences = SequenceService(db)

    def get_by_id(self, sale_id: int) -> Optional[Sale]:
        return self.db.query(Sale).options(
            joinedload(Sale.items)
        ).filter(Sale.id == sale_id).first()

    def get_owned(self, sale_id: int, owner_id: int) -> Sale:
        sale = self.get_by_id(sale_id)
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found")
        if sale.owner_id != owner_id:
            raise AuthorizationError("Not authorized to access this sale")
        return sale

    def verify_access(self, sale_id: int, owner_id: int) -> Sale:
        """Ownership check only; nothing is loaded beyond the sale row"""
        sale = self.db.query(Sale).filter(Sale.id == sale_id).first()
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found")
        if sale.owner_id != owner_id:
            raise AuthorizationError("Not authorized to access this sale")
        return sale

    def list(self, owner_id: int, status: str = None, payment_status: str = None) -> List[Sale]:
        query = self.db.query(Sale).filter(Sale.owner_id == owner_id)
        if status:
            query = query.filter(Sale.status == status)
        if payment_status:
            query = query.filter(Sale.payment_status == payment_status)
        return query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()

    def get_next_number(self, owner_id: int) -> str:
        """Next sale number for display; nothing is reserved"""
        return self.sequences.peek_number(owner_id, SequenceService.SALE)

    def linked_invoice(self, sale: Sale) -> Optional[Invoice]:
        if not sale.invoice_id:
            return None
        return self.db.query(Invoice).filter(Invoice.id == sale.invoice_id).first()

    # ==================== ITEMS & TOTALS ====================

    def _build_items(self, items_data: List[SaleItemCreate], owner_id: int) -> Tuple[List[SaleItem], List[LineAmounts]]:
        if not items_data:
            raise ValidationError("A sale needs at least one item")

        items = []
        amounts = []
        for item_data in items_data:
            product = self.products.get_owned(item_data.product_id, owner_id)
            tax_rate = to_decimal(
                item_data.tax_rate if item_data.tax_rate is not None else (product.tax_rate or ZERO)
            )
            if item_data.price is not None:
                price = to_decimal(item_data.price)
            else:
                # Catalogue selling prices include tax
                price, _ = strip_tax(product.selling_price or ZERO, tax_rate)
            price = quantize_money(price)

            line = line_amounts(price, item_data.quantity, tax_rate)
            items.append(SaleItem(
                product_id=product.id,
                product_name=product.name,
                quantity=item_data.quantity,
                price=price,
                tax_rate=tax_rate,
                tax_amount=quantize_money(line.tax_amount),
                total=quantize_money(line.total),
                refunded_quantity=0
            ))
            amounts.append(line)
        return items, amounts

    def _apply_totals(self, sale: Sale, amounts: List[LineAmounts], discount: Decimal):
        totals = order_totals(amounts, discount)
        sale.subtotal = totals.subtotal
        sale.tax_total = totals.tax_total
        sale.discount = totals.discount
        sale.round_off = totals.round_off
        sale.total = totals.total

    def _resolve_customer(self, customer_id: Optional[int], customer_name: Optional[str], owner_id: int):
        if customer_id is None:
            return None, customer_name
        customer = CustomerService(self.db).get_owned(customer_id, owner_id)
        return customer.id, customer_name or customer.name

    # ==================== CRUD ====================

    def create(self, sale_data: SaleCreate, owner_id: int, user_id: int = None) -> Sale:
        """
        Create a sale. A sale created directly as Completed takes its items
        out of stock in the same transaction.
        """
        status = sale_data.status or SaleStatus.DRAFT.value
        if status not in SALE_INITIAL:
            raise ValidationError(
                f"Invalid initial status '{status}'. Must be one of: "
                f"{', '.join(sorted(SALE_INITIAL))}"
            )

        customer_id, customer_name = self._resolve_customer(
            sale_data.customer_id, sale_data.customer_name, owner_id
        )
        items, amounts = self._build_items(sale_data.items, owner_id)
        sale_date = sale_data.sale_date or date.today()

        sale = Sale(
            sale_number=self.sequences.next_number(owner_id, SequenceService.SALE, on=sale_date),
            sale_date=sale_date,
            customer_id=customer_id,
            customer_name=customer_name,
            status=status,
            payment_status=PaymentStatus.UNPAID.value,
            paid_amount=Decimal("0.00"),
            refunded_total=Decimal("0.00"),
            notes=sale_data.notes,
            owner_id=owner_id
        )
        self._apply_totals(sale, amounts, sale_data.discount)
        sale.items.extend(items)
        self.db.add(sale)
        self.db.flush()

        if status in SALE_STOCK_CONSUMED:
            self._consume_stock(sale, user_id)

        logger.info("Sale %s created as %s (total %s)", sale.sale_number, status, sale.total)
        return sale

    def update(self, sale_id: int, sale_data: SaleUpdate, owner_id: int) -> Sale:
        sale = self.get_owned(sale_id, owner_id)
        if sale.status not in SALE_EDITABLE:
            raise StateTransitionError(f"Cannot edit a sale that is {sale.status}")

        update_data = sale_data.model_dump(exclude_unset=True)

        if "customer_id" in update_data or "customer_name" in update_data:
            sale.customer_id, sale.customer_name = self._resolve_customer(
                update_data.get("customer_id", sale.customer_id),
                update_data.get("customer_name"),
                owner_id
            )
        if update_data.get("sale_date"):
            sale.sale_date = update_data["sale_date"]
        if "notes" in update_data:
            sale.notes = update_data["notes"]

        discount = update_data.get("discount")
        if discount is None:
            discount = sale.discount or ZERO

        if sale_data.items is not None:
            items, amounts = self._build_items(sale_data.items, owner_id)
            sale.items.clear()
            self.db.flush()
            sale.items.extend(items)
        else:
            amounts = [
                line_amounts(item.price, item.quantity, item.tax_rate or ZERO) for item in sale.items
            ]
        self._apply_totals(sale, amounts, discount)

        self.db.flush()
        return sale

    def delete(self, sale_id: int, owner_id: int) -> bool:
        sale = self.get_owned(sale_id, owner_id)
        if sale.status not in SALE_DELETABLE:
            raise StateTransitionError(
                f"Only Draft or Ordered sales can be deleted; this sale is {sale.status}. "
                "Cancel it instead."
            )

        for invoice in self.db.query(Invoice).filter(Invoice.sale_id == sale.id).all():
            invoice.sale_id = None
        self.db.delete(sale)
        self.db.flush()
        logger.info("Sale %s deleted", sale_id)
        return True

    # ==================== TRANSITIONS ====================

    def _consume_stock(self, sale: Sale, user_id: int = None):
        deltas = [(item.product_id, -item.quantity) for item in sale.items]
        return self.products.apply_deltas(
            deltas, StockReason.SALES.value, sale.owner_id,
            user_id=user_id, reference_type="Sale", reference_id=sale.id
        )

    def _consume_and_set(self, sale_id: int, owner_id: int, to_status: str, user_id: int = None) -> TransitionResult:
        sale = self.get_owned(sale_id, owner_id)
        validate_sale_transition(sale, to_status)

        previous = sale.status
        movements = self._consume_stock(sale, user_id)
        sale.status = to_status
        self.db.flush()

        logger.info("Sale %s %s", sale.sale_number, to_status.lower())
        return TransitionResult(
            entity=sale,
            previous_status=previous,
            status=to_status,
            message=f"Sale {to_status.lower()} and inventory updated",
            inventory_updates=movements
        )

    def complete(self, sale_id: int, owner_id: int, user_id: int = None) -> TransitionResult:
        """Pending -> Completed; every item leaves stock or nothing does"""
        return self._consume_and_set(sale_id, owner_id, SaleStatus.COMPLETED.value, user_id)

    def receive(self, sale_id: int, owner_id: int, user_id: int = None) -> TransitionResult:
        """Pending -> Received; same stock rules as complete"""
        return self._consume_and_set(sale_id, owner_id, SaleStatus.RECEIVED.value, user_id)

    def cancel(self, sale_id: int, owner_id: int, user_id: int = None) -> TransitionResult:
        """
        Cancel a sale. Stock already taken out is put back one product at a
        time; products that cannot be restored are reported in
        ``restock_failures`` instead of failing the cancellation.
        """
        sale = self.get_owned(sale_id, owner_id)
        validate_sale_transition(sale, SaleStatus.CANCELLED.value)

        invoice = self.linked_invoice(sale)
        if invoice and invoice.status == InvoiceStatus.PAID.value:
            logger.warning("Refused to cancel sale %s: invoice %s is paid", sale.id, invoice.number)
            raise StateTransitionError(
                f"Cannot cancel sale {sale.sale_number}: invoice {invoice.number} is paid"
            )

        previous = sale.status
        movements, failures = [], []
        if previous in SALE_STOCK_CONSUMED:
            # Units already refunded were restocked by the refund
            deltas = [
                (item.product_id, item.quantity - (item.refunded_quantity or 0))
                for item in sale.items
            ]
            movements, failures = self.products.restock_best_effort(
                deltas, StockReason.SALES_CANCELLATION.value, owner_id,
                user_id=user_id, reference_type="Sale", reference_id=sale.id
            )

        if invoice and invoice.status in (InvoiceStatus.DRAFT.value, InvoiceStatus.UNPAID.value):
            invoice.status = InvoiceStatus.VOID.value
            invoice.voided_at = datetime.utcnow()

        sale.status = SaleStatus.CANCELLED.value
        self.db.flush()

        if failures:
            message = f"Sale cancelled; {len(failures)} product(s) could not be restocked"
        elif movements:
            message = "Sale cancelled and inventory restored"
        else:
            message = "Sale cancelled"
        logger.info("Sale %s cancelled from %s", sale.sale_number, previous)
        return TransitionResult(
            entity=sale,
            previous_status=previous,
            status=sale.status,
            message=message,
            inventory_updates=movements,
            restock_failures=failures
        )

    def set_status(self, sale_id: int, status: str, owner_id: int, user_id: int = None) -> TransitionResult:
        """
        Generic status change. Statuses with side effects go through their
        dedicated method so stock always moves with the status.
        """
        if status not in SALE_TRANSITIONS:
            raise ValidationError(
                f"Invalid status '{status}'. Must be one of: {', '.join(SALE_TRANSITIONS)}"
            )
        if status == SaleStatus.COMPLETED.value:
            return self.complete(sale_id, owner_id, user_id)
        if status == SaleStatus.RECEIVED.value:
            return self.receive(sale_id, owner_id, user_id)
        if status == SaleStatus.CANCELLED.value:
            return self.cancel(sale_id, owner_id, user_id)

        sale = self.get_owned(sale_id, owner_id)
        validate_sale_transition(sale, status)
        previous = sale.status
        sale.status = status
        self.db.flush()

        logger.info("Sale %s moved from %s to %s", sale.sale_number, previous, status)
        return TransitionResult(
            entity=sale,
            previous_status=previous,
            status=status,
            message=f"Sale status updated to {status}"
        )

    # ==================== PAYMENTS ====================

    def record_payment(
        self,
        sale_id: int,
        owner_id: int,
        amount: Optional[Decimal] = None,
        method: str = "Cash",
        reference: str = None,
        notes: str = None
    ) -> TransitionResult:
        sale = self.get_owned(sale_id, owner_id)
        if sale.status == SaleStatus.CANCELLED.value:
            raise StateTransitionError("Cannot record a payment on a cancelled sale")
        if sale.payment_status == PaymentStatus.PAID.value:
            raise StateTransitionError(f"Sale {sale.sale_number} is already paid")

        outstanding = Decimal(sale.total or 0) - Decimal(sale.paid_amount or 0)
        amount = quantize_money(amount if amount is not None else outstanding)
        # A zero-total sale is settled by an empty payment
        if amount <= 0 and (outstanding > 0 or amount < 0):
            raise ValidationError("Payment amount must be positive")
        if amount > outstanding:
            raise ValidationError(
                f"Payment amount ({amount}) exceeds balance due ({outstanding})"
            )

        previous = sale.payment_status
        if amount > 0:
            self.db.add(Payment(
                sale_id=sale.id,
                amount=amount,
                method=method,
                reference=reference,
                notes=notes,
                owner_id=owner_id
            ))
        sale.paid_amount = Decimal(sale.paid_amount or 0) + amount
        sale.payment_method = method
        sale.payment_reference = reference
        if sale.paid_amount >= Decimal(sale.total or 0):
            sale.payment_status = PaymentStatus.PAID.value
            sale.paid_at = datetime.utcnow()
            invoice = self.linked_invoice(sale)
            if invoice and invoice.status != InvoiceStatus.VOID.value:
                invoice.status = InvoiceStatus.PAID.value
        else:
            sale.payment_status = PaymentStatus.PARTIAL.value

        self.db.flush()
        logger.info("Payment of %s recorded on sale %s", amount, sale.sale_number)
        return TransitionResult(
            entity=sale,
            previous_status=previous,
            status=sale.payment_status,
            message=f"Payment of {amount} recorded"
        )
