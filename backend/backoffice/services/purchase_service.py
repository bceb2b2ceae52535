"""
Purchases Service - Purchase orders, receipts, supplier payments
"""
from typing import Dict, Optional, List, Tuple
from sqlalchemy.orm import Session, joinedload
from decimal import Decimal
from datetime import date
import logging

from backoffice.core.exceptions import (
    AuthorizationError, NotFoundError, StateTransitionError, ValidationError
)
from backoffice.models import Purchase, PurchaseItem, PurchaseStatus, PaymentStatus, StockReason
from backoffice.schemas import PurchaseCreate, PurchaseUpdate, PurchaseItemCreate
from backoffice.services.inventory_service import ProductService
from backoffice.services.lifecycle import (
    PURCHASE_EDITABLE, PURCHASE_INITIAL, TransitionResult, validate_purchase_transition
)
from backoffice.services.pricing import line_amounts, quantize_money, to_decimal, ZERO
from backoffice.services.sequence_service import SequenceService

logger = logging.getLogger(__name__)


class PurchaseService:
    def __init__(self, db: Session):
        self.db = db
        self.products = ProductService(db)
        self.sequences = SequenceService(db)

    def get_by_id(self, purchase_id: int) -> Optional[Purchase]:
        return self.db.query(Purchase).options(
            joinedload(Purchase.items)
        ).filter(Purchase.id == purchase_id).first()

    def get_owned(self, purchase_id: int, owner_id: int) -> Purchase:
        purchase = self.get_by_id(purchase_id)
        if not purchase:
            raise NotFoundError(f"Purchase {purchase_id} not found")
        if purchase.owner_id != owner_id:
            raise AuthorizationError("Not authorized to access this purchase")
        return purchase

    def list(self, owner_id: int, status: str = None) -> List[Purchase]:
        query = self.db.query(Purchase).filter(Purchase.owner_id == owner_id)
        if status:
            query = query.filter(Purchase.status == status)
        return query.order_by(Purchase.created_at.desc(), Purchase.id.desc()).all()

    def get_next_number(self, owner_id: int) -> str:
        return self.sequences.peek_number(owner_id, SequenceService.PURCHASE)

    def _build_items(self, items_data: List[PurchaseItemCreate], owner_id: int) -> Tuple[List[PurchaseItem], Decimal]:
        if not items_data:
            raise ValidationError("A purchase needs at least one item")

        items = []
        total_amount = ZERO
        for item_data in items_data:
            product = self.products.get_owned(item_data.product_id, owner_id)
            unit_price = quantize_money(item_data.unit_price)
            rate = to_decimal(item_data.tax_rate or ZERO)
            amounts = line_amounts(unit_price, item_data.quantity, rate)
            items.append(PurchaseItem(
                product_id=product.id,
                product_name=product.name,
                quantity=item_data.quantity,
                received_quantity=0,
                unit_price=unit_price,
                tax_rate=rate,
                tax_amount=quantize_money(amounts.tax_amount),
                total=quantize_money(amounts.total)
            ))
            total_amount += amounts.total
        return items, quantize_money(total_amount)

    # ==================== CRUD ====================

    def create(self, purchase_data: PurchaseCreate, owner_id: int, user_id: int = None) -> Purchase:
        status = purchase_data.status or PurchaseStatus.DRAFT.value
        if status not in PURCHASE_INITIAL:
            raise ValidationError(
                f"Invalid initial status '{status}'. Must be one of: "
                f"{', '.join(sorted(PURCHASE_INITIAL))}"
            )

        items, total_amount = self._build_items(purchase_data.items, owner_id)
        order_date = purchase_data.order_date or date.today()

        purchase = Purchase(
            po_number=self.sequences.next_number(owner_id, SequenceService.PURCHASE, on=order_date),
            supplier_id=purchase_data.supplier_id,
            supplier_name=purchase_data.supplier_name,
            order_date=order_date,
            expected_delivery_date=purchase_data.expected_delivery_date,
            # Receiving below moves a Received order through the ledger
            status=PurchaseStatus.DRAFT.value if status == PurchaseStatus.RECEIVED.value else status,
            payment_status=PaymentStatus.UNPAID.value,
            total_amount=total_amount,
            paid_amount=Decimal("0.00"),
            notes=purchase_data.notes,
            owner_id=owner_id
        )
        purchase.items.extend(items)
        self.db.add(purchase)
        self.db.flush()

        if status == PurchaseStatus.RECEIVED.value:
            self._receive(purchase, None, user_id)
            purchase.delivery_date = order_date
            self.db.flush()

        logger.info("Purchase %s created as %s (total %s)", purchase.po_number, purchase.status, total_amount)
        return purchase

    def update(self, purchase_id: int, purchase_data: PurchaseUpdate, owner_id: int) -> Purchase:
        purchase = self.get_owned(purchase_id, owner_id)
        if purchase.status not in PURCHASE_EDITABLE:
            raise StateTransitionError(f"Cannot edit a purchase that is {purchase.status}")

        update_data = purchase_data.model_dump(exclude_unset=True)
        items_data = update_data.pop("items", None)
        new_status = update_data.pop("status", None)

        if new_status and new_status != purchase.status:
            if new_status not in PURCHASE_EDITABLE:
                raise StateTransitionError(
                    f"Use the receive or cancel actions to move a purchase to {new_status}"
                )
            validate_purchase_transition(purchase, new_status)
            purchase.status = new_status

        for key, value in update_data.items():
            setattr(purchase, key, value)

        if items_data is not None:
            items, total_amount = self._build_items(purchase_data.items, owner_id)
            purchase.items.clear()
            self.db.flush()
            purchase.items.extend(items)
            purchase.total_amount = total_amount

        self.db.flush()
        return purchase

    def delete(self, purchase_id: int, owner_id: int) -> bool:
        purchase = self.get_owned(purchase_id, owner_id)
        if purchase.status not in PURCHASE_EDITABLE:
            raise StateTransitionError(
                f"Only Draft or Ordered purchases can be deleted; this purchase is {purchase.status}"
            )
        self.db.delete(purchase)
        self.db.flush()
        return True

    # ==================== RECEIPTS ====================

    def _resolve_receipts(self, purchase: Purchase, receipts: Optional[Dict[int, int]]) -> Dict[int, int]:
        items = {item.id: item for item in purchase.items}

        if receipts is None:
            receipts = {
                item.id: item.quantity - item.received_quantity
                for item in purchase.items
                if item.quantity > item.received_quantity
            }

        for item_id, quantity in receipts.items():
            item = items.get(item_id)
            if item is None:
                raise ValidationError(f"Item {item_id} is not part of purchase {purchase.po_number}")
            if quantity < 1:
                raise ValidationError("Received quantity must be at least 1")
            if item.received_quantity + quantity > item.quantity:
                raise ValidationError(
                    f"Cannot receive {quantity} of {item.product_name}: "
                    f"{item.quantity - item.received_quantity} outstanding"
                )

        if not receipts:
            raise ValidationError(f"Nothing left to receive on purchase {purchase.po_number}")
        return receipts

    def _receive(self, purchase: Purchase, receipts: Optional[Dict[int, int]], user_id: int = None):
        receipts = self._resolve_receipts(purchase, receipts)
        items = {item.id: item for item in purchase.items}

        movements = self.products.apply_deltas(
            [(items[item_id].product_id, quantity) for item_id, quantity in receipts.items()],
            StockReason.PURCHASES.value, purchase.owner_id,
            user_id=user_id, reference_type="Purchase", reference_id=purchase.id
        )

        for item_id, quantity in receipts.items():
            item = items[item_id]
            if not item.received_quantity:
                self.products.reprice_from_purchase(
                    self.products.get_by_id(item.product_id), item.unit_price
                )
            item.received_quantity += quantity

        fully_received = all(item.received_quantity >= item.quantity for item in purchase.items)
        purchase.status = (
            PurchaseStatus.RECEIVED.value if fully_received
            else PurchaseStatus.PARTIALLY_RECEIVED.value
        )
        self.db.flush()
        return movements

    def receive(
        self,
        purchase_id: int,
        owner_id: int,
        receipts: Optional[Dict[int, int]] = None,
        delivery_date: Optional[date] = None,
        user_id: int = None
    ) -> TransitionResult:
        """
        Receive goods. ``receipts`` maps item id to the quantity arriving now;
        omitted, everything still outstanding is received.
        """
        purchase = self.get_owned(purchase_id, owner_id)
        resolved = self._resolve_receipts(purchase, receipts)

        outstanding_after = {
            item.id: item.quantity - item.received_quantity - resolved.get(item.id, 0)
            for item in purchase.items
        }
        target = (
            PurchaseStatus.RECEIVED.value if not any(outstanding_after.values())
            else PurchaseStatus.PARTIALLY_RECEIVED.value
        )
        validate_purchase_transition(purchase, target)

        previous = purchase.status
        movements = self._receive(purchase, resolved, user_id)
        if purchase.status == PurchaseStatus.RECEIVED.value:
            purchase.delivery_date = delivery_date or date.today()
        self.db.flush()

        logger.info("Purchase %s %s", purchase.po_number, purchase.status.lower())
        return TransitionResult(
            entity=purchase,
            previous_status=previous,
            status=purchase.status,
            message=f"Purchase {purchase.status.lower()} and inventory updated",
            inventory_updates=movements
        )

    def cancel(self, purchase_id: int, owner_id: int, user_id: int = None) -> TransitionResult:
        """
        Cancel a purchase, taking any received goods back out of stock. Fails
        as a whole if some of them have already been sold.
        """
        purchase = self.get_owned(purchase_id, owner_id)
        validate_purchase_transition(purchase, PurchaseStatus.CANCELLED.value)
        if purchase.payment_status == PaymentStatus.PAID.value:
            raise StateTransitionError(f"Cannot cancel paid purchase {purchase.po_number}")

        previous = purchase.status
        deltas = [
            (item.product_id, -item.received_quantity)
            for item in purchase.items
            if item.received_quantity
        ]
        movements = []
        if deltas:
            movements = self.products.apply_deltas(
                deltas, StockReason.PURCHASES_CANCELLATION.value, owner_id,
                user_id=user_id, reference_type="Purchase", reference_id=purchase.id
            )

        purchase.status = PurchaseStatus.CANCELLED.value
        self.db.flush()

        logger.info("Purchase %s cancelled from %s", purchase.po_number, previous)
        return TransitionResult(
            entity=purchase,
            previous_status=previous,
            status=purchase.status,
            message="Purchase cancelled" + (" and received stock reversed" if movements else ""),
            inventory_updates=movements
        )

    # ==================== PAYMENTS ====================

    def record_payment(self, purchase_id: int, owner_id: int, amount: Decimal) -> TransitionResult:
        purchase = self.get_owned(purchase_id, owner_id)
        if purchase.status == PurchaseStatus.CANCELLED.value:
            raise StateTransitionError("Cannot record a payment on a cancelled purchase")
        if purchase.payment_status == PaymentStatus.PAID.value:
            raise StateTransitionError(f"Purchase {purchase.po_number} is already paid")

        amount = quantize_money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        balance_due = Decimal(purchase.total_amount or 0) - Decimal(purchase.paid_amount or 0)
        if amount > balance_due:
            raise ValidationError(
                f"Payment amount ({amount}) exceeds balance due ({balance_due})"
            )

        previous = purchase.payment_status
        purchase.paid_amount = Decimal(purchase.paid_amount or 0) + amount
        if purchase.paid_amount >= Decimal(purchase.total_amount or 0):
            purchase.payment_status = PaymentStatus.PAID.value
        else:
            purchase.payment_status = PaymentStatus.PARTIAL.value
        self.db.flush()

        logger.info("Payment of %s recorded on purchase %s", amount, purchase.po_number)
        return TransitionResult(
            entity=purchase,
            previous_status=previous,
            status=purchase.payment_status,
            message=f"Payment of {amount} recorded"
        )
