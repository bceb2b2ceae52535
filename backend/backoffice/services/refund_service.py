"""
Refund Service - Partial and full reversals of completed sales

Approving a refund puts the goods back in stock and records the refunded
quantity and amount on the sale. Rejecting an approved refund undoes both.
"""
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from math import ceil
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from backoffice.core.exceptions import (
    AuthorizationError, NotFoundError, StateTransitionError, ValidationError
)
from backoffice.models import Refund, RefundItem, RefundStatus, StockReason
from backoffice.schemas import RefundCreate
from backoffice.services.inventory_service import ProductService
from backoffice.services.lifecycle import (
    REFUND_RESERVING, SALE_STOCK_CONSUMED, TransitionResult, validate_refund_transition
)
from backoffice.services.pricing import line_amounts, quantize_money, ZERO
from backoffice.services.sales_service import SaleService

logger = logging.getLogger(__name__)


class RefundService:
    def __init__(self, db: Session):
        self.db = db
        self.products = ProductService(db)

    def get_by_id(self, refund_id: int) -> Optional[Refund]:
        return self.db.query(Refund).options(
            joinedload(Refund.items)
        ).filter(Refund.id == refund_id).first()

    def get_owned(self, refund_id: int, owner_id: int) -> Refund:
        refund = self.get_by_id(refund_id)
        if not refund:
            raise NotFoundError(f"Refund {refund_id} not found")
        if refund.owner_id != owner_id:
            raise AuthorizationError("Not authorized to access this refund")
        return refund

    def list(
        self,
        owner_id: int,
        status: str = None,
        sale_id: int = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[Refund], Dict[str, int]]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)

        query = self.db.query(Refund).filter(Refund.owner_id == owner_id)
        if status:
            query = query.filter(Refund.status == status)
        if sale_id:
            query = query.filter(Refund.sale_id == sale_id)

        total = query.count()
        refunds = query.order_by(Refund.created_at.desc(), Refund.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()

        return refunds, {
            "total": total,
            "page": page,
            "limit": limit,
            "pages": ceil(total / limit) if total else 0,
        }

    def _reserved(self, sale_item_ids: List[int]) -> Dict[int, int]:
        """Quantity per sale line held by refunds awaiting a decision"""
        query = self.db.query(
            RefundItem.sale_item_id, func.sum(RefundItem.refund_quantity)
        ).join(Refund, Refund.id == RefundItem.refund_id).filter(
            RefundItem.sale_item_id.in_(sale_item_ids),
            Refund.status.in_(REFUND_RESERVING)
        )
        return {
            sale_item_id: int(quantity or 0)
            for sale_item_id, quantity in query.group_by(RefundItem.sale_item_id)
        }

    def create(self, refund_data: RefundCreate, owner_id: int, user_id: int = None) -> Refund:
        sale = SaleService(self.db).get_owned(refund_data.sale_id, owner_id)
        if sale.status not in SALE_STOCK_CONSUMED:
            raise StateTransitionError(
                f"Only completed or received sales can be refunded; sale {sale.sale_number} is {sale.status}"
            )
        if not refund_data.items:
            raise ValidationError("A refund needs at least one item")

        sale_items = {item.id: item for item in sale.items}
        requested = defaultdict(int)
        for item_data in refund_data.items:
            if item_data.sale_item_id not in sale_items:
                raise ValidationError(
                    f"Item {item_data.sale_item_id} is not part of sale {sale.sale_number}"
                )
            if item_data.refund_quantity < 1:
                raise ValidationError("Refund quantity must be at least 1")
            requested[item_data.sale_item_id] += item_data.refund_quantity

        reserved = self._reserved(list(requested))
        for sale_item_id, quantity in requested.items():
            sale_item = sale_items[sale_item_id]
            available = sale_item.quantity - (sale_item.refunded_quantity or 0) - reserved.get(sale_item_id, 0)
            if quantity > available:
                raise ValidationError(
                    f"Cannot refund {quantity} of {sale_item.product_name}: "
                    f"only {max(available, 0)} refundable"
                )

        refund = Refund(
            sale_id=sale.id,
            reason=refund_data.reason,
            status=RefundStatus.PENDING.value,
            owner_id=owner_id,
            created_by=user_id
        )
        subtotal = ZERO
        tax_total = ZERO
        for item_data in refund_data.items:
            sale_item = sale_items[item_data.sale_item_id]
            amounts = line_amounts(sale_item.price, item_data.refund_quantity, sale_item.tax_rate or ZERO)
            refund.items.append(RefundItem(
                sale_item_id=sale_item.id,
                product_id=sale_item.product_id,
                product_name=sale_item.product_name,
                refund_quantity=item_data.refund_quantity,
                price=sale_item.price,
                tax_rate=sale_item.tax_rate or ZERO,
                tax_amount=quantize_money(amounts.tax_amount),
                total=quantize_money(amounts.total)
            ))
            subtotal += amounts.subtotal
            tax_total += amounts.tax_amount

        refund.subtotal = quantize_money(subtotal)
        refund.tax_total = quantize_money(tax_total)
        refund.total = refund.subtotal + refund.tax_total
        self.db.add(refund)
        self.db.flush()

        logger.info("Refund %s created for sale %s (total %s)", refund.id, sale.sale_number, refund.total)
        return refund

    def _approve(self, refund: Refund, user_id: int = None):
        sale = refund.sale
        if sale.status not in SALE_STOCK_CONSUMED:
            raise StateTransitionError(
                f"Cannot approve a refund on sale {sale.sale_number}: it is {sale.status}"
            )

        requested = defaultdict(int)
        for item in refund.items:
            requested[item.sale_item_id] += item.refund_quantity
        for item in refund.items:
            sale_item = item.sale_item
            if requested[sale_item.id] > sale_item.quantity - (sale_item.refunded_quantity or 0):
                raise ValidationError(
                    f"Cannot refund {requested[sale_item.id]} of {sale_item.product_name}: "
                    "more than was sold and not yet refunded"
                )

        movements = self.products.apply_deltas(
            [(item.product_id, item.refund_quantity) for item in refund.items],
            StockReason.REFUNDS.value, refund.owner_id,
            user_id=user_id, reference_type="Refund", reference_id=refund.id
        )
        for item in refund.items:
            item.sale_item.refunded_quantity = (item.sale_item.refunded_quantity or 0) + item.refund_quantity
        sale.refunded_total = Decimal(sale.refunded_total or 0) + Decimal(refund.total)
        refund.approved_at = datetime.utcnow()
        return movements

    def _reverse(self, refund: Refund, user_id: int = None):
        # A cancelled sale restocked only its unrefunded units; these are already back
        sale = refund.sale
        if sale.status not in SALE_STOCK_CONSUMED:
            raise StateTransitionError(
                f"Cannot reject an approved refund on sale {sale.sale_number}: it is {sale.status}"
            )

        movements = self.products.apply_deltas(
            [(item.product_id, -item.refund_quantity) for item in refund.items],
            StockReason.REFUND_REVERSAL.value, refund.owner_id,
            user_id=user_id, reference_type="Refund", reference_id=refund.id
        )
        for item in refund.items:
            item.sale_item.refunded_quantity = max(
                (item.sale_item.refunded_quantity or 0) - item.refund_quantity, 0
            )
        sale.refunded_total = max(Decimal(sale.refunded_total or 0) - Decimal(refund.total), ZERO)
        return movements

    def set_status(self, refund_id: int, status: str, owner_id: int, user_id: int = None) -> TransitionResult:
        refund = self.get_owned(refund_id, owner_id)
        validate_refund_transition(refund, status)

        previous = refund.status
        movements = []
        if status == RefundStatus.APPROVED.value:
            movements = self._approve(refund, user_id)
        elif status == RefundStatus.REJECTED.value and previous == RefundStatus.APPROVED.value:
            movements = self._reverse(refund, user_id)
        elif status == RefundStatus.COMPLETED.value:
            refund.completed_at = datetime.utcnow()

        refund.status = status
        self.db.flush()

        logger.info("Refund %s moved from %s to %s", refund.id, previous, status)
        return TransitionResult(
            entity=refund,
            previous_status=previous,
            status=status,
            message=f"Refund {status.lower()}",
            inventory_updates=movements
        )
