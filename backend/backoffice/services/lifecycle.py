"""
Lifecycle rules for sales, purchases and refunds.

The tables below are the only allowed status transitions. This module does
no database work; services call ``validate_*`` before writing anything and
report back with a ``TransitionResult``.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from backoffice.core.exceptions import StateTransitionError, ValidationError
from backoffice.models import SaleStatus, PurchaseStatus, RefundStatus


# ============================================================
# SALES
# ============================================================

SALE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    SaleStatus.DRAFT.value: frozenset({
        SaleStatus.PENDING.value, SaleStatus.ORDERED.value, SaleStatus.CANCELLED.value,
    }),
    SaleStatus.ORDERED.value: frozenset({
        SaleStatus.PENDING.value, SaleStatus.CANCELLED.value,
    }),
    SaleStatus.PENDING.value: frozenset({
        SaleStatus.COMPLETED.value, SaleStatus.RECEIVED.value, SaleStatus.CANCELLED.value,
    }),
    SaleStatus.COMPLETED.value: frozenset({SaleStatus.CANCELLED.value}),
    SaleStatus.RECEIVED.value: frozenset({SaleStatus.CANCELLED.value}),
    SaleStatus.CANCELLED.value: frozenset(),
}

# Statuses whose items have already been taken out of stock
SALE_STOCK_CONSUMED = frozenset({SaleStatus.COMPLETED.value, SaleStatus.RECEIVED.value})

SALE_EDITABLE = frozenset({
    SaleStatus.DRAFT.value, SaleStatus.PENDING.value, SaleStatus.ORDERED.value,
})

SALE_DELETABLE = frozenset({SaleStatus.DRAFT.value, SaleStatus.ORDERED.value})

SALE_INITIAL = frozenset({
    SaleStatus.DRAFT.value, SaleStatus.PENDING.value, SaleStatus.ORDERED.value,
    SaleStatus.COMPLETED.value,
})


# ============================================================
# PURCHASES
# ============================================================

PURCHASE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PurchaseStatus.DRAFT.value: frozenset({
        PurchaseStatus.ORDERED.value, PurchaseStatus.RECEIVED.value, PurchaseStatus.CANCELLED.value,
    }),
    PurchaseStatus.ORDERED.value: frozenset({
        PurchaseStatus.PARTIALLY_RECEIVED.value, PurchaseStatus.RECEIVED.value,
        PurchaseStatus.CANCELLED.value,
    }),
    PurchaseStatus.PARTIALLY_RECEIVED.value: frozenset({
        PurchaseStatus.PARTIALLY_RECEIVED.value, PurchaseStatus.RECEIVED.value,
        PurchaseStatus.CANCELLED.value,
    }),
    PurchaseStatus.RECEIVED.value: frozenset({PurchaseStatus.CANCELLED.value}),
    PurchaseStatus.CANCELLED.value: frozenset(),
}

PURCHASE_EDITABLE = frozenset({PurchaseStatus.DRAFT.value, PurchaseStatus.ORDERED.value})

PURCHASE_INITIAL = frozenset({
    PurchaseStatus.DRAFT.value, PurchaseStatus.ORDERED.value, PurchaseStatus.RECEIVED.value,
})


# ============================================================
# REFUNDS
# ============================================================

REFUND_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    RefundStatus.PENDING.value: frozenset({RefundStatus.APPROVED.value, RefundStatus.REJECTED.value}),
    RefundStatus.APPROVED.value: frozenset({RefundStatus.COMPLETED.value, RefundStatus.REJECTED.value}),
    RefundStatus.REJECTED.value: frozenset(),
    RefundStatus.COMPLETED.value: frozenset(),
}

# Refunds reserving refundable quantity on top of SaleItem.refunded_quantity,
# which already counts approved refunds
REFUND_RESERVING = frozenset({RefundStatus.PENDING.value})

# Refunds whose stock and amounts have been applied to the sale
REFUND_APPLIED = frozenset({RefundStatus.APPROVED.value, RefundStatus.COMPLETED.value})


# ============================================================
# RULES
# ============================================================

def can_transition(table: Dict[str, FrozenSet[str]], from_status: str, to_status: str) -> bool:
    return to_status in table.get(from_status, frozenset())


def _validate(table: Dict[str, FrozenSet[str]], entity: str, entity_id, from_status: str, to_status: str):
    if to_status not in table:
        raise ValidationError(
            f"Invalid status '{to_status}'. Must be one of: {', '.join(table)}"
        )
    if from_status == to_status and to_status not in table.get(from_status, frozenset()):
        raise StateTransitionError(f"{entity} {entity_id} is already {from_status}")
    if not can_transition(table, from_status, to_status):
        raise StateTransitionError(
            f"{entity} {entity_id} cannot transition from '{from_status}' to '{to_status}'"
        )


def validate_sale_transition(sale, to_status: str):
    _validate(SALE_TRANSITIONS, "Sale", sale.id, sale.status, to_status)


def validate_purchase_transition(purchase, to_status: str):
    _validate(PURCHASE_TRANSITIONS, "Purchase", purchase.id, purchase.status, to_status)


def validate_refund_transition(refund, to_status: str):
    _validate(REFUND_TRANSITIONS, "Refund", refund.id, refund.status, to_status)


# ============================================================
# RESULTS
# ============================================================

@dataclass
class TransitionResult:
    """Outcome of one lifecycle transition, as returned to the caller"""
    entity: Any
    previous_status: Optional[str]
    status: str
    message: str = ""
    inventory_updates: List[Any] = field(default_factory=list)
    restock_failures: List[Any] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.restock_failures)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "message": self.message,
            "previous_status": self.previous_status,
            "status": self.status,
            "partial": self.partial,
            "inventory_updates": [asdict(update) for update in self.inventory_updates],
            "restock_failures": [asdict(failure) for failure in self.restock_failures],
        }
