"""
Purchases API Routes
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from backoffice.api.deps import get_lifecycle
from backoffice.core.database import get_db
from backoffice.core.security import get_current_user
from backoffice.models import User
from backoffice.schemas import (
    PurchaseCreate, PurchaseUpdate, PurchaseResponse, PurchaseWithItems,
    PurchaseReceiveRequest, PurchasePaymentRequest, TransitionResponse, MessageResponse
)
from backoffice.services.order_lifecycle import OrderLifecycleService
from backoffice.services.purchase_service import PurchaseService

router = APIRouter(prefix="/purchases", tags=["Purchases"])


@router.get("", response_model=List[PurchaseResponse])
async def list_purchases(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return PurchaseService(db).list(current_user.id, status_filter)


@router.post("", response_model=PurchaseWithItems, status_code=status.HTTP_201_CREATED)
async def create_purchase(
    purchase_data: PurchaseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a purchase order. Created as Received, stock arrives immediately."""
    purchase = PurchaseService(db).create(purchase_data, current_user.id, current_user.id)
    db.commit()
    db.refresh(purchase)
    return purchase


@router.get("/{purchase_id}", response_model=PurchaseWithItems)
async def get_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return PurchaseService(db).get_owned(purchase_id, current_user.id)


@router.put("/{purchase_id}", response_model=PurchaseWithItems)
async def update_purchase(
    purchase_id: int,
    purchase_data: PurchaseUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Edit a Draft or Ordered purchase"""
    purchase = PurchaseService(db).update(purchase_id, purchase_data, current_user.id)
    db.commit()
    db.refresh(purchase)
    return purchase


@router.delete("/{purchase_id}", response_model=MessageResponse)
async def delete_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    PurchaseService(db).delete(purchase_id, current_user.id)
    db.commit()
    return {"message": "Purchase deleted successfully"}


@router.post("/{purchase_id}/receive", response_model=TransitionResponse)
async def receive_purchase(
    purchase_id: int,
    receive_data: Optional[PurchaseReceiveRequest] = None,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """Receive some or all outstanding goods"""
    receipts = None
    delivery_date = None
    if receive_data is not None:
        delivery_date = receive_data.delivery_date
        if receive_data.items is not None:
            receipts = {}
            for line in receive_data.items:
                receipts[line.item_id] = receipts.get(line.item_id, 0) + line.quantity

    result = lifecycle.receive_purchase(purchase_id, receipts, delivery_date)
    db.commit()
    return result.to_dict()


@router.post("/{purchase_id}/cancel", response_model=TransitionResponse)
async def cancel_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """Cancel a purchase, reversing any stock already received"""
    result = lifecycle.cancel_purchase(purchase_id)
    db.commit()
    return result.to_dict()


@router.post("/{purchase_id}/payment", response_model=TransitionResponse)
async def record_purchase_payment(
    purchase_id: int,
    payment_data: PurchasePaymentRequest,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    result = lifecycle.record_purchase_payment(purchase_id, payment_data.amount)
    db.commit()
    return result.to_dict()
