"""
Sales API Routes
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from backoffice.api.deps import get_lifecycle
from backoffice.core.database import get_db
from backoffice.core.security import get_current_user
from backoffice.models import User
from backoffice.schemas import (
    SaleCreate, SaleUpdate, SaleResponse, SaleWithItems, SaleStatusUpdate,
    SalePaymentRequest, TransitionResponse, MessageResponse
)
from backoffice.services.order_lifecycle import OrderLifecycleService
from backoffice.services.sales_service import SaleService

router = APIRouter(prefix="/sales", tags=["Sales"])


@router.get("", response_model=List[SaleResponse])
async def list_sales(
    status_filter: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the current user's sales, newest first"""
    return SaleService(db).list(current_user.id, status_filter, payment_status)


@router.get("/next-number")
async def get_next_sale_number(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Preview the next sale number"""
    return {"next_number": SaleService(db).get_next_number(current_user.id)}


@router.post("", response_model=SaleWithItems, status_code=status.HTTP_201_CREATED)
async def create_sale(
    sale_data: SaleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a sale. Created as Completed, its items leave stock immediately."""
    sale = SaleService(db).create(sale_data, current_user.id, current_user.id)
    db.commit()
    db.refresh(sale)
    return sale


@router.get("/{sale_id}", response_model=SaleWithItems)
async def get_sale(
    sale_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return SaleService(db).get_owned(sale_id, current_user.id)


@router.get("/{sale_id}/verify-access")
async def verify_sale_access(
    sale_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Check the current user may act on this sale"""
    sale = SaleService(db).verify_access(sale_id, current_user.id)
    return {"success": True, "sale_id": sale.id, "status": sale.status}


@router.put("/{sale_id}", response_model=SaleWithItems)
async def update_sale(
    sale_id: int,
    sale_data: SaleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Edit a Draft, Pending or Ordered sale"""
    sale = SaleService(db).update(sale_id, sale_data, current_user.id)
    db.commit()
    db.refresh(sale)
    return sale


@router.delete("/{sale_id}", response_model=MessageResponse)
async def delete_sale(
    sale_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a Draft or Ordered sale"""
    SaleService(db).delete(sale_id, current_user.id)
    db.commit()
    return {"message": "Sale deleted successfully"}


@router.post("/{sale_id}/complete", response_model=TransitionResponse)
async def complete_sale(
    sale_id: int,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """Pending -> Completed, taking every item out of stock"""
    result = lifecycle.complete_sale(sale_id)
    db.commit()
    return result.to_dict()


@router.post("/{sale_id}/receive", response_model=TransitionResponse)
async def receive_sale(
    sale_id: int,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """Pending -> Received, taking every item out of stock"""
    result = lifecycle.receive_sale(sale_id)
    db.commit()
    return result.to_dict()


@router.post("/{sale_id}/cancel", response_model=TransitionResponse)
async def cancel_sale(
    sale_id: int,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """
    Cancel a sale. Stock already consumed is restored; products that could not
    be restored are listed in ``restock_failures`` with ``partial`` set.
    """
    result = lifecycle.cancel_sale(sale_id)
    db.commit()
    return result.to_dict()


@router.put("/{sale_id}/status", response_model=TransitionResponse)
async def update_sale_status(
    sale_id: int,
    status_data: SaleStatusUpdate,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """Generic status change; stock moves with Completed, Received and Cancelled"""
    result = lifecycle.set_sale_status(sale_id, status_data.status)
    db.commit()
    return result.to_dict()


@router.post("/{sale_id}/payment", response_model=TransitionResponse)
async def record_sale_payment(
    sale_id: int,
    payment_data: SalePaymentRequest,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """Record a payment; a fully paid sale also marks its invoice paid"""
    result = lifecycle.record_sale_payment(
        sale_id,
        amount=payment_data.amount,
        method=payment_data.method,
        reference=payment_data.reference,
        notes=payment_data.notes
    )
    db.commit()
    return result.to_dict()
