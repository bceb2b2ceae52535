"""
Refund API Routes
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from backoffice.api.deps import get_lifecycle
from backoffice.core.database import get_db
from backoffice.core.security import get_current_user
from backoffice.models import User
from backoffice.schemas import (
    RefundCreate, RefundWithItems, RefundStatusUpdate, RefundListResponse, TransitionResponse
)
from backoffice.services.order_lifecycle import OrderLifecycleService
from backoffice.services.refund_service import RefundService

router = APIRouter(prefix="/refunds", tags=["Refunds"])


@router.get("", response_model=RefundListResponse)
async def list_refunds(
    status_filter: Optional[str] = Query(None, alias="status"),
    sale_id: Optional[int] = Query(None, alias="saleId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Paginated refunds, newest first"""
    refunds, pagination = RefundService(db).list(
        current_user.id, status=status_filter, sale_id=sale_id, page=page, limit=limit
    )
    return {"refunds": refunds, "pagination": pagination}


@router.post("", response_model=RefundWithItems, status_code=status.HTTP_201_CREATED)
async def create_refund(
    refund_data: RefundCreate,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """Request a refund against a completed or received sale"""
    refund = lifecycle.create_refund(refund_data)
    db.commit()
    db.refresh(refund)
    return refund


@router.get("/{refund_id}", response_model=RefundWithItems)
async def get_refund(
    refund_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return RefundService(db).get_owned(refund_id, current_user.id)


@router.patch("/{refund_id}/status", response_model=TransitionResponse)
async def update_refund_status(
    refund_id: int,
    status_data: RefundStatusUpdate,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """Approve (restocks), reject (reverses an approval) or complete a refund"""
    result = lifecycle.set_refund_status(refund_id, status_data.status)
    db.commit()
    return result.to_dict()
