"""
Invoice API Routes
"""
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional

from backoffice.api.deps import get_lifecycle
from backoffice.core.database import get_db
from backoffice.core.security import get_current_user
from backoffice.models import User
from backoffice.schemas import (
    InvoiceCreate, InvoiceResponse, InvoiceWithItems, GstModeRequest, TransitionResponse
)
from backoffice.services.invoice_service import InvoiceService
from backoffice.services.order_lifecycle import OrderLifecycleService

router = APIRouter(prefix="/invoice", tags=["Invoices"])


@router.get("", response_model=List[InvoiceResponse])
async def list_invoices(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return InvoiceService(db).list(current_user.id, status_filter)


@router.get("/next-number")
async def get_next_invoice_number(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Preview the next invoice number; nothing is reserved"""
    return {"next_number": InvoiceService(db).peek_next_number(current_user.id)}


@router.post("", response_model=InvoiceWithItems, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_data: InvoiceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a standalone invoice from tax-inclusive selling prices"""
    invoice = InvoiceService(db).create(invoice_data, current_user.id)
    db.commit()
    db.refresh(invoice)
    return invoice


@router.post("/from-sale", response_model=InvoiceWithItems)
async def create_invoice_from_sale(
    response: Response,
    sale_id: int = Query(..., alias="saleId"),
    reissue: bool = False,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """
    Invoice a sale. Returns the sale's existing invoice when it has one;
    a void invoice is only replaced when ``reissue`` is set.
    """
    invoice, created = lifecycle.invoice_from_sale(sale_id, reissue=reissue)
    db.commit()
    db.refresh(invoice)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return invoice


@router.post("/to-sale", response_model=TransitionResponse, status_code=status.HTTP_201_CREATED)
async def convert_invoice_to_sale(
    invoice_id: int = Query(..., alias="invoiceId"),
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    """Create a Completed sale from an invoice"""
    result = lifecycle.invoice_to_sale(invoice_id)
    db.commit()
    payload = result.to_dict()
    payload["message"] = f"{result.message} (sale id {result.entity.id})"
    return payload


@router.get("/{invoice_id}", response_model=InvoiceWithItems)
async def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return InvoiceService(db).get_owned(invoice_id, current_user.id)


@router.put("/{invoice_id}/gst", response_model=InvoiceWithItems)
async def set_invoice_gst_mode(
    invoice_id: int,
    gst_data: GstModeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Toggle GST mode; every line is re-priced"""
    invoice = InvoiceService(db).set_gst_mode(invoice_id, gst_data.gst_enabled, current_user.id)
    db.commit()
    db.refresh(invoice)
    return invoice


@router.post("/{invoice_id}/void", response_model=TransitionResponse)
async def void_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    result = lifecycle.void_invoice(invoice_id)
    db.commit()
    return result.to_dict()


@router.post("/{invoice_id}/paid", response_model=TransitionResponse)
async def mark_invoice_paid(
    invoice_id: int,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle)
):
    result = lifecycle.mark_invoice_paid(invoice_id)
    db.commit()
    return result.to_dict()
