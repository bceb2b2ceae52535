"""
Product API Routes - catalogue and stock ledger
"""
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import List, Optional

from backoffice.api.deps import get_client_info
from backoffice.core.database import get_db
from backoffice.core.security import get_current_user
from backoffice.models import User
from backoffice.schemas import (
    ProductCreate, ProductUpdate, ProductResponse, QuantityAdjustRequest, StockAdjustmentResponse
)
from backoffice.services.audit_service import AuditService, AuditAction
from backoffice.services.inventory_service import ProductService

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("", response_model=List[ProductResponse])
async def list_products(
    include_inactive: bool = False,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the current user's products"""
    return ProductService(db).list(current_user.id, include_inactive, search)


@router.get("/low-stock", response_model=List[ProductResponse])
async def get_low_stock_products(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get products at or below their reorder level"""
    return ProductService(db).get_low_stock(current_user.id)


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    product_data: ProductCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a product; opening stock goes through the ledger"""
    product = ProductService(db).create(product_data, current_user.id, current_user.id)
    db.commit()
    db.refresh(product)
    return product


@router.put("", response_model=ProductResponse)
async def update_product_by_query(
    product_data: ProductUpdate,
    product_id: int = Query(..., alias="id"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Same as PUT /products/{id}, with the id in the query string"""
    product = ProductService(db).update(product_id, product_data, current_user.id)
    db.commit()
    db.refresh(product)
    return product


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return ProductService(db).get_owned(product_id, current_user.id)


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    product_data: ProductUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Edit product details. Quantity is not accepted here."""
    product = ProductService(db).update(product_id, product_data, current_user.id)
    db.commit()
    db.refresh(product)
    return product


@router.put("/{product_id}/quantity", response_model=ProductResponse)
async def adjust_product_quantity(
    product_id: int,
    adjustment: QuantityAdjustRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Apply a signed quantity change through the stock ledger"""
    product = ProductService(db).adjust_quantity(
        product_id, adjustment.delta, adjustment.reason, current_user.id, user_id=current_user.id
    )

    ip_address, _ = get_client_info(request)
    AuditService(db).log(
        action=AuditAction.STOCK_ADJUSTED,
        resource_type="Product",
        resource_id=product.id,
        description=f"Quantity {adjustment.delta:+d} ({adjustment.reason})",
        new_values={"quantity": product.quantity},
        user_id=current_user.id,
        username=current_user.username,
        ip_address=ip_address
    )
    db.commit()
    db.refresh(product)
    return product


@router.get("/{product_id}/adjustments", response_model=List[StockAdjustmentResponse])
async def list_product_adjustments(
    product_id: int,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Stock ledger history, newest first"""
    return ProductService(db).get_adjustments(product_id, current_user.id, limit)
