"""
Customer API Routes
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from backoffice.core.database import get_db
from backoffice.core.security import get_current_user
from backoffice.models import User
from backoffice.schemas import CustomerCreate, CustomerUpdate, CustomerResponse, MessageResponse
from backoffice.services.crm_service import CustomerService

router = APIRouter(prefix="/customers", tags=["Customers"])


@router.get("", response_model=List[CustomerResponse])
async def list_customers(
    include_inactive: bool = False,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the current user's customers"""
    return CustomerService(db).list(current_user.id, include_inactive, search)


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a new customer"""
    customer = CustomerService(db).create(customer_data, current_user.id)
    db.commit()
    db.refresh(customer)
    return customer


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return CustomerService(db).get_owned(customer_id, current_user.id)


@router.put("/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: int,
    customer_data: CustomerUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update a customer"""
    customer = CustomerService(db).update(customer_id, current_user.id, customer_data)
    db.commit()
    db.refresh(customer)
    return customer


@router.delete("/{customer_id}", response_model=MessageResponse)
async def delete_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a customer, or deactivate it if sales or invoices reference it"""
    deleted = CustomerService(db).delete(customer_id, current_user.id)
    db.commit()
    if deleted:
        return {"message": "Customer deleted successfully"}
    return {"message": "Customer has documents and was deactivated"}
