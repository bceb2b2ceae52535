"""
CRM Service - Business Logic for Customers
"""
from typing import Optional, List
from sqlalchemy.orm import Session

from backoffice.core.exceptions import AuthorizationError, NotFoundError
from backoffice.models import Customer, Sale, Invoice
from backoffice.schemas import CustomerCreate, CustomerUpdate


class CustomerService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, customer_id: int) -> Optional[Customer]:
        return self.db.query(Customer).filter(Customer.id == customer_id).first()

    def get_owned(self, customer_id: int, owner_id: int) -> Customer:
        customer = self.get_by_id(customer_id)
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")
        if customer.owner_id != owner_id:
            raise AuthorizationError("Not authorized to access this customer")
        return customer

    def list(self, owner_id: int, include_inactive: bool = False, search: str = None) -> List[Customer]:
        query = self.db.query(Customer).filter(Customer.owner_id == owner_id)
        if not include_inactive:
            query = query.filter(Customer.is_active == True)
        if search:
            query = query.filter(Customer.name.ilike(f"%{search}%"))
        return query.order_by(Customer.name).all()

    def create(self, customer_data: CustomerCreate, owner_id: int) -> Customer:
        customer = Customer(
            name=customer_data.name,
            email=customer_data.email,
            phone=customer_data.phone,
            address=customer_data.address,
            tax_id=customer_data.tax_id,
            owner_id=owner_id
        )
        self.db.add(customer)
        self.db.flush()
        return customer

    def update(self, customer_id: int, owner_id: int, customer_data: CustomerUpdate) -> Customer:
        customer = self.get_owned(customer_id, owner_id)

        update_data = customer_data.model_dump(exclude_unset=True)
        for key, value in update_data.items():
            setattr(customer, key, value)

        self.db.flush()
        return customer

    def delete(self, customer_id: int, owner_id: int) -> bool:
        """Delete the customer, or deactivate it if documents reference it.

        Returns True when the row was removed, False when it was deactivated.
        """
        customer = self.get_owned(customer_id, owner_id)

        has_documents = (
            self.db.query(Sale.id).filter(Sale.customer_id == customer_id).first()
            or self.db.query(Invoice.id).filter(Invoice.customer_id == customer_id).first()
        )

        if has_documents:
            # Soft delete instead
            customer.is_active = False
            self.db.flush()
            return False

        self.db.delete(customer)
        self.db.flush()
        return True
