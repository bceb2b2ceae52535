import json

import pytest

from backoffice.core.exceptions import StateTransitionError, ValidationError
from backoffice.models import AuditLog
from backoffice.schemas import CustomerCreate, SaleCreate, SaleItemCreate
from backoffice.services.audit_service import AuditService
from backoffice.services.crm_service import CustomerService
from backoffice.services.lifecycle import (
    SALE_TRANSITIONS, TransitionResult, can_transition, validate_sale_transition
)
from backoffice.services.order_lifecycle import OrderLifecycleService
from backoffice.services.sales_service import SaleService


class FakeSale:
    def __init__(self, status):
        self.id = 1
        self.status = status


@pytest.mark.parametrize("from_status, to_status, allowed", [
    ("Draft", "Pending", True),
    ("Pending", "Completed", True),
    ("Completed", "Cancelled", True),
    ("Draft", "Completed", False),
    ("Cancelled", "Pending", False),
    ("Completed", "Pending", False),
])
def test_sale_transition_table(from_status, to_status, allowed):
    assert can_transition(SALE_TRANSITIONS, from_status, to_status) is allowed


def test_validate_distinguishes_unknown_and_illegal_status():
    with pytest.raises(ValidationError):
        validate_sale_transition(FakeSale("Pending"), "Shipped")
    with pytest.raises(StateTransitionError):
        validate_sale_transition(FakeSale("Cancelled"), "Cancelled")


def test_transition_result_is_partial_only_with_failures():
    assert not TransitionResult(entity=None, previous_status="Pending", status="Cancelled").partial
    assert TransitionResult(
        entity=None, previous_status="Completed", status="Cancelled", restock_failures=["x"]
    ).partial


def test_lifecycle_service_audits_each_transition(db, user, product, make_sale):
    sale = make_sale(user, [(product, 2)])
    lifecycle = OrderLifecycleService(db, user, ip_address="10.0.0.7")

    lifecycle.complete_sale(sale.id)
    lifecycle.cancel_sale(sale.id)

    entries = AuditService(db).get_by_resource("Sale", sale.id, user_id=user.id)
    assert [entry.action for entry in entries] == ["SALE_CANCELLED", "SALE_COMPLETED"]
    assert entries[0].ip_address == "10.0.0.7"
    assert json.loads(entries[0].old_values) == {"status": "Completed"}
    assert json.loads(entries[0].new_values)["inventory"] == {str(product.id): 2}


def test_partial_cancel_is_audited_as_partial(db, user, other_user, make_product, make_sale):
    moved = make_product(user, name="Moved", quantity=3)
    sale = make_sale(user, [(moved, 1)], status="Completed")
    moved.owner_id = other_user.id
    db.flush()

    result = OrderLifecycleService(db, user).cancel_sale(sale.id)

    entry = db.query(AuditLog).filter(AuditLog.action == "SALE_CANCELLED").one()
    assert result.partial
    assert entry.status == "partial"


def test_invoice_from_sale_audits_only_new_invoices(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Completed")
    lifecycle = OrderLifecycleService(db, user)

    lifecycle.invoice_from_sale(sale.id)
    lifecycle.invoice_from_sale(sale.id)

    assert db.query(AuditLog).filter(AuditLog.action == "INVOICE_CREATED").count() == 1


def test_customer_in_use_is_deactivated_not_deleted(db, user, product):
    customers = CustomerService(db)
    customer = customers.create(CustomerCreate(name="Repeat Buyer"), user.id)
    spare = customers.create(CustomerCreate(name="One-off"), user.id)
    SaleService(db).create(
        SaleCreate(customer_id=customer.id, items=[SaleItemCreate(product_id=product.id, quantity=1)]),
        user.id,
    )

    assert customers.delete(spare.id, user.id) is True
    assert customers.delete(customer.id, user.id) is False
    assert customers.get_by_id(customer.id).is_active is False
    assert customers.get_by_id(spare.id) is None
