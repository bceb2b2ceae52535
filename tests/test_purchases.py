from decimal import Decimal

import pytest

from backoffice.core.exceptions import NegativeStockError, StateTransitionError, ValidationError
from backoffice.schemas import PurchaseCreate, PurchaseItemCreate, PurchaseUpdate
from backoffice.services.inventory_service import ProductService
from backoffice.services.purchase_service import PurchaseService


def new_purchase(db, owner, lines, status="Ordered"):
    purchase = PurchaseService(db).create(
        PurchaseCreate(
            supplier_name="Northwind Supply",
            status=status,
            items=[
                PurchaseItemCreate(product_id=product.id, quantity=quantity, unit_price=Decimal(unit_price))
                for product, quantity, unit_price in lines
            ],
        ),
        owner.id,
        owner.id,
    )
    db.commit()
    return purchase


def test_purchase_created_received_adds_stock_and_reprices(db, user, product):
    purchase = new_purchase(db, user, [(product, 5, "90.00")], status="Received")

    db.refresh(product)
    assert purchase.status == "Received"
    assert purchase.po_number.startswith("PO-")
    assert purchase.delivery_date is not None
    assert product.quantity == 15
    assert product.cost == Decimal("90.00")
    assert product.selling_price == Decimal("128.00")


def test_partial_then_full_receipt(db, user, product):
    purchase = new_purchase(db, user, [(product, 6, "80.00")])
    item_id = purchase.items[0].id
    service = PurchaseService(db)

    result = service.receive(purchase.id, user.id, receipts={item_id: 2})
    assert result.status == "Partially Received"
    assert purchase.delivery_date is None

    result = service.receive(purchase.id, user.id)
    db.refresh(product)
    assert result.status == "Received"
    assert purchase.items[0].received_quantity == 6
    assert product.quantity == 16


def test_cannot_receive_more_than_ordered(db, user, product):
    purchase = new_purchase(db, user, [(product, 2, "80.00")])

    with pytest.raises(ValidationError):
        PurchaseService(db).receive(purchase.id, user.id, receipts={purchase.items[0].id: 3})


def test_draft_purchase_cannot_be_partially_received(db, user, product):
    purchase = new_purchase(db, user, [(product, 4, "80.00")], status="Draft")

    with pytest.raises(StateTransitionError):
        PurchaseService(db).receive(purchase.id, user.id, receipts={purchase.items[0].id: 1})


def test_cancel_reverses_received_stock(db, user, product):
    purchase = new_purchase(db, user, [(product, 4, "80.00")], status="Received")

    result = PurchaseService(db).cancel(purchase.id, user.id, user.id)

    db.refresh(product)
    assert result.status == "Cancelled"
    assert result.inventory_updates[0].change == -4
    assert product.quantity == 10


def test_cancel_fails_whole_when_received_stock_was_sold(db, user, make_product):
    product = make_product(user, quantity=0)
    purchase = new_purchase(db, user, [(product, 4, "80.00")], status="Received")
    ProductService(db).adjust_quantity(product.id, -3, "sales", user.id)

    with pytest.raises(NegativeStockError):
        PurchaseService(db).cancel(purchase.id, user.id, user.id)

    db.refresh(product)
    db.refresh(purchase)
    assert product.quantity == 1
    assert purchase.status == "Received"


def test_update_only_while_draft_or_ordered(db, user, product):
    purchase = new_purchase(db, user, [(product, 1, "80.00")])
    service = PurchaseService(db)

    updated = service.update(purchase.id, PurchaseUpdate(notes="call before delivery"), user.id)
    assert updated.notes == "call before delivery"

    with pytest.raises(StateTransitionError):
        service.update(purchase.id, PurchaseUpdate(status="Received"), user.id)

    service.receive(purchase.id, user.id)
    with pytest.raises(StateTransitionError):
        service.update(purchase.id, PurchaseUpdate(notes="too late"), user.id)


def test_purchase_payments(db, user, product):
    purchase = new_purchase(db, user, [(product, 2, "50.00")])
    service = PurchaseService(db)

    assert purchase.total_amount == Decimal("100.00")
    assert service.record_payment(purchase.id, user.id, Decimal("40")).status == "Partial"
    with pytest.raises(ValidationError):
        service.record_payment(purchase.id, user.id, Decimal("61"))
    assert service.record_payment(purchase.id, user.id, Decimal("60")).status == "Paid"

    with pytest.raises(StateTransitionError):
        service.cancel(purchase.id, user.id)
