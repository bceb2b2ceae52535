from decimal import Decimal

import pytest

from backoffice.core.exceptions import (
    AuthorizationError, NegativeStockError, StateTransitionError, ValidationError
)
from backoffice.models import Customer, Payment
from backoffice.schemas import SaleCreate, SaleItemCreate, SaleUpdate
from backoffice.services.sales_service import SaleService


def test_complete_then_cancel_restores_stock(db, user, product, make_sale):
    sale = make_sale(user, [(product, 3)])
    service = SaleService(db)

    result = service.complete(sale.id, user.id, user.id)
    db.refresh(product)
    assert result.status == "Completed"
    assert result.previous_status == "Pending"
    assert product.quantity == 7

    result = service.cancel(sale.id, user.id, user.id)
    db.refresh(product)
    assert product.quantity == 10
    assert sale.status == "Cancelled"
    assert not result.partial
    assert result.inventory_updates[0].change == 3


def test_complete_with_insufficient_stock_changes_nothing(db, user, make_product, make_sale):
    plenty = make_product(user, name="Plenty", quantity=10)
    scarce = make_product(user, name="Scarce", quantity=2)
    sale = make_sale(user, [(plenty, 4), (scarce, 3)])

    with pytest.raises(NegativeStockError):
        SaleService(db).complete(sale.id, user.id, user.id)

    db.refresh(plenty)
    db.refresh(scarce)
    db.refresh(sale)
    assert plenty.quantity == 10
    assert scarce.quantity == 2
    assert sale.status == "Pending"


def test_sale_created_completed_consumes_stock(db, user, product, make_sale):
    sale = make_sale(user, [(product, 2)], status="Completed")

    db.refresh(product)
    assert sale.status == "Completed"
    assert product.quantity == 8


def test_sale_totals_from_tax_inclusive_catalogue_price(db, user, make_product, make_sale):
    product = make_product(user, selling_price="1180.00", tax_rate="18")
    sale = make_sale(user, [(product, 1)])

    assert sale.items[0].price == Decimal("1000.00")
    assert sale.subtotal == Decimal("1000.00")
    assert sale.tax_total == Decimal("180.00")
    assert sale.total == Decimal("1180.00")
    assert sale.round_off == Decimal("0.00")


def test_sale_numbers_are_sequential(db, user, product, make_sale):
    first = make_sale(user, [(product, 1)])
    second = make_sale(user, [(product, 1)])

    assert first.sale_number.endswith("-0001")
    assert second.sale_number.endswith("-0002")
    assert first.sale_number.startswith("SALE-")


def test_only_pending_sales_can_complete(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Draft")

    with pytest.raises(StateTransitionError):
        SaleService(db).complete(sale.id, user.id)


@pytest.mark.parametrize("final_status", ["Completed", "Cancelled"])
def test_closed_sales_cannot_be_edited(db, user, product, make_sale, final_status):
    sale = make_sale(user, [(product, 1)])
    SaleService(db).set_status(sale.id, final_status, user.id, user.id)

    with pytest.raises(StateTransitionError):
        SaleService(db).update(sale.id, SaleUpdate(notes="late change"), user.id)


def test_editing_items_recomputes_totals(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Draft")

    updated = SaleService(db).update(
        sale.id, SaleUpdate(items=[SaleItemCreate(product_id=product.id, quantity=4)]), user.id
    )

    assert len(updated.items) == 1
    assert updated.subtotal == Decimal("400.00")
    assert updated.total == Decimal("472.00")


def test_delete_only_for_draft_or_ordered(db, user, product, make_sale):
    draft = make_sale(user, [(product, 1)], status="Draft")
    pending = make_sale(user, [(product, 1)])
    service = SaleService(db)

    assert service.delete(draft.id, user.id) is True
    with pytest.raises(StateTransitionError):
        service.delete(pending.id, user.id)


def test_set_status_dispatches_stock_moving_statuses(db, user, product, make_sale):
    sale = make_sale(user, [(product, 5)], status="Draft")
    service = SaleService(db)

    service.set_status(sale.id, "Pending", user.id)
    result = service.set_status(sale.id, "Received", user.id, user.id)

    db.refresh(product)
    assert result.status == "Received"
    assert product.quantity == 5


def test_set_status_rejects_unknown_status(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)])

    with pytest.raises(ValidationError):
        SaleService(db).set_status(sale.id, "Shipped", user.id)


def test_cancel_reports_products_it_could_not_restock(db, user, other_user, make_product, make_sale):
    kept = make_product(user, name="Kept", quantity=5)
    moved = make_product(user, name="Moved", quantity=5)
    sale = make_sale(user, [(kept, 2), (moved, 2)], status="Completed")
    # The second product no longer belongs to the seller
    moved.owner_id = other_user.id
    db.flush()

    result = SaleService(db).cancel(sale.id, user.id, user.id)

    db.refresh(kept)
    assert result.status == "Cancelled"
    assert result.partial
    assert [f.product_id for f in result.restock_failures] == [moved.id]
    assert kept.quantity == 5
    assert result.to_dict()["partial"] is True


def test_other_owner_cannot_touch_sale(db, user, other_user, product, make_sale):
    sale = make_sale(user, [(product, 1)])

    with pytest.raises(AuthorizationError):
        SaleService(db).complete(sale.id, other_user.id)


def test_partial_then_full_payment(db, user, product, make_sale):
    sale = make_sale(user, [(product, 2)], status="Completed")
    service = SaleService(db)

    result = service.record_payment(sale.id, user.id, amount=Decimal("100"))
    assert result.status == "Partial"

    with pytest.raises(ValidationError):
        service.record_payment(sale.id, user.id, amount=Decimal("500"))

    result = service.record_payment(sale.id, user.id)
    assert result.status == "Paid"
    assert sale.paid_amount == sale.total
    assert db.query(Payment).filter(Payment.sale_id == sale.id).count() == 2

    with pytest.raises(StateTransitionError):
        service.record_payment(sale.id, user.id)


def test_zero_total_sale_can_be_marked_paid(db, user, make_product, make_sale):
    sample = make_product(user, name="Free sample", selling_price="0.00", cost="0.00")
    sale = make_sale(user, [(sample, 1)])
    service = SaleService(db)

    with pytest.raises(ValidationError):
        service.record_payment(sale.id, user.id, amount=Decimal("5"))

    result = service.record_payment(sale.id, user.id)

    assert sale.total == Decimal("0")
    assert result.status == "Paid"
    assert sale.paid_at is not None
    assert db.query(Payment).filter(Payment.sale_id == sale.id).count() == 0


def test_other_owners_customer_is_refused(db, user, other_user, product):
    foreign = Customer(name="Someone else's", owner_id=other_user.id)
    db.add(foreign)
    db.flush()

    with pytest.raises(AuthorizationError):
        SaleService(db).create(
            SaleCreate(customer_id=foreign.id, items=[SaleItemCreate(product_id=product.id, quantity=1)]),
            user.id,
        )
