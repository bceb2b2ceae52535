import pytest

from backoffice.core.exceptions import (
    AuthorizationError, NegativeStockError, NotFoundError, ValidationError
)
from backoffice.models import StockAdjustment
from backoffice.schemas import ProductUpdate
from backoffice.services.inventory_service import ProductService, aggregate_deltas


def ledger(db, product):
    return db.query(StockAdjustment).filter(
        StockAdjustment.product_id == product.id
    ).order_by(StockAdjustment.id).all()


def test_opening_stock_is_recorded_in_ledger(db, product):
    entries = ledger(db, product)

    assert product.quantity == 10
    assert [(e.quantity_change, e.quantity_after, e.reason) for e in entries] == [
        (10, 10, "opening-stock")
    ]


def test_adjust_quantity_writes_ledger_row(db, user, product):
    updated = ProductService(db).adjust_quantity(
        product.id, -4, "manual", user.id, user_id=user.id
    )

    assert updated.quantity == 6
    last = ledger(db, product)[-1]
    assert last.quantity_change == -4
    assert last.quantity_after == 6
    assert last.user_id == user.id


def test_decrement_below_zero_is_refused(db, user, product):
    service = ProductService(db)

    with pytest.raises(NegativeStockError) as exc_info:
        service.adjust_quantity(product.id, -11, "sales", user.id)

    assert exc_info.value.available == 10
    assert exc_info.value.requested == 11
    db.refresh(product)
    assert product.quantity == 10
    assert len(ledger(db, product)) == 1


def test_second_decrement_fails_when_both_exceed_stock(db, user, product):
    service = ProductService(db)

    service.adjust_quantity(product.id, -7, "sales", user.id)
    with pytest.raises(NegativeStockError):
        service.adjust_quantity(product.id, -7, "sales", user.id)

    db.refresh(product)
    assert product.quantity == 3


def test_adjust_rejects_other_owner_and_missing_product(db, user, other_user, product):
    service = ProductService(db)

    with pytest.raises(AuthorizationError):
        service.adjust_quantity(product.id, 1, "manual", other_user.id)
    with pytest.raises(NotFoundError):
        service.adjust_quantity(9999, 1, "manual", user.id)


@pytest.mark.parametrize("delta, reason", [(0, "manual"), (2, "shrinkage")])
def test_adjust_rejects_bad_delta_or_reason(db, user, product, delta, reason):
    with pytest.raises(ValidationError):
        ProductService(db).adjust_quantity(product.id, delta, reason, user.id)


def test_apply_deltas_is_all_or_nothing(db, user, make_product):
    plenty = make_product(user, name="Plenty", quantity=10)
    scarce = make_product(user, name="Scarce", quantity=1)

    with pytest.raises(NegativeStockError) as exc_info:
        ProductService(db).apply_deltas(
            [(plenty.id, -5), (scarce.id, -2)], "sales", user.id
        )

    assert exc_info.value.product_name == "Scarce"
    db.refresh(plenty)
    db.refresh(scarce)
    assert plenty.quantity == 10
    assert scarce.quantity == 1
    assert len(ledger(db, plenty)) == 1


def test_apply_deltas_checks_combined_quantity_per_product(db, user, product):
    with pytest.raises(NegativeStockError):
        ProductService(db).apply_deltas([(product.id, -6), (product.id, -6)], "sales", user.id)

    movements = ProductService(db).apply_deltas([(product.id, -3), (product.id, -2)], "sales", user.id)

    assert len(movements) == 1
    assert movements[0].old_quantity == 10
    assert movements[0].new_quantity == 5
    assert movements[0].change == -5


def test_aggregate_deltas_drops_zero_totals():
    assert aggregate_deltas([(1, 2), (2, 3), (1, -2), (3, 0)]) == {2: 3}
    assert aggregate_deltas({4: -1}) == {4: -1}


def test_restock_best_effort_reports_failures(db, user, product):
    movements, failures = ProductService(db).restock_best_effort(
        [(product.id, 2), (9999, 3)], "sales-cancellation", user.id
    )

    assert [m.product_id for m in movements] == [product.id]
    assert len(failures) == 1
    assert failures[0].product_id == 9999
    assert failures[0].quantity == 3
    db.refresh(product)
    assert product.quantity == 12


def test_product_update_refuses_quantity(db, user, product):
    service = ProductService(db)

    with pytest.raises(ValidationError):
        service.update(product.id, {"quantity": 50}, user.id)

    updated = service.update(product.id, ProductUpdate(name="Renamed", reorder_level=12), user.id)
    assert updated.name == "Renamed"
    assert updated.quantity == 10


def test_low_stock_uses_reorder_level(db, user, make_product):
    make_product(user, name="Low", quantity=2, reorder_level=5)
    make_product(user, name="Fine", quantity=20, reorder_level=5)

    low = ProductService(db).get_low_stock(user.id)

    assert [p.name for p in low] == ["Low"]


def test_reprice_from_purchase_follows_cost_change(db, product):
    ProductService(db).reprice_from_purchase(product, "90.00")

    assert product.cost == 90
    assert product.purchase_price == 90
    assert product.selling_price == 128
