from datetime import date, timedelta
from decimal import Decimal

import pytest

from backoffice.core.config import settings
from backoffice.core.exceptions import StateTransitionError, ValidationError
from backoffice.models import Payment
from backoffice.schemas import InvoiceCreate, InvoiceItemCreate
from backoffice.services.invoice_service import InvoiceService
from backoffice.services.sales_service import SaleService


def test_invoice_numbers_restart_each_year(db, user):
    service = InvoiceService(db)

    assert service.next_number(user.id, 2025) == "INV-2025-0001"
    assert service.next_number(user.id, 2025) == "INV-2025-0002"
    assert service.next_number(user.id, 2026) == "INV-2026-0001"
    assert service.next_number(user.id, 2025) == "INV-2025-0003"


def test_invoice_numbers_are_per_owner(db, user, other_user):
    service = InvoiceService(db)

    service.next_number(user.id, 2025)
    assert service.next_number(other_user.id, 2025) == "INV-2025-0001"


def test_peek_does_not_reserve_a_number(db, user):
    service = InvoiceService(db)
    year = date.today().year

    assert service.peek_next_number(user.id) == f"INV-{year}-0001"
    assert service.peek_next_number(user.id) == f"INV-{year}-0001"
    assert service.next_number(user.id) == f"INV-{year}-0001"


def test_create_from_sale_is_idempotent(db, user, product, make_sale):
    sale = make_sale(user, [(product, 2)], status="Completed")
    service = InvoiceService(db)

    invoice, created = service.create_from_sale(sale.id, user.id)
    again, created_again = service.create_from_sale(sale.id, user.id)

    assert created is True
    assert created_again is False
    assert again.id == invoice.id
    assert sale.invoice_id == invoice.id
    assert invoice.total == sale.total
    assert invoice.due_date == date.today() + timedelta(days=settings.INVOICE_DUE_DAYS)
    assert len(service.list(user.id)) == 1


def test_draft_sale_can_be_invoiced(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Draft")

    invoice, created = InvoiceService(db).create_from_sale(sale.id, user.id)

    assert created is True
    assert invoice.status == "unpaid"
    assert sale.invoice_id == invoice.id
    assert sale.status == "Draft"


def test_cancelled_sale_cannot_be_invoiced(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Draft")
    SaleService(db).cancel(sale.id, user.id)

    with pytest.raises(StateTransitionError):
        InvoiceService(db).create_from_sale(sale.id, user.id)


def test_void_invoice_needs_reissue(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Completed")
    service = InvoiceService(db)
    invoice, _ = service.create_from_sale(sale.id, user.id)
    service.void(invoice.id, user.id)

    with pytest.raises(StateTransitionError):
        service.create_from_sale(sale.id, user.id)

    reissued, created = service.create_from_sale(sale.id, user.id, reissue=True)
    assert created is True
    assert reissued.id != invoice.id
    assert reissued.number != invoice.number
    assert sale.invoice_id == reissued.id


def test_paid_invoice_cannot_be_voided(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Completed")
    service = InvoiceService(db)
    invoice, _ = service.create_from_sale(sale.id, user.id)
    service.mark_paid(invoice.id, user.id)

    assert sale.payment_status == "Paid"
    assert sale.paid_amount == sale.total
    payments = db.query(Payment).filter(Payment.sale_id == sale.id).all()
    assert [payment.amount for payment in payments] == [sale.total]
    assert payments[0].reference == invoice.number
    with pytest.raises(StateTransitionError):
        service.void(invoice.id, user.id)


def test_sale_behind_paid_invoice_cannot_be_cancelled(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Completed")
    service = InvoiceService(db)
    invoice, _ = service.create_from_sale(sale.id, user.id)
    service.mark_paid(invoice.id, user.id)

    with pytest.raises(StateTransitionError):
        SaleService(db).cancel(sale.id, user.id)

    db.refresh(product)
    assert sale.status == "Completed"
    assert product.quantity == 9


def test_cancelling_sale_voids_unpaid_invoice(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Completed")
    invoice, _ = InvoiceService(db).create_from_sale(sale.id, user.id)

    SaleService(db).cancel(sale.id, user.id)

    assert invoice.status == "void"


def test_paying_sale_marks_invoice_paid(db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Completed")
    invoice, _ = InvoiceService(db).create_from_sale(sale.id, user.id)

    SaleService(db).record_payment(sale.id, user.id)

    assert invoice.status == "paid"


def test_standalone_invoice_and_gst_toggle(db, user, make_product):
    shirt = make_product(user, name="Shirt", selling_price="118.00", tax_rate="18")
    service = InvoiceService(db)

    invoice = service.create(
        InvoiceCreate(items=[InvoiceItemCreate(product_id=shirt.id, quantity=2)]), user.id
    )
    assert invoice.number.startswith("INV-")
    assert invoice.subtotal == Decimal("200.00")
    assert invoice.tax_total == Decimal("36.00")
    assert invoice.total == Decimal("236.00")

    service.set_gst_mode(invoice.id, False, user.id)
    assert invoice.subtotal == Decimal("236.00")
    assert invoice.tax_total == Decimal("0.00")
    assert invoice.items[0].tax_rate == Decimal("0")

    service.set_gst_mode(invoice.id, True, user.id)
    assert invoice.items[0].tax_rate == Decimal("18")
    assert invoice.tax_total == Decimal("36.00")


def test_invoice_rejects_unknown_status(db, user, product):
    with pytest.raises(ValidationError):
        InvoiceService(db).create(
            InvoiceCreate(status="paid", items=[InvoiceItemCreate(product_id=product.id, quantity=1)]),
            user.id,
        )


def test_convert_invoice_to_sale_consumes_stock_once(db, user, product):
    service = InvoiceService(db)
    invoice = service.create(
        InvoiceCreate(items=[InvoiceItemCreate(product_id=product.id, quantity=3)]), user.id
    )

    result = service.convert_to_sale(invoice.id, user.id, user.id)

    db.refresh(product)
    sale = result.entity
    assert sale.status == "Completed"
    assert sale.invoice_id == invoice.id
    assert sale.total == invoice.total
    assert invoice.converted_to_sale is True
    assert product.quantity == 7

    with pytest.raises(StateTransitionError):
        service.convert_to_sale(invoice.id, user.id, user.id)
