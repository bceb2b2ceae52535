"""
Order Lifecycle Service

One entry point for every status transition on sales, invoices, purchases
and refunds. Each call delegates to the domain service, writes an audit
entry and returns a ``TransitionResult``. Nothing here commits: the route
commits once, so the status write, the stock movements and the audit row
land together or not at all.
"""
from decimal import Decimal
from typing import Dict, Optional
import logging

from sqlalchemy.orm import Session

from backoffice.models import User
from backoffice.schemas import RefundCreate
from backoffice.services.audit_service import AuditAction, AuditService
from backoffice.services.invoice_service import InvoiceService
from backoffice.services.lifecycle import TransitionResult
from backoffice.services.purchase_service import PurchaseService
from backoffice.services.refund_service import RefundService
from backoffice.services.sales_service import SaleService

logger = logging.getLogger(__name__)

SALE_ACTIONS = {
    "Completed": AuditAction.SALE_COMPLETED,
    "Received": AuditAction.SALE_RECEIVED,
    "Cancelled": AuditAction.SALE_CANCELLED,
}


class OrderLifecycleService:
    def __init__(self, db: Session, user: User, ip_address: Optional[str] = None):
        self.db = db
        self.user = user
        self.ip_address = ip_address
        self.sales = SaleService(db)
        self.invoices = InvoiceService(db)
        self.purchases = PurchaseService(db)
        self.refunds = RefundService(db)
        self.audit = AuditService(db)

    def _record(self, action: str, resource_type: str, result: TransitionResult, extra: Dict = None):
        new_values = {"status": result.status}
        if result.inventory_updates:
            new_values["inventory"] = {
                update.product_id: update.change for update in result.inventory_updates
            }
        if result.restock_failures:
            new_values["restock_failures"] = [
                {"product_id": failure.product_id, "error": failure.error}
                for failure in result.restock_failures
            ]
        if extra:
            new_values.update(extra)

        self.audit.log(
            action=action,
            resource_type=resource_type,
            resource_id=result.entity.id,
            description=result.message,
            old_values={"status": result.previous_status} if result.previous_status else None,
            new_values=new_values,
            user_id=self.user.id,
            username=self.user.username,
            ip_address=self.ip_address,
            status="partial" if result.partial else "success"
        )
        if result.partial:
            logger.warning(
                "%s %s: %s (%d restock failures)",
                resource_type, result.entity.id, result.message, len(result.restock_failures)
            )
        return result

    # ==================== SALES ====================

    def complete_sale(self, sale_id: int) -> TransitionResult:
        result = self.sales.complete(sale_id, self.user.id, self.user.id)
        return self._record(AuditAction.SALE_COMPLETED, "Sale", result)

    def receive_sale(self, sale_id: int) -> TransitionResult:
        result = self.sales.receive(sale_id, self.user.id, self.user.id)
        return self._record(AuditAction.SALE_RECEIVED, "Sale", result)

    def cancel_sale(self, sale_id: int) -> TransitionResult:
        result = self.sales.cancel(sale_id, self.user.id, self.user.id)
        return self._record(AuditAction.SALE_CANCELLED, "Sale", result)

    def set_sale_status(self, sale_id: int, status: str) -> TransitionResult:
        result = self.sales.set_status(sale_id, status, self.user.id, self.user.id)
        action = SALE_ACTIONS.get(result.status, AuditAction.SALE_STATUS_CHANGED)
        return self._record(action, "Sale", result)

    def record_sale_payment(
        self,
        sale_id: int,
        amount: Optional[Decimal] = None,
        method: str = "Cash",
        reference: str = None,
        notes: str = None
    ) -> TransitionResult:
        result = self.sales.record_payment(
            sale_id, self.user.id, amount=amount, method=method, reference=reference, notes=notes
        )
        return self._record(
            AuditAction.PAYMENT_RECEIVED, "Sale", result,
            {"paid_amount": result.entity.paid_amount, "method": method}
        )

    # ==================== INVOICES ====================

    def invoice_from_sale(self, sale_id: int, reissue: bool = False):
        """Returns ``(invoice, created)``; only a new invoice is audited"""
        invoice, created = self.invoices.create_from_sale(sale_id, self.user.id, reissue=reissue)
        if created:
            self.audit.log(
                action=AuditAction.INVOICE_CREATED,
                resource_type="Invoice",
                resource_id=invoice.id,
                description=f"Invoice {invoice.number} created from sale {sale_id}",
                new_values={"status": invoice.status, "sale_id": sale_id, "reissue": reissue},
                user_id=self.user.id,
                username=self.user.username,
                ip_address=self.ip_address
            )
        return invoice, created

    def invoice_to_sale(self, invoice_id: int) -> TransitionResult:
        result = self.invoices.convert_to_sale(invoice_id, self.user.id, self.user.id)
        return self._record(AuditAction.INVOICE_CONVERTED, "Sale", result, {"invoice_id": invoice_id})

    def void_invoice(self, invoice_id: int) -> TransitionResult:
        result = self.invoices.void(invoice_id, self.user.id)
        return self._record(AuditAction.INVOICE_VOIDED, "Invoice", result)

    def mark_invoice_paid(self, invoice_id: int) -> TransitionResult:
        result = self.invoices.mark_paid(invoice_id, self.user.id)
        return self._record(AuditAction.INVOICE_PAID, "Invoice", result)

    # ==================== PURCHASES ====================

    def receive_purchase(self, purchase_id: int, receipts: Optional[Dict[int, int]] = None, delivery_date=None) -> TransitionResult:
        result = self.purchases.receive(
            purchase_id, self.user.id, receipts=receipts, delivery_date=delivery_date, user_id=self.user.id
        )
        return self._record(AuditAction.PURCHASE_RECEIVED, "Purchase", result)

    def cancel_purchase(self, purchase_id: int) -> TransitionResult:
        result = self.purchases.cancel(purchase_id, self.user.id, self.user.id)
        return self._record(AuditAction.PURCHASE_CANCELLED, "Purchase", result)

    def record_purchase_payment(self, purchase_id: int, amount: Decimal) -> TransitionResult:
        result = self.purchases.record_payment(purchase_id, self.user.id, amount)
        return self._record(
            AuditAction.PAYMENT_MADE, "Purchase", result, {"paid_amount": result.entity.paid_amount}
        )

    # ==================== REFUNDS ====================

    def create_refund(self, refund_data: RefundCreate):
        refund = self.refunds.create(refund_data, self.user.id, self.user.id)
        self.audit.log(
            action=AuditAction.REFUND_CREATED,
            resource_type="Refund",
            resource_id=refund.id,
            description=f"Refund of {refund.total} requested for sale {refund.sale_id}",
            new_values={"status": refund.status, "total": refund.total},
            user_id=self.user.id,
            username=self.user.username,
            ip_address=self.ip_address
        )
        return refund

    def set_refund_status(self, refund_id: int, status: str) -> TransitionResult:
        result = self.refunds.set_status(refund_id, status, self.user.id, self.user.id)
        return self._record(
            AuditAction.REFUND_STATUS_CHANGED, "Refund", result, {"total": result.entity.total}
        )
