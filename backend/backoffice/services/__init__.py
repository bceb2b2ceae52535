# Services Package
from backoffice.services.user_service import UserService
from backoffice.services.audit_service import AuditService, AuditAction
from backoffice.services.crm_service import CustomerService
from backoffice.services.inventory_service import ProductService
from backoffice.services.sequence_service import SequenceService
from backoffice.services.sales_service import SaleService
from backoffice.services.invoice_service import InvoiceService
from backoffice.services.purchase_service import PurchaseService
from backoffice.services.refund_service import RefundService
from backoffice.services.order_lifecycle import OrderLifecycleService

__all__ = [
    'UserService',
    'AuditService',
    'AuditAction',
    'CustomerService',
    'ProductService',
    'SequenceService',
    'SaleService',
    'InvoiceService',
    'PurchaseService',
    'RefundService',
    'OrderLifecycleService',
]
