"""
Audit Logging Service
Records lifecycle transitions and other sensitive operations
"""
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import Optional, List, Dict
import json
import logging

from backoffice.models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    """Constants for audit actions"""
    # Authentication
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    USER_CREATED = "USER_CREATED"

    # Stock
    STOCK_ADJUSTED = "STOCK_ADJUSTED"

    # Sales
    SALE_STATUS_CHANGED = "SALE_STATUS_CHANGED"
    SALE_COMPLETED = "SALE_COMPLETED"
    SALE_RECEIVED = "SALE_RECEIVED"
    SALE_CANCELLED = "SALE_CANCELLED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"

    # Invoices
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_CONVERTED = "INVOICE_CONVERTED"
    INVOICE_VOIDED = "INVOICE_VOIDED"
    INVOICE_PAID = "INVOICE_PAID"

    # Purchases
    PURCHASE_RECEIVED = "PURCHASE_RECEIVED"
    PURCHASE_CANCELLED = "PURCHASE_CANCELLED"
    PAYMENT_MADE = "PAYMENT_MADE"

    # Refunds
    REFUND_CREATED = "REFUND_CREATED"
    REFUND_STATUS_CHANGED = "REFUND_STATUS_CHANGED"


class AuditService:
    """Service for recording and retrieving audit logs"""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[int] = None,
        description: Optional[str] = None,
        old_values: Optional[Dict] = None,
        new_values: Optional[Dict] = None,
        user_id: Optional[int] = None,
        username: Optional[str] = None,
        ip_address: Optional[str] = None,
        status: str = "success",
        error_message: Optional[str] = None
    ) -> AuditLog:
        """
        Add an audit entry to the caller's transaction; it commits or rolls
        back together with the change it describes.

        ``status`` is 'success', 'partial' (a transition that went through
        with restock failures) or 'failure'. Values are stored as JSON, with
        Decimals and dates rendered as strings.
        """
        old_values_json = json.dumps(old_values, default=str) if old_values else None
        new_values_json = json.dumps(new_values, default=str) if new_values else None

        audit_log = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            description=description,
            old_values=old_values_json,
            new_values=new_values_json,
            user_id=user_id,
            username=username,
            ip_address=ip_address,
            status=status,
            error_message=error_message
        )

        self.db.add(audit_log)
        self.db.flush()  # Flush to get the ID without committing

        logger.info(
            "Audit: %s %s(id=%s) by user=%s status=%s",
            action, resource_type, resource_id, username, status
        )
        return audit_log

    def get_by_resource(
        self,
        resource_type: str,
        resource_id: int,
        user_id: Optional[int] = None,
        limit: int = 50
    ) -> List[AuditLog]:
        """Get audit history for a specific resource"""
        query = self.db.query(AuditLog).filter(
            AuditLog.resource_type == resource_type,
            AuditLog.resource_id == resource_id
        )
        if user_id:
            query = query.filter(AuditLog.user_id == user_id)
        return query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit).all()
