"""
Shared route dependencies
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from backoffice.core.database import get_db
from backoffice.core.security import get_current_user
from backoffice.models import User
from backoffice.services.order_lifecycle import OrderLifecycleService


def get_client_info(request: Request) -> tuple:
    """Extract client IP and user agent from request"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    elif request.client:
        ip_address = request.client.host
    else:
        ip_address = "unknown"

    user_agent = request.headers.get("User-Agent", "")[:500]
    return ip_address, user_agent


def get_lifecycle(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> OrderLifecycleService:
    ip_address, _ = get_client_info(request)
    return OrderLifecycleService(db, current_user, ip_address=ip_address)
