"""
Domain Exceptions

Services raise these; the API layer maps each class to an HTTP status and
renders ``{"message": ...}``.
"""
from decimal import Decimal
from typing import Optional


class BackofficeError(Exception):
    """Base class for all domain errors"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"message": self.message}


class ValidationError(BackofficeError):
    """Missing or malformed input"""
    status_code = 422


class AuthorizationError(BackofficeError):
    """The entity exists but belongs to another user"""
    status_code = 403


class NotFoundError(BackofficeError):
    status_code = 404


class StateTransitionError(BackofficeError):
    """Illegal status change or a mutation the current status forbids"""
    status_code = 409


class NegativeStockError(BackofficeError):
    """A decrement would take a product's quantity below zero"""
    status_code = 409

    def __init__(
        self,
        product_id: int,
        product_name: str,
        available: Decimal,
        requested: Decimal,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or
            f"Not enough inventory for {product_name}. "
            f"Available: {available}, Required: {requested}"
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "product_id": self.product_id,
            "product": self.product_name,
            "available": str(self.available),
            "requested": str(self.requested),
        }
