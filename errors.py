"""
Settlement errors

Every failure of a checkout attempt surfaces as one of these. The HTTP
layer turns them into JSON responses using ``status_code`` and ``code``.
"""

from decimal import Decimal
from typing import Optional


class SettlementError(Exception):
    status_code = 400
    code = "settlement_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(SettlementError):
    """Malformed or empty checkout input. Never retried."""
    code = "validation_error"


class NotFoundError(SettlementError):
    status_code = 404
    code = "not_found"

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class InsufficientStockError(SettlementError):
    code = "insufficient_stock"

    def __init__(self, product_name: str, available: int):
        super().__init__(f"Insufficient stock for {product_name}. Available: {available}")
        self.product_name = product_name
        self.available = available

    def to_dict(self) -> dict:
        return {**super().to_dict(), "available": self.available}


class InsufficientPaymentError(SettlementError):
    code = "insufficient_payment"

    def __init__(self, required: Decimal):
        super().__init__(f"Insufficient payment amount. Total is {required:.2f}")
        self.required = required

    def to_dict(self) -> dict:
        return {**super().to_dict(), "required": float(self.required)}


class ConflictError(SettlementError):
    """Lost a race with another settlement. Safe to retry from validation."""
    status_code = 409
    code = "conflict"


class PersistenceError(SettlementError):
    status_code = 503
    code = "persistence_error"

    def __init__(self, message: str, outcome_unknown: bool = False, cause: Optional[Exception] = None):
        if outcome_unknown:
            message = f"{message} (order may have been recorded; check order history before retrying)"
        super().__init__(message)
        self.outcome_unknown = outcome_unknown
        self.cause = cause

    def to_dict(self) -> dict:
        return {**super().to_dict(), "outcome_unknown": self.outcome_unknown}
