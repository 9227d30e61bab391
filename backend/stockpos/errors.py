# Overview: Service-level exception hierarchy shared by services and routes.

"""
Every error the stock, sales, credit and analytics services raise derives from
ServiceError. Routes translate them with ``to_dict()`` and ``status_code``;
anything that is not a ServiceError is an unexpected failure (500).
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base for recoverable, caller-visible failures."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


# =============================================================================
# NOT FOUND (404)
# =============================================================================

class NotFoundError(ServiceError):
    status_code = 404


class ProductNotFound(NotFoundError):
    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found", details={"product_id": product_id})


class SaleNotFound(NotFoundError):
    def __init__(self, sale_id):
        super().__init__(f"Sale {sale_id} not found", details={"sale_id": sale_id})


class CustomerNotFound(NotFoundError):
    def __init__(self, customer_id):
        super().__init__(
            f"Customer {customer_id} not found or inactive",
            details={"customer_id": customer_id},
        )


class MovementNotFound(NotFoundError):
    def __init__(self, movement_id):
        super().__init__(f"Stock movement {movement_id} not found", details={"movement_id": movement_id})


# =============================================================================
# STOCK (400)
# =============================================================================

class InsufficientStockError(ServiceError):
    """Requested quantity exceeds what is on hand."""

    def __init__(self, product_id: int, product_name: str | None, requested: int, available: int):
        label = product_name or f"#{product_id}"
        super().__init__(
            f"Insufficient stock for product {label}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested_quantity": requested,
                "available_quantity": available,
            },
        )
        self.product_id = product_id


# =============================================================================
# INVALID INPUT (400)
# =============================================================================

class InvalidInputError(ServiceError):
    pass


class ValidationError(InvalidInputError):
    """400-level payload problem."""


class EmptySaleError(InvalidInputError):
    def __init__(self):
        super().__init__("No products provided")


class InvalidMovementType(InvalidInputError):
    def __init__(self, movement_type):
        super().__init__(f"Invalid movement type: {movement_type}", details={"type": movement_type})


# =============================================================================
# CONFLICT (409)
# =============================================================================

class ConflictError(ServiceError):
    """Concurrent update on the same entity; safe for the caller to retry."""
    status_code = 409
