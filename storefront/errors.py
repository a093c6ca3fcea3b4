"""Error taxonomy shared by the services and the HTTP layer.

Services raise these; ``storefront.main`` renders them as
``{"success": false, "error": kind, "message": ...}``.
"""

from __future__ import annotations
from typing import Optional


class StorefrontError(Exception):
    """Base class for all expected failures."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(StorefrontError):
    kind = "validation_error"
    status_code = 400


class InvalidArgument(ValidationError):
    kind = "invalid_argument"


class NotFound(StorefrontError):
    kind = "not_found"
    status_code = 404


class InsufficientStock(StorefrontError):
    kind = "insufficient_stock"
    status_code = 409

    def __init__(self, variant_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for variant {variant_id}: "
            f"requested {requested}, available {available}"
        )
        self.variant_id = variant_id
        self.requested = requested
        self.available = available


class EmptyCart(StorefrontError):
    kind = "empty_cart"
    status_code = 400


class Unauthorized(StorefrontError):
    kind = "unauthorized"
    status_code = 401


class Forbidden(StorefrontError):
    kind = "forbidden"
    status_code = 403


class ServiceUnavailable(StorefrontError):
    kind = "service_unavailable"
    status_code = 503


class Internal(StorefrontError):
    kind = "internal"
    status_code = 500
