"""
Error kinds raised by the services.

The HTTP layer maps each kind to its status code and answers with a
`{message, error}` JSON body.
"""

from typing import Optional


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(MarketplaceError):
    status_code = 400


class InsufficientStockError(ValidationError):
    def __init__(self, product_id: str, product_name: Optional[str], requested: int, available: int):
        label = product_name or product_id
        super().__init__(f"Insufficient stock for product: {label}")
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available


class AuthError(MarketplaceError):
    status_code = 401


class AuthorizationError(MarketplaceError):
    status_code = 403


class NotFoundError(MarketplaceError):
    status_code = 404


class ConflictError(MarketplaceError):
    status_code = 409


class ConfigurationError(Exception):
    """Raised at startup when required settings are missing."""
