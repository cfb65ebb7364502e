# marketplace_payments/core/exceptions.py
"""
Domain errors raised by the service layer.

Endpoints translate these into HTTP responses; background jobs log them.
Processor failures use PaymentError from the Stripe gateway module instead.
"""


class MarketplaceError(Exception):
    """Base class for expected business-rule failures."""

    status_code = 400

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class ValidationError(MarketplaceError):
    """Input rejected before any state change."""

    status_code = 400


class ConflictError(MarketplaceError):
    """The entity already exists or was already processed."""

    status_code = 409


class NotFoundError(MarketplaceError):
    status_code = 404


class PermissionDeniedError(MarketplaceError):
    status_code = 403
