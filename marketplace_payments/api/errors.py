# marketplace_payments/api/errors.py
"""
Translation of service-layer errors into HTTP responses.
"""
import logging

from fastapi import HTTPException, status

from marketplace_payments.core.exceptions import MarketplaceError
from marketplace_payments.services.payment.providers.stripe_provider import (
    PaymentError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)

# Processor errors caused by the request itself rather than the processor
CLIENT_PAYMENT_ERROR_CODES = ("PARSE_ERROR",)


def to_http_exception(error: Exception) -> HTTPException:
    """
    Map a MarketplaceError or PaymentError to an HTTPException.

    The detail is always {"error": message, "code": code}; processor errors
    also carry the processor's own code when there is one.
    """
    if isinstance(error, MarketplaceError):
        return HTTPException(
            status_code=error.status_code,
            detail={"error": error.message, "code": error.code},
        )

    if isinstance(error, PaymentError):
        if isinstance(error, WebhookSignatureError) or error.code in CLIENT_PAYMENT_ERROR_CODES:
            status_code = status.HTTP_400_BAD_REQUEST
        else:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
            logger.error(f"Payment processor error {error.code}: {error.message}")
        return HTTPException(
            status_code=status_code,
            detail={
                "error": error.message,
                "code": error.code,
                "provider_code": error.provider_code,
            },
        )

    logger.error(f"Unexpected error: {error}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "Internal error", "code": "INTERNAL_ERROR"},
    )
