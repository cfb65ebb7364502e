# marketplace_payments/services/payment/provider_factory.py
import logging
from functools import lru_cache

from marketplace_payments.core.config import settings
from .provider_interface import PaymentProviderInterface
from .providers.stripe_provider import StripeProvider, StripeConfig, PaymentError

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_provider() -> PaymentProviderInterface:
    """
    Build the process-wide Stripe provider from settings.

    Raises:
        PaymentError: If Stripe is not configured
    """
    if not settings.STRIPE_SECRET_KEY:
        logger.error("STRIPE_SECRET_KEY not configured")
        raise PaymentError(
            code="PROVIDER_NOT_CONFIGURED",
            message="Payment provider is not configured",
            retryable=False,
        )

    config = StripeConfig(
        secret_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        api_version=settings.STRIPE_API_VERSION,
        max_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
        webhook_tolerance=settings.WEBHOOK_TOLERANCE_SECONDS,
    )
    logger.info("Stripe payment provider initialized")
    return StripeProvider(config)
