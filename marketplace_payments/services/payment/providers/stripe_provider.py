# marketplace_payments/services/payment/providers/stripe_provider.py
import json
import stripe
import time
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from dataclasses import dataclass

from ..provider_interface import (
    PaymentProviderInterface,
    CreatePaymentIntentParams,
    PaymentIntentResult,
    PaymentIntentStatus,
    PaymentIntentStatusEnum,
    CreateTransferParams,
    TransferResult,
    ConnectedAccountDetails,
    AccountLinkResult,
    WebhookEvent,
    WebhookEventType,
    HealthCheckResult,
)

logger = logging.getLogger(__name__)


@dataclass
class StripeConfig:
    """Configuration for Stripe provider."""
    secret_key: str
    webhook_secret: str
    api_version: str = "2023-10-16"
    max_retries: int = 2
    webhook_tolerance: int = 300


# Mapping from Stripe payment intent status to our standardized status
STRIPE_STATUS_MAP: Dict[str, PaymentIntentStatusEnum] = {
    "requires_payment_method": PaymentIntentStatusEnum.REQUIRES_PAYMENT_METHOD,
    "requires_confirmation": PaymentIntentStatusEnum.REQUIRES_CONFIRMATION,
    "requires_action": PaymentIntentStatusEnum.REQUIRES_ACTION,
    "processing": PaymentIntentStatusEnum.PROCESSING,
    "succeeded": PaymentIntentStatusEnum.SUCCEEDED,
    "canceled": PaymentIntentStatusEnum.CANCELLED,
    "requires_capture": PaymentIntentStatusEnum.SUCCEEDED,  # For manual capture
}

# Mapping from Stripe event types to the reconciler's event kinds
STRIPE_EVENT_MAP: Dict[str, WebhookEventType] = {
    "payment_intent.succeeded": WebhookEventType.PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": WebhookEventType.PAYMENT_FAILED,
    "transfer.created": WebhookEventType.TRANSFER_CREATED,
    "transfer.paid": WebhookEventType.TRANSFER_PAID,
    "transfer.failed": WebhookEventType.TRANSFER_FAILED,
    "account.updated": WebhookEventType.ACCOUNT_UPDATED,
}


def _stringify_metadata(metadata: Dict[str, Any]) -> Dict[str, str]:
    """Stripe metadata values must be strings."""
    return {k: str(v) for k, v in metadata.items() if v is not None}


def _provider_error(e: stripe.StripeError, message: str) -> "PaymentError":
    """Translate a Stripe exception into PaymentError, keeping Stripe's code."""
    if isinstance(e, stripe.CardError):
        return PaymentError(
            code="CARD_ERROR",
            message=e.user_message or "Card was declined",
            retryable=True,
            provider_code=e.code,
        )
    if isinstance(e, stripe.RateLimitError):
        return PaymentError(
            code="RATE_LIMIT",
            message="Too many requests. Please try again.",
            retryable=True,
            provider_code=e.code,
        )
    if isinstance(e, stripe.InvalidRequestError):
        return PaymentError(
            code="INVALID_REQUEST",
            message=str(e),
            retryable=False,
            provider_code=e.code,
        )
    if isinstance(e, stripe.AuthenticationError):
        return PaymentError(
            code="AUTHENTICATION_ERROR",
            message="Payment service is misconfigured",
            retryable=False,
            provider_code=e.code,
        )
    return PaymentError(
        code="PROVIDER_ERROR",
        message=message,
        retryable=True,
        provider_code=getattr(e, "code", None),
    )


class StripeProvider(PaymentProviderInterface):
    """
    Stripe implementation of PaymentProviderInterface.

    SECURITY NOTES:
    - Always verify webhook signatures
    - Use idempotency keys for all mutations
    - Never log client secrets
    """

    def __init__(self, config: StripeConfig):
        """Initialize Stripe provider with configuration."""
        self._config = config

        # Initialize Stripe with locked API version
        stripe.api_key = config.secret_key
        stripe.api_version = config.api_version
        stripe.max_network_retries = config.max_retries

    @property
    def code(self) -> str:
        return "stripe"

    # ------------------------------------------------------------------
    # Payment intents (campaign funding)
    # ------------------------------------------------------------------

    async def create_payment_intent(
        self, params: CreatePaymentIntentParams
    ) -> PaymentIntentResult:
        """
        Create a Stripe PaymentIntent for a campaign budget.

        The campaign and business ids travel in metadata so the webhook can
        route the confirmation without a lookup.
        """
        try:
            intent = stripe.PaymentIntent.create(
                amount=params.amount,
                currency=params.currency.lower(),
                description=params.description,
                metadata=_stringify_metadata(
                    {
                        **params.metadata,
                        "campaign_id": params.campaign_id,
                        "business_id": params.business_id,
                    }
                ),
                automatic_payment_methods={"enabled": True},
                idempotency_key=params.idempotency_key,
            )

            status = STRIPE_STATUS_MAP.get(
                intent.status, PaymentIntentStatusEnum.REQUIRES_PAYMENT_METHOD
            )

            return PaymentIntentResult(
                intent_id=intent.id,
                client_secret=intent.client_secret,
                status=status,
                provider_metadata={"livemode": intent.livemode},
            )

        except stripe.StripeError as e:
            logger.error(
                f"Stripe error creating payment intent for campaign {params.campaign_id}: {e}"
            )
            raise _provider_error(e, "Payment service temporarily unavailable")

    async def get_payment_intent(self, intent_id: str) -> PaymentIntentStatus:
        """Retrieve current status of a payment intent."""
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)

            failure_code = None
            failure_message = None
            if intent.last_payment_error:
                failure_code = intent.last_payment_error.code
                failure_message = intent.last_payment_error.message

            status = STRIPE_STATUS_MAP.get(intent.status, PaymentIntentStatusEnum.FAILED)

            return PaymentIntentStatus(
                intent_id=intent.id,
                status=status,
                amount=intent.amount,
                currency=intent.currency,
                metadata=dict(intent.metadata or {}),
                failure_code=failure_code,
                failure_message=failure_message,
            )

        except stripe.StripeError as e:
            logger.error(f"Error retrieving payment intent {intent_id}: {e}")
            raise _provider_error(e, "Could not retrieve payment status")

    async def cancel_payment_intent(self, intent_id: str) -> None:
        """Cancel a pending payment intent."""
        try:
            stripe.PaymentIntent.cancel(intent_id)
        except stripe.InvalidRequestError as e:
            # Intent might already be cancelled or completed
            if "cannot be canceled" not in str(e).lower():
                raise PaymentError(
                    code="CANCEL_FAILED",
                    message=str(e),
                    retryable=False,
                    provider_code=e.code,
                )
        except stripe.StripeError as e:
            logger.error(f"Error cancelling payment intent {intent_id}: {e}")
            raise _provider_error(e, "Could not cancel payment")

    # ------------------------------------------------------------------
    # Transfers (creator payouts)
    # ------------------------------------------------------------------

    async def create_transfer(self, params: CreateTransferParams) -> TransferResult:
        """Transfer the full deliverable amount to the creator's account."""
        try:
            transfer = stripe.Transfer.create(
                amount=params.amount,
                currency=params.currency.lower(),
                destination=params.destination_account_id,
                description=params.description
                or f"Payment for deliverable {params.deliverable_id}",
                metadata=_stringify_metadata(
                    {
                        "deliverable_id": params.deliverable_id,
                        "creator_id": params.creator_id,
                        "campaign_id": params.campaign_id,
                    }
                ),
                idempotency_key=params.idempotency_key,
            )

            return TransferResult(
                transfer_id=transfer.id,
                amount=transfer.amount,
                currency=transfer.currency,
                destination_account_id=params.destination_account_id,
                reversed=bool(getattr(transfer, "reversed", False)),
                metadata=dict(transfer.metadata or {}),
            )

        except stripe.StripeError as e:
            logger.error(
                f"Stripe error creating transfer for deliverable {params.deliverable_id}: {e}"
            )
            raise _provider_error(e, "Could not create transfer")

    async def get_transfer(self, transfer_id: str) -> TransferResult:
        try:
            transfer = stripe.Transfer.retrieve(transfer_id)
            return TransferResult(
                transfer_id=transfer.id,
                amount=transfer.amount,
                currency=transfer.currency,
                destination_account_id=transfer.destination,
                reversed=bool(transfer.reversed),
                metadata=dict(transfer.metadata or {}),
            )
        except stripe.StripeError as e:
            logger.error(f"Error retrieving transfer {transfer_id}: {e}")
            raise _provider_error(e, "Could not retrieve transfer")

    async def reverse_transfer(self, transfer_id: str, idempotency_key: str) -> str:
        try:
            reversal = stripe.Transfer.create_reversal(
                transfer_id,
                idempotency_key=idempotency_key,
            )
            logger.info(f"Reversed transfer {transfer_id} ({reversal.id})")
            return reversal.id
        except stripe.StripeError as e:
            logger.error(f"Error reversing transfer {transfer_id}: {e}")
            raise _provider_error(e, "Could not reverse transfer")

    # ------------------------------------------------------------------
    # Connected accounts
    # ------------------------------------------------------------------

    async def create_connected_account(
        self, user_id: str, account_type: str, email: str, country: str
    ) -> ConnectedAccountDetails:
        """Create an Express account; businesses also get card payments."""
        capabilities: Dict[str, Any] = {"transfers": {"requested": True}}
        if account_type == "business":
            capabilities["card_payments"] = {"requested": True}

        try:
            account = stripe.Account.create(
                type="express",
                country=country,
                email=email,
                capabilities=capabilities,
                metadata={"user_id": user_id, "account_type": account_type},
                idempotency_key=f"connect_create_{account_type}_{user_id}",
            )
            return ConnectedAccountDetails(
                account_id=account.id,
                details_submitted=bool(account.details_submitted),
                charges_enabled=bool(account.charges_enabled),
                payouts_enabled=bool(account.payouts_enabled),
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating connected account for {user_id}: {e}")
            raise _provider_error(e, "Could not create connected account")

    async def get_connected_account(self, account_id: str) -> ConnectedAccountDetails:
        try:
            account = stripe.Account.retrieve(account_id)
            return ConnectedAccountDetails(
                account_id=account.id,
                details_submitted=bool(account.details_submitted),
                charges_enabled=bool(account.charges_enabled),
                payouts_enabled=bool(account.payouts_enabled),
            )
        except stripe.StripeError as e:
            logger.error(f"Error retrieving connected account {account_id}: {e}")
            raise _provider_error(e, "Could not retrieve account status")

    async def create_account_link(
        self, account_id: str, refresh_url: str, return_url: str
    ) -> AccountLinkResult:
        try:
            account_link = stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
            return AccountLinkResult(
                url=account_link.url,
                expires_at=datetime.fromtimestamp(account_link.expires_at, tz=timezone.utc),
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating onboarding link for {account_id}: {e}")
            raise _provider_error(e, "Could not create onboarding link")

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify Stripe webhook signature."""
        if not signature:
            return False
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self._config.webhook_secret,
                self._config.webhook_tolerance,
            )
            return True
        except stripe.SignatureVerificationError:
            return False
        except Exception as e:
            logger.error(f"Error verifying webhook signature: {e}")
            return False

    def parse_webhook_event(self, payload: bytes) -> WebhookEvent:
        """Parse Stripe webhook event into standardized format."""
        try:
            event = json.loads(payload.decode("utf-8"))
            provider_event_type = event["type"]
            data_object: Dict[str, Any] = event.get("data", {}).get("object", {}) or {}
        except (ValueError, KeyError, AttributeError) as e:
            logger.error(f"Error parsing webhook event: {e}")
            raise PaymentError(
                code="PARSE_ERROR",
                message="Could not parse webhook event",
                retryable=False,
            )

        event_type = STRIPE_EVENT_MAP.get(provider_event_type, WebhookEventType.UNKNOWN)

        data: Dict[str, Any] = {
            "objectId": data_object.get("id"),
            "status": data_object.get("status"),
            "amount": data_object.get("amount"),
            "currency": data_object.get("currency"),
            "metadata": data_object.get("metadata") or {},
        }

        if event_type in (WebhookEventType.PAYMENT_SUCCEEDED, WebhookEventType.PAYMENT_FAILED):
            data["paymentIntentId"] = data_object.get("id")
            last_error = data_object.get("last_payment_error") or {}
            if last_error:
                data["failureCode"] = last_error.get("code")
                data["failureMessage"] = last_error.get("message")

        elif event_type in (
            WebhookEventType.TRANSFER_CREATED,
            WebhookEventType.TRANSFER_PAID,
            WebhookEventType.TRANSFER_FAILED,
        ):
            data["transferId"] = data_object.get("id")
            data["destination"] = data_object.get("destination")
            data["failureMessage"] = data_object.get("failure_message")

        elif event_type == WebhookEventType.ACCOUNT_UPDATED:
            data["accountId"] = data_object.get("id")
            data["detailsSubmitted"] = bool(data_object.get("details_submitted"))
            data["chargesEnabled"] = bool(data_object.get("charges_enabled"))
            data["payoutsEnabled"] = bool(data_object.get("payouts_enabled"))

        created = event.get("created")
        created_at = (
            datetime.fromtimestamp(created, tz=timezone.utc)
            if created
            else datetime.now(timezone.utc)
        )

        return WebhookEvent(
            event_id=event.get("id"),
            event_type=event_type,
            provider_event_type=provider_event_type,
            data=data,
            created_at=created_at,
            raw_payload=event,
        )

    async def health_check(self) -> HealthCheckResult:
        """Health check for Stripe API."""
        try:
            start_time = time.time()
            stripe.Balance.retrieve()
            latency_ms = (time.time() - start_time) * 1000

            return HealthCheckResult(
                healthy=True,
                latency_ms=latency_ms,
                message="Stripe API is healthy",
            )
        except stripe.AuthenticationError:
            return HealthCheckResult(
                healthy=False,
                latency_ms=0,
                message="Invalid Stripe API key",
            )
        except stripe.StripeError as e:
            return HealthCheckResult(
                healthy=False,
                latency_ms=0,
                message=f"Stripe API error: {str(e)}",
            )


class PaymentError(Exception):
    """Custom exception for payment errors."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        provider_code: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.retryable = retryable
        self.provider_code = provider_code
        super().__init__(message)


class WebhookSignatureError(PaymentError):
    """The webhook body does not carry a valid signature for our secret."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(code="INVALID_SIGNATURE", message=message, retryable=False)
