# marketplace_payments/api/v1/endpoints/webhooks.py
"""
Webhook endpoint for the payment processor.

Stripe retries any non-2xx response, so only signature and parse failures
are rejected. Events that fail during processing are stored, acknowledged
and retried by the scheduler.
"""
import logging
from fastapi import APIRouter, Request, HTTPException, Depends, Header
from sqlalchemy.orm import Session

from marketplace_payments.api.deps import get_db
from marketplace_payments.api.errors import to_http_exception
from marketplace_payments.schemas.payment import WebhookAck
from marketplace_payments.services.payment.providers.stripe_provider import PaymentError
from marketplace_payments.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    """
    Handle Stripe webhook events.

    1. Verifies the webhook signature
    2. Records the event in the idempotency table
    3. Applies it to campaigns, deliverables and accounts
    4. Returns 200 to acknowledge receipt
    """
    body = await request.body()
    client_ip = request.client.host if request.client else None

    try:
        return await WebhookReconciler(db).handle_event(
            body, stripe_signature, ip_address=client_ip
        )
    except PaymentError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error in payment webhook: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
