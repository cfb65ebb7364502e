# marketplace_payments/services/webhook_reconciler.py
"""
Applies processor webhook events to durable state.

Stripe delivers events at least once and in no particular order. Every event
is recorded in the webhook event table before it is handled; the row is
claimed atomically so that concurrent or repeated deliveries apply the
handler's writes exactly once. Handler writes and the 'processed' mark commit
in one transaction; notifications go out only after that commit.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from marketplace_payments import crud
from marketplace_payments.core.config import settings
from marketplace_payments.db.session import transaction
from marketplace_payments.models.campaign_deliverable import CampaignDeliverable
from marketplace_payments.models.payment_webhook_event import PaymentWebhookEvent
from marketplace_payments.schemas.payment import WebhookEventCreate
from marketplace_payments.services.notification_service import (
    NotificationKind,
    NotificationService,
    notification_service,
)
from marketplace_payments.services.payment.account_onboarding import AccountOnboardingTracker
from marketplace_payments.services.payment.provider_factory import get_payment_provider
from marketplace_payments.services.payment.provider_interface import (
    PaymentProviderInterface,
    WebhookEvent,
    WebhookEventType,
)
from marketplace_payments.services.payment.providers.stripe_provider import (
    PaymentError,
    WebhookSignatureError,
)
from marketplace_payments.services.payout_processor import PayoutProcessor

logger = logging.getLogger(__name__)


@dataclass
class _Notice:
    user_id: str
    kind: NotificationKind
    message: str
    data: Optional[Dict[str, Any]] = None
    related: Optional[Tuple[str, str]] = None


@dataclass
class _Effects:
    """Work deferred until the handler's transaction has committed."""
    notices: List[_Notice] = field(default_factory=list)
    resume_payouts_for: List[str] = field(default_factory=list)


def _format_amount(amount_cents: Optional[int]) -> str:
    return f"${(amount_cents or 0) / 100:.2f}"


class WebhookReconciler:
    def __init__(
        self,
        db: Session,
        provider: Optional[PaymentProviderInterface] = None,
        notifier: Optional[NotificationService] = None,
        payout_processor: Optional[PayoutProcessor] = None,
    ):
        self.db = db
        self._provider = provider
        self.notifier = notifier or notification_service
        self._payout_processor = payout_processor

    @property
    def provider(self) -> PaymentProviderInterface:
        if self._provider is None:
            self._provider = get_payment_provider()
        return self._provider

    @property
    def payout_processor(self) -> PayoutProcessor:
        if self._payout_processor is None:
            self._payout_processor = PayoutProcessor(
                self.db, provider=self.provider, notifier=self.notifier
            )
        return self._payout_processor

    async def handle_event(
        self,
        raw_payload: bytes,
        signature: Optional[str],
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Verify, record and apply one webhook delivery.

        Returns the acknowledgement body. Handler failures are recorded on
        the event row for retry and still acknowledged.

        Raises:
            PaymentError: WEBHOOK_NOT_CONFIGURED when no signing secret is set
            WebhookSignatureError: Missing or invalid signature
            PaymentError: PARSE_ERROR when the body is not a Stripe event
        """
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("STRIPE_WEBHOOK_SECRET not configured; rejecting webhook")
            raise PaymentError(
                code="WEBHOOK_NOT_CONFIGURED",
                message="Webhook secret is not configured",
            )

        if not signature:
            logger.warning(f"Webhook without Stripe-Signature header from {ip_address}")
            raise WebhookSignatureError("Missing signature")
        if not self.provider.verify_webhook_signature(raw_payload, signature):
            logger.warning(f"Invalid webhook signature from {ip_address}")
            raise WebhookSignatureError()

        event = self.provider.parse_webhook_event(raw_payload)
        if not event.event_id:
            raise PaymentError(code="PARSE_ERROR", message="Webhook event has no id")

        provider_code = self.provider.code
        if crud.webhook_event.is_already_processed(
            self.db, provider_code=provider_code, provider_event_id=event.event_id
        ):
            logger.info(f"Event {event.event_id} already processed, skipping")
            return {"status": "already_processed", "event_id": event.event_id}

        row = crud.webhook_event.upsert_event(
            self.db,
            obj_in=WebhookEventCreate(
                provider_code=provider_code,
                provider_event_id=event.event_id,
                provider_event_type=event.provider_event_type,
                payload=event.raw_payload,
                signature_verified=True,
                ip_address=ip_address,
            ),
        )
        if row.is_processed:
            return {"status": "already_processed", "event_id": event.event_id}

        return await self._process(row.id, event)

    async def reprocess_event(self, row: PaymentWebhookEvent) -> Dict[str, Any]:
        """Re-run a stored event that previously failed (scheduled retry)."""
        raw = json.dumps(row.payload).encode("utf-8")
        try:
            event = self.provider.parse_webhook_event(raw)
        except PaymentError as e:
            crud.webhook_event.mark_skipped(
                self.db, event_id=row.id, reason=f"Unparseable stored payload: {e.message}"
            )
            return {"status": "skipped", "event_id": row.provider_event_id}
        return await self._process(row.id, event)

    async def _process(self, row_id: str, event: WebhookEvent) -> Dict[str, Any]:
        if event.event_type == WebhookEventType.UNKNOWN:
            logger.info(f"Unhandled event type {event.provider_event_type}, skipping")
            crud.webhook_event.mark_skipped(
                self.db,
                event_id=row_id,
                reason=f"Unhandled event type: {event.provider_event_type}",
            )
            return {"status": "skipped", "event_id": event.event_id}

        if not crud.webhook_event.claim_for_processing(self.db, event_id=row_id):
            current = crud.webhook_event.get(self.db, id=row_id)
            if current is not None and current.is_processed:
                return {"status": "already_processed", "event_id": event.event_id}
            logger.info(f"Event {event.event_id} is being processed by another worker")
            return {"status": "in_progress", "event_id": event.event_id}

        effects = _Effects()
        try:
            with transaction(self.db):
                related = await self._dispatch(event, effects)
                crud.webhook_event.mark_processed(self.db, event_id=row_id, **related)
        except Exception as e:
            logger.error(f"Error processing webhook event {event.event_id}: {e}", exc_info=True)
            crud.webhook_event.mark_failed(self.db, event_id=row_id, error=str(e))
            # Acknowledged anyway; the stored event is retried by the scheduler
            return {"status": "processing_error", "event_id": event.event_id}

        await self._apply_effects(effects)
        return {"status": "processed", "event_id": event.event_id}

    async def _dispatch(self, event: WebhookEvent, effects: _Effects) -> Dict[str, str]:
        """Apply one event; returns the related entity ids for the event row."""
        if event.event_type == WebhookEventType.PAYMENT_SUCCEEDED:
            return self._handle_payment_succeeded(event, effects)
        elif event.event_type == WebhookEventType.PAYMENT_FAILED:
            return self._handle_payment_failed(event, effects)
        elif event.event_type == WebhookEventType.TRANSFER_CREATED:
            logger.info(f"Transfer {event.data.get('transferId')} created")
            return {}
        elif event.event_type == WebhookEventType.TRANSFER_PAID:
            return self._handle_transfer_paid(event, effects)
        elif event.event_type == WebhookEventType.TRANSFER_FAILED:
            return self._handle_transfer_failed(event, effects)
        elif event.event_type == WebhookEventType.ACCOUNT_UPDATED:
            return self._handle_account_updated(event, effects)
        return {}

    async def _apply_effects(self, effects: _Effects) -> None:
        for notice in effects.notices:
            self.notifier.notify(
                notice.user_id,
                notice.kind,
                notice.message,
                data=notice.data,
                related=notice.related,
            )
        for creator_id in effects.resume_payouts_for:
            try:
                await self.payout_processor.resume_pending_onboarding(creator_id)
            except PaymentError as e:
                logger.error(f"Could not resume payouts for creator {creator_id}: {e.message}")

    # ------------------------------------------------------------------
    # Campaign payments
    # ------------------------------------------------------------------

    def _handle_payment_succeeded(self, event: WebhookEvent, effects: _Effects) -> Dict[str, str]:
        intent_id = event.data.get("paymentIntentId")
        if not intent_id:
            logger.warning("Payment succeeded event without intent ID")
            return {}

        record = crud.campaign_payment.get_by_intent_id(self.db, payment_intent_id=intent_id)
        if not record:
            logger.warning(f"No payment record found for payment intent {intent_id}")
            return {}

        campaign = crud.campaign.get(self.db, id=record.campaign_id)
        if not campaign:
            logger.warning(f"Campaign {record.campaign_id} for intent {intent_id} is gone")
            return {}

        was_funded = campaign.is_funded
        crud.campaign_payment.mark_succeeded(self.db, record=record, paid_at=event.created_at)
        crud.campaign.mark_funded(self.db, campaign=campaign, paid_at=event.created_at)
        crud.payment_transaction.record_payment(
            self.db,
            campaign_id=campaign.id,
            business_id=record.business_id,
            payment_intent_id=intent_id,
            amount_cents=event.data.get("amount") or record.amount_cents,
            currency=record.currency,
        )

        if not was_funded:
            crud.audit_log.log_action(
                self.db,
                action="campaign.funded",
                actor_type="webhook",
                entity_type="campaign",
                entity_id=campaign.id,
                previous_state={"payment_status": "pending"},
                new_state={"payment_status": "paid", "status": campaign.status},
                change_details={"payment_intent_id": intent_id},
            )
            effects.notices.append(
                _Notice(
                    user_id=campaign.owner_id,
                    kind=NotificationKind.PAYMENT_SUCCESSFUL,
                    message=(
                        f"Payment of {_format_amount(record.amount_cents)} for "
                        f"'{campaign.title}' confirmed. Your campaign is now live."
                    ),
                    data={"campaign_id": campaign.id, "amount_cents": record.amount_cents},
                    related=("campaign", campaign.id),
                )
            )
            logger.info(f"Campaign {campaign.id} funded by intent {intent_id}")
        else:
            logger.info(f"Campaign {campaign.id} already funded")

        return {"related_campaign_id": campaign.id}

    def _handle_payment_failed(self, event: WebhookEvent, effects: _Effects) -> Dict[str, str]:
        intent_id = event.data.get("paymentIntentId")
        if not intent_id:
            logger.warning("Payment failed event without intent ID")
            return {}

        record = crud.campaign_payment.get_by_intent_id(self.db, payment_intent_id=intent_id)
        if not record:
            logger.warning(f"No payment record found for payment intent {intent_id}")
            return {}

        failure_message = event.data.get("failureMessage") or "Payment failed"
        crud.campaign_payment.mark_failed(
            self.db,
            record=record,
            failure_code=event.data.get("failureCode"),
            failure_message=failure_message,
        )

        campaign = crud.campaign.get(self.db, id=record.campaign_id)
        if not campaign:
            return {}

        crud.campaign.mark_payment_failed(self.db, campaign=campaign)
        if campaign.is_funded:
            logger.info(f"Ignoring late failure of {intent_id}; campaign {campaign.id} is paid")
        else:
            effects.notices.append(
                _Notice(
                    user_id=campaign.owner_id,
                    kind=NotificationKind.PAYMENT_FAILED,
                    message=(
                        f"Payment for '{campaign.title}' failed: {failure_message}. "
                        "You can retry from the campaign page."
                    ),
                    data={"campaign_id": campaign.id, "failure_code": event.data.get("failureCode")},
                    related=("campaign", campaign.id),
                )
            )
            logger.info(f"Payment {intent_id} for campaign {campaign.id} failed")

        return {"related_campaign_id": campaign.id}

    # ------------------------------------------------------------------
    # Creator transfers
    # ------------------------------------------------------------------

    def _find_deliverable(self, event: WebhookEvent) -> Optional[CampaignDeliverable]:
        deliverable_id = (event.data.get("metadata") or {}).get("deliverable_id")
        if deliverable_id:
            deliverable = crud.deliverable.get(self.db, id=deliverable_id)
            if deliverable:
                return deliverable
        transfer_id = event.data.get("transferId")
        if transfer_id:
            return crud.deliverable.get_by_transfer_id(self.db, transfer_id=transfer_id)
        return None

    def _handle_transfer_paid(self, event: WebhookEvent, effects: _Effects) -> Dict[str, str]:
        transfer_id = event.data.get("transferId")
        deliverable = self._find_deliverable(event)
        if not deliverable:
            logger.warning(f"No deliverable found for transfer {transfer_id}")
            return {}

        related = {
            "related_deliverable_id": deliverable.id,
            "related_campaign_id": deliverable.campaign_id,
        }
        if deliverable.payment_status == "completed":
            logger.info(f"Deliverable {deliverable.id} already paid")
            return related

        previous_status = deliverable.payment_status
        deliverable.payment_status = "completed"
        deliverable.paid_at = event.created_at
        deliverable.payment_error = None
        self.db.add(deliverable)

        txn = crud.payment_transaction.get_by_reference(
            self.db, transaction_type="payout", processor_reference=transfer_id
        )
        if txn:
            crud.payment_transaction.mark_completed(self.db, transaction=txn)

        crud.audit_log.log_action(
            self.db,
            action="payout.completed",
            actor_type="webhook",
            entity_type="deliverable",
            entity_id=deliverable.id,
            previous_state={"payment_status": previous_status},
            new_state={"payment_status": "completed"},
            change_details={"transfer_id": transfer_id},
        )
        self.db.flush()

        effects.notices.append(
            _Notice(
                user_id=deliverable.creator_id,
                kind=NotificationKind.PAYMENT_RECEIVED,
                message=(
                    f"You've been paid {_format_amount(deliverable.payment_amount_cents)} "
                    "for your deliverable."
                ),
                data={"deliverable_id": deliverable.id, "transfer_id": transfer_id},
                related=("deliverable", deliverable.id),
            )
        )
        logger.info(f"Transfer {transfer_id} paid for deliverable {deliverable.id}")
        return related

    def _handle_transfer_failed(self, event: WebhookEvent, effects: _Effects) -> Dict[str, str]:
        transfer_id = event.data.get("transferId")
        deliverable = self._find_deliverable(event)
        if not deliverable:
            logger.warning(f"No deliverable found for failed transfer {transfer_id}")
            return {}

        related = {
            "related_deliverable_id": deliverable.id,
            "related_campaign_id": deliverable.campaign_id,
        }
        if deliverable.payment_status in ("failed", "completed"):
            logger.info(
                f"Ignoring failure of {transfer_id}; deliverable {deliverable.id} "
                f"payment is already {deliverable.payment_status}"
            )
            return related

        error = event.data.get("failureMessage") or "Transfer failed"
        deliverable.payment_retry_count = (deliverable.payment_retry_count or 0) + 1
        deliverable.payment_error = error
        deliverable.last_payment_retry_at = datetime.now(timezone.utc)

        txn = crud.payment_transaction.get_by_reference(
            self.db, transaction_type="payout", processor_reference=transfer_id
        )
        if txn:
            crud.payment_transaction.mark_failed(self.db, transaction=txn, error_message=error)

        if deliverable.payment_retry_count >= settings.MAX_PAYOUT_RETRIES:
            deliverable.payment_status = "failed"
            crud.audit_log.log_action(
                self.db,
                action="payout.failed",
                actor_type="webhook",
                entity_type="deliverable",
                entity_id=deliverable.id,
                previous_state={"payment_status": "processing"},
                new_state={
                    "payment_status": "failed",
                    "payment_retry_count": deliverable.payment_retry_count,
                },
                change_details={"transfer_id": transfer_id, "error": error},
            )
            effects.notices.append(
                _Notice(
                    user_id=deliverable.creator_id,
                    kind=NotificationKind.PAYOUT_FAILED,
                    message=(
                        "Payout Failed: we could not pay "
                        f"{_format_amount(deliverable.payment_amount_cents)} for your "
                        "deliverable. Our team has been notified."
                    ),
                    data={"deliverable_id": deliverable.id, "error": error},
                    related=("deliverable", deliverable.id),
                )
            )
            logger.error(
                f"Payout for deliverable {deliverable.id} failed permanently after "
                f"{deliverable.payment_retry_count} attempts: {error}"
            )
        else:
            logger.warning(
                f"Transfer {transfer_id} for deliverable {deliverable.id} failed "
                f"(attempt {deliverable.payment_retry_count}), retry scheduled"
            )

        self.db.add(deliverable)
        self.db.flush()
        return related

    # ------------------------------------------------------------------
    # Connected accounts
    # ------------------------------------------------------------------

    def _handle_account_updated(self, event: WebhookEvent, effects: _Effects) -> Dict[str, str]:
        account_id = event.data.get("accountId")
        if not account_id:
            logger.warning("Account updated event without account ID")
            return {}

        tracker = AccountOnboardingTracker(self.db, provider=self.provider)
        account, newly_completed = tracker.apply_account_update(
            stripe_account_id=account_id,
            details_submitted=bool(event.data.get("detailsSubmitted")),
            charges_enabled=bool(event.data.get("chargesEnabled")),
            payouts_enabled=bool(event.data.get("payoutsEnabled")),
        )
        if account is None:
            return {}

        if newly_completed and account.account_type == "creator":
            effects.resume_payouts_for.append(account.user_id)
        return {"related_account_id": account.id}
