# marketplace_payments/crud/crud_webhook_event.py
from typing import List, Optional
from datetime import datetime, timezone, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import and_, case, or_
from sqlalchemy.exc import IntegrityError

from marketplace_payments.core.config import settings
from marketplace_payments.crud.base import CRUDBase
from marketplace_payments.models.payment_webhook_event import (
    MAX_EVENT_RETRIES,
    PaymentWebhookEvent,
)
from marketplace_payments.schemas.payment import WebhookEventCreate, WebhookEventUpdate


class CRUDWebhookEvent(CRUDBase[PaymentWebhookEvent, WebhookEventCreate, WebhookEventUpdate]):
    """
    CRUD operations for PaymentWebhookEvent model.

    This table is the idempotency guard for at-least-once webhook delivery.
    Receipt, claim and failure are committed immediately so concurrent
    deliveries of the same event observe them; `mark_processed` is flushed
    only and commits together with the handler's writes.
    """

    def get_by_provider_event_id(
        self, db: Session, *, provider_code: str, provider_event_id: str
    ) -> Optional[PaymentWebhookEvent]:
        """Get a webhook event by provider's event ID."""
        return (
            db.query(self.model)
            .filter(
                and_(
                    self.model.provider_code == provider_code,
                    self.model.provider_event_id == provider_event_id,
                )
            )
            .first()
        )

    def is_already_processed(
        self, db: Session, *, provider_code: str, provider_event_id: str
    ) -> bool:
        """Check if an event has already been processed or skipped."""
        event = self.get_by_provider_event_id(
            db, provider_code=provider_code, provider_event_id=provider_event_id
        )
        return event is not None and event.is_processed

    def create_event(
        self, db: Session, *, obj_in: WebhookEventCreate
    ) -> PaymentWebhookEvent:
        """Create a new webhook event record."""
        db_obj = PaymentWebhookEvent(
            provider_code=obj_in.provider_code,
            provider_event_id=obj_in.provider_event_id,
            provider_event_type=obj_in.provider_event_type,
            payload=obj_in.payload,
            signature_verified=obj_in.signature_verified,
            ip_address=obj_in.ip_address,
            status="pending",
        )
        db.add(db_obj)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent delivery of the same event inserted first
            db.rollback()
            return self.get_by_provider_event_id(
                db,
                provider_code=obj_in.provider_code,
                provider_event_id=obj_in.provider_event_id,
            )
        db.refresh(db_obj)
        return db_obj

    def upsert_event(
        self, db: Session, *, obj_in: WebhookEventCreate
    ) -> PaymentWebhookEvent:
        """Create the event record, or refresh the payload of an unprocessed one."""
        existing = self.get_by_provider_event_id(
            db,
            provider_code=obj_in.provider_code,
            provider_event_id=obj_in.provider_event_id,
        )

        if existing:
            if not existing.is_processed:
                existing.payload = obj_in.payload
                existing.signature_verified = obj_in.signature_verified
                existing.ip_address = obj_in.ip_address
                db.add(existing)
                db.commit()
                db.refresh(existing)
            return existing
        else:
            return self.create_event(db, obj_in=obj_in)

    def _stale_claim(self, stale_before: datetime):
        """A 'processing' row whose worker stopped before finishing it."""
        return and_(
            self.model.status == "processing",
            self.model.retry_count < MAX_EVENT_RETRIES,
            or_(
                self.model.processing_started_at.is_(None),
                self.model.processing_started_at <= stale_before,
            ),
        )

    def claim_for_processing(
        self, db: Session, *, event_id: str, now: Optional[datetime] = None
    ) -> bool:
        """
        Atomically move a pending or failed event to 'processing'.

        A claim whose lease expired is taken over and counted as a failed
        attempt. Returns False when another worker holds a live claim or
        the event is finished.
        """
        now = now or datetime.now(timezone.utc)
        stale_before = now - timedelta(seconds=settings.WEBHOOK_PROCESSING_LEASE_SECONDS)
        claimed = (
            db.query(self.model)
            .filter(
                self.model.id == event_id,
                or_(
                    self.model.status.in_(("pending", "failed")),
                    self._stale_claim(stale_before),
                ),
            )
            .update(
                {
                    "retry_count": case(
                        (self.model.status == "processing", self.model.retry_count + 1),
                        else_=self.model.retry_count,
                    ),
                    "status": "processing",
                    "processing_started_at": now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return claimed == 1

    def mark_processed(
        self,
        db: Session,
        *,
        event_id: str,
        related_campaign_id: Optional[str] = None,
        related_deliverable_id: Optional[str] = None,
        related_account_id: Optional[str] = None,
    ) -> Optional[PaymentWebhookEvent]:
        """Mark an event as processed (flushed, committed by the caller)."""
        event = self.get(db, id=event_id)
        if not event:
            return None

        event.status = "processed"
        event.processed_at = datetime.now(timezone.utc)
        event.processing_error = None
        event.next_retry_at = None

        if related_campaign_id:
            event.related_campaign_id = related_campaign_id
        if related_deliverable_id:
            event.related_deliverable_id = related_deliverable_id
        if related_account_id:
            event.related_account_id = related_account_id

        db.add(event)
        db.flush()
        return event

    def mark_failed(
        self,
        db: Session,
        *,
        event_id: str,
        error: str,
    ) -> Optional[PaymentWebhookEvent]:
        """Mark an event as failed and schedule retry."""
        event = self.get(db, id=event_id)
        if not event:
            return None

        event.status = "failed"
        event.processing_error = error
        event.retry_count += 1

        # Exponential backoff: 1m, 5m, 25m, 2h
        if event.retry_count < MAX_EVENT_RETRIES:
            base_delay = 60
            delay = base_delay * (5 ** (event.retry_count - 1))
            event.next_retry_at = datetime.now(timezone.utc) + timedelta(seconds=delay)
        else:
            event.next_retry_at = None

        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    def mark_skipped(
        self, db: Session, *, event_id: str, reason: str
    ) -> Optional[PaymentWebhookEvent]:
        """Mark an event as skipped."""
        event = self.get(db, id=event_id)
        if not event:
            return None

        event.status = "skipped"
        event.processing_error = reason
        event.processed_at = datetime.now(timezone.utc)

        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    def get_retryable_events(
        self, db: Session, *, now: Optional[datetime] = None, limit: int = 100
    ) -> List[PaymentWebhookEvent]:
        """Get failed events due for retry and claims whose lease expired."""
        now = now or datetime.now(timezone.utc)
        stale_before = now - timedelta(seconds=settings.WEBHOOK_PROCESSING_LEASE_SECONDS)
        return (
            db.query(self.model)
            .filter(
                or_(
                    and_(
                        self.model.status == "failed",
                        self.model.retry_count < MAX_EVENT_RETRIES,
                        self.model.next_retry_at <= now,
                    ),
                    self._stale_claim(stale_before),
                )
            )
            .order_by(self.model.received_at)
            .limit(limit)
            .all()
        )


webhook_event = CRUDWebhookEvent(PaymentWebhookEvent)
