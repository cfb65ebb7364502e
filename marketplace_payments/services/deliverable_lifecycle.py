# marketplace_payments/services/deliverable_lifecycle.py
"""
Deliverable submission and review.

A creator with an accepted application submits a link to the published
post. The campaign owner (or an admin) then approves, rejects or asks for
changes. A submission left unreviewed for AUTO_APPROVAL_HOURS is approved by
the system. Every approval starts the creator's payout.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from marketplace_payments import crud
from marketplace_payments.core.config import settings
from marketplace_payments.core.exceptions import (
    ConflictError,
    MarketplaceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from marketplace_payments.db.session import transaction
from marketplace_payments.models.campaign_application import CampaignApplication
from marketplace_payments.models.campaign_deliverable import CampaignDeliverable
from marketplace_payments.schemas.deliverable import (
    AutoApprovalStatus,
    BulkApproveItem,
    BulkApproveResult,
    Deliverable,
    DeliverableDraft,
    DeliverableDraftUpdate,
    DeliverableSubmission,
    ReviewResult,
)
from marketplace_payments.services.notification_service import (
    NotificationKind,
    NotificationService,
    notification_service,
)
from marketplace_payments.services.payment.providers.stripe_provider import PaymentError
from marketplace_payments.services.payout_processor import PayoutProcessor
from marketplace_payments.utils import review_window
from marketplace_payments.utils.validators import validate_post_url

logger = logging.getLogger(__name__)

SYSTEM_REVIEWER = "system"
REVIEWABLE_STATUSES = ("pending_review", "revision_requested")
RESUBMITTABLE_STATUSES = ("draft", "revision_requested")


def format_change_request(feedback: str, changes_required: Optional[List[str]] = None) -> str:
    """Append the numbered list of requested changes to the reviewer's feedback."""
    if not changes_required:
        return feedback
    numbered = "\n".join(
        f"{i}. {change}" for i, change in enumerate(changes_required, start=1)
    )
    return f"{feedback}\n\nChanges Required:\n{numbered}"


class DeliverableLifecycle:
    def __init__(
        self,
        db: Session,
        payout_processor: Optional[PayoutProcessor] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.notifier = notifier or notification_service
        self._payout_processor = payout_processor

    @property
    def payout_processor(self) -> PayoutProcessor:
        if self._payout_processor is None:
            self._payout_processor = PayoutProcessor(self.db, notifier=self.notifier)
        return self._payout_processor

    # ------------------------------------------------------------------
    # Lookups and permission checks
    # ------------------------------------------------------------------

    def get(self, deliverable_id: str) -> CampaignDeliverable:
        deliverable = crud.deliverable.get(self.db, id=deliverable_id)
        if not deliverable:
            raise NotFoundError("DELIVERABLE_NOT_FOUND", "Deliverable not found")
        return deliverable

    def _get_accepted_application(
        self, application_id: str, creator_id: str
    ) -> CampaignApplication:
        application = crud.application.get(self.db, id=application_id)
        if not application:
            raise NotFoundError("APPLICATION_NOT_FOUND", "Application not found")
        if application.creator_id != creator_id:
            raise PermissionDeniedError(
                "NOT_APPLICATION_OWNER", "You can only submit for your own application"
            )
        if application.status != "accepted":
            raise ValidationError(
                "APPLICATION_NOT_ACCEPTED",
                "Deliverables can only be submitted for accepted applications",
            )
        return application

    def _check_reviewer(self, deliverable: CampaignDeliverable, reviewer_id: str) -> None:
        campaign = crud.campaign.get(self.db, id=deliverable.campaign_id)
        if campaign is not None and campaign.owner_id == reviewer_id:
            return
        if crud.user_role.has_role(self.db, user_id=reviewer_id, role="admin"):
            return
        raise PermissionDeniedError(
            "NOT_CAMPAIGN_OWNER", "Only the campaign owner can review this deliverable"
        )

    def _check_creator(self, deliverable: CampaignDeliverable, creator_id: str) -> None:
        if deliverable.creator_id != creator_id:
            raise PermissionDeniedError(
                "NOT_DELIVERABLE_OWNER", "You can only edit your own deliverable"
            )

    # ------------------------------------------------------------------
    # Creator actions
    # ------------------------------------------------------------------

    def save_draft(self, creator_id: str, draft: DeliverableDraft) -> CampaignDeliverable:
        """Start a deliverable without submitting it for review."""
        application = self._get_accepted_application(draft.application_id, creator_id)
        if crud.deliverable.get_by_application(self.db, application_id=application.id):
            raise ConflictError(
                "DELIVERABLE_EXISTS", "A deliverable already exists for this application"
            )

        with transaction(self.db):
            deliverable = CampaignDeliverable(
                application_id=application.id,
                campaign_id=application.campaign_id,
                creator_id=creator_id,
                post_url=draft.post_url,
                platform=draft.platform,
                caption=draft.caption,
                status="draft",
                payment_status="pending",
            )
            self.db.add(deliverable)
            self.db.flush()
            deliverable_id = deliverable.id

        logger.info(f"Saved draft deliverable {deliverable_id} for application {application.id}")
        return self.get(deliverable_id)

    def update_draft(
        self, deliverable_id: str, creator_id: str, update: DeliverableDraftUpdate
    ) -> CampaignDeliverable:
        deliverable = self.get(deliverable_id)
        self._check_creator(deliverable, creator_id)
        if deliverable.status != "draft":
            raise ConflictError("NOT_DRAFT", "Only draft deliverables can be edited")

        with transaction(self.db):
            for field_name, value in update.model_dump(exclude_unset=True).items():
                setattr(deliverable, field_name, value)
            self.db.add(deliverable)

        return self.get(deliverable_id)

    def submit(self, creator_id: str, submission: DeliverableSubmission) -> CampaignDeliverable:
        """
        Submit a post for review.

        A draft or a deliverable sent back for changes is resubmitted in
        place. The payment amount is copied from the application the first
        time and never changes afterwards.

        Raises:
            NotFoundError: Unknown application
            PermissionDeniedError: The application belongs to someone else
            ValidationError: Application not accepted, or an invalid post URL
            ConflictError: ALREADY_SUBMITTED while under review or reviewed
        """
        application = self._get_accepted_application(submission.application_id, creator_id)
        platform = validate_post_url(submission.post_url, submission.platform)

        existing = crud.deliverable.get_by_application(self.db, application_id=application.id)
        if existing is not None and existing.status not in RESUBMITTABLE_STATUSES:
            raise ConflictError(
                "ALREADY_SUBMITTED", "This deliverable has already been submitted"
            )

        now = datetime.now(timezone.utc)
        with transaction(self.db):
            if existing is None:
                deliverable = CampaignDeliverable(
                    application_id=application.id,
                    campaign_id=application.campaign_id,
                    creator_id=creator_id,
                    payment_status="pending",
                )
                previous_status = None
            else:
                deliverable = existing
                previous_status = existing.status

            deliverable.post_url = submission.post_url.strip()
            deliverable.platform = platform
            if submission.caption is not None:
                deliverable.caption = submission.caption
            deliverable.status = "pending_review"
            deliverable.submitted_at = now
            deliverable.review_deadline = now + timedelta(hours=settings.AUTO_APPROVAL_HOURS)
            deliverable.reviewed_by = None
            deliverable.reviewed_at = None
            if deliverable.payment_amount_cents is None:
                deliverable.payment_amount_cents = application.proposed_rate_cents

            self.db.add(deliverable)
            self.db.flush()
            crud.audit_log.log_action(
                self.db,
                action="deliverable.submitted",
                actor_type="creator",
                actor_id=creator_id,
                entity_type="deliverable",
                entity_id=deliverable.id,
                previous_state={"status": previous_status},
                new_state={"status": "pending_review", "platform": platform},
            )
            deliverable_id = deliverable.id
            campaign_id = deliverable.campaign_id

        logger.info(f"Deliverable {deliverable_id} submitted for review")
        campaign = crud.campaign.get(self.db, id=campaign_id)
        if campaign is not None:
            self.notifier.notify(
                campaign.owner_id,
                NotificationKind.DELIVERABLE_SUBMITTED,
                f"A creator submitted a {platform} post for '{campaign.title}'. "
                f"Review it within {settings.AUTO_APPROVAL_HOURS} hours.",
                data={"deliverable_id": deliverable_id, "campaign_id": campaign_id},
                related=("deliverable", deliverable_id),
            )
        return self.get(deliverable_id)

    # ------------------------------------------------------------------
    # Reviewer actions
    # ------------------------------------------------------------------

    async def approve(
        self, deliverable_id: str, reviewer_id: str, feedback: Optional[str] = None
    ) -> ReviewResult:
        """
        Approve a submitted deliverable and start the creator's payout.

        A payout that cannot start does not undo the approval; the error is
        reported in the result.
        """
        deliverable = self.get(deliverable_id)
        self._check_reviewer(deliverable, reviewer_id)

        now = datetime.now(timezone.utc)
        values = {
            "status": "approved",
            "reviewed_by": reviewer_id,
            "reviewed_at": now,
            "payment_status": "processing",
        }
        if feedback:
            values["feedback"] = feedback

        with transaction(self.db):
            if not crud.deliverable.transition(
                self.db,
                deliverable_id=deliverable_id,
                from_statuses=REVIEWABLE_STATUSES,
                values=values,
            ):
                raise ConflictError("ALREADY_REVIEWED", "Deliverable has already been reviewed")
            crud.audit_log.log_action(
                self.db,
                action="deliverable.approved",
                actor_type="business",
                actor_id=reviewer_id,
                entity_type="deliverable",
                entity_id=deliverable_id,
                new_state={"status": "approved", "payment_status": "processing"},
            )

        logger.info(f"Deliverable {deliverable_id} approved by {reviewer_id}")
        self.notifier.notify(
            deliverable.creator_id,
            NotificationKind.DELIVERABLE_APPROVED,
            "Your deliverable was approved. Your payment is on its way.",
            data={"deliverable_id": deliverable_id},
            related=("deliverable", deliverable_id),
        )
        return await self._start_payout(deliverable_id)

    def reject(self, deliverable_id: str, reviewer_id: str, feedback: str) -> ReviewResult:
        if not feedback or not feedback.strip():
            raise ValidationError(
                "FEEDBACK_REQUIRED", "Feedback is required when rejecting a deliverable"
            )

        deliverable = self.get(deliverable_id)
        self._check_reviewer(deliverable, reviewer_id)

        with transaction(self.db):
            if not crud.deliverable.transition(
                self.db,
                deliverable_id=deliverable_id,
                from_statuses=REVIEWABLE_STATUSES,
                values={
                    "status": "rejected",
                    "reviewed_by": reviewer_id,
                    "reviewed_at": datetime.now(timezone.utc),
                    "feedback": feedback,
                },
            ):
                raise ConflictError("ALREADY_REVIEWED", "Deliverable has already been reviewed")
            crud.audit_log.log_action(
                self.db,
                action="deliverable.rejected",
                actor_type="business",
                actor_id=reviewer_id,
                entity_type="deliverable",
                entity_id=deliverable_id,
                new_state={"status": "rejected"},
            )

        logger.info(f"Deliverable {deliverable_id} rejected by {reviewer_id}")
        self.notifier.notify(
            deliverable.creator_id,
            NotificationKind.DELIVERABLE_REJECTED,
            f"Your deliverable was rejected: {feedback}",
            data={"deliverable_id": deliverable_id},
            related=("deliverable", deliverable_id),
        )
        return ReviewResult(deliverable=Deliverable.model_validate(self.get(deliverable_id)))

    def request_changes(
        self,
        deliverable_id: str,
        reviewer_id: str,
        feedback: str,
        changes_required: Optional[List[str]] = None,
    ) -> ReviewResult:
        if not feedback or not feedback.strip():
            raise ValidationError(
                "FEEDBACK_REQUIRED", "Feedback is required when requesting changes"
            )

        deliverable = self.get(deliverable_id)
        self._check_reviewer(deliverable, reviewer_id)
        stored_feedback = format_change_request(feedback, changes_required)

        with transaction(self.db):
            if not crud.deliverable.transition(
                self.db,
                deliverable_id=deliverable_id,
                from_statuses=("pending_review",),
                values={
                    "status": "revision_requested",
                    "reviewed_by": reviewer_id,
                    "reviewed_at": datetime.now(timezone.utc),
                    "feedback": stored_feedback,
                },
            ):
                raise ConflictError("ALREADY_REVIEWED", "Deliverable has already been reviewed")
            crud.audit_log.log_action(
                self.db,
                action="deliverable.changes_requested",
                actor_type="business",
                actor_id=reviewer_id,
                entity_type="deliverable",
                entity_id=deliverable_id,
                new_state={"status": "revision_requested"},
                change_details={"changes_required": changes_required or []},
            )

        logger.info(f"Changes requested on deliverable {deliverable_id} by {reviewer_id}")
        self.notifier.notify(
            deliverable.creator_id,
            NotificationKind.CHANGES_REQUESTED,
            "The campaign owner requested changes to your deliverable.",
            data={"deliverable_id": deliverable_id, "changes_required": changes_required or []},
            related=("deliverable", deliverable_id),
        )
        return ReviewResult(deliverable=Deliverable.model_validate(self.get(deliverable_id)))

    async def bulk_approve(
        self, deliverable_ids: List[str], reviewer_id: str, feedback: Optional[str] = None
    ) -> BulkApproveResult:
        results = []
        for deliverable_id in deliverable_ids:
            try:
                review = await self.approve(deliverable_id, reviewer_id, feedback)
                results.append(
                    BulkApproveItem(
                        deliverable_id=deliverable_id,
                        success=True,
                        payout_status=review.payout_status,
                    )
                )
            except MarketplaceError as e:
                results.append(
                    BulkApproveItem(deliverable_id=deliverable_id, success=False, error=e.message)
                )

        approved = sum(1 for item in results if item.success)
        return BulkApproveResult(
            approved=approved, failed=len(results) - approved, results=results
        )

    # ------------------------------------------------------------------
    # Auto-approval
    # ------------------------------------------------------------------

    async def check_auto_approval(
        self, deliverable_id: str, now: Optional[datetime] = None
    ) -> ReviewResult:
        """
        Approve on the reviewer's behalf once the review window has passed.

        Safe to call any number of times: only one caller performs the
        transition and starts the payout; the rest get transitioned=False.
        """
        now = now or datetime.now(timezone.utc)
        deliverable = self.get(deliverable_id)

        if (
            deliverable.status != "pending_review"
            or deliverable.submitted_at is None
            or not review_window.should_auto_approve(deliverable.submitted_at, now)
        ):
            return ReviewResult(
                deliverable=Deliverable.model_validate(deliverable), transitioned=False
            )

        with transaction(self.db):
            moved = crud.deliverable.transition(
                self.db,
                deliverable_id=deliverable_id,
                from_statuses=("pending_review",),
                values={
                    "status": "auto_approved",
                    "reviewed_by": SYSTEM_REVIEWER,
                    "reviewed_at": now,
                    "auto_approved_at": now,
                    "payment_status": "processing",
                },
            )
            if moved:
                crud.audit_log.log_action(
                    self.db,
                    action="deliverable.auto_approved",
                    actor_type="system",
                    actor_id=SYSTEM_REVIEWER,
                    entity_type="deliverable",
                    entity_id=deliverable_id,
                    new_state={"status": "auto_approved", "payment_status": "processing"},
                )

        if not moved:
            return ReviewResult(
                deliverable=Deliverable.model_validate(self.get(deliverable_id)),
                transitioned=False,
            )

        logger.info(f"Deliverable {deliverable_id} auto-approved")
        self.notifier.notify(
            deliverable.creator_id,
            NotificationKind.DELIVERABLE_AUTO_APPROVED,
            f"Your deliverable was automatically approved after "
            f"{settings.AUTO_APPROVAL_HOURS} hours. Your payment is on its way.",
            data={"deliverable_id": deliverable_id},
            related=("deliverable", deliverable_id),
        )
        campaign = crud.campaign.get(self.db, id=deliverable.campaign_id)
        if campaign is not None:
            self.notifier.notify(
                campaign.owner_id,
                NotificationKind.DELIVERABLE_AUTO_APPROVED,
                f"A deliverable for '{campaign.title}' was automatically approved "
                "because it was not reviewed in time.",
                data={"deliverable_id": deliverable_id, "campaign_id": campaign.id},
                related=("deliverable", deliverable_id),
            )
        return await self._start_payout(deliverable_id)

    async def auto_approve_due(self, now: Optional[datetime] = None) -> int:
        """Auto-approve every submission past its review window."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=settings.AUTO_APPROVAL_HOURS)
        due = crud.deliverable.get_due_for_auto_approval(self.db, submitted_before=cutoff)

        approved = 0
        for deliverable in due:
            deliverable_id = deliverable.id
            try:
                result = await self.check_auto_approval(deliverable_id, now=now)
            except MarketplaceError as e:
                logger.error(f"Auto-approval of deliverable {deliverable_id} failed: {e.message}")
                continue
            if result.transitioned:
                approved += 1
        return approved

    def get_auto_approval_status(
        self, deliverable_id: str, now: Optional[datetime] = None
    ) -> AutoApprovalStatus:
        deliverable = self.get(deliverable_id)
        if deliverable.submitted_at is None:
            raise ValidationError("NOT_SUBMITTED", "Deliverable has not been submitted")

        remaining = review_window.hours_remaining(deliverable.submitted_at, now)
        return AutoApprovalStatus(
            deliverable_id=deliverable.id,
            hours_elapsed=round(review_window.hours_elapsed(deliverable.submitted_at, now), 2),
            hours_remaining=round(remaining, 2),
            should_auto_approve=(
                deliverable.status == "pending_review"
                and review_window.should_auto_approve(deliverable.submitted_at, now)
            ),
            needs_attention=(
                deliverable.status == "pending_review"
                and review_window.needs_attention(deliverable.submitted_at, now)
            ),
            urgency=review_window.urgency_level(remaining),
            time_remaining=review_window.format_time_remaining(remaining),
        )

    # ------------------------------------------------------------------

    async def _start_payout(self, deliverable_id: str) -> ReviewResult:
        payout_status = None
        transfer_id = None
        payout_error = None
        try:
            payout = await self.payout_processor.payout(deliverable_id)
            payout_status = payout.status
            transfer_id = payout.transfer_id
        except (MarketplaceError, PaymentError) as e:
            logger.error(f"Payout for approved deliverable {deliverable_id} did not start: {e}")
            payout_status = "error"
            payout_error = e.message

        return ReviewResult(
            deliverable=Deliverable.model_validate(self.get(deliverable_id)),
            transitioned=True,
            payout_status=payout_status,
            transfer_id=transfer_id,
            payout_error=payout_error,
        )
