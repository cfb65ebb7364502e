# marketplace_payments/services/application_service.py
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace_payments import crud
from marketplace_payments.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from marketplace_payments.db.session import transaction
from marketplace_payments.models.campaign_application import CampaignApplication
from marketplace_payments.schemas.campaign import ApplicationCreate
from marketplace_payments.services.notification_service import (
    NotificationKind,
    NotificationService,
    notification_service,
)

logger = logging.getLogger(__name__)


class ApplicationService:
    """Creators apply to funded campaigns; owners accept or reject."""

    def __init__(self, db: Session, notifier: NotificationService = None):
        self.db = db
        self.notifier = notifier or notification_service

    def _get(self, application_id: str) -> CampaignApplication:
        application = crud.application.get(self.db, id=application_id)
        if not application:
            raise NotFoundError("APPLICATION_NOT_FOUND", "Application not found")
        return application

    def apply(
        self, campaign_id: str, creator_id: str, obj_in: ApplicationCreate
    ) -> CampaignApplication:
        campaign = crud.campaign.get(self.db, id=campaign_id)
        if not campaign:
            raise NotFoundError("CAMPAIGN_NOT_FOUND", "Campaign not found")
        if campaign.status != "active":
            raise ValidationError(
                "CAMPAIGN_NOT_ACTIVE", "Applications are only accepted for active campaigns"
            )
        if campaign.owner_id == creator_id:
            raise ValidationError("OWN_CAMPAIGN", "You cannot apply to your own campaign")
        if crud.application.get_active(self.db, campaign_id=campaign_id, creator_id=creator_id):
            raise ConflictError("ALREADY_APPLIED", "You have already applied to this campaign")

        try:
            with transaction(self.db):
                application = crud.application.create_application(
                    self.db, campaign_id=campaign_id, creator_id=creator_id, obj_in=obj_in
                )
                application_id = application.id
        except IntegrityError:
            # Lost a race with a concurrent application by the same creator
            raise ConflictError("ALREADY_APPLIED", "You have already applied to this campaign")

        logger.info(f"Creator {creator_id} applied to campaign {campaign_id}")
        self.notifier.notify(
            campaign.owner_id,
            NotificationKind.APPLICATION_RECEIVED,
            f"New application for '{campaign.title}'.",
            data={"application_id": application_id, "campaign_id": campaign_id},
            related=("application", application_id),
        )
        return self._get(application_id)

    def _review(self, application_id: str, owner_id: str, status: str) -> CampaignApplication:
        application = self._get(application_id)
        campaign = crud.campaign.get(self.db, id=application.campaign_id)
        if campaign is None or campaign.owner_id != owner_id:
            raise PermissionDeniedError(
                "NOT_CAMPAIGN_OWNER", "Only the campaign owner can review applications"
            )
        if application.status != "pending":
            raise ConflictError(
                "ALREADY_REVIEWED", f"Application is already {application.status}"
            )

        with transaction(self.db):
            application.status = status
            application.reviewed_at = datetime.now(timezone.utc)
            self.db.add(application)

        if status == "accepted":
            kind = NotificationKind.APPLICATION_ACCEPTED
            message = f"Your application for '{campaign.title}' was accepted."
        else:
            kind = NotificationKind.APPLICATION_REJECTED
            message = f"Your application for '{campaign.title}' was not selected."

        logger.info(f"Application {application_id} {status} by {owner_id}")
        self.notifier.notify(
            application.creator_id,
            kind,
            message,
            data={"application_id": application_id, "campaign_id": campaign.id},
            related=("application", application_id),
        )
        return application

    def accept(self, application_id: str, owner_id: str) -> CampaignApplication:
        return self._review(application_id, owner_id, "accepted")

    def reject(self, application_id: str, owner_id: str) -> CampaignApplication:
        return self._review(application_id, owner_id, "rejected")

    def withdraw(self, application_id: str, creator_id: str) -> CampaignApplication:
        application = self._get(application_id)
        if application.creator_id != creator_id:
            raise PermissionDeniedError(
                "NOT_APPLICATION_OWNER", "You can only withdraw your own application"
            )
        if application.status not in ("pending", "accepted"):
            raise ConflictError(
                "CANNOT_WITHDRAW", f"Cannot withdraw an application that is {application.status}"
            )
        if crud.deliverable.get_by_application(self.db, application_id=application_id):
            raise ConflictError(
                "DELIVERABLE_EXISTS", "Cannot withdraw after starting a deliverable"
            )

        with transaction(self.db):
            application.status = "withdrawn"
            self.db.add(application)

        logger.info(f"Application {application_id} withdrawn")
        return application
