"""
Tests for creator applications.
"""

import pytest

from marketplace_payments.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from marketplace_payments.schemas.campaign import ApplicationCreate
from marketplace_payments.services.application_service import ApplicationService
from marketplace_payments.services.notification_service import NotificationKind
from tests.utils.marketplace import create_application, create_campaign, create_deliverable


@pytest.fixture
def service(db_session, notifier):
    return ApplicationService(db_session, notifier=notifier)


def application_in(rate=25000):
    return ApplicationCreate(proposed_rate_cents=rate, cover_letter="Weekly food reels.")


class TestApply:

    def test_apply_to_active_campaign(self, service, db_session, notifier):
        campaign = create_campaign(db_session)

        application = service.apply(campaign.id, "creator_001", application_in())

        assert application.status == "pending"
        assert application.proposed_rate_cents == 25000
        args = notifier.notify.call_args.args
        assert args[0] == campaign.owner_id
        assert args[1] == NotificationKind.APPLICATION_RECEIVED

    def test_unfunded_campaign_is_closed(self, service, db_session):
        campaign = create_campaign(db_session, funded=False)

        with pytest.raises(ValidationError) as exc_info:
            service.apply(campaign.id, "creator_001", application_in())
        assert exc_info.value.code == "CAMPAIGN_NOT_ACTIVE"

    def test_owner_cannot_apply(self, service, db_session):
        campaign = create_campaign(db_session, owner_id="biz_001")

        with pytest.raises(ValidationError) as exc_info:
            service.apply(campaign.id, "biz_001", application_in())
        assert exc_info.value.code == "OWN_CAMPAIGN"

    def test_one_active_application_per_creator(self, service, db_session):
        campaign = create_campaign(db_session)
        service.apply(campaign.id, "creator_001", application_in())

        with pytest.raises(ConflictError) as exc_info:
            service.apply(campaign.id, "creator_001", application_in())
        assert exc_info.value.code == "ALREADY_APPLIED"

    def test_can_reapply_after_withdrawing(self, service, db_session):
        campaign = create_campaign(db_session)
        first = service.apply(campaign.id, "creator_001", application_in())
        service.withdraw(first.id, "creator_001")

        second = service.apply(campaign.id, "creator_001", application_in(rate=30000))

        assert second.id != first.id
        assert second.proposed_rate_cents == 30000

    def test_unknown_campaign(self, service):
        with pytest.raises(NotFoundError):
            service.apply("cmp_missing", "creator_001", application_in())


class TestReview:

    def test_owner_accepts(self, service, db_session, notifier):
        campaign = create_campaign(db_session)
        application = create_application(db_session, campaign, status="pending")

        accepted = service.accept(application.id, campaign.owner_id)

        assert accepted.status == "accepted"
        assert accepted.reviewed_at is not None
        assert notifier.notify.call_args.args[1] == NotificationKind.APPLICATION_ACCEPTED

    def test_owner_rejects(self, service, db_session, notifier):
        campaign = create_campaign(db_session)
        application = create_application(db_session, campaign, status="pending")

        rejected = service.reject(application.id, campaign.owner_id)

        assert rejected.status == "rejected"
        assert notifier.notify.call_args.args[1] == NotificationKind.APPLICATION_REJECTED

    def test_only_owner_reviews(self, service, db_session):
        campaign = create_campaign(db_session)
        application = create_application(db_session, campaign, status="pending")

        with pytest.raises(PermissionDeniedError):
            service.accept(application.id, "biz_999")

    def test_reviewed_once(self, service, db_session):
        campaign = create_campaign(db_session)
        application = create_application(db_session, campaign, status="pending")
        service.accept(application.id, campaign.owner_id)

        with pytest.raises(ConflictError) as exc_info:
            service.reject(application.id, campaign.owner_id)
        assert exc_info.value.code == "ALREADY_REVIEWED"


class TestWithdraw:

    def test_creator_withdraws(self, service, db_session):
        campaign = create_campaign(db_session)
        application = create_application(db_session, campaign)

        assert service.withdraw(application.id, "creator_001").status == "withdrawn"

    def test_only_creator_withdraws(self, service, db_session):
        campaign = create_campaign(db_session)
        application = create_application(db_session, campaign)

        with pytest.raises(PermissionDeniedError):
            service.withdraw(application.id, "creator_999")

    def test_cannot_withdraw_with_deliverable(self, service, db_session):
        campaign = create_campaign(db_session)
        application = create_application(db_session, campaign)
        create_deliverable(db_session, application)

        with pytest.raises(ConflictError) as exc_info:
            service.withdraw(application.id, "creator_001")
        assert exc_info.value.code == "DELIVERABLE_EXISTS"

    def test_rejected_application_cannot_be_withdrawn(self, service, db_session):
        campaign = create_campaign(db_session)
        application = create_application(db_session, campaign, status="rejected")

        with pytest.raises(ConflictError) as exc_info:
            service.withdraw(application.id, "creator_001")
        assert exc_info.value.code == "CANNOT_WITHDRAW"
