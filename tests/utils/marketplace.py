from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from marketplace_payments.models.campaign import Campaign
from marketplace_payments.models.campaign_application import CampaignApplication
from marketplace_payments.models.campaign_deliverable import CampaignDeliverable
from marketplace_payments.models.campaign_payment import CampaignPayment
from marketplace_payments.models.connected_account import ConnectedAccount
from marketplace_payments.models.payment_transaction import PaymentTransaction


def create_campaign(
    db: Session,
    owner_id: str = "biz_001",
    funded: bool = True,
    budget_cents: int = 50000,
    title: str = "Summer Tasting Menu",
) -> Campaign:
    """
    Creates a campaign; a funded one is active and paid.
    """
    now = datetime.now(timezone.utc)
    campaign = Campaign(
        owner_id=owner_id,
        restaurant_id="rest_001",
        title=title,
        budget_cents=budget_cents,
        currency="usd",
        status="active" if funded else "pending",
        payment_status="paid" if funded else "pending",
        deadline=now + timedelta(days=30),
        paid_at=now if funded else None,
    )
    db.add(campaign)
    db.commit()
    db.refresh(campaign)
    return campaign


def create_payment_record(
    db: Session,
    campaign: Campaign,
    intent_id: str = "pi_test_001",
    status: str = "pending",
) -> CampaignPayment:
    record = CampaignPayment(
        campaign_id=campaign.id,
        business_id=campaign.owner_id,
        payment_intent_id=intent_id,
        amount_cents=campaign.budget_cents,
        currency="usd",
        status=status,
        paid_at=datetime.now(timezone.utc) if status == "succeeded" else None,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def create_application(
    db: Session,
    campaign: Campaign,
    creator_id: str = "creator_001",
    rate_cents: int = 25000,
    status: str = "accepted",
) -> CampaignApplication:
    application = CampaignApplication(
        campaign_id=campaign.id,
        creator_id=creator_id,
        proposed_rate_cents=rate_cents,
        cover_letter="I post weekly food reels.",
        status=status,
    )
    db.add(application)
    db.commit()
    db.refresh(application)
    return application


def create_deliverable(
    db: Session,
    application: CampaignApplication,
    status: str = "pending_review",
    payment_status: str = "pending",
    submitted_at: Optional[datetime] = None,
    **overrides,
) -> CampaignDeliverable:
    """
    Creates a submitted deliverable with the application's rate as its amount.
    """
    submitted_at = submitted_at or datetime.now(timezone.utc)
    values = dict(
        application_id=application.id,
        campaign_id=application.campaign_id,
        creator_id=application.creator_id,
        platform="instagram",
        post_url="https://www.instagram.com/p/Cx1abc/",
        status=status,
        submitted_at=submitted_at,
        review_deadline=submitted_at + timedelta(hours=72),
        payment_status=payment_status,
        payment_amount_cents=application.proposed_rate_cents,
    )
    values.update(overrides)
    deliverable = CampaignDeliverable(**values)
    db.add(deliverable)
    db.commit()
    db.refresh(deliverable)
    return deliverable


def create_connected_account(
    db: Session,
    user_id: str = "creator_001",
    account_type: str = "creator",
    stripe_account_id: str = "acct_creator_001",
    completed: bool = True,
    **overrides,
) -> ConnectedAccount:
    account = ConnectedAccount(
        user_id=user_id,
        account_type=account_type,
        stripe_account_id=stripe_account_id,
        onboarding_completed=completed,
        charges_enabled=completed,
        payouts_enabled=completed,
        onboarding_completed_at=datetime.now(timezone.utc) if completed else None,
        **overrides,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def create_payout_transaction(
    db: Session,
    deliverable: CampaignDeliverable,
    transfer_id: str,
    status: str = "processing",
) -> PaymentTransaction:
    txn = PaymentTransaction(
        campaign_id=deliverable.campaign_id,
        deliverable_id=deliverable.id,
        creator_id=deliverable.creator_id,
        processor_reference=transfer_id,
        transaction_type="payout",
        amount_cents=deliverable.payment_amount_cents,
        currency="usd",
        status=status,
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def create_approved_deliverable(
    db: Session,
    owner_id: str = "biz_001",
    creator_id: str = "creator_001",
    rate_cents: int = 25000,
    **overrides,
) -> CampaignDeliverable:
    """
    A funded campaign, an accepted application and an approved deliverable
    whose payout has not started yet.
    """
    campaign = create_campaign(db, owner_id=owner_id)
    application = create_application(db, campaign, creator_id=creator_id, rate_cents=rate_cents)
    values = dict(
        status="approved",
        payment_status="processing",
        reviewed_by=owner_id,
        reviewed_at=datetime.now(timezone.utc),
    )
    values.update(overrides)
    return create_deliverable(db, application, **values)
