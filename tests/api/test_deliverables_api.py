from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tests.utils.auth import get_user_authentication_headers
from tests.utils.marketplace import create_application, create_campaign, create_deliverable


def test_submit_deliverable(test_client: TestClient, db_session: Session) -> None:
    """
    Tests that a creator submits a post for review and the amount is fixed.
    """
    campaign = create_campaign(db_session)
    application = create_application(db_session, campaign, rate_cents=30000)
    data = {
        "application_id": application.id,
        "post_url": "https://www.tiktok.com/@foodie/video/7301",
    }

    response = test_client.post(
        "/api/v1/deliverables",
        headers=get_user_authentication_headers("creator_001"),
        json=data,
    )

    assert response.status_code == 201
    content = response.json()
    assert content["status"] == "pending_review"
    assert content["platform"] == "tiktok"
    assert content["payment_amount_cents"] == 30000
    assert content["review_deadline"] is not None


def test_submit_rejects_plain_http(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session)
    application = create_application(db_session, campaign)

    response = test_client.post(
        "/api/v1/deliverables",
        headers=get_user_authentication_headers("creator_001"),
        json={"application_id": application.id, "post_url": "http://instagram.com/p/abc/"},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "URL must use HTTPS"


def test_reject_requires_feedback(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session)
    deliverable = create_deliverable(db_session, create_application(db_session, campaign))

    response = test_client.post(
        f"/api/v1/deliverables/{deliverable.id}/reject",
        headers=get_user_authentication_headers(campaign.owner_id),
        json={"feedback": "  "},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "FEEDBACK_REQUIRED"


def test_reject_with_feedback(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session)
    deliverable = create_deliverable(db_session, create_application(db_session, campaign))

    response = test_client.post(
        f"/api/v1/deliverables/{deliverable.id}/reject",
        headers=get_user_authentication_headers(campaign.owner_id),
        json={"feedback": "The restaurant is not tagged."},
    )

    assert response.status_code == 200
    content = response.json()
    assert content["deliverable"]["status"] == "rejected"
    assert content["deliverable"]["feedback"] == "The restaurant is not tagged."


def test_approve_holds_payout_until_onboarding(
    test_client: TestClient, db_session: Session
) -> None:
    campaign = create_campaign(db_session)
    deliverable = create_deliverable(db_session, create_application(db_session, campaign))

    response = test_client.post(
        f"/api/v1/deliverables/{deliverable.id}/approve",
        headers=get_user_authentication_headers(campaign.owner_id),
        json={},
    )

    assert response.status_code == 200
    content = response.json()
    assert content["deliverable"]["status"] == "approved"
    assert content["payout_status"] == "pending_onboarding"


def test_auto_approval_status(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session)
    deliverable = create_deliverable(
        db_session,
        create_application(db_session, campaign),
        submitted_at=datetime.now(timezone.utc) - timedelta(hours=10),
    )

    response = test_client.get(
        f"/api/v1/deliverables/{deliverable.id}/auto-approval-status",
        headers=get_user_authentication_headers(campaign.owner_id),
    )

    assert response.status_code == 200
    content = response.json()
    assert content["should_auto_approve"] is False
    assert content["urgency"] == "low"
    assert 61.9 < content["hours_remaining"] <= 62.0
