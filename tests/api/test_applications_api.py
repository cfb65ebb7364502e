from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tests.utils.auth import get_user_authentication_headers
from tests.utils.marketplace import create_application, create_campaign


def test_apply_to_campaign(test_client: TestClient, db_session: Session) -> None:
    """
    Tests that a creator can apply to an active campaign.
    """
    campaign = create_campaign(db_session)
    data = {"proposed_rate_cents": 25000, "cover_letter": "Weekly food reels."}

    response = test_client.post(
        f"/api/v1/campaigns/{campaign.id}/applications",
        headers=get_user_authentication_headers("creator_001"),
        json=data,
    )

    assert response.status_code == 201
    content = response.json()
    assert content["campaign_id"] == campaign.id
    assert content["creator_id"] == "creator_001"
    assert content["status"] == "pending"


def test_apply_twice_conflicts(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session)
    headers = get_user_authentication_headers("creator_001")
    url = f"/api/v1/campaigns/{campaign.id}/applications"

    test_client.post(url, headers=headers, json={"proposed_rate_cents": 25000})
    response = test_client.post(url, headers=headers, json={"proposed_rate_cents": 25000})

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "ALREADY_APPLIED"


def test_owner_cannot_apply(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session, owner_id="biz_001")

    response = test_client.post(
        f"/api/v1/campaigns/{campaign.id}/applications",
        headers=get_user_authentication_headers("biz_001"),
        json={"proposed_rate_cents": 25000},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "OWN_CAMPAIGN"


def test_unfunded_campaign_is_closed(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session, funded=False)

    response = test_client.post(
        f"/api/v1/campaigns/{campaign.id}/applications",
        headers=get_user_authentication_headers("creator_001"),
        json={"proposed_rate_cents": 25000},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "CAMPAIGN_NOT_ACTIVE"


def test_only_owner_accepts(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session)
    application = create_application(db_session, campaign, status="pending")

    response = test_client.post(
        f"/api/v1/applications/{application.id}/accept",
        headers=get_user_authentication_headers("biz_999"),
    )

    assert response.status_code == 403


def test_owner_accepts(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session)
    application = create_application(db_session, campaign, status="pending")

    response = test_client.post(
        f"/api/v1/applications/{application.id}/accept",
        headers=get_user_authentication_headers(campaign.owner_id),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "accepted"


def test_creator_withdraws(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session)
    application = create_application(db_session, campaign)

    response = test_client.post(
        f"/api/v1/applications/{application.id}/withdraw",
        headers=get_user_authentication_headers("creator_001"),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "withdrawn"


def test_apply_requires_authentication(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session)

    response = test_client.post(
        f"/api/v1/campaigns/{campaign.id}/applications",
        json={"proposed_rate_cents": 25000},
    )

    assert response.status_code == 401
