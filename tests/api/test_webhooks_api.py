from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from marketplace_payments.core.config import settings
from tests.utils.marketplace import create_campaign, create_payment_record
from tests.utils.webhooks import build_event, payment_intent_object, sign_payload

WEBHOOK_URL = "/api/v1/webhooks/payments"


def _post(client: TestClient, payload: bytes, signature=None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    return client.post(WEBHOOK_URL, content=payload, headers=headers)


def test_signed_event_is_processed(test_client: TestClient, db_session: Session) -> None:
    """
    Tests that a signed payment confirmation activates the campaign.
    """
    campaign = create_campaign(db_session, funded=False)
    create_payment_record(db_session, campaign, intent_id="pi_api_001")
    payload = build_event(
        "payment_intent.succeeded",
        payment_intent_object("pi_api_001", campaign.id),
        event_id="evt_api_001",
    )

    response = _post(test_client, payload, sign_payload(payload, settings.STRIPE_WEBHOOK_SECRET))

    assert response.status_code == 200
    assert response.json() == {"status": "processed", "event_id": "evt_api_001"}
    db_session.refresh(campaign)
    assert campaign.payment_status == "paid"


def test_redelivery_is_acknowledged(test_client: TestClient, db_session: Session) -> None:
    campaign = create_campaign(db_session, funded=False)
    create_payment_record(db_session, campaign, intent_id="pi_api_001")
    payload = build_event(
        "payment_intent.succeeded",
        payment_intent_object("pi_api_001", campaign.id),
        event_id="evt_api_002",
    )
    signature = sign_payload(payload, settings.STRIPE_WEBHOOK_SECRET)

    _post(test_client, payload, signature)
    response = _post(test_client, payload, signature)

    assert response.status_code == 200
    assert response.json()["status"] == "already_processed"


def test_invalid_signature_is_rejected(test_client: TestClient) -> None:
    payload = build_event("transfer.paid", {"id": "tr_001"})

    response = _post(test_client, payload, sign_payload(payload, "whsec_wrong"))

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"


def test_missing_signature_is_rejected(test_client: TestClient) -> None:
    response = _post(test_client, build_event("transfer.paid", {"id": "tr_001"}))

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "Missing signature"


def test_unconfigured_secret_is_a_server_error(test_client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    payload = build_event("transfer.paid", {"id": "tr_001"})

    response = _post(test_client, payload, "t=1,v1=abc")

    assert response.status_code == 500
    assert response.json()["detail"]["code"] == "WEBHOOK_NOT_CONFIGURED"
