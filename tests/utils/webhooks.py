import hashlib
import hmac
import json
import time
import uuid
from typing import Any, Dict, Optional


def build_event(
    event_type: str,
    data_object: Dict[str, Any],
    event_id: Optional[str] = None,
    created: Optional[int] = None,
) -> bytes:
    """
    Serializes a Stripe-shaped event the way Stripe posts it.
    """
    event = {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": created or int(time.time()),
        "data": {"object": data_object},
    }
    return json.dumps(event).encode("utf-8")


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """
    Builds a Stripe-Signature header value for the payload.
    """
    timestamp = timestamp or int(time.time())
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def payment_intent_object(
    intent_id: str,
    campaign_id: str,
    amount: int = 50000,
    status: str = "succeeded",
    failure: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    return {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "currency": "usd",
        "status": status,
        "metadata": {"campaign_id": campaign_id, "type": "campaign_funding"},
        "last_payment_error": failure,
    }


def transfer_object(
    transfer_id: str,
    deliverable_id: Optional[str] = None,
    amount: int = 25000,
    failure_message: Optional[str] = None,
) -> Dict[str, Any]:
    metadata = {"deliverable_id": deliverable_id} if deliverable_id else {}
    return {
        "id": transfer_id,
        "object": "transfer",
        "amount": amount,
        "currency": "usd",
        "destination": "acct_creator_001",
        "metadata": metadata,
        "failure_message": failure_message,
    }


def account_object(
    account_id: str,
    details_submitted: bool = True,
    charges_enabled: bool = True,
    payouts_enabled: bool = True,
) -> Dict[str, Any]:
    return {
        "id": account_id,
        "object": "account",
        "details_submitted": details_submitted,
        "charges_enabled": charges_enabled,
        "payouts_enabled": payouts_enabled,
    }
