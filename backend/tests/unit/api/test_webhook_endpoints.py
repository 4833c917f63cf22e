"""Unit tests for the webhook endpoint."""

from seatsync import crud
from seatsync.platform.billing.webhook_handler import PROVIDER
from tests.helpers.webhook_payloads import invoice_event, subscription_event

WEBHOOK_URL = "/webhooks/lemonsqueezy"


async def test_valid_delivery_is_processed(
    api_client, sign_payload, organization_id, db_session
):
    """A signed subscription_created event creates the subscription."""
    body, signature = sign_payload(
        subscription_event(
            "subscription_created", "sub_api_1", organization_id=organization_id, quantity=4
        )
    )

    response = await api_client.post(
        WEBHOOK_URL,
        content=body,
        headers={"X-Signature": signature, "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "processed"
    assert response.json()["outcome"] == "applied"
    stored = await crud.subscription.get_by_external_id(
        db_session, external_subscription_id="sub_api_1"
    )
    assert stored.current_seats == 4


async def test_duplicate_delivery(api_client, sign_payload, organization_id):
    """Redelivery of a processed event is acknowledged as a duplicate."""
    body, signature = sign_payload(
        subscription_event("subscription_created", "sub_api_2", organization_id=organization_id)
    )
    headers = {"X-Signature": signature}

    first = await api_client.post(WEBHOOK_URL, content=body, headers=headers)
    second = await api_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert first.json()["status"] == "processed"
    assert second.status_code == 200
    assert second.json()["status"] == "duplicate"


async def test_invalid_signature(api_client, sign_payload, organization_id):
    """Unverified bodies are rejected with 401."""
    body, _ = sign_payload(
        subscription_event("subscription_created", "sub_api_3", organization_id=organization_id)
    )

    response = await api_client.post(WEBHOOK_URL, content=body, headers={"X-Signature": "00"})

    assert response.status_code == 401
    assert response.json()["error"] == "WebhookSignatureError"


async def test_missing_signature(api_client, sign_payload, organization_id):
    """A delivery without a signature header is rejected."""
    body, _ = sign_payload(
        subscription_event("subscription_created", "sub_api_4", organization_id=organization_id)
    )

    response = await api_client.post(WEBHOOK_URL, content=body)

    assert response.status_code == 401


async def test_unknown_provider(api_client, sign_payload):
    """Only configured providers have a webhook route."""
    body, signature = sign_payload(invoice_event("subscription_payment_success", "sub_x"))

    response = await api_client.post(
        "/webhooks/stripe", content=body, headers={"X-Signature": signature}
    )

    assert response.status_code == 404


async def test_dispatch_failure_is_acknowledged(api_client, sign_payload, db_session):
    """An event that cannot be applied is recorded and answered with status failed."""
    payload = invoice_event("subscription_payment_success", "sub_unknown")
    body, signature = sign_payload(payload)

    response = await api_client.post(WEBHOOK_URL, content=body, headers={"X-Signature": signature})

    assert response.status_code == 200
    assert response.json()["status"] == "failed"
    assert "NotFoundException" in response.json()["detail"]
    failed = await crud.billing_event.get_failed(db_session, provider=PROVIDER)
    assert [event.external_event_id for event in failed] == [payload["meta"]["event_id"]]
