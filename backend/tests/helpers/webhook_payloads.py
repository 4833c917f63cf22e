"""Builders for provider webhook payloads used across the tests."""

import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from seatsync.core.datetime_utils import utc_now_naive
from tests.fixtures.common import YEARLY_VARIANT_ID


def timestamp(value: datetime) -> str:
    """Format a naive UTC datetime the way the provider does."""
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def subscription_event(
    event_name: str,
    external_id: str,
    *,
    organization_id: Optional[uuid.UUID] = None,
    event_id: Optional[str] = None,
    status: str = "active",
    variant_id: Any = int(YEARLY_VARIANT_ID),
    quantity: Optional[int] = 5,
    updated_at: Optional[datetime] = None,
    renews_at: Optional[datetime] = None,
    custom_data: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build a subscription webhook payload as the provider sends it."""
    updated_at = updated_at or utc_now_naive()
    renews_at = renews_at or updated_at + timedelta(days=365)
    custom = dict(custom_data or {})
    if organization_id is not None:
        custom["organization_id"] = str(organization_id)
    return {
        "meta": {
            "event_name": event_name,
            "event_id": event_id or f"evt_{uuid.uuid4().hex[:12]}",
            "test_mode": True,
            "custom_data": custom,
        },
        "data": {
            "type": "subscriptions",
            "id": external_id,
            "attributes": {
                "status": status,
                "variant_id": variant_id,
                "customer_id": 4242,
                "renews_at": timestamp(renews_at),
                "ends_at": None,
                "trial_ends_at": None,
                "created_at": timestamp(updated_at - timedelta(days=30)),
                "updated_at": timestamp(updated_at),
                "first_subscription_item": (
                    {"id": 9001, "subscription_id": external_id, "quantity": quantity}
                    if quantity is not None
                    else None
                ),
            },
        },
    }


def invoice_event(
    event_name: str, external_subscription_id: str, *, updated_at: Optional[datetime] = None
) -> dict[str, Any]:
    """Build a subscription invoice payload for payment events."""
    updated_at = updated_at or utc_now_naive()
    return {
        "meta": {"event_name": event_name, "event_id": f"evt_{uuid.uuid4().hex[:12]}"},
        "data": {
            "type": "subscription-invoices",
            "id": "inv_1",
            "attributes": {
                "subscription_id": external_subscription_id,
                "status": "paid" if event_name.endswith("success") else "pending",
                "created_at": timestamp(updated_at),
                "updated_at": timestamp(updated_at),
            },
        },
    }
