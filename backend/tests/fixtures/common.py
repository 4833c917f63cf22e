"""Common test fixtures."""

import hashlib
import hmac
import json
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import crud, schemas
from seatsync.core.datetime_utils import utc_now_naive
from seatsync.core.shared_models import BillingType, SubscriptionStatus
from seatsync.integrations.lemonsqueezy_client import LemonSqueezyClient

WEBHOOK_SECRET = "whsec_test_secret"
YEARLY_VARIANT_ID = "1001"
MONTHLY_VARIANT_ID = "1002"


@pytest.fixture
def organization_id() -> uuid.UUID:
    """Organization the test acts on."""
    return uuid.uuid4()


@pytest.fixture
def webhook_secret() -> str:
    """Signing secret shared by the webhook tests."""
    return WEBHOOK_SECRET


@pytest.fixture
def sign_payload(webhook_secret):
    """Serialize a payload and compute its ``X-Signature`` header."""

    def _sign(payload: dict[str, Any]) -> tuple[bytes, str]:
        body = json.dumps(payload).encode()
        signature = hmac.new(webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        return body, signature

    return _sign


@pytest.fixture
def mock_billing_client():
    """Provider client double that accepts every call."""
    client = AsyncMock(spec=LemonSqueezyClient)
    client.update_subscription_quantity.return_value = {"type": "subscription-items", "id": "1"}
    client.create_usage_record.return_value = {"type": "usage-records", "id": "1"}
    return client


@pytest.fixture
def make_subscription(db_session: AsyncSession, organization_id: uuid.UUID):
    """Insert a subscription row and return its snapshot."""

    async def _make(
        *,
        billing_type: BillingType = BillingType.QUANTITY_BASED,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        current_seats: int = 5,
        renews_at: Optional[datetime] = None,
        period_start: Optional[datetime] = None,
        per_seat_price: Decimal = Decimal("120.00"),
        organization: Optional[uuid.UUID] = None,
        external_subscription_id: Optional[str] = None,
        external_subscription_item_id: Optional[str] = "item_1",
        last_changed_at: Optional[datetime] = None,
        provider_event_at: Optional[datetime] = None,
    ) -> schemas.Subscription:
        now = utc_now_naive()
        if renews_at is None and billing_type != BillingType.LEGACY:
            renews_at = now + timedelta(days=180)
        if period_start is None and renews_at is not None:
            period_start = renews_at - timedelta(days=365)
        db_obj = await crud.subscription.create(
            db_session,
            obj_in=schemas.SubscriptionCreate(
                organization_id=organization or organization_id,
                external_subscription_id=external_subscription_id or f"sub_{uuid.uuid4().hex[:8]}",
                external_subscription_item_id=external_subscription_item_id,
                external_variant_id=(
                    YEARLY_VARIANT_ID
                    if billing_type == BillingType.QUANTITY_BASED
                    else MONTHLY_VARIANT_ID
                ),
                billing_type=billing_type,
                status=status,
                current_seats=current_seats,
                period_start=period_start,
                renews_at=renews_at,
                per_seat_price=per_seat_price,
                currency="USD",
                last_changed_at=last_changed_at or now - timedelta(days=1),
                provider_event_at=provider_event_at,
            ),
        )
        return schemas.Subscription.model_validate(db_obj, from_attributes=True)

    return _make
