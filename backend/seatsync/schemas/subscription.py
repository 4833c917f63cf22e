"""Subscription schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from seatsync.core.shared_models import (
    LIVE_SUBSCRIPTION_STATUSES,
    BillingType,
    SubscriptionStatus,
)


class SubscriptionBase(BaseModel):
    """Subscription base schema."""

    organization_id: UUID = Field(..., description="Organization owning the seats")
    external_subscription_id: str = Field(..., description="Provider subscription id")
    external_subscription_item_id: Optional[str] = Field(
        None, description="Provider subscription item id, required for seat updates"
    )
    external_customer_id: Optional[str] = None
    external_variant_id: Optional[str] = None
    billing_type: BillingType = BillingType.LEGACY
    status: SubscriptionStatus
    current_seats: int = Field(0, ge=0)
    period_start: Optional[datetime] = None
    renews_at: Optional[datetime] = Field(None, description="End of the current billing period")
    ends_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    per_seat_price: Decimal = Field(Decimal("0"), ge=0)
    currency: str = "USD"


class SubscriptionCreate(SubscriptionBase):
    """Subscription creation schema."""

    last_changed_at: Optional[datetime] = None
    provider_event_at: Optional[datetime] = None


class SubscriptionUpdate(BaseModel):
    """Fields a provider event or seat change may set on a subscription."""

    external_subscription_item_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    external_variant_id: Optional[str] = None
    billing_type: Optional[BillingType] = None
    status: Optional[SubscriptionStatus] = None
    current_seats: Optional[int] = Field(None, ge=0)
    pending_seats: Optional[int] = Field(None, ge=0)
    pending_effective_at: Optional[datetime] = None
    period_start: Optional[datetime] = None
    renews_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None


class SubscriptionInDBBase(SubscriptionBase):
    """Subscription base schema in the database."""

    model_config = {"from_attributes": True}

    id: UUID
    pending_seats: Optional[int] = None
    pending_effective_at: Optional[datetime] = None
    version: int
    last_changed_at: datetime
    provider_event_at: Optional[datetime] = None
    created_at: datetime
    modified_at: datetime


class Subscription(SubscriptionInDBBase):
    """Subscription snapshot."""

    @property
    def is_live(self) -> bool:
        """Whether the subscription currently grants seats."""
        return self.status in LIVE_SUBSCRIPTION_STATUSES

    @property
    def has_pending_change(self) -> bool:
        """Whether a deferred seat change is scheduled."""
        return self.pending_seats is not None
