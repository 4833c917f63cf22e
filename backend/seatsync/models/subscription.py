"""Subscription model, the store's view of an organization's seat subscription."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Numeric, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from seatsync.core.datetime_utils import utc_now_naive
from seatsync.core.shared_models import LIVE_SUBSCRIPTION_STATUSES, BillingType
from seatsync.models._base import Base

_LIVE_STATUS_CLAUSE = "status IN ({})".format(
    ", ".join(f"'{status.value}'" for status in LIVE_SUBSCRIPTION_STATUSES)
)


class Subscription(Base):
    """Seat subscription of one organization at the billing provider.

    An organization may have many historical rows but at most one live row
    (on_trial, active, past_due or paused); the partial unique index below
    enforces that. Rows are never deleted, only superseded.
    """

    __tablename__ = "subscription"

    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    # Provider identifiers
    external_subscription_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    external_subscription_item_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    external_customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    external_variant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    billing_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=BillingType.LEGACY.value
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False)

    # Seats
    current_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pending_seats: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pending_effective_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Billing period
    period_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    renews_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Pricing, major currency units
    per_seat_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2, asdecimal=True), nullable=False, default=0
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Optimistic concurrency and ordering
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_changed_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utc_now_naive
    )
    provider_event_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("current_seats >= 0", name="ck_subscription_current_seats_non_negative"),
        CheckConstraint(
            "pending_seats IS NULL OR pending_seats >= 0",
            name="ck_subscription_pending_seats_non_negative",
        ),
        CheckConstraint(
            "(pending_seats IS NULL) = (pending_effective_at IS NULL)",
            name="ck_subscription_pending_pair",
        ),
        Index(
            "uq_subscription_live_org",
            "organization_id",
            unique=True,
            postgresql_where=text(_LIVE_STATUS_CLAUSE),
            sqlite_where=text(_LIVE_STATUS_CLAUSE),
        ),
        Index("idx_subscription_org", "organization_id"),
        Index("idx_subscription_pending_effective_at", "pending_effective_at"),
    )
